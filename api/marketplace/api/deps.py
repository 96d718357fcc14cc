from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import Depends, HTTPException, status

from marketplace.core.auth import AuthSession
from marketplace.core.config import Settings, get_settings
from marketplace.core.security import get_auth_session
from marketplace.services.eligibility import ReviewEligibilityGate
from marketplace.services.jobs import JobRegistry
from marketplace.services.notifications import NotificationService
from marketplace.services.professionals import ProfessionalRegistry
from marketplace.services.proposals import ProposalRegistry
from marketplace.services.repository import (
    DocumentStore,
    RepositoryConflictError,
    RepositoryForbiddenError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)
from marketplace.services.reviews import ReviewRegistry


@contextmanager
def http_errors() -> Iterator[None]:
    try:
        yield
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except RepositoryConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc


def build_notification_service(repository: DocumentStore, settings: Settings) -> NotificationService:
    return NotificationService(
        repository,
        default_limit=settings.notifications_default_limit,
        max_limit=settings.notifications_max_limit,
    )


def get_notification_service(
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
) -> NotificationService:
    return build_notification_service(repository, settings)


def get_job_registry(
    session: AuthSession = Depends(get_auth_session),
    repository=Depends(get_repository),
    notifications: NotificationService = Depends(get_notification_service),
) -> JobRegistry:
    return JobRegistry(repository, notifications, session)


def get_public_job_registry(
    repository=Depends(get_repository),
    notifications: NotificationService = Depends(get_notification_service),
) -> JobRegistry:
    return JobRegistry(repository, notifications)


def get_proposal_registry(
    session: AuthSession = Depends(get_auth_session),
    repository=Depends(get_repository),
    notifications: NotificationService = Depends(get_notification_service),
) -> ProposalRegistry:
    return ProposalRegistry(repository, notifications, session)


def get_professional_registry(
    session: AuthSession = Depends(get_auth_session),
    repository=Depends(get_repository),
) -> ProfessionalRegistry:
    return ProfessionalRegistry(repository, session)


def get_public_professional_registry(repository=Depends(get_repository)) -> ProfessionalRegistry:
    return ProfessionalRegistry(repository)


def get_review_registry(
    session: AuthSession = Depends(get_auth_session),
    repository=Depends(get_repository),
    notifications: NotificationService = Depends(get_notification_service),
) -> ReviewRegistry:
    return ReviewRegistry(repository, notifications, session)


def get_public_review_registry(
    repository=Depends(get_repository),
    notifications: NotificationService = Depends(get_notification_service),
) -> ReviewRegistry:
    return ReviewRegistry(repository, notifications)


def get_eligibility_gate(repository=Depends(get_repository)) -> ReviewEligibilityGate:
    return ReviewEligibilityGate(repository)
