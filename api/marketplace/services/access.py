from marketplace.core.auth import AuthSession
from marketplace.services.repository import RepositoryForbiddenError, RepositoryValidationError


def authorize(session: AuthSession | None, *scopes: str) -> AuthSession:
    if session is None:
        raise RepositoryForbiddenError("an authenticated session is required")
    try:
        session.require_scopes(set(scopes))
    except PermissionError as exc:
        raise RepositoryForbiddenError(str(exc)) from exc
    return session


def reject_fields(changes: dict, writable: set[str], *, entity: str) -> None:
    blocked = sorted(set(changes) - writable)
    if blocked:
        raise RepositoryValidationError(f"{entity} fields cannot be written directly: {blocked}")
