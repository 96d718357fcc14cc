from enum import Enum

from marketplace.services.repository import RepositoryConflictError, RepositoryValidationError


class JobStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ProposalStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


JOB_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.OPEN: {JobStatus.IN_PROGRESS, JobStatus.CANCELLED},
    JobStatus.IN_PROGRESS: {JobStatus.COMPLETED, JobStatus.CANCELLED},
    JobStatus.COMPLETED: set(),
    JobStatus.CANCELLED: set(),
}

# Accepted and rejected are terminal.
PROPOSAL_TRANSITIONS: dict[ProposalStatus, set[ProposalStatus]] = {
    ProposalStatus.PENDING: {ProposalStatus.ACCEPTED, ProposalStatus.REJECTED},
    ProposalStatus.ACCEPTED: set(),
    ProposalStatus.REJECTED: set(),
}


def parse_job_status(value: object) -> JobStatus:
    try:
        return JobStatus(value)
    except ValueError as exc:
        raise RepositoryValidationError(f"unknown job status: {value}") from exc


def parse_proposal_status(value: object) -> ProposalStatus:
    try:
        return ProposalStatus(value)
    except ValueError as exc:
        raise RepositoryValidationError(f"unknown proposal status: {value}") from exc


def validate_job_transition(*, from_status: JobStatus, to_status: JobStatus) -> None:
    if to_status == from_status:
        return
    if to_status not in JOB_TRANSITIONS.get(from_status, set()):
        raise RepositoryConflictError(f"invalid state transition: {from_status.value} -> {to_status.value}")


def validate_proposal_transition(*, from_status: ProposalStatus, to_status: ProposalStatus) -> None:
    if to_status == from_status:
        return
    if to_status not in PROPOSAL_TRANSITIONS.get(from_status, set()):
        raise RepositoryConflictError(f"invalid state transition: {from_status.value} -> {to_status.value}")
