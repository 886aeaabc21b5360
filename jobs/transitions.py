"""Legal transition table for the job state machine."""

from __future__ import annotations

from enum import Enum

from .errors import InvalidTransition
from .schemas import JobStatus


class Transition(str, Enum):
    CLAIM = "claim"
    REPORT_PROGRESS = "report_progress"
    COMPLETE = "complete"
    REQUEUE_FOR_RETRY = "requeue_for_retry"
    FAIL = "fail"
    FORCE_FAIL = "force_fail"


# Processing -> Processing on CLAIM is a re-claim after the previous lease expired.
LEGAL_TRANSITIONS: dict[tuple[JobStatus, Transition], JobStatus] = {
    (JobStatus.QUEUED, Transition.CLAIM): JobStatus.PROCESSING,
    (JobStatus.PROCESSING, Transition.CLAIM): JobStatus.PROCESSING,
    (JobStatus.PROCESSING, Transition.REPORT_PROGRESS): JobStatus.PROCESSING,
    (JobStatus.PROCESSING, Transition.COMPLETE): JobStatus.COMPLETED,
    (JobStatus.PROCESSING, Transition.REQUEUE_FOR_RETRY): JobStatus.QUEUED,
    (JobStatus.PROCESSING, Transition.FAIL): JobStatus.FAILED,
    (JobStatus.QUEUED, Transition.FORCE_FAIL): JobStatus.FAILED,
    (JobStatus.PROCESSING, Transition.FORCE_FAIL): JobStatus.FAILED,
}


def next_status(current: JobStatus, transition: Transition) -> JobStatus:
    try:
        return LEGAL_TRANSITIONS[(current, transition)]
    except KeyError:
        raise InvalidTransition(
            f"cannot apply {transition.value} to a {current.value} job"
        ) from None


def is_allowed(current: JobStatus, transition: Transition) -> bool:
    return (current, transition) in LEGAL_TRANSITIONS
