"""Deadline monitor — decides when a job may be force-settled.

There is no scheduler. Expiry is evaluated lazily by whoever calls
``auto_release``, against the time they pass in.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from jobescrow.errors import InvalidInput
from jobescrow.models.job import Job, JobState

_RELEASABLE = (JobState.ACCEPTED, JobState.SUBMITTED)


def require_aware(now: datetime) -> datetime:
    """Reject a naive timestamp; deadlines are always timezone-aware."""
    if now.tzinfo is None:
        raise InvalidInput("Current time must be timezone-aware")
    return now


def is_expired(job: Job, now: datetime) -> bool:
    """True once ``now`` has reached the job's deadline."""
    return now >= job.deadline


def time_remaining(job: Job, now: datetime) -> timedelta:
    """Time left before the deadline, never negative."""
    return max(job.deadline - now, timedelta(0))


def can_auto_release(job: Job, now: datetime) -> bool:
    """Whether an auto-release would pass the state and deadline checks."""
    return job.state in _RELEASABLE and is_expired(job, now)
