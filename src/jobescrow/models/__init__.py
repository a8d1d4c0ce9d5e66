"""Core data models for the job marketplace."""

from jobescrow.models.job import (
    JOB_TRANSITIONS,
    Job,
    JobState,
    SettlementKind,
)

__all__ = [
    "JOB_TRANSITIONS",
    "Job",
    "JobState",
    "SettlementKind",
]
