"""Job model — a unit of paid work with escrowed funds and a lifecycle state.

All monetary values are integers in the payment token's base units.
Fee arithmetic floors, so there is never a fractional unit to lose.

Invariants enforced by these models:
- A job has exactly one authoritative lifecycle field (``state``).
  The display booleans ``accepted``, ``completed`` and ``confirmed``
  are projections of it and cannot disagree with it.
- Records are frozen. A transition produces a new record which the
  registry swaps in atomically.
- Identity and monetary fields never change after creation.

State machine:
    OPEN → ACCEPTED → SUBMITTED → SETTLED
    ACCEPTED → SETTLED      (auto-release after the deadline)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Optional


class JobState(str, enum.Enum):
    """Lifecycle state of a job."""
    OPEN = "open"
    ACCEPTED = "accepted"
    SUBMITTED = "submitted"
    SETTLED = "settled"


class SettlementKind(str, enum.Enum):
    """How a settled job's escrow was released."""
    CONFIRMATION = "confirmation"
    AUTO_RELEASE = "auto_release"


# Valid job state transitions
JOB_TRANSITIONS: Dict[JobState, frozenset] = {
    JobState.OPEN: frozenset({JobState.ACCEPTED}),
    JobState.ACCEPTED: frozenset({
        JobState.SUBMITTED,
        JobState.SETTLED,
    }),
    JobState.SUBMITTED: frozenset({JobState.SETTLED}),
    JobState.SETTLED: frozenset(),
}

# Fields that are fixed when the job is posted.
IMMUTABLE_FIELDS = (
    "job_id",
    "client",
    "title",
    "description",
    "price",
    "payment_token",
    "deadline",
    "created_utc",
)

_STATUS_LABELS = {
    JobState.OPEN: "Open",
    JobState.ACCEPTED: "In progress",
    JobState.SUBMITTED: "Submitted",
    JobState.SETTLED: "Completed",
}


@dataclass(frozen=True)
class Job:
    """A posted job and its escrow.

    While the job is OPEN, ACCEPTED or SUBMITTED, ``price`` units of
    ``payment_token`` sit in escrow custody. Once SETTLED the escrow is
    empty and ``fee_amount + worker_payout == price``.
    """
    job_id: int
    client: str
    title: str
    description: str
    price: int
    payment_token: str
    deadline: datetime
    state: JobState = JobState.OPEN
    worker: Optional[str] = None
    created_utc: Optional[datetime] = None
    accepted_utc: Optional[datetime] = None
    submitted_utc: Optional[datetime] = None
    settled_utc: Optional[datetime] = None
    settled_by: Optional[SettlementKind] = None
    fee_amount: Optional[int] = None
    worker_payout: Optional[int] = None

    @property
    def accepted(self) -> bool:
        """A worker has taken the job."""
        return self.state != JobState.OPEN

    @property
    def completed(self) -> bool:
        """Work has been submitted (or the job settled without it)."""
        return self.state in (JobState.SUBMITTED, JobState.SETTLED)

    @property
    def confirmed(self) -> bool:
        """Payment has been released."""
        return self.state == JobState.SETTLED

    @property
    def status_label(self) -> str:
        return _STATUS_LABELS[self.state]

    @property
    def escrowed_amount(self) -> int:
        """Units of payment token currently held in custody for this job."""
        return 0 if self.state == JobState.SETTLED else self.price

    def transition_to(self, new_state: JobState, **changes: Any) -> Job:
        """Return a copy in ``new_state`` with ``changes`` applied.

        Legality is checked when the registry commits the copy.
        """
        return replace(self, state=new_state, **changes)

    def to_snapshot(self) -> dict[str, Any]:
        """Read-only projection for display, including derived flags."""
        return {
            "job_id": self.job_id,
            "client": self.client,
            "worker": self.worker,
            "title": self.title,
            "description": self.description,
            "price": self.price,
            "payment_token": self.payment_token,
            "deadline": self.deadline.isoformat(),
            "state": self.state.value,
            "status": self.status_label,
            "accepted": self.accepted,
            "completed": self.completed,
            "confirmed": self.confirmed,
            "created_utc": _iso(self.created_utc),
            "accepted_utc": _iso(self.accepted_utc),
            "submitted_utc": _iso(self.submitted_utc),
            "settled_utc": _iso(self.settled_utc),
            "settled_by": self.settled_by.value if self.settled_by else None,
            "fee_amount": self.fee_amount,
            "worker_payout": self.worker_payout,
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None
