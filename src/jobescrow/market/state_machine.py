"""Job state machine — enforces valid lifecycle transitions.

Job lifecycle:
    OPEN → ACCEPTED → SUBMITTED → SETTLED
    ACCEPTED → SETTLED (auto-release once the deadline has passed)

State semantics:
- OPEN: posted and funded, waiting for a worker.
- ACCEPTED: a worker has taken the job.
- SUBMITTED: the worker reports the work delivered.
- SETTLED: terminal; escrow paid out to worker and fee wallet.

Fail-closed: invalid transitions return errors. There are no implicit
transitions.
"""

from __future__ import annotations

from datetime import datetime

from jobescrow.market import deadline
from jobescrow.models.job import JOB_TRANSITIONS, Job, JobState


class JobStateMachine:
    """Validates job state transitions and reports legal actions.

    Pure computation: validates only. Side effects (fund movement,
    commits, event logging) belong to the escrow engine and service.
    """

    @staticmethod
    def validate_transition(job: Job, target: JobState) -> list[str]:
        """Check if a transition is valid. Returns errors (empty = OK)."""
        current = job.state
        allowed = JOB_TRANSITIONS.get(current, frozenset())

        if target not in allowed:
            allowed_str = ", ".join(s.value for s in sorted(allowed, key=lambda x: x.value))
            return [
                f"Invalid job transition: {current.value} → {target.value}. "
                f"Allowed from {current.value}: [{allowed_str}]"
            ]
        return []

    @staticmethod
    def is_terminal(state: JobState) -> bool:
        """Check if a state is terminal (no further transitions)."""
        return not JOB_TRANSITIONS.get(state)

    @staticmethod
    def available_actions(job: Job, caller: str, now: datetime) -> list[str]:
        """Operations ``caller`` could successfully invoke on ``job`` right now.

        Ignores ledger availability; an action listed here can still be
        rejected if the custodian fails the transfer.
        """
        actions: list[str] = []
        if JobStateMachine.is_terminal(job.state):
            return actions
        if job.state == JobState.OPEN:
            actions.append("accept")
        if job.state == JobState.ACCEPTED and caller == job.worker:
            actions.append("submit")
        if job.state == JobState.SUBMITTED and caller == job.client:
            actions.append("confirm")
        if deadline.can_auto_release(job, now):
            actions.append("auto_release")
        return actions
