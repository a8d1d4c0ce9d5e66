"""Escrow engine — the job lifecycle, fund custody and settlement.

Posting a job moves the full price from the client into escrow custody
before the job exists. From then on the escrow can only leave custody
through one settlement, split between the fee wallet and the worker:

    fee           → fee wallet   (price * fee_percent // 100)
    price - fee   → worker

Settlement happens either when the client confirms submitted work, or
when anyone calls auto-release after the deadline on a job a worker has
accepted. Auto-release is permissionless and does not
require submitted work: past the deadline the worker is paid, with no
dispute path inside the engine.

Every operation runs as one unit under the registry's per-job lock:

    load → check state and caller → move funds → commit

If the ledger rejects a transfer nothing is committed, and nothing
else has changed. A second caller racing for the same transition waits
for the lock, then sees the committed state and is rejected.

State machine:
    OPEN → ACCEPTED                (accept_job, any caller)
    ACCEPTED → SUBMITTED           (submit_work, worker only)
    SUBMITTED → SETTLED            (confirm_completion, client only)
    ACCEPTED/SUBMITTED → SETTLED   (auto_release, anyone, after deadline)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from jobescrow.compensation.fee_policy import FeePolicy
from jobescrow.compensation.ledger import (
    REASON_INSUFFICIENT_FUNDS,
    LedgerResult,
    TokenLedger,
    Transfer,
)
from jobescrow.errors import (
    InsufficientFunds,
    InvalidInput,
    InvalidState,
    LedgerError,
    TooEarly,
    Unauthorized,
)
from jobescrow.market import deadline
from jobescrow.market.registry import JobRegistry
from jobescrow.models.job import Job, JobState, SettlementKind

logger = logging.getLogger(__name__)


class EscrowEngine:
    """Runs job transitions against a registry and a token ledger.

    Usage:
        engine = EscrowEngine(JobRegistry(), ledger, FeePolicy(2, "fees"))
        job = engine.post_job("alice", "Logo", "Design a logo", 100, deadline, "USDC")
        engine.accept_job(job.job_id, "bob")
        engine.submit_work(job.job_id, "bob")
        job = engine.confirm_completion(job.job_id, "alice")
        # job.worker_payout == 98, job.fee_amount == 2
    """

    def __init__(
        self,
        registry: JobRegistry,
        ledger: TokenLedger,
        fee_policy: FeePolicy,
    ) -> None:
        if not isinstance(ledger, TokenLedger):
            raise TypeError(
                f"Ledger must implement TokenLedger Protocol, got {type(ledger)}",
            )
        self._registry = registry
        self._ledger = ledger
        self._fee_policy = fee_policy

    @property
    def fee_policy(self) -> FeePolicy:
        return self._fee_policy

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def post_job(
        self,
        client: str,
        title: str,
        description: str,
        price: int,
        deadline_utc: datetime,
        token: str,
        now: Optional[datetime] = None,
        reference: Optional[str] = None,
    ) -> Job:
        """Take custody of ``price`` from the client and create an OPEN job.

        ``reference`` identifies the custody transfer to the ledger; a
        client retrying a post with the same reference cannot be
        charged twice.
        """
        now = _resolve_now(now)
        if reference is None:
            reference = f"post:{uuid4().hex}"

        # Validate before any funds move
        JobRegistry.validate_new(client, title, price, deadline_utc, token, now)

        result = self._ledger.custody(price, token, client, reference=reference)
        self._raise_on_failure(result, f"Custody of {price} {token} from {client}")

        try:
            job = self._registry.create(
                client, title, description, price, deadline_utc, token, now=now,
            )
        except ValueError:
            # Hand the deposit back so the failed post leaves no trace.
            refund = self._ledger.transfer(
                self._ledger.escrow_account, client, price, token,
                reference=f"{reference}:refund",
            )
            if not refund.ok:
                logger.error(
                    "Refund of %s %s to %s failed after rejected post: %s",
                    price, token, client, refund.reason,
                )
            raise

        logger.info(
            "Job %d posted by %s: %d %s escrowed, deadline %s",
            job.job_id, job.client, job.price, job.payment_token,
            job.deadline.isoformat(),
        )
        return job

    def accept_job(
        self, job_id: int, caller: str, now: Optional[datetime] = None,
    ) -> Job:
        """Assign the caller as worker. Open to any caller."""
        now = _resolve_now(now)
        if not caller or not caller.strip():
            raise InvalidInput("Worker identity is required")
        with self._registry.lock(job_id):
            job = self._registry.get(job_id)
            if job.state != JobState.OPEN:
                raise InvalidState(
                    f"Job {job_id} cannot be accepted: state is {job.state.value}"
                )
            updated = self._registry.commit(
                job_id,
                job.transition_to(JobState.ACCEPTED, worker=caller, accepted_utc=now),
            )
        logger.info("Job %d accepted by %s", job_id, caller)
        return updated

    def submit_work(
        self, job_id: int, caller: str, now: Optional[datetime] = None,
    ) -> Job:
        """Mark work delivered. Only the assigned worker may submit."""
        now = _resolve_now(now)
        with self._registry.lock(job_id):
            job = self._registry.get(job_id)
            if job.worker is None:
                raise InvalidState(
                    f"Job {job_id} has no worker: state is {job.state.value}"
                )
            if caller != job.worker:
                raise Unauthorized(
                    f"Only the assigned worker can submit work for job {job_id}"
                )
            if job.state != JobState.ACCEPTED:
                raise InvalidState(
                    f"Job {job_id} cannot take a submission: state is {job.state.value}"
                )
            updated = self._registry.commit(
                job_id,
                job.transition_to(JobState.SUBMITTED, submitted_utc=now),
            )
        logger.info("Job %d: work submitted by %s", job_id, caller)
        return updated

    def confirm_completion(
        self, job_id: int, caller: str, now: Optional[datetime] = None,
    ) -> Job:
        """Client approves submitted work; escrow is paid out."""
        now = _resolve_now(now)
        with self._registry.lock(job_id):
            job = self._registry.get(job_id)
            if caller != job.client:
                raise Unauthorized(
                    f"Only the client can confirm completion of job {job_id}"
                )
            if job.state != JobState.SUBMITTED:
                raise InvalidState(
                    f"Job {job_id} cannot be confirmed: state is {job.state.value}"
                )
            updated = self._settle(job, SettlementKind.CONFIRMATION, now)
        return updated

    def auto_release(
        self, job_id: int, caller: str, now: Optional[datetime] = None,
    ) -> Job:
        """Force settlement once the deadline has passed. Any caller."""
        now = _resolve_now(now)
        with self._registry.lock(job_id):
            job = self._registry.get(job_id)
            if job.state not in (JobState.ACCEPTED, JobState.SUBMITTED):
                raise InvalidState(
                    f"Job {job_id} cannot be auto-released: state is {job.state.value}"
                )
            if not deadline.is_expired(job, now):
                raise TooEarly(
                    f"Job {job_id} deadline {job.deadline.isoformat()} has not "
                    f"passed (remaining {deadline.time_remaining(job, now)})"
                )
            updated = self._settle(job, SettlementKind.AUTO_RELEASE, now)
        logger.info("Job %d auto-released by %s", job_id, caller)
        return updated

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def job_count(self) -> int:
        return self._registry.count()

    def get_job(self, job_id: int) -> Job:
        """Current record for a job. Records are frozen; reading never mutates."""
        return self._registry.get(job_id)

    def list_jobs(self, state: Optional[JobState] = None) -> list[Job]:
        jobs = self._registry.all()
        if state is None:
            return jobs
        return [j for j in jobs if j.state == state]

    def jobs_for(self, actor: str) -> list[Job]:
        """Jobs where ``actor`` is the client or the worker."""
        return [
            j for j in self._registry.all()
            if j.client == actor or j.worker == actor
        ]

    def escrow_balance(self, token: str) -> int:
        """Units of ``token`` the engine should currently hold in custody."""
        return sum(
            j.escrowed_amount for j in self._registry.all()
            if j.payment_token == token
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _settle(self, job: Job, kind: SettlementKind, now: datetime) -> Job:
        """Pay out a job's escrow and commit it as SETTLED.

        Caller must hold the job lock and have checked preconditions.
        """
        fee, payout = self._fee_policy.split(job.price)
        escrow = self._ledger.escrow_account
        legs = [
            Transfer(escrow, self._fee_policy.fee_wallet, fee, job.payment_token),
            Transfer(escrow, job.worker, payout, job.payment_token),
        ]
        # Zero legs (0% or 100% fee) are not transfers
        legs = [leg for leg in legs if leg.amount > 0]

        result = self._ledger.transfer_batch(legs, reference=f"job-{job.job_id}:settle")
        self._raise_on_failure(result, f"Settlement of job {job.job_id}")

        updated = self._registry.commit(
            job.job_id,
            job.transition_to(
                JobState.SETTLED,
                settled_utc=now,
                settled_by=kind,
                fee_amount=fee,
                worker_payout=payout,
            ),
        )
        logger.info(
            "Job %d settled (%s): %d to worker %s, %d fee to %s",
            job.job_id, kind.value, payout, job.worker,
            fee, self._fee_policy.fee_wallet,
        )
        return updated

    @staticmethod
    def _raise_on_failure(result: LedgerResult, action: str) -> None:
        if result.ok:
            return
        logger.warning("%s rejected by ledger: %s", action, result.reason)
        if result.reason == REASON_INSUFFICIENT_FUNDS:
            raise InsufficientFunds(f"{action}: insufficient funds", reason=result.reason)
        raise LedgerError(f"{action} failed: {result.reason}", reason=result.reason)


def _resolve_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    return deadline.require_aware(now)
