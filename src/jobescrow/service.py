"""Marketplace service — unified facade over the escrow engine.

This is the primary interface for programmatic access. It wires
together:
- Escrow engine (post, accept, submit, confirm, auto-release)
- Job registry and token ledger
- Fee policy and supported tokens (frozen configuration)
- Persistence (event log, state store)

All operations produce typed ServiceResults; the engine's errors are
converted here and never escape to the caller. The ``error_code`` in a
failed result's data identifies the kind of rejection.

Ordering for every state change:
1. The engine moves funds and commits the job (all-or-nothing).
2. Audit events are appended to the event log.
3. State is persisted to the state store.

Once step 1 has succeeded the funds have moved, so failures in steps 2
and 3 cannot be undone. They are reported as warnings on an otherwise
successful result and flag the service as degraded for the operator.

The service runs one mutation at a time, so every persisted snapshot
pairs job records with the balances of the same moment. On startup the
restored jobs must account for exactly what the ledger holds in escrow.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from jobescrow.compensation.escrow import EscrowEngine
from jobescrow.compensation.ledger import InMemoryLedger, TokenLedger
from jobescrow.compensation.tokens import from_base_units
from jobescrow.config import MarketplaceConfig
from jobescrow.errors import EscrowError
from jobescrow.market import deadline
from jobescrow.market.registry import JobRegistry
from jobescrow.market.state_machine import JobStateMachine
from jobescrow.models.job import Job, JobState
from jobescrow.persistence.event_log import EventKind, EventLog, EventRecord
from jobescrow.persistence.state_store import StateStore

logger = logging.getLogger(__name__)

# Fund-movement events recorded alongside the lifecycle event.
_FOLLOW_UP_EVENTS = {
    EventKind.JOB_POSTED: EventKind.ESCROW_FUNDED,
    EventKind.JOB_CONFIRMED: EventKind.PAYMENT_RELEASED,
    EventKind.JOB_AUTO_RELEASED: EventKind.PAYMENT_RELEASED,
}


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


class MarketplaceService:
    """Unified marketplace facade.

    Usage:
        config = MarketplaceConfig.load()
        service = MarketplaceService(config)

        service.fund_account("alice", 1_000, "USDC")
        result = service.post_job("alice", "Logo", "Design a logo", 100, deadline, "USDC")
        job_id = result.data["job_id"]
        service.accept_job(job_id, "bob")
        service.submit_work(job_id, "bob")
        service.confirm_completion(job_id, "alice")

    Persistence (optional):
        service = MarketplaceService(config, event_log=log, state_store=store)
        # Jobs and balances are persisted on each mutation and loaded on construction.
    """

    def __init__(
        self,
        config: MarketplaceConfig,
        ledger: Optional[TokenLedger] = None,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
    ) -> None:
        self._config = config
        self._event_log = event_log
        self._state_store = state_store
        self._registry = JobRegistry()

        if ledger is None:
            ledger = (
                state_store.load_ledger() if state_store is not None
                else InMemoryLedger()
            )
        self._ledger = ledger

        if state_store is not None:
            self._registry.restore(state_store.load_jobs())

        self._engine = EscrowEngine(self._registry, self._ledger, config.fee_policy)
        if state_store is not None:
            self._check_escrow_balances()

        self._state_lock = threading.RLock()
        self._event_counter = event_log.count if event_log is not None else 0

        # Set when an audit append or a state store write fails after
        # funds have moved. The engine's in-memory state is authoritative;
        # the durable stores need operator attention.
        self._persistence_degraded: bool = False

    @property
    def config(self) -> MarketplaceConfig:
        return self._config

    @property
    def engine(self) -> EscrowEngine:
        return self._engine

    @property
    def ledger(self) -> TokenLedger:
        return self._ledger

    @property
    def persistence_degraded(self) -> bool:
        return self._persistence_degraded

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def fund_account(self, account: str, amount: int, token: str) -> ServiceResult:
        """Credit an account on the in-memory ledger (faucet)."""
        if not isinstance(self._ledger, InMemoryLedger):
            return ServiceResult(
                success=False,
                errors=["Funding is only available on the in-memory ledger"],
            )
        if not self._config.tokens.is_supported(token):
            return ServiceResult(
                success=False, errors=[f"Unsupported payment token: {token}"],
            )
        token = self._config.tokens.get(token).symbol
        with self._state_lock:
            try:
                self._ledger.mint(account, amount, token)
            except ValueError as e:
                return ServiceResult(success=False, errors=[str(e)])

            warning = self._after_commit(
                EventKind.ACCOUNT_FUNDED, account,
                {"account": account, "amount": amount, "token": token},
            )
            balance = self._ledger.balance_of(account, token)
        return self._ok({"account": account, "balance": balance}, warning)

    def balance(self, account: str, token: str) -> int:
        if self._config.tokens.is_supported(token):
            token = self._config.tokens.get(token).symbol
        return self._ledger.balance_of(account, token)

    # ------------------------------------------------------------------
    # Job lifecycle
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
    ) -> ServiceResult:
        """Escrow ``price`` from the client and list a new job."""
        if not self._config.tokens.is_supported(token):
            return ServiceResult(
                success=False,
                errors=[f"Unsupported payment token: {token}"],
                data={"error_code": "invalid_input"},
            )
        token = self._config.tokens.get(token).symbol
        return self._run(
            lambda: self._engine.post_job(
                client, title, description, price, deadline_utc, token,
                now=now, reference=reference,
            ),
            EventKind.JOB_POSTED,
            client,
            now,
        )

    def accept_job(
        self, job_id: int, caller: str, now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._run(
            lambda: self._engine.accept_job(job_id, caller, now=now),
            EventKind.JOB_ACCEPTED,
            caller,
            now,
        )

    def submit_work(
        self, job_id: int, caller: str, now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._run(
            lambda: self._engine.submit_work(job_id, caller, now=now),
            EventKind.WORK_SUBMITTED,
            caller,
            now,
        )

    def confirm_completion(
        self, job_id: int, caller: str, now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._run(
            lambda: self._engine.confirm_completion(job_id, caller, now=now),
            EventKind.JOB_CONFIRMED,
            caller,
            now,
        )

    def auto_release(
        self, job_id: int, caller: str, now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._run(
            lambda: self._engine.auto_release(job_id, caller, now=now),
            EventKind.JOB_AUTO_RELEASED,
            caller,
            now,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def job_count(self) -> int:
        return self._engine.job_count()

    def get_job(
        self, job_id: int, now: Optional[datetime] = None,
    ) -> Optional[dict[str, Any]]:
        """Read-only snapshot of a job, or None if it does not exist."""
        try:
            job = self._engine.get_job(job_id)
        except EscrowError:
            return None
        return self._snapshot(job, now)

    def list_jobs(
        self, state: Optional[JobState] = None, now: Optional[datetime] = None,
    ) -> list[dict[str, Any]]:
        return [self._snapshot(j, now) for j in self._engine.list_jobs(state)]

    def jobs_for(
        self, actor: str, now: Optional[datetime] = None,
    ) -> list[dict[str, Any]]:
        return [self._snapshot(j, now) for j in self._engine.jobs_for(actor)]

    def available_actions(
        self, job_id: int, caller: str, now: Optional[datetime] = None,
    ) -> list[str]:
        if now is None:
            now = datetime.now(timezone.utc)
        try:
            deadline.require_aware(now)
            job = self._engine.get_job(job_id)
        except EscrowError:
            return []
        return JobStateMachine.available_actions(job, caller, now)

    def status(self) -> dict[str, Any]:
        """Summary of marketplace state for operators."""
        counts: dict[str, int] = {s.value: 0 for s in JobState}
        for job in self._engine.list_jobs():
            counts[job.state.value] += 1
        escrow = {
            symbol: self._engine.escrow_balance(symbol)
            for symbol in self._config.tokens.symbols()
        }
        return {
            "jobs": {"total": self._engine.job_count(), "by_state": counts},
            "escrow_balance": escrow,
            "fee_policy": {
                "fee_percent": self._config.fee_policy.fee_percent,
                "fee_wallet": self._config.fee_policy.fee_wallet,
            },
            "event_count": self._event_log.count if self._event_log else 0,
            "persistence_degraded": self._persistence_degraded,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _check_escrow_balances(self) -> None:
        """Refuse restored state whose jobs and escrow custody disagree."""
        tokens = set(self._config.tokens.symbols())
        tokens.update(j.payment_token for j in self._registry.all())
        for token in sorted(tokens):
            expected = self._engine.escrow_balance(token)
            held = self._ledger.balance_of(self._ledger.escrow_account, token)
            if expected != held:
                raise ValueError(
                    f"Restored state is inconsistent: open jobs escrow "
                    f"{expected} {token} but the ledger holds {held}"
                )

    def _run(
        self,
        operation: Callable[[], Job],
        kind: EventKind,
        actor_id: str,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Execute an engine operation and record its outcome."""
        with self._state_lock:
            try:
                job = operation()
            except EscrowError as e:
                return ServiceResult(
                    success=False, errors=[str(e)], data={"error_code": e.code},
                )

            payload = self._event_payload(job)
            warning = self._record_event(kind, actor_id, payload)
            follow_up = _FOLLOW_UP_EVENTS.get(kind)
            if follow_up is not None and warning is None:
                warning = self._record_event(follow_up, actor_id, payload)
            persist_warning = self._safe_persist_post_commit()
        return self._ok(self._snapshot(job, now), warning or persist_warning)

    def _after_commit(
        self, kind: EventKind, actor_id: str, payload: dict[str, Any],
    ) -> Optional[str]:
        """Record the audit event, then persist. Returns a warning or None."""
        warning = self._record_event(kind, actor_id, payload)
        persist_warning = self._safe_persist_post_commit()
        return warning or persist_warning

    def _record_event(
        self, kind: EventKind, actor_id: str, payload: dict[str, Any],
    ) -> Optional[str]:
        if self._event_log is None:
            return None
        with self._state_lock:
            try:
                self._event_log.append(EventRecord.create(
                    event_id=self._next_event_id(),
                    event_kind=kind,
                    actor_id=actor_id,
                    payload=payload,
                ))
            except (ValueError, OSError) as e:
                self._persistence_degraded = True
                logger.error("Audit event %s not recorded: %s", kind.value, e)
                return f"Audit degraded: {e}; state committed but event log is missing {kind.value}"
        return None

    def _next_event_id(self) -> str:
        """Generate a monotonically increasing unique event ID."""
        self._event_counter += 1
        return f"EVT-{self._event_counter:08d}"

    def _persist_state(self) -> None:
        """Persist jobs and ledger to the state store (if wired)."""
        if self._state_store is None:
            return
        ledger = self._ledger if isinstance(self._ledger, InMemoryLedger) else None
        self._state_store.save(self._registry.all(), ledger)

    def _safe_persist_post_commit(self) -> Optional[str]:
        """Persist state after funds have moved.

        MUST NOT roll back. The ledger has already applied the
        transfer. On failure the in-memory state stays authoritative,
        the degraded flag is set, and a warning string is returned.
        """
        with self._state_lock:
            try:
                self._persist_state()
                return None
            except OSError as e:
                self._persistence_degraded = True
                logger.error("State store write failed: %s", e)
                return f"Persistence degraded: {e}; state committed but StateStore is stale"

    def _event_payload(self, job: Job) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "job_id": job.job_id,
            "state": job.state.value,
            "client": job.client,
            "worker": job.worker,
            "price": job.price,
            "token": job.payment_token,
        }
        if job.state == JobState.SETTLED:
            payload["fee_amount"] = job.fee_amount
            payload["fee_wallet"] = self._config.fee_policy.fee_wallet
            payload["worker_payout"] = job.worker_payout
            payload["settled_by"] = job.settled_by.value if job.settled_by else None
        return payload

    def _snapshot(self, job: Job, now: Optional[datetime] = None) -> dict[str, Any]:
        data = job.to_snapshot()
        if self._config.tokens.is_supported(job.payment_token):
            decimals = self._config.tokens.get(job.payment_token).decimals
            data["price_display"] = from_base_units(job.price, decimals)
        if now is None:
            now = datetime.now(timezone.utc)
        data["auto_release_eligible"] = deadline.can_auto_release(job, now)
        return data

    @staticmethod
    def _ok(data: dict[str, Any], warning: Optional[str]) -> ServiceResult:
        if warning:
            data["warning"] = warning
        return ServiceResult(success=True, data=data)
