"""State store — JSON-based persistence for marketplace runtime state.

Stores and recovers:
- Job records, keyed by sequential integer id starting at 1
- Ledger balances and applied transfer references (in-memory custodian)

Fee policy is configuration, not state, and is never written here.

This is a simple file-based store suitable for single-node deployment.
Production deployments would replace this with a database backend
while keeping the same interface.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from jobescrow.compensation.ledger import ESCROW_ACCOUNT, InMemoryLedger
from jobescrow.models.job import Job, JobState, SettlementKind


class StateStore:
    """JSON file-based state persistence.

    Usage:
        store = StateStore(Path("data/state.json"))
        store.save(registry.all(), ledger)

        # On recovery:
        jobs = store.load_jobs()
        ledger = store.load_ledger()
    """

    def __init__(self, storage_path: Path) -> None:
        self._path = storage_path
        self._state: dict[str, Any] = {}
        if storage_path.exists():
            self._load()

    def _load(self) -> None:
        with self._path.open("r", encoding="utf-8") as f:
            self._state = json.load(f)

    def _save(self, state: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(state, f, indent=2, sort_keys=True, ensure_ascii=False)
        tmp.replace(self._path)

    def save(self, jobs: list[Job], ledger: Optional[InMemoryLedger] = None) -> None:
        """Write jobs and ledger together in one atomic file replace.

        Jobs and balances are always persisted from the same moment. On
        failure the previous file and the in-memory copy are both left as
        they were.
        """
        state = dict(self._state)
        state["jobs"] = self._serialize_jobs(jobs)
        if ledger is not None:
            state["ledger"] = self._serialize_ledger(ledger)
        self._save(state)
        self._state = state

    # ------------------------------------------------------------------
    # Job persistence
    # ------------------------------------------------------------------

    @staticmethod
    def _serialize_jobs(jobs: list[Job]) -> dict[str, Any]:
        return {
            str(job.job_id): {
                "job_id": job.job_id,
                "client": job.client,
                "worker": job.worker,
                "title": job.title,
                "description": job.description,
                "price": job.price,
                "payment_token": job.payment_token,
                "deadline": job.deadline.isoformat(),
                "state": job.state.value,
                "created_utc": _iso(job.created_utc),
                "accepted_utc": _iso(job.accepted_utc),
                "submitted_utc": _iso(job.submitted_utc),
                "settled_utc": _iso(job.settled_utc),
                "settled_by": job.settled_by.value if job.settled_by else None,
                "fee_amount": job.fee_amount,
                "worker_payout": job.worker_payout,
            }
            for job in jobs
        }

    def load_jobs(self) -> list[Job]:
        """Deserialize job records from state, in id order."""
        jobs = []
        for _, data in sorted(
            self._state.get("jobs", {}).items(), key=lambda kv: int(kv[0]),
        ):
            jobs.append(Job(
                job_id=data["job_id"],
                client=data["client"],
                worker=data.get("worker"),
                title=data["title"],
                description=data["description"],
                price=data["price"],
                payment_token=data["payment_token"],
                deadline=datetime.fromisoformat(data["deadline"]),
                state=JobState(data["state"]),
                created_utc=_parse(data.get("created_utc")),
                accepted_utc=_parse(data.get("accepted_utc")),
                submitted_utc=_parse(data.get("submitted_utc")),
                settled_utc=_parse(data.get("settled_utc")),
                settled_by=(
                    SettlementKind(data["settled_by"])
                    if data.get("settled_by") else None
                ),
                fee_amount=data.get("fee_amount"),
                worker_payout=data.get("worker_payout"),
            ))
        return jobs

    # ------------------------------------------------------------------
    # Ledger persistence
    # ------------------------------------------------------------------

    @staticmethod
    def _serialize_ledger(ledger: InMemoryLedger) -> dict[str, Any]:
        """Balances and applied references."""
        return {
            "escrow_account": ledger.escrow_account,
            "balances": [
                {"token": token, "account": account, "amount": amount}
                for (token, account), amount in sorted(ledger.balances().items())
            ],
            "references": ledger.applied_references(),
        }

    def load_ledger(self) -> InMemoryLedger:
        """Rebuild the in-memory ledger (empty if nothing persisted)."""
        data = self._state.get("ledger", {})
        balances = {
            (entry["token"], entry["account"]): entry["amount"]
            for entry in data.get("balances", [])
        }
        return InMemoryLedger(
            balances=balances,
            escrow_account=data.get("escrow_account", ESCROW_ACCOUNT),
            references=data.get("references", []),
        )

    @property
    def has_state(self) -> bool:
        return bool(self._state)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None
