"""Tests for the event log and state store — proves durable state recovers intact."""

import json
import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from jobescrow.compensation.ledger import InMemoryLedger
from jobescrow.market.registry import JobRegistry
from jobescrow.models.job import JobState, SettlementKind
from jobescrow.persistence.event_log import EventKind, EventLog, EventRecord
from jobescrow.persistence.state_store import StateStore


def _now() -> datetime:
    return datetime(2026, 2, 16, 12, 0, 0, tzinfo=timezone.utc)


def _event(event_id: str, job_id: int = 1, kind: EventKind = EventKind.JOB_POSTED) -> EventRecord:
    return EventRecord.create(
        event_id=event_id,
        event_kind=kind,
        actor_id="alice",
        payload={"job_id": job_id, "price": 100},
        timestamp_utc=_now(),
    )


class TestEventLog:
    def test_append_and_filter(self) -> None:
        log = EventLog()
        log.append(_event("EVT-1"))
        log.append(_event("EVT-2", kind=EventKind.JOB_ACCEPTED))
        assert log.count == 2
        assert [e.event_id for e in log.events(EventKind.JOB_ACCEPTED)] == ["EVT-2"]
        assert log.last_event.event_id == "EVT-2"

    def test_duplicate_id_rejected(self) -> None:
        log = EventLog()
        log.append(_event("EVT-1"))
        with pytest.raises(ValueError, match="Duplicate"):
            log.append(_event("EVT-1"))
        assert log.count == 1

    def test_events_for_job(self) -> None:
        log = EventLog()
        log.append(_event("EVT-1", job_id=1))
        log.append(_event("EVT-2", job_id=2))
        log.append(_event("EVT-3", job_id=1, kind=EventKind.JOB_ACCEPTED))
        assert [e.event_id for e in log.events_for_job(1)] == ["EVT-1", "EVT-3"]

    def test_hash_is_deterministic(self) -> None:
        assert _event("EVT-1").event_hash == _event("EVT-1").event_hash
        assert _event("EVT-1").event_hash.startswith("sha256:")

    def test_file_reload(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.append(_event("EVT-1"))
        log.append(_event("EVT-2"))

        reloaded = EventLog(storage_path=path)
        assert reloaded.count == 2
        assert reloaded.events()[0].to_dict() == log.events()[0].to_dict()

    def test_tampered_file_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(storage_path=path).append(_event("EVT-1"))
        record = json.loads(path.read_text(encoding="utf-8"))
        record["payload"]["price"] = 1
        path.write_text(json.dumps(record) + "\n", encoding="utf-8")
        with pytest.raises(ValueError, match="Integrity"):
            EventLog(storage_path=path)

    def test_failed_write_leaves_memory_unchanged(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        path.mkdir()
        with pytest.raises(OSError):
            log.append(_event("EVT-1"))
        assert log.count == 0


class TestStateStore:
    def test_jobs_survive_restart(self, tmp_path: Path) -> None:
        registry = JobRegistry()
        deadline = _now() + timedelta(days=1)
        job = registry.create("alice", "Logo", "desc", 100, deadline, "USDC", now=_now())
        registry.create("carol", "Copy", "", 50, deadline, "USDT", now=_now())
        registry.commit(job.job_id, job.transition_to(
            JobState.ACCEPTED, worker="bob", accepted_utc=_now(),
        ))
        settled = registry.get(job.job_id).transition_to(
            JobState.SETTLED, settled_utc=deadline,
            settled_by=SettlementKind.AUTO_RELEASE, fee_amount=2, worker_payout=98,
        )
        registry.commit(job.job_id, settled)

        path = tmp_path / "state.json"
        StateStore(path).save(registry.all())

        restored = StateStore(path).load_jobs()
        assert restored == registry.all()

    def test_ledger_survives_restart(self, tmp_path: Path) -> None:
        ledger = InMemoryLedger()
        ledger.mint("alice", 1_000, "USDC")
        ledger.custody(100, "USDC", "alice", reference="post:1")

        path = tmp_path / "state.json"
        StateStore(path).save([], ledger)
        restored = StateStore(path).load_ledger()

        assert restored.balances() == ledger.balances()
        assert restored.applied_references() == ["post:1"]
        assert not restored.custody(100, "USDC", "alice", reference="post:1").ok

    def test_empty_store(self, tmp_path: Path) -> None:
        store = StateStore(tmp_path / "state.json")
        assert not store.has_state
        assert store.load_jobs() == []
        assert store.load_ledger().balances() == {}

    def test_write_is_atomic(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        StateStore(path).save([])
        assert path.exists()
        assert not (tmp_path / "state.json.tmp").exists()

    def test_jobs_and_ledger_written_together(self, tmp_path: Path) -> None:
        registry = JobRegistry()
        registry.create(
            "alice", "Logo", "", 100, _now() + timedelta(days=1), "USDC", now=_now(),
        )
        ledger = InMemoryLedger()
        ledger.mint("alice", 1_000, "USDC")
        ledger.custody(100, "USDC", "alice", reference="post:1")

        path = tmp_path / "state.json"
        StateStore(path).save(registry.all(), ledger)
        data = json.loads(path.read_text(encoding="utf-8"))
        assert set(data) == {"jobs", "ledger"}

        restored = StateStore(path)
        assert len(restored.load_jobs()) == 1
        assert restored.load_ledger().balance_of("escrow", "USDC") == 100

    def test_failed_save_keeps_previous_state(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        store = StateStore(path)
        ledger = InMemoryLedger()
        ledger.mint("alice", 1_000, "USDC")
        store.save([], ledger)

        registry = JobRegistry()
        registry.create(
            "alice", "Logo", "", 100, _now() + timedelta(days=1), "USDC", now=_now(),
        )
        ledger.custody(100, "USDC", "alice", reference="post:1")
        (tmp_path / "state.json.tmp").mkdir()
        with pytest.raises(OSError):
            store.save(registry.all(), ledger)

        assert store.load_jobs() == []
        on_disk = StateStore(path)
        assert on_disk.load_jobs() == []
        assert on_disk.load_ledger().balance_of("alice", "USDC") == 1_000
