"""Tests for the job registry — ids, validation, and atomic commits."""

import pytest
import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from jobescrow.errors import InvalidInput, NotFound
from jobescrow.market.registry import JobRegistry
from jobescrow.models.job import Job, JobState


def _now() -> datetime:
    return datetime(2026, 2, 16, 12, 0, 0, tzinfo=timezone.utc)


def _deadline() -> datetime:
    return _now() + timedelta(days=3)


def _create(registry: JobRegistry, price: int = 100) -> Job:
    return registry.create(
        "alice", "Logo", "Design a logo", price, _deadline(), "USDC", now=_now(),
    )


class TestCreation:
    def test_ids_are_sequential_from_one(self) -> None:
        registry = JobRegistry()
        ids = [_create(registry).job_id for _ in range(3)]
        assert ids == [1, 2, 3]
        assert registry.count() == 3

    def test_new_job_is_open(self) -> None:
        job = _create(JobRegistry())
        assert job.state == JobState.OPEN
        assert job.worker is None
        assert job.created_utc == _now()

    @pytest.mark.parametrize("price", [0, -1])
    def test_rejects_non_positive_price(self, price: int) -> None:
        registry = JobRegistry()
        with pytest.raises(InvalidInput, match="positive"):
            _create(registry, price=price)
        assert registry.count() == 0

    def test_rejects_fractional_price(self) -> None:
        with pytest.raises(InvalidInput, match="integer"):
            _create(JobRegistry(), price=1.5)  # type: ignore[arg-type]

    def test_rejects_deadline_equal_to_now(self) -> None:
        registry = JobRegistry()
        with pytest.raises(InvalidInput, match="not after"):
            registry.create("alice", "Logo", "", 100, _now(), "USDC", now=_now())

    def test_rejects_past_deadline(self) -> None:
        registry = JobRegistry()
        with pytest.raises(InvalidInput):
            registry.create(
                "alice", "Logo", "", 100, _now() - timedelta(seconds=1), "USDC", now=_now(),
            )

    def test_rejects_naive_deadline(self) -> None:
        with pytest.raises(InvalidInput, match="timezone"):
            JobRegistry().create(
                "alice", "Logo", "", 100, datetime(2030, 1, 1), "USDC", now=_now(),
            )

    def test_rejects_naive_now(self) -> None:
        with pytest.raises(InvalidInput, match="Current time"):
            JobRegistry().create(
                "alice", "Logo", "", 100, _deadline(), "USDC",
                now=datetime(2026, 2, 16, 12, 0, 0),
            )

    def test_rejects_blank_client(self) -> None:
        with pytest.raises(InvalidInput, match="Client"):
            JobRegistry().create("  ", "Logo", "", 100, _deadline(), "USDC", now=_now())

    def test_concurrent_creates_get_unique_ids(self) -> None:
        registry = JobRegistry()
        threads = [
            threading.Thread(target=_create, args=(registry,)) for _ in range(20)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert sorted(j.job_id for j in registry.all()) == list(range(1, 21))


class TestLookup:
    def test_get_unknown_raises_not_found(self) -> None:
        with pytest.raises(NotFound):
            JobRegistry().get(1)

    def test_get_is_pure(self) -> None:
        registry = JobRegistry()
        job = _create(registry)
        assert registry.get(job.job_id) == registry.get(job.job_id) == job


class TestCommit:
    def test_commit_replaces_record(self) -> None:
        registry = JobRegistry()
        job = _create(registry)
        registry.commit(job.job_id, job.transition_to(JobState.ACCEPTED, worker="bob"))
        assert registry.get(job.job_id).state == JobState.ACCEPTED

    def test_commit_rejects_price_change(self) -> None:
        registry = JobRegistry()
        job = _create(registry)
        with pytest.raises(ValueError, match="immutable"):
            registry.commit(job.job_id, replace(job, price=1))
        assert registry.get(job.job_id).price == 100

    def test_commit_rejects_worker_reassignment(self) -> None:
        registry = JobRegistry()
        job = _create(registry)
        accepted = registry.commit(
            job.job_id, job.transition_to(JobState.ACCEPTED, worker="bob"),
        )
        with pytest.raises(ValueError, match="worker"):
            registry.commit(job.job_id, replace(accepted, worker="mallory"))

    def test_commit_rejects_illegal_transition(self) -> None:
        registry = JobRegistry()
        job = _create(registry)
        with pytest.raises(ValueError, match="Invalid job transition"):
            registry.commit(job.job_id, replace(job, state=JobState.SETTLED))
        assert registry.get(job.job_id).state == JobState.OPEN

    def test_commit_unknown_job(self) -> None:
        registry = JobRegistry()
        job = _create(registry)
        with pytest.raises(NotFound):
            registry.commit(99, replace(job, job_id=99))


class TestRestore:
    def test_restore_continues_sequence(self) -> None:
        source = JobRegistry()
        _create(source)
        _create(source)
        target = JobRegistry()
        target.restore(source.all())
        assert target.count() == 2
        assert _create(target).job_id == 3

    def test_restore_rejects_gaps(self) -> None:
        source = JobRegistry()
        _create(source)
        second = _create(source)
        with pytest.raises(ValueError, match="gap-free"):
            JobRegistry().restore([second])

    def test_restore_into_non_empty_fails(self) -> None:
        registry = JobRegistry()
        _create(registry)
        with pytest.raises(ValueError, match="non-empty"):
            registry.restore([])


class TestLocks:
    def test_lock_unknown_job_raises_not_found(self) -> None:
        registry = JobRegistry()
        for job_id in range(1, 101):
            with pytest.raises(NotFound):
                with registry.lock(job_id):
                    pass
        assert registry._job_locks == {}

    def test_lock_is_reentrant_for_known_job(self) -> None:
        registry = JobRegistry()
        job = _create(registry)
        with registry.lock(job.job_id):
            with registry.lock(job.job_id):
                assert registry.get(job.job_id) == job
        assert list(registry._job_locks) == [job.job_id]
