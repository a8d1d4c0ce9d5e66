"""Job registry — the single owner of job records.

The registry allocates job ids, stores records, and swaps in new
versions atomically. Nothing else holds a mutable copy of a job: the
escrow engine reads a record, decides, and hands a replacement back
through ``commit``.

Invariants enforced:
- Job ids are sequential integers starting at 1 and never reused.
- Identity and monetary fields never change after creation.
- ``worker`` can be set once and never reassigned.
- Every commit is a legal state-machine transition (or a no-op on state).

Thread-safety: id allocation and commits are guarded by a registry
lock. ``lock(job_id)`` hands out a per-job lock that callers hold for
the full read-decide-commit sequence, so operations on one job are
linearised while different jobs proceed independently.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Iterator, Optional

from jobescrow.errors import InvalidInput, NotFound
from jobescrow.market.deadline import require_aware
from jobescrow.market.state_machine import JobStateMachine
from jobescrow.models.job import IMMUTABLE_FIELDS, Job, JobState


class JobRegistry:
    """Registry of all jobs, keyed by sequential integer id.

    Usage:
        registry = JobRegistry()
        job = registry.create("alice", "Logo", "Design a logo", 100, deadline, "USDC")
        with registry.lock(job.job_id):
            current = registry.get(job.job_id)
            registry.commit(job.job_id, current.transition_to(JobState.ACCEPTED, worker="bob"))
    """

    def __init__(self) -> None:
        self._jobs: dict[int, Job] = {}
        self._next_id = 1
        self._guard = threading.Lock()
        self._job_locks: dict[int, threading.RLock] = {}

    @staticmethod
    def validate_new(
        client: str,
        title: str,
        price: int,
        deadline: datetime,
        token: str,
        now: datetime,
    ) -> None:
        """Check creation parameters without creating anything.

        Raises InvalidInput on the first problem found.
        """
        if not client or not client.strip():
            raise InvalidInput("Client identity is required")
        if not title or not title.strip():
            raise InvalidInput("Job title is required")
        if not token or not token.strip():
            raise InvalidInput("Payment token is required")
        # bool is an int subclass; a price of True is not a price
        if isinstance(price, bool) or not isinstance(price, int):
            raise InvalidInput(
                f"Price must be an integer amount of base units, got {price!r}"
            )
        if price <= 0:
            raise InvalidInput(f"Price must be positive, got {price}")
        if deadline.tzinfo is None:
            raise InvalidInput("Deadline must be timezone-aware")
        require_aware(now)
        if deadline <= now:
            raise InvalidInput(
                f"Deadline {deadline.isoformat()} is not after "
                f"creation time {now.isoformat()}"
            )

    def create(
        self,
        client: str,
        title: str,
        description: str,
        price: int,
        deadline: datetime,
        token: str,
        now: Optional[datetime] = None,
    ) -> Job:
        """Allocate the next id and store a new job in OPEN state."""
        if now is None:
            now = datetime.now(timezone.utc)
        self.validate_new(client, title, price, deadline, token, now)

        with self._guard:
            job = Job(
                job_id=self._next_id,
                client=client.strip(),
                title=title.strip(),
                description=description,
                price=price,
                payment_token=token.strip(),
                deadline=deadline,
                state=JobState.OPEN,
                created_utc=now,
            )
            self._jobs[job.job_id] = job
            self._next_id += 1
        return job

    def get(self, job_id: int) -> Job:
        """Return the current record for ``job_id``."""
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFound(f"Job not found: {job_id}")
        return job

    def commit(self, job_id: int, new_job: Job) -> Job:
        """Atomically replace a job record.

        Raises ValueError if the replacement touches an immutable field,
        reassigns the worker, or is not a legal state transition. On
        error the stored record is untouched.
        """
        with self._guard:
            current = self.get(job_id)
            if new_job.job_id != job_id:
                raise ValueError(
                    f"Commit for job {job_id} carries job_id {new_job.job_id}"
                )
            for name in IMMUTABLE_FIELDS:
                if getattr(current, name) != getattr(new_job, name):
                    raise ValueError(
                        f"Job {job_id}: field '{name}' is immutable"
                    )
            if current.worker is not None and new_job.worker != current.worker:
                raise ValueError(f"Job {job_id}: worker is already assigned")
            if new_job.state != current.state:
                errors = JobStateMachine.validate_transition(current, new_job.state)
                if errors:
                    raise ValueError(f"Job {job_id}: {errors[0]}")
            self._jobs[job_id] = new_job
        return new_job

    @contextmanager
    def lock(self, job_id: int) -> Iterator[None]:
        """Hold the per-job lock for a read-decide-commit sequence.

        Raises NotFound for an unknown id without allocating a lock.
        """
        with self._guard:
            if job_id not in self._jobs:
                raise NotFound(f"Job not found: {job_id}")
            job_lock = self._job_locks.setdefault(job_id, threading.RLock())
        with job_lock:
            yield

    def count(self) -> int:
        """Number of jobs ever created (ids run 1..count)."""
        return self._next_id - 1

    def all(self) -> list[Job]:
        """All jobs in id order."""
        return [self._jobs[i] for i in sorted(self._jobs)]

    def restore(self, jobs: Iterable[Job]) -> None:
        """Load previously persisted jobs into an empty registry.

        Ids must form the sequence 1..n with no gaps.
        """
        if self._jobs:
            raise ValueError("Cannot restore into a non-empty registry")
        loaded = {job.job_id: job for job in jobs}
        expected = set(range(1, len(loaded) + 1))
        if set(loaded) != expected:
            raise ValueError(
                "Persisted job ids are not a gap-free sequence starting at 1"
            )
        with self._guard:
            self._jobs = loaded
            self._next_id = len(loaded) + 1
