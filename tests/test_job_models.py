"""Tests for the job model — proves derived flags never diverge from state."""

import pytest
from datetime import datetime, timedelta, timezone

from jobescrow.models.job import JOB_TRANSITIONS, Job, JobState, SettlementKind


def _now() -> datetime:
    return datetime(2026, 2, 16, 12, 0, 0, tzinfo=timezone.utc)


def _make_job(state: JobState = JobState.OPEN, worker: str | None = None) -> Job:
    return Job(
        job_id=1,
        client="alice",
        title="Logo",
        description="Design a logo",
        price=100,
        payment_token="USDC",
        deadline=_now() + timedelta(days=3),
        state=state,
        worker=worker,
        created_utc=_now(),
    )


class TestDerivedFlags:
    @pytest.mark.parametrize(
        "state, accepted, completed, confirmed",
        [
            (JobState.OPEN, False, False, False),
            (JobState.ACCEPTED, True, False, False),
            (JobState.SUBMITTED, True, True, False),
            (JobState.SETTLED, True, True, True),
        ],
    )
    def test_flags_project_state(
        self, state: JobState, accepted: bool, completed: bool, confirmed: bool,
    ) -> None:
        job = _make_job(state)
        assert job.accepted is accepted
        assert job.completed is completed
        assert job.confirmed is confirmed

    def test_confirmed_implies_completed_implies_accepted(self) -> None:
        for state in JobState:
            job = _make_job(state)
            if job.confirmed:
                assert job.completed
            if job.completed:
                assert job.accepted

    def test_status_labels(self) -> None:
        assert _make_job(JobState.OPEN).status_label == "Open"
        assert _make_job(JobState.ACCEPTED).status_label == "In progress"
        assert _make_job(JobState.SUBMITTED).status_label == "Submitted"
        assert _make_job(JobState.SETTLED).status_label == "Completed"

    def test_escrowed_amount(self) -> None:
        assert _make_job(JobState.OPEN).escrowed_amount == 100
        assert _make_job(JobState.SUBMITTED).escrowed_amount == 100
        assert _make_job(JobState.SETTLED).escrowed_amount == 0


class TestTransitions:
    def test_settled_is_terminal(self) -> None:
        assert JOB_TRANSITIONS[JobState.SETTLED] == frozenset()

    def test_open_cannot_settle_directly(self) -> None:
        assert JobState.SETTLED not in JOB_TRANSITIONS[JobState.OPEN]

    def test_transition_returns_new_record(self) -> None:
        job = _make_job()
        accepted = job.transition_to(JobState.ACCEPTED, worker="bob")
        assert accepted.state == JobState.ACCEPTED
        assert accepted.worker == "bob"
        assert job.state == JobState.OPEN
        assert job.worker is None

    def test_transition_applies_changes(self) -> None:
        job = _make_job(JobState.SUBMITTED, worker="bob")
        settled = job.transition_to(JobState.SETTLED, fee_amount=2, worker_payout=98)
        assert settled.confirmed
        assert (settled.fee_amount, settled.worker_payout) == (2, 98)
        assert job.fee_amount is None

    def test_records_are_frozen(self) -> None:
        job = _make_job()
        with pytest.raises(AttributeError):
            job.state = JobState.SETTLED  # type: ignore[misc]


class TestSnapshot:
    def test_snapshot_includes_derived_flags(self) -> None:
        job = _make_job(JobState.SUBMITTED, worker="bob").transition_to(
            JobState.SETTLED,
            settled_by=SettlementKind.AUTO_RELEASE,
            fee_amount=2,
            worker_payout=98,
        )
        snap = job.to_snapshot()
        assert snap["state"] == "settled"
        assert snap["confirmed"] is True
        assert snap["status"] == "Completed"
        assert snap["settled_by"] == "auto_release"
        assert snap["fee_amount"] + snap["worker_payout"] == snap["price"]

    def test_open_snapshot_has_no_worker(self) -> None:
        snap = _make_job().to_snapshot()
        assert snap["worker"] is None
        assert snap["accepted"] is False
