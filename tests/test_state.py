from __future__ import annotations

import pytest

from app.lookup import state
from app.lookup.models import Job, JobStatus
from tests.fakes import configure_temp_paths


@pytest.fixture(autouse=True)
def _isolated(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    configure_temp_paths(tmp_path, monkeypatch)


def _job(job_id: int = 3, circle: str = "112", digits: int = 4) -> Job:
    return Job(id=job_id, circle_code=circle, digit_width=digits, status=JobStatus.PROCESSING)


def test_save_merges_and_stamps_checkpoint() -> None:
    state.save_checkpoint(_job(), next_index=250)
    state.save_checkpoint(_job(), processed=250)

    data = state.load_checkpoint()["112:4"]

    assert data["job_id"] == 3
    assert data["digit_width"] == 4
    assert data["next_index"] == 250
    assert data["processed"] == 250
    assert "saved_at_ts" in data


def test_resume_point_is_shared_by_jobs_for_the_same_range() -> None:
    state.save_checkpoint(_job(), next_index=500, success=480)

    assert state.resume_index_for(_job()) == 500
    assert state.resume_index_for(_job(job_id=4)) == 500
    assert state.resume_point_for(_job(job_id=4))["success"] == 480
    assert state.resume_index_for(_job(circle="545")) is None
    assert state.resume_index_for(_job(digits=5)) is None


def test_ranges_are_checkpointed_independently() -> None:
    state.save_checkpoint(_job(circle="112"), next_index=10)
    state.save_checkpoint(_job(job_id=4, circle="545"), next_index=20)

    state.clear_checkpoint(_job(circle="112"))

    assert state.resume_index_for(_job(circle="112")) is None
    assert state.resume_index_for(_job(circle="545")) == 20

    state.clear_checkpoint(_job(circle="545"))

    assert state.load_checkpoint() is None


def test_clear_and_corrupt_checkpoint() -> None:
    state.clear_checkpoint()
    assert state.load_checkpoint() is None

    with open(state.CKPT_PATH, "w", encoding="utf-8") as handle:
        handle.write("{not json")

    assert state.load_checkpoint() is None
    assert state.resume_index_for(_job()) is None

    with open(state.CKPT_PATH, "w", encoding="utf-8") as handle:
        handle.write("[1, 2]")

    assert state.load_checkpoint() is None
