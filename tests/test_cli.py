from __future__ import annotations

import pytest

from app.lookup import cli, db, state
from app.lookup.orchestrator import CycleSummary
from tests.fakes import configure_temp_paths


@pytest.fixture(autouse=True)
def _isolated(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    configure_temp_paths(tmp_path, monkeypatch)


def test_add_job_and_pending_listing(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["add-job", "112", "3"]) == 0
    assert cli.main(["add-job", "545", "4"]) == 0
    capsys.readouterr()

    assert cli.main(["pending"]) == 0

    out = capsys.readouterr().out
    assert "2 pending job(s)" in out
    assert "circle=112 digits=3" in out
    assert "circle=545 digits=4" in out


def test_add_job_rejects_out_of_range_digits() -> None:
    with pytest.raises(SystemExit):
        cli.main(["add-job", "112", "9"])


def test_stats_prints_counts(capsys: pytest.CaptureFixture[str]) -> None:
    db.initialize_schema()
    db.bulk_insert_results([{"service_no": "112 001", "fetch_status": "Success", "status": "COMPLETED"}])

    assert cli.main(["stats"]) == 0

    out = capsys.readouterr().out
    assert "Total results: 1" in out
    assert "Successful results: 1" in out


def test_run_cycle_invokes_orchestrator(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    class _StubOrchestrator:
        async def run_cycle(self):
            summary = CycleSummary(cycle_id=1)
            summary.jobs.append({"job_id": 4, "status": "COMPLETED"})
            return summary

    monkeypatch.setattr(cli, "Orchestrator", _StubOrchestrator)

    assert cli.main(["run-cycle"]) == 0

    out = capsys.readouterr().out
    assert "Cycle 1: 1 job(s), aborted=False" in out
    assert "job 4: COMPLETED" in out


def test_run_cycle_reports_busy(monkeypatch: pytest.MonkeyPatch) -> None:
    class _BusyOrchestrator:
        async def run_cycle(self):
            return None

    monkeypatch.setattr(cli, "Orchestrator", _BusyOrchestrator)

    assert cli.main(["run-cycle"]) == 1


def test_requeue_reports_resume_index(capsys: pytest.CaptureFixture[str]) -> None:
    db.initialize_schema()
    job_id = db.add_job("112", 3)
    job = db.claim_next_pending_job()
    db.update_job_status(job_id, "FAILED")
    state.save_checkpoint(job, next_index=250)

    assert cli.main(["requeue", str(job_id)]) == 0

    out = capsys.readouterr().out
    assert f"Requeued job {job_id} as job {job_id + 1}" in out
    assert "resumes at index 250" in out


def test_requeue_of_pending_job_is_rejected() -> None:
    db.initialize_schema()
    job_id = db.add_job("112", 3)

    with pytest.raises(SystemExit):
        cli.main(["requeue", str(job_id)])
