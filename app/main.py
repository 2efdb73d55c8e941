from __future__ import annotations

import os
from typing import Any

from flask import Flask, Response, jsonify, send_file

from app.lookup import db
from app.lookup.config_validation import validate_runtime_config
from app.lookup.export_excel import export_results_to_excel
from app.lookup.healthcheck import run_health_checks
from app.lookup.models import FetchStatus, JobStatus
from app.lookup.orchestrator import Orchestrator
from app.lookup.utils import ensure_dirs, get_current_log_path, log_line

app = Flask(__name__)

# Initialise storage paths and SQLite schema on import so WSGI entrypoints
# also have the expected environment ready.
ensure_dirs()
db.initialize_schema()

ORCHESTRATOR = Orchestrator()


def _job_to_json(job: Any) -> dict[str, Any]:
    return {
        "id": job.id,
        "circle_code": job.circle_code,
        "digits_in_service_code": job.digit_width,
        "status": job.status.value,
    }


@app.get("/")
def index() -> Response:
    """Return a plain banner with the running flag."""

    return jsonify(
        {
            "message": "Service number lookup automation is running",
            "processing": ORCHESTRATOR.is_running(),
            "log_file": str(get_current_log_path()),
        }
    )


@app.post("/start")
def start_cycle() -> Response:
    """Trigger a processing cycle; 409 when one is already in flight."""

    try:
        validate_runtime_config("ui")
    except ValueError as exc:
        return jsonify({"success": False, "error": str(exc)}), 400

    accepted = ORCHESTRATOR.start_cycle()
    if not accepted:
        return jsonify({"success": False, "message": "A cycle is already running"}), 409
    log_line("[UI] Cycle started via /start")
    return jsonify({"success": True, "message": "Cycle started"})


@app.get("/status")
def status() -> Response:
    return jsonify(ORCHESTRATOR.status())


@app.get("/check-pending")
def check_pending() -> Response:
    jobs = db.select_jobs_by_status(JobStatus.PENDING)
    return jsonify({"pending": len(jobs), "jobs": [_job_to_json(job) for job in jobs]})


@app.get("/stats")
def stats() -> Response:
    return jsonify(
        {
            "total": db.count_results(),
            "successful": db.count_results(FetchStatus.SUCCESS.value),
            "processing": ORCHESTRATOR.is_running(),
        }
    )


@app.get("/api/health")
def api_health() -> Response:
    """Return a JSON health summary for configuration, filesystem, and DB."""

    result = run_health_checks(entrypoint="ui")
    status_code = 200 if result.ok else 503
    return jsonify({"ok": result.ok, "checks": result.checks}), status_code


@app.get("/api/exports/results.xlsx")
def api_export_results_xlsx() -> Response:
    path = export_results_to_excel()
    return send_file(path, as_attachment=True, download_name=os.path.basename(path))


__all__ = ["app", "ORCHESTRATOR"]
