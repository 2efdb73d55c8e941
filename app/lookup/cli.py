from __future__ import annotations

"""Command line helpers for queueing jobs and running a lookup cycle."""

import argparse
import asyncio
from typing import Sequence

from . import db, state
from .config_validation import validate_runtime_config
from .models import FetchStatus, JobStatus
from .orchestrator import Orchestrator
from .utils import ensure_dirs


def _build_parser() -> argparse.ArgumentParser:
    """Return an argument parser for the lookup CLI."""

    parser = argparse.ArgumentParser(
        description="Queue circle-code jobs and run service-number lookups.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run-cycle", help="Process PENDING jobs until none remain.")

    add_job = sub.add_parser("add-job", help="Queue a circle code for lookup.")
    add_job.add_argument("circle_code", help="Circle code prefix, e.g. 112.")
    add_job.add_argument(
        "digits",
        type=int,
        help="Number of digits in the service-number suffix.",
    )

    requeue = sub.add_parser(
        "requeue",
        help="Queue a FAILED job's range again; it resumes from any saved checkpoint.",
    )
    requeue.add_argument("job_id", type=int, help="Identifier of the FAILED job.")
    requeue.add_argument(
        "--force",
        action="store_true",
        help="Also requeue a job left in PROCESSING by a crashed process.",
    )

    sub.add_parser("pending", help="List PENDING jobs.")
    sub.add_parser("stats", help="Show stored result counts.")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the lookup CLI."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    ensure_dirs()
    db.initialize_schema()

    if args.command == "add-job":
        if not args.circle_code.strip():
            parser.error("circle_code must not be empty")
        if not 1 <= args.digits <= 6:
            parser.error("digits must be between 1 and 6")
        job_id = db.add_job(args.circle_code, args.digits)
        print(f"Queued job {job_id}: circle={args.circle_code.strip()} digits={args.digits}")
        return 0

    if args.command == "requeue":
        try:
            job = db.requeue_job(args.job_id, force=args.force)
        except ValueError as exc:
            parser.error(str(exc))
        resume_at = state.resume_index_for(job)
        where = f"resumes at index {resume_at}" if resume_at is not None else "starts from the beginning"
        print(f"Requeued job {args.job_id} as job {job.id}: circle={job.circle_code} ({where})")
        return 0

    if args.command == "pending":
        jobs = db.select_jobs_by_status(JobStatus.PENDING)
        print(f"{len(jobs)} pending job(s)")
        for job in jobs:
            print(f"  {job.id}: circle={job.circle_code} digits={job.digit_width}")
        return 0

    if args.command == "stats":
        total = db.count_results()
        success = db.count_results(FetchStatus.SUCCESS.value)
        print(f"Total results: {total}")
        print(f"Successful results: {success}")
        return 0

    try:
        validate_runtime_config("cli")
    except ValueError as exc:
        parser.error(str(exc))

    summary = asyncio.run(Orchestrator().run_cycle())
    if summary is None:
        print("A cycle is already running")
        return 1
    print(f"Cycle {summary.cycle_id}: {len(summary.jobs)} job(s), aborted={summary.aborted}")
    for job in summary.jobs:
        print(f"  job {job['job_id']}: {job['status']}")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
