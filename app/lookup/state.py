"""Helpers for persisting and restoring job progress checkpoints.

The checkpoint file holds one entry per lookup range, keyed by circle code
and digit width, so a job aborted mid-range can be picked up by any later job
for the same range (see ``cli requeue``) even after other circles have run.
"""

from __future__ import annotations

import json
import os
import time
from typing import Dict, Optional

from . import config
from .models import Job
from .utils import log_line


CKPT_PATH = os.environ.get("RUN_STATE_PATH", str(config.RUN_STATE_FILE))


def range_key(job: Job) -> str:
    return f"{job.circle_code}:{job.digit_width}"


def load_checkpoint() -> Optional[Dict]:
    """Load the persisted checkpoint JSON if present."""

    if not os.path.exists(CKPT_PATH):
        return None
    try:
        with open(CKPT_PATH, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, ValueError) as exc:
        log_line(f"[STATE] Ignoring unreadable checkpoint {CKPT_PATH}: {exc}")
        return None
    if not isinstance(data, dict):
        log_line(f"[STATE] Ignoring malformed checkpoint {CKPT_PATH}")
        return None
    return data


def _write(data: Dict) -> None:
    directory = os.path.dirname(CKPT_PATH)
    if directory:
        os.makedirs(directory, exist_ok=True)
    tmp_path = f"{CKPT_PATH}.tmp"
    with open(tmp_path, "w", encoding="utf-8") as handle:
        json.dump(data, handle, ensure_ascii=False, indent=2, sort_keys=True)
    os.replace(tmp_path, CKPT_PATH)


def save_checkpoint(job: Job, **kwargs) -> None:
    """Merge ``kwargs`` into the checkpoint entry for ``job``'s range."""

    data = load_checkpoint() or {}
    entry = data.get(range_key(job))
    if not isinstance(entry, dict):
        entry = {}
    entry.update(kwargs)
    entry["job_id"] = job.id
    entry["circle_code"] = job.circle_code
    entry["digit_width"] = job.digit_width
    entry["saved_at_ts"] = time.time()
    data[range_key(job)] = entry
    _write(data)


def clear_checkpoint(job: Optional[Job] = None) -> None:
    """Drop ``job``'s entry, or the whole file when no job is given."""

    if job is None:
        try:
            os.remove(CKPT_PATH)
        except FileNotFoundError:
            pass
        return

    data = load_checkpoint()
    if not data or range_key(job) not in data:
        return
    del data[range_key(job)]
    if data:
        _write(data)
    else:
        clear_checkpoint()


def resume_point_for(job: Job) -> Optional[Dict]:
    """Return the checkpoint entry for ``job``'s range, if one is usable."""

    data = load_checkpoint()
    if not data:
        return None
    entry = data.get(range_key(job))
    if not isinstance(entry, dict) or not isinstance(entry.get("next_index"), int):
        return None
    return entry


def resume_index_for(job: Job) -> Optional[int]:
    """Return the index to resume ``job`` from, if its range was checkpointed."""

    entry = resume_point_for(job)
    return entry["next_index"] if entry else None


__all__ = [
    "CKPT_PATH",
    "range_key",
    "load_checkpoint",
    "save_checkpoint",
    "clear_checkpoint",
    "resume_point_for",
    "resume_index_for",
]
