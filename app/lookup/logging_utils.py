from __future__ import annotations

import logging
from typing import Any

from .utils import log_line


def _scraper_event(label: str = "", /, *, phase: str | None = None, **fields: Any) -> None:
    """Log one ``[SCRAPER][LABEL] k=v, ...`` line for a lookup event.

    ``label`` names the event family (``nav``, ``state``, ``progress``,
    ``error``) and ``phase`` the pipeline step that emitted it. The label is
    positional-only, so a payload field called ``label`` is logged like any
    other field. When no label is given the phase is used as the label.
    Events labelled ``error`` go out at WARNING.
    """

    try:
        event_label = label or (phase or "")
        if phase and label:
            fields.setdefault("phase", phase)
        payload = ", ".join(f"{k}={v!r}" for k, v in sorted(fields.items()))
        level = logging.WARNING if event_label.lower() == "error" else logging.INFO
        log_line(f"[SCRAPER][{event_label.upper()}] {payload}", level=level)
    except Exception:  # noqa: BLE001
        return


__all__ = ["_scraper_event"]
