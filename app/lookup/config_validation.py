from __future__ import annotations

from typing import Literal

from . import config
from .logging_utils import _scraper_event
from .utils import log_line

Entrypoint = Literal["ui", "cli", "scheduler", "tests"]

PAGE_STRATEGIES = frozenset({"round_robin", "fresh"})


def _raise_config_error(
    message: str, *, entrypoint: Entrypoint, error: str, mode: str | None
) -> None:
    _scraper_event(
        "error",
        phase="config",
        context="runtime_validation",
        error=error,
        entrypoint=entrypoint,
        mode=mode,
    )
    mode_fragment = f", mode={mode}" if mode else ""
    log_line(f"[CONFIG] {message} (entrypoint={entrypoint}{mode_fragment})")
    raise ValueError(message)


def _clamp(field_name: str, value: int, adjusted: int, *, entrypoint: Entrypoint, mode: str | None) -> int:
    _scraper_event(
        "state",
        phase="config",
        context="runtime_validation",
        kind="config_adjustment",
        field=field_name,
        value=value,
        adjusted=adjusted,
        entrypoint=entrypoint,
        mode=mode,
    )
    log_line(f"[CONFIG] {field_name}={value} out of range; clamping to {adjusted}.")
    setattr(config, field_name, adjusted)
    return adjusted


def validate_runtime_config(entrypoint: Entrypoint, *, mode: str | None = None) -> None:
    """Validate runtime configuration for the given entrypoint.

    Raises ``ValueError`` when a blocking misconfiguration is detected.
    Out-of-range pool and batch knobs are clamped and logged but do not raise.
    """

    if config.WORKER_PAGES < 1:
        _clamp("WORKER_PAGES", config.WORKER_PAGES, 1, entrypoint=entrypoint, mode=mode)
    elif config.WORKER_PAGES > config.MAX_WORKER_PAGES:
        _clamp(
            "WORKER_PAGES",
            config.WORKER_PAGES,
            config.MAX_WORKER_PAGES,
            entrypoint=entrypoint,
            mode=mode,
        )

    for field_name in ("BATCH_SIZE", "DB_BATCH_SIZE", "DB_WRITE_ATTEMPTS", "NAV_ATTEMPTS"):
        value = getattr(config, field_name)
        if value < 1:
            _clamp(field_name, value, 1, entrypoint=entrypoint, mode=mode)

    if config.PAGE_STRATEGY not in PAGE_STRATEGIES:
        _raise_config_error(
            f"PAGE_STRATEGY must be one of {sorted(PAGE_STRATEGIES)}; got {config.PAGE_STRATEGY!r}.",
            entrypoint=entrypoint,
            error="page_strategy_invalid",
            mode=mode,
        )

    if config.MIN_DELAY_MS < 0 or config.MAX_DELAY_MS < config.MIN_DELAY_MS:
        _raise_config_error(
            "Delay bounds must satisfy 0 <= MIN_DELAY_MS <= MAX_DELAY_MS.",
            entrypoint=entrypoint,
            error="delay_bounds_invalid",
            mode=mode,
        )

    timeout_fields = [
        ("NAV_TIMEOUT_SECONDS", config.NAV_TIMEOUT_SECONDS),
        ("DEFAULT_TIMEOUT_SECONDS", config.DEFAULT_TIMEOUT_SECONDS),
        ("SUBMIT_WAIT_SECONDS", config.SUBMIT_WAIT_SECONDS),
        ("MAX_RUN_SECONDS", config.MAX_RUN_SECONDS),
    ]

    for field_name, value in timeout_fields:
        if value <= 0:
            _raise_config_error(
                f"{field_name} must be greater than zero.",
                entrypoint=entrypoint,
                error="invalid_timeout",
                mode=mode,
            )


__all__ = ["validate_runtime_config", "Entrypoint", "PAGE_STRATEGIES"]
