"""Configuration constants for the service lookup automation."""
from __future__ import annotations

import os
from pathlib import Path


def _env_int(env_var: str, default: int) -> int:
    try:
        return int(os.getenv(env_var, str(default)))
    except ValueError:
        return default


def _env_bool(env_var: str, default: bool) -> bool:
    raw = os.getenv(env_var)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


def _parse_timeout_seconds(env_var: str, default: float, *, minimum: float = 1) -> float:
    """Parse a timeout value in seconds from the environment with bounds."""

    try:
        value = float(os.getenv(env_var, str(default)))
    except ValueError:
        return default
    return max(minimum, value)


def _optional_index(env_var: str) -> int | None:
    raw = (os.getenv(env_var) or "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


DATA_DIR: Path = Path(os.getenv("LOOKUP_DATA_DIR", "/app/data"))
LOG_DIR: Path = DATA_DIR / "logs"
LOG_FILE: Path = LOG_DIR / "latest.log"
RUN_STATE_FILE: Path = DATA_DIR / "run_state.json"
EXPORTS_DIR: Path = DATA_DIR / "exports"
DB_PATH: Path = DATA_DIR / "lookup.db"
MIN_FREE_MB: int = _env_int("MIN_FREE_MB", 200)

SERVICE_LOOKUP_URL: str = os.getenv(
    "SERVICE_LOOKUP_URL", "https://tgsouthernpower.org/getUkscno"
)
BILL_LOOKUP_URL: str = os.getenv(
    "BILL_LOOKUP_URL", "https://tgsouthernpower.org/getBillAmount"
)
# Direct results page used when the bill form exposes no usable input.
BILL_INFO_URL: str = os.getenv("BILL_INFO_URL", "https://tgsouthernpower.org/billinginfo")

# Browser / page pool
WORKER_PAGES: int = _env_int("WORKER_PAGES", 2)
MAX_WORKER_PAGES: int = 6
PAGE_STRATEGY: str = (os.getenv("PAGE_STRATEGY", "round_robin").strip().lower() or "round_robin")
PAGE_RECYCLE_INTERVAL: int = _env_int("PAGE_RECYCLE_INTERVAL", 500)
# Relaunch the whole browser after this many items; 0 disables.
BROWSER_RECYCLE_INTERVAL: int = _env_int("BROWSER_RECYCLE_INTERVAL", 5000)
ROTATE_USER_AGENT: bool = _env_bool("ROTATE_USER_AGENT", True)
VIEWPORT: dict[str, int] = {"width": 1280, "height": 800}
BLOCKED_RESOURCE_TYPES: frozenset[str] = frozenset({"image", "stylesheet", "font", "media"})

# Timeouts (seconds)
NAV_TIMEOUT_SECONDS: float = _parse_timeout_seconds("NAV_TIMEOUT_SECONDS", 30)
DEFAULT_TIMEOUT_SECONDS: float = _parse_timeout_seconds("DEFAULT_TIMEOUT_SECONDS", 30)
# Bound for the submit race (navigation vs. results table).
SUBMIT_WAIT_SECONDS: float = _parse_timeout_seconds("SUBMIT_WAIT_SECONDS", 20)
# Short probe for the primary input before falling back to a generic one.
INPUT_PROBE_SECONDS: float = _parse_timeout_seconds("INPUT_PROBE_SECONDS", 7)
NAV_ATTEMPTS: int = _env_int("NAV_ATTEMPTS", 3)
NAV_BACKOFF_SECONDS: float = 1.5

# Job runner pacing
BATCH_SIZE: int = _env_int("BATCH_SIZE", 250)
PROGRESS_EVERY: int = _env_int("PROGRESS_EVERY", 10)
MIN_DELAY_MS: int = _env_int("MIN_DELAY_MS", 1000)
MAX_DELAY_MS: int = _env_int("MAX_DELAY_MS", 2500)
START_INDEX: int | None = _optional_index("START_INDEX")
END_INDEX: int | None = _optional_index("END_INDEX")
RESUME_FROM_CHECKPOINT: bool = _env_bool("RESUME_FROM_CHECKPOINT", True)

# Persistence
DB_BATCH_SIZE: int = _env_int("DB_BATCH_SIZE", 100)
DB_WRITE_ATTEMPTS: int = _env_int("DB_WRITE_ATTEMPTS", 3)
DB_BACKOFF_SECONDS: float = 1.5
SAVE_ONLY_SUCCESS: bool = _env_bool("SAVE_ONLY_SUCCESS", True)

# Orchestration
MAX_RUN_SECONDS: float = _parse_timeout_seconds("MAX_RUN_SECONDS", 20 * 60)
WATCHDOG_GRACE_SECONDS: float = _parse_timeout_seconds("WATCHDOG_GRACE_SECONDS", 5)
CRON_INTERVAL_SECONDS: float = _parse_timeout_seconds("CRON_INTERVAL_SECONDS", 300)
RUN_ON_STARTUP: bool = _env_bool("RUN_ON_STARTUP", True)
ENABLE_SCHEDULER: bool = _env_bool("ENABLE_SCHEDULER", True)

PORT: int = _env_int("PORT", 3000)

USER_AGENTS: tuple[str, ...] = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4.1 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
)

BROWSER_ARGS: tuple[str, ...] = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-zygote",
    "--disable-extensions",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--window-size=1280,800",
)


def is_fresh_page_strategy(strategy: str | None = None) -> bool:
    """Return ``True`` when every lookup should run on a brand-new page."""

    return str(strategy if strategy is not None else PAGE_STRATEGY).strip().lower() == "fresh"
