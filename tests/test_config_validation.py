from __future__ import annotations

import pytest

from app.lookup import config
from app.lookup.config_validation import validate_runtime_config


def test_worker_pages_are_clamped_into_pool_bounds(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "WORKER_PAGES", 40)
    validate_runtime_config("tests")
    assert config.WORKER_PAGES == config.MAX_WORKER_PAGES

    monkeypatch.setattr(config, "WORKER_PAGES", 0)
    validate_runtime_config("tests")
    assert config.WORKER_PAGES == 1


def test_batch_sizes_are_clamped_to_one(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "BATCH_SIZE", 0)
    monkeypatch.setattr(config, "DB_BATCH_SIZE", -3)

    validate_runtime_config("tests")

    assert config.BATCH_SIZE == 1
    assert config.DB_BATCH_SIZE == 1


def test_unknown_page_strategy_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "PAGE_STRATEGY", "parallel")

    with pytest.raises(ValueError, match="PAGE_STRATEGY"):
        validate_runtime_config("cli")


def test_inverted_delay_bounds_are_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "MIN_DELAY_MS", 2000)
    monkeypatch.setattr(config, "MAX_DELAY_MS", 150)

    with pytest.raises(ValueError, match="MIN_DELAY_MS"):
        validate_runtime_config("ui")


@pytest.mark.parametrize("field_name", ["NAV_TIMEOUT_SECONDS", "SUBMIT_WAIT_SECONDS", "MAX_RUN_SECONDS"])
def test_non_positive_timeouts_are_rejected(field_name: str, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, field_name, 0)

    with pytest.raises(ValueError, match=field_name):
        validate_runtime_config("scheduler")


def test_fresh_strategy_helper() -> None:
    assert config.is_fresh_page_strategy("fresh") is True
    assert config.is_fresh_page_strategy(" Fresh ") is True
    assert config.is_fresh_page_strategy("round_robin") is False


def test_timeout_parser_enforces_minimum(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOOKUP_TEST_TIMEOUT", "0.2")
    assert config._parse_timeout_seconds("LOOKUP_TEST_TIMEOUT", 30) == 1

    monkeypatch.setenv("LOOKUP_TEST_TIMEOUT", "not-a-number")
    assert config._parse_timeout_seconds("LOOKUP_TEST_TIMEOUT", 30) == 30
