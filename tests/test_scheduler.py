from __future__ import annotations

import threading
import time

import pytest

from app.lookup.scheduler import PeriodicTrigger
from tests.fakes import configure_temp_paths


class _CountingOrchestrator:
    def __init__(self, accept_every: int = 1) -> None:
        self.calls = 0
        self.accept_every = accept_every
        self.fired = threading.Event()

    def start_cycle(self) -> bool:
        self.calls += 1
        if self.calls >= 3:
            self.fired.set()
        return self.calls % self.accept_every == 0


@pytest.fixture(autouse=True)
def _isolated(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    configure_temp_paths(tmp_path, monkeypatch)


def test_trigger_fires_on_startup_and_every_interval() -> None:
    orchestrator = _CountingOrchestrator()
    trigger = PeriodicTrigger(orchestrator, interval_seconds=0.05, run_on_startup=True)

    trigger.start()
    try:
        assert orchestrator.fired.wait(3)
    finally:
        trigger.stop(timeout=2)

    assert trigger.triggers >= 3
    assert trigger.accepted == trigger.triggers


def test_rejected_triggers_are_not_counted_as_accepted() -> None:
    orchestrator = _CountingOrchestrator(accept_every=2)
    trigger = PeriodicTrigger(orchestrator, interval_seconds=0.05, run_on_startup=True)

    trigger.start()
    try:
        assert orchestrator.fired.wait(3)
    finally:
        trigger.stop(timeout=2)

    assert trigger.accepted < trigger.triggers


def test_no_startup_run_waits_for_first_interval() -> None:
    orchestrator = _CountingOrchestrator()
    trigger = PeriodicTrigger(orchestrator, interval_seconds=5, run_on_startup=False)

    trigger.start()
    time.sleep(0.1)
    trigger.stop(timeout=2)

    assert orchestrator.calls == 0
