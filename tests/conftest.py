"""Shared test fixtures — settings, throwaway worker scripts, event recorder."""

from __future__ import annotations

import asyncio
import textwrap
import time
from pathlib import Path
from typing import Callable

import pytest
import pytest_asyncio

from agentctl.config import AgentctlSettings
from agentctl.events.bus import EventBus
from agentctl.processes.supervisor import ProcessSupervisor
from agentctl.types import EventOrigin, LogEvent, LogKind


class EventRecorder:
    """Async subscriber that keeps every event it receives."""

    def __init__(self) -> None:
        self.events: list[LogEvent] = []

    async def __call__(self, event: LogEvent) -> None:
        self.events.append(event)

    def kinds(self, run_id: str | None = None, origin: EventOrigin | None = None) -> list[LogKind]:
        return [e.kind for e in self.select(run_id=run_id, origin=origin)]

    def select(
        self,
        kind: LogKind | None = None,
        run_id: str | None = None,
        origin: EventOrigin | None = None,
    ) -> list[LogEvent]:
        return [
            e for e in self.events
            if (kind is None or e.kind == kind)
            and (run_id is None or e.run_id == run_id)
            and (origin is None or e.origin == origin)
        ]

    async def wait_for(self, predicate: Callable[[LogEvent], bool], timeout: float = 10.0) -> LogEvent:
        deadline = time.monotonic() + timeout
        while True:
            for event in self.events:
                if predicate(event):
                    return event
            if time.monotonic() > deadline:
                raise AssertionError(
                    f"No matching event within {timeout}s; got {[e.kind.value for e in self.events]}"
                )
            await asyncio.sleep(0.01)


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def make_settings(tmp_path):
    def _factory(**overrides) -> AgentctlSettings:
        values = {
            "runtime_candidates": [],
            "base_dir": tmp_path,
            "grace_period_s": 3.0,
            "config_delivery": "stdin",
            "stub_enabled": True,
        }
        values.update(overrides)
        return AgentctlSettings(**values)
    return _factory


@pytest_asyncio.fixture
async def supervisor(make_settings, recorder):
    sup = ProcessSupervisor(event_bus=EventBus(), config=make_settings())
    sup.on_event(recorder)
    yield sup
    await sup.shutdown()


@pytest.fixture
def write_worker(tmp_path):
    """Write a Python worker script into tmp_path and return its path."""
    def _factory(source: str, name: str = "worker.py") -> Path:
        path = tmp_path / name
        path.write_text(textwrap.dedent(source), encoding="utf-8")
        return path
    return _factory
