"""
Shared fixtures for chtop tests.

FakeTransport implements QueryTransportProtocol in memory: each host gets
a scripted response (rows, an exception, or a callable of query and
params) and an optional delay. It records every call and the peak number
of concurrent calls.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from chtop.topology import ClusterTopology, topology_from_urls
from chtop.types import Host


class FakeTransport:
    """In-memory transport with per-host scripted responses."""

    def __init__(self):
        self.responses: dict[str, Any] = {}
        self.delays: dict[str, float] = {}
        self.calls: list[tuple[str, str, dict]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def script(self, host_id: str, response: Any = None, delay: float = 0.0) -> None:
        """
        Script a host.

        Args:
            host_id: Host to script
            response: list of rows, an exception instance, or a callable
                (query, params) -> rows
            delay: Seconds to sleep before answering
        """
        self.responses[host_id] = [] if response is None else response
        self.delays[host_id] = delay

    async def execute(
        self,
        host: Host,
        query: str,
        params: dict[str, Any],
        timeout: float,
    ) -> list[dict[str, Any]]:
        self.calls.append((host.id, query, dict(params)))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            delay = self.delays.get(host.id, 0.0)
            if delay:
                await asyncio.sleep(delay)
            response = self.responses.get(host.id, [])
            if isinstance(response, Exception):
                raise response
            if callable(response):
                response = response(query, params)
            return [dict(row) for row in response]
        finally:
            self.in_flight -= 1

    def calls_for(self, host_id: str) -> list[tuple[str, str, dict]]:
        return [c for c in self.calls if c[0] == host_id]


class StepClock:
    """Deterministic clock advancing by step on every call."""

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(seconds=1)):
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def topology() -> ClusterTopology:
    """Three hosts: a:8123, b:8123, c:8123."""
    return topology_from_urls(["http://a:8123", "http://b:8123", "http://c:8123"])


@pytest.fixture
def step_clock() -> Callable[[], datetime]:
    return StepClock()
