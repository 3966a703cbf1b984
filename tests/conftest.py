"""Test configuration and fixtures for pathbuster."""

import asyncio
from typing import Callable, List, Tuple

import pytest

from pathbuster.core.config import ScanConfig
from pathbuster.core.models import Response, ScanState, Target
from pathbuster.core.utils import Governor, ScanProgress

APP = "https://example.com/app/"
BASELINE_BODY = "welcome to the app, nothing to see here"
NOT_FOUND_BODY = "404 not found"


class FakeClient:
    """Scripted origin: ``handler(method, url)`` returns ``(status, body)`` or a ``Response``."""

    def __init__(self, handler: Callable, delay: float = 0):
        self.handler = handler
        self.delay = delay
        self.calls: List[Tuple[str, str]] = []
        self.in_flight = 0
        self.peak = 0

    async def send(self, method, url, headers=None, timeout=None) -> Response:
        self.calls.append((method, url))
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            out = self.handler(method, url)
        finally:
            self.in_flight -= 1
        if isinstance(out, Response):
            return out
        status, body = out
        return Response(url=url, status=status, body=body, size=len(body.encode()))

    @property
    def urls(self) -> List[str]:
        return [url for _, url in self.calls]


def split_traversal(url: str, prefix: str = APP, payload: str = "../") -> Tuple[int, str]:
    """Returns (number of leading payloads after ``prefix``, the rest of the path)."""
    tail = url[len(prefix):]
    depth = 0
    while tail.startswith(payload):
        tail = tail[len(payload):]
        depth += 1
    return depth, tail


def example_origin(method, url):
    """
    Origin behind ``https://example.com/app/`` that breaks out at exactly two ``../``:
    500 for the bare traversal, 200 for ``admin``, 404 for anything else there.
    """
    depth, rest = split_traversal(url)
    if depth == 2:
        if rest == "":
            return 500, "internal error"
        if rest == "admin":
            return 200, "<html><title>admin</title>admin panel</html>"
        return 404, NOT_FOUND_BODY
    return 200, BASELINE_BODY


@pytest.fixture
def make_config() -> Callable[..., ScanConfig]:
    def _make(**overrides) -> ScanConfig:
        values = dict(rate=100000, concurrency=100, workers=4, timeout=5)
        values.update(overrides)
        return ScanConfig(**values)
    return _make


@pytest.fixture
def governor() -> Governor:
    return Governor(rate=100000, concurrency=100)


@pytest.fixture
def progress() -> ScanProgress:
    return ScanProgress()


@pytest.fixture
def app_target() -> Target:
    return Target.parse(APP)


@pytest.fixture
def app_state(app_target) -> ScanState:
    return ScanState(target=app_target)


class ListSink:
    def __init__(self):
        self.matches = []

    async def add(self, match):
        self.matches.append(match)


@pytest.fixture
def sink() -> ListSink:
    return ListSink()
