"""Shared fixtures for the finder tests."""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from fuzzfind.daemon.config import FinderConfig
from fuzzfind.daemon.errors import ChannelError
from fuzzfind.daemon.finder import FinderController


class RecordingChannel:
    """Event channel that records notifications and answers canned requests."""

    def __init__(self, responses: Optional[Dict[str, Any]] = None):
        self.notifications: List[Tuple[str, Dict[str, Any]]] = []
        self.requests: List[Tuple[str, Tuple[Any, ...]]] = []
        self.responses = responses or {}

    async def notify(self, name: str, **fields: Any) -> bool:
        self.notifications.append((name, fields))
        return True

    async def request(self, name: str, *args: Any) -> Any:
        self.requests.append((name, args))
        if name not in self.responses:
            raise ChannelError(f"unsupported request: {name}")
        response = self.responses[name]
        if callable(response):
            response = response(*args)
        if asyncio.iscoroutine(response):
            response = await response
        return response

    def named(self, name: str) -> List[Dict[str, Any]]:
        return [fields for n, fields in self.notifications if n == name]

    def last(self, name: str) -> Optional[Dict[str, Any]]:
        found = self.named(name)
        return found[-1] if found else None

    def names(self) -> List[str]:
        return [n for n, _ in self.notifications]

    def clear(self) -> None:
        self.notifications.clear()
        self.requests.clear()


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def config():
    return FinderConfig(
        flush_interval_ms=10,
        stall_timeout_ms=300,
        cancel_timeout_ms=500,
    )


@pytest_asyncio.fixture
async def controller(channel, config):
    controller = FinderController(channel, config)
    yield controller
    await controller.stop()


async def settle(controller: FinderController, timeout: float = 3.0) -> None:
    """Wait for the running filter pass to finish."""
    assert await controller.wait_for_pass(timeout=timeout)


async def run_session(controller: FinderController, options: Dict[str, Any], pattern: str = "") -> None:
    """Start a session, type ``pattern`` and wait for the last pass."""
    await controller.handle("run", options)
    for ch in pattern:
        await controller.handle("char", ch)
    await settle(controller)


def make_tree(root, layout: Dict[str, Any]) -> None:
    """Create files (str values) and directories (dict values) below ``root``."""
    for name, content in layout.items():
        path = root / name
        if isinstance(content, dict):
            path.mkdir()
            make_tree(path, content)
        else:
            path.write_text(content)


