"""Tests for the daemon wiring and the command line front-end."""

import sys

import pytest
from click.testing import CliRunner
from loguru import logger

from fuzzfind.cli.ff import cli, highlight
from fuzzfind.daemon.bus import Event
from fuzzfind.daemon.config import FinderConfig
from fuzzfind.daemon.main import FinderDaemon


@pytest.fixture
def restore_logging():
    yield
    logger.remove()
    logger.add(sys.stderr)


async def settle_daemon(daemon: FinderDaemon) -> None:
    await daemon.event_bus.drain()
    await daemon.controller.join()
    assert await daemon.controller.wait_for_pass(timeout=3.0)
    await daemon.event_bus.drain()


@pytest.mark.asyncio
async def test_daemon_routes_bus_events():
    daemon = FinderDaemon(FinderConfig(flush_interval_ms=10))
    results = []
    hidden = []

    async def on_result(event: Event):
        results.append(event.data)

    async def on_hide(event: Event):
        hidden.append(event)

    daemon.event_bus.subscribe("gui.finder_show_result", on_result)
    daemon.event_bus.subscribe("gui.finder_hide", on_hide)
    await daemon.start()
    try:
        await daemon.event_bus.emit(Event(
            type="finder.run",
            data={"args": [{"source": ["foo.go", "bar.go"]}]}
        ))
        await daemon.event_bus.emit(Event(type="finder.char", data={"args": ["f"]}))
        await settle_daemon(daemon)

        assert results[-1]["items"] == ["foo.go"]
        assert results[-1]["matches"] == [[0]]

        await daemon.event_bus.emit(Event(type="finder.cancel", data={}))
        await daemon.event_bus.drain()
        await daemon.controller.join()
        await daemon.event_bus.drain()
        assert len(hidden) == 1

        status = daemon.get_status()
        assert status["stats"]["inbound_count"] == 3
        assert status["stats"]["notification_count"] >= 4
        assert status["finder"]["state"] == "idle"
    finally:
        await daemon.stop()


@pytest.mark.asyncio
async def test_daemon_confirm_uses_requester():
    calls = []

    async def requester(name, *args):
        calls.append((name, args))

    daemon = FinderDaemon(FinderConfig(flush_interval_ms=10), requester=requester)
    await daemon.start()
    try:
        daemon.send("run", {"source": ["foo.go", "bar.go"], "sink": "edit"})
        daemon.send("char", "b")
        await settle_daemon(daemon)
        daemon.send("confirm")
        await daemon.controller.join()
    finally:
        await daemon.stop()

    assert calls == [("command", ("edit bar.go",))]


def test_cli_search_command(restore_logging):
    runner = CliRunner()
    result = runner.invoke(cli, ["search", "fg", "--cmd", "printf 'foo.go\\nbar.go\\n'"])

    assert result.exit_code == 0, result.output
    assert "foo.go" in result.output
    assert "bar.go" not in result.output


def test_cli_search_without_matches(restore_logging):
    runner = CliRunner()
    result = runner.invoke(cli, ["search", "zzz", "--cmd", "echo foo"])

    assert result.exit_code == 0
    assert "No results found" in result.output


def test_cli_config_command(restore_logging):
    runner = CliRunner()
    result = runner.invoke(cli, ["config"])

    assert result.exit_code == 0
    assert "flush_interval_ms: 50" in result.output


def test_highlight():
    text = highlight("foo.go", [0, 4, 99])
    assert text.plain == "foo.go"
    assert len(text.spans) == 2
