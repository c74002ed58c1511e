"""Tests for event bus."""

import asyncio
import pytest

from fuzzfind.daemon.bus import EventBus, Event
from fuzzfind.daemon.channel import BusEventChannel
from fuzzfind.daemon.errors import ChannelError


@pytest.mark.asyncio
async def test_event_emit_and_subscribe():
    """Test basic pub/sub functionality."""
    bus = EventBus()
    await bus.start()

    received_events = []

    async def handler(event: Event):
        received_events.append(event)

    bus.subscribe("gui.*", handler)

    await bus.emit(Event(
        type="gui.finder_show_result",
        data={"items": ["foo.go"]}
    ))

    await asyncio.sleep(0.1)

    assert len(received_events) == 1
    assert received_events[0].type == "gui.finder_show_result"
    assert received_events[0].data["items"] == ["foo.go"]

    await bus.stop()


@pytest.mark.asyncio
async def test_wildcard_subscription():
    """Test wildcard pattern matching."""
    bus = EventBus()
    await bus.start()

    all_events = []
    gui_events = []

    async def all_handler(event: Event):
        all_events.append(event)

    async def gui_handler(event: Event):
        gui_events.append(event)

    bus.subscribe("*", all_handler)
    bus.subscribe("gui.*", gui_handler)

    await bus.emit(Event(type="gui.finder_show", data={}))
    await bus.emit(Event(type="finder.char", data={"args": ["a"]}))
    await bus.emit(Event(type="gui.finder_hide", data={}))

    await bus.drain()

    assert len(all_events) == 3
    assert len(gui_events) == 2

    await bus.stop()


@pytest.mark.asyncio
async def test_events_delivered_in_order():
    bus = EventBus()
    await bus.start()

    seen = []

    async def handler(event: Event):
        seen.append(event.data["n"])

    bus.subscribe("gui.*", handler)
    for n in range(20):
        await bus.emit(Event(type="gui.finder_pattern", data={"n": n}))

    assert await bus.drain()
    assert seen == list(range(20))

    await bus.stop()


@pytest.mark.asyncio
async def test_bound_method_subscriber():
    class Display:
        def __init__(self):
            self.shown = 0

        async def on_show(self, event: Event):
            self.shown += 1

    bus = EventBus()
    await bus.start()
    display = Display()
    bus.subscribe("gui.finder_show", display.on_show)

    await bus.emit(Event(type="gui.finder_show", data={}))
    await bus.drain()
    assert display.shown == 1

    bus.unsubscribe("gui.finder_show", display.on_show)
    await bus.emit(Event(type="gui.finder_show", data={}))
    await bus.drain()
    assert display.shown == 1

    await bus.stop()


@pytest.mark.asyncio
async def test_handler_errors_are_counted():
    bus = EventBus()
    await bus.start()

    async def broken(event: Event):
        raise RuntimeError("display gone")

    bus.subscribe("gui.*", broken)
    await bus.emit(Event(type="gui.finder_hide", data={}))
    await bus.drain()

    assert bus.get_stats()["handler_errors"] == 1
    await bus.stop()


@pytest.mark.asyncio
async def test_event_queue_full():
    """Test behavior when event queue is full."""
    bus = EventBus(maxsize=2)

    assert await bus.emit(Event(type="gui.1", data={}))
    assert await bus.emit(Event(type="gui.2", data={}))

    # This should be dropped
    assert not await bus.emit(Event(type="gui.3", data={}))
    assert not bus.emit_nowait(Event(type="gui.4", data={}))

    stats = bus.get_stats()
    assert stats['dropped'] == 2
    assert stats['emitted'] == 2

    bus.reset_stats()
    assert bus.get_stats() == {}


def test_pattern_matching():
    """Test pattern matching logic."""
    bus = EventBus()

    # Exact match
    assert bus._matches("gui.finder_show", "gui.finder_show")
    assert not bus._matches("gui.finder_show", "gui.finder_hide")

    # Wildcard
    assert bus._matches("gui.finder_show", "gui.*")
    assert bus._matches("finder.char", "finder.*")
    assert not bus._matches("gui.finder_show", "finder.*")
    assert not bus._matches("guide.x", "gui.*")

    # Global wildcard
    assert bus._matches("anything", "*")
    assert bus._matches("gui.finder_show", "*")


@pytest.mark.asyncio
async def test_channel_notifications_become_gui_events():
    bus = EventBus()
    await bus.start()
    channel = BusEventChannel(bus)

    received = []

    async def handler(event: Event):
        received.append(event)

    bus.subscribe("gui.*", handler)
    await channel.notify("finder_pattern", text="fo", cursor=2)
    await bus.drain()

    assert received[0].type == "gui.finder_pattern"
    assert received[0].data == {"text": "fo", "cursor": 2}
    assert received[0].source == "finder"

    await bus.stop()


@pytest.mark.asyncio
async def test_channel_requests():
    calls = []

    async def requester(name, *args):
        calls.append((name, args))
        if name == "list_dir":
            return ["a.txt"]
        raise KeyError(name)

    channel = BusEventChannel(EventBus(), requester)
    assert await channel.request("list_dir", "/tmp") == ["a.txt"]
    assert calls == [("list_dir", ("/tmp",))]

    with pytest.raises(ChannelError):
        await channel.request("read_file", "/tmp/.gitignore")

    with pytest.raises(ChannelError):
        await BusEventChannel(EventBus()).request("command", "edit x")


@pytest.mark.asyncio
async def test_channel_reports_dropped_notifications():
    bus = EventBus(maxsize=1)
    channel = BusEventChannel(bus)

    assert await channel.notify("finder_show", prompt="> ")
    # Nothing drains the queue, so the next notification is dropped
    assert await channel.notify("finder_show_result", items=[]) is False
    assert bus.get_stats()['dropped'] == 1
