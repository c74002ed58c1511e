"""Bidirectional event channel between the finder and the editor."""

from typing import Any, Awaitable, Callable, Optional, Protocol

from loguru import logger

from .bus import Event, EventBus
from .errors import ChannelError


Requester = Callable[..., Awaitable[Any]]


class EventChannel(Protocol):
    """What the finder needs from the editor connection."""

    async def notify(self, name: str, **fields: Any) -> bool:
        """Send a ``finder_*`` notification to the display. False when dropped."""
        ...

    async def request(self, name: str, *args: Any) -> Any:
        """Call the editor and wait for its answer."""
        ...


class BusEventChannel:
    """
    Channel publishing notifications on an EventBus.

    Notifications become ``gui.<name>`` events. Requests are forwarded to
    the requester supplied by the editor transport.
    """

    def __init__(self, bus: EventBus, requester: Optional[Requester] = None):
        self.bus = bus
        self.requester = requester

    async def notify(self, name: str, **fields: Any) -> bool:
        return await self.bus.emit(Event(
            type=f"gui.{name}",
            data=fields,
            source="finder"
        ))

    async def request(self, name: str, *args: Any) -> Any:
        if self.requester is None:
            raise ChannelError(f"No editor connection for request: {name}")
        try:
            return await self.requester(name, *args)
        except ChannelError:
            raise
        except Exception as e:
            logger.debug(f"Request {name} failed: {e}")
            raise ChannelError(f"{name}: {e}") from e
