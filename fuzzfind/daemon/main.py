"""Finder daemon wiring the event bus, the channel and the controller."""

import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger

from .bus import Event, EventBus
from .channel import BusEventChannel, Requester
from .config import FinderConfig
from .errors import ErrorTracker
from .finder import FinderController

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """Route loguru output to stderr and, optionally, a rotating file."""
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=level)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            rotation="1 day",
            retention="7 days",
            level="DEBUG"
        )


class FinderDaemon:
    """
    Embeds the finder in an editor process.

    Inbound events arrive as ``finder.<event>`` bus events (``data["args"]``
    holds the arguments) or through ``send``. Display notifications leave
    as ``gui.finder_*`` bus events.
    """

    def __init__(self, config: Optional[FinderConfig] = None, requester: Optional[Requester] = None):
        self.config = config or FinderConfig()
        self.start_time = datetime.utcnow()

        self.event_bus = EventBus(maxsize=self.config.channel_capacity)
        self.channel = BusEventChannel(self.event_bus, requester)
        self.errors = ErrorTracker()
        self.controller = FinderController(self.channel, self.config, self.errors)

        self.stats = {
            "inbound_count": 0,
            "notification_count": 0
        }

    async def start(self) -> None:
        """Start all daemon services."""
        logger.info("Starting finder daemon...")
        await self.event_bus.start()
        await self.controller.start()

        self.event_bus.subscribe("finder.*", self._on_finder_event)
        self.event_bus.subscribe("gui.*", self._on_notification)
        logger.info("Finder daemon started")

    async def stop(self) -> None:
        """Stop all daemon services."""
        logger.info("Stopping finder daemon...")
        await self.controller.stop()
        await self.event_bus.drain()
        await self.event_bus.stop()
        logger.info("Finder daemon stopped")

    def send(self, name: str, *args: Any) -> None:
        """Queue an inbound finder event."""
        self.stats["inbound_count"] += 1
        self.controller.submit(name, *args)

    async def _on_finder_event(self, event: Event) -> None:
        name = event.type.split(".", 1)[1]
        args = event.data.get("args", [])
        if not isinstance(args, (list, tuple)):
            args = [args]
        self.send(name, *args)

    async def _on_notification(self, event: Event) -> None:
        self.stats["notification_count"] += 1

    def get_status(self) -> Dict[str, Any]:
        """Get daemon status and statistics."""
        uptime = (datetime.utcnow() - self.start_time).total_seconds()
        return {
            "status": "running",
            "version": "0.1.0",
            "uptime": f"{uptime:.0f}s",
            "stats": dict(self.stats),
            "bus": self.event_bus.get_stats(),
            "finder": self.controller.get_stats()
        }
