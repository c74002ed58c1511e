"""Publication of the visible result window.

While a filter pass runs, a ticker flushes the window every flush interval;
the pass flushes once more when it ends. A flush whose rows and match
indices equal the previous flush is not sent.

For ``ag`` results a header row with the file name is inserted whenever the
file changes between consecutive rows. Headers take display rows but are
never selectable: ``selected`` always indexes a line result.
"""

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, List, Optional, Tuple

from loguru import logger

from .algorithms import Matcher, split_file_line
from .cancellation import CancellationToken
from .channel import EventChannel
from .ranking import RankedResults, ResultEntry

if TYPE_CHECKING:
    from .finder import FinderSession


HEADER_ROW = "file"
LINE_ROW = "file_line"


@dataclass
class WindowView:
    """One flush worth of display data."""
    items: List[str] = field(default_factory=list)
    matches: List[List[int]] = field(default_factory=list)
    item_types: List[str] = field(default_factory=list)
    selected: int = 0
    start: int = 0
    total: int = 0
    result_type: str = "plain"

    def to_fields(self) -> dict:
        return {
            "items": self.items,
            "selected": self.selected,
            "matches": self.matches,
            "result_type": self.result_type,
            "start": self.start,
            "total": self.total,
            "item_types": self.item_types,
        }


def window_capacity(
    results: RankedResults,
    start: int,
    max_rows: int,
    result_type: str
) -> int:
    """How many results fit on screen starting at ``start``."""
    total = len(results)
    if start >= total:
        return 0
    if result_type != "ag":
        return min(max_rows, total - start)

    rows = 0
    count = 0
    last_file = None
    for index in range(start, total):
        file, _ = split_file_line(results[index].text)
        need = 1 if file == last_file else 2
        if rows + need > max_rows:
            break
        rows += need
        count += 1
        last_file = file
    # A single line always fits, its header is dropped if needed
    return max(count, 1)


def clamp_view(
    total: int,
    start: int,
    selected: int,
    capacity: Callable[[int], int]
) -> Tuple[int, int]:
    """Clamp ``start`` and ``selected`` into range and keep the selection visible."""
    if total <= 0:
        return 0, 0
    selected = min(max(selected, 0), total - 1)
    start = min(max(start, 0), selected)
    while selected >= start + capacity(start):
        start += 1
    return start, selected


def truncate(text: str, positions, limit: int) -> Tuple[str, List[int]]:
    if len(text) <= limit:
        return text, list(positions)
    return text[:limit], [p for p in positions if p < limit]


class ResultPublisher:
    """Builds window views from a session and sends them to the display."""

    def __init__(self, channel: EventChannel, max_display_length: int = 200):
        self.channel = channel
        self.max_display_length = max_display_length
        self._lock = asyncio.Lock()
        self._last_items: List[str] = []
        self._last_matches: List[List[int]] = []
        self.sent = 0
        self.suppressed = 0
        self.dropped = 0

    def reset(self) -> None:
        """Forget the previous flush (new session)."""
        self._last_items = []
        self._last_matches = []

    def build_view(self, session: "FinderSession") -> WindowView:
        results = session.results
        result_type = session.options.type
        total = len(results)

        def capacity(start: int) -> int:
            return window_capacity(results, start, session.max, result_type)

        start, selected = clamp_view(total, session.start, session.selected, capacity)
        view = WindowView(start=start, total=total, result_type=result_type)
        if total == 0:
            return view

        entries = results.window(start, capacity(start))
        if result_type == "ag":
            self._add_grouped_rows(view, entries, selected - start, session.matcher, session.max)
        else:
            for entry in entries:
                self._add_row(view, entry.text, entry.positions, result_type)
            view.selected = selected - start
        return view

    def _add_row(self, view: WindowView, text: str, positions, item_type: str) -> None:
        text, positions = truncate(text, positions, self.max_display_length)
        view.items.append(text)
        view.matches.append(positions)
        view.item_types.append(item_type)

    def _add_grouped_rows(
        self,
        view: WindowView,
        entries: List[ResultEntry],
        selected: int,
        matcher: Matcher,
        max_rows: int
    ) -> None:
        last_file = None
        for i, entry in enumerate(entries):
            file, rest = split_file_line(entry.text)
            if file != last_file and not (len(entries) == 1 and max_rows < 2):
                self._add_row(view, file, matcher.match_positions(file), HEADER_ROW)
                last_file = file
            offset = len(entry.text) - len(rest)
            positions = [p - offset for p in entry.positions if p >= offset]
            if i == selected:
                view.selected = len(view.items)
            self._add_row(view, rest, positions, LINE_ROW)

    async def flush(
        self,
        session: "FinderSession",
        token: Optional[CancellationToken] = None,
        force: bool = False
    ) -> bool:
        """Send the current window. Returns False when nothing was sent."""
        async with self._lock:
            if token is not None and token.cancelled:
                return False
            if not session.running:
                return False
            view = self.build_view(session)
            if not force and view.items == self._last_items and view.matches == self._last_matches:
                self.suppressed += 1
                return False
            delivered = await self.channel.notify("finder_show_result", **view.to_fields())
            if delivered is False:
                # Not remembered, so the same window is sent again next time
                logger.debug("Result window dropped by the channel")
                self.dropped += 1
                return False
            self._last_items = view.items
            self._last_matches = view.matches
            self.sent += 1
            return True

    async def run_ticker(
        self,
        session: "FinderSession",
        token: CancellationToken,
        interval: float
    ) -> None:
        """Flush every ``interval`` seconds until ``token`` is cancelled."""
        try:
            while not token.cancelled:
                await asyncio.sleep(interval)
                await self.flush(session, token)
        except asyncio.CancelledError:
            logger.trace("Flush ticker stopped")
            raise
