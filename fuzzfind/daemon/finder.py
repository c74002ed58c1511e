"""Finder session controller.

The controller is a single-writer actor: inbound events are queued and
handled one at a time in arrival order. Candidate production, scoring and
the flush ticker run as background tasks tied to cancellation tokens:

- one session token per ``run``; cancelling it stops the source, the
  current pass and its ticker
- one pass token per filter pass (child of the session token); a pattern
  edit cancels the running pass before the next one starts, so a stale
  pass never inserts or publishes after it is superseded
"""

import asyncio
import time
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from .algorithms import Matcher
from .cancellation import CancellationToken
from .channel import EventChannel
from .config import FinderConfig, FinderOptions
from .errors import ChannelError, ErrorSeverity, ErrorTracker, OptionsError
from .publisher import ResultPublisher, clamp_view, window_capacity
from .ranking import Candidate, RankedResults
from .sources import END, SourceStream, build_source


class SessionState(Enum):
    """Session lifecycle states."""
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class FinderSession:
    """State of the one active search session."""
    max: int = 20
    options: FinderOptions = field(default_factory=FinderOptions)
    pattern: str = ""
    cursor: int = 0
    selected: int = 0
    start: int = 0
    state: SessionState = SessionState.IDLE
    candidates: List[Candidate] = field(default_factory=list)
    results: RankedResults = field(default_factory=RankedResults)
    matcher: Matcher = field(default_factory=lambda: Matcher(""))
    generation: int = 0
    started: bool = False

    @property
    def running(self) -> bool:
        return self.state == SessionState.RUNNING

    @property
    def total(self) -> int:
        return len(self.results)

    def reset(self, options: FinderOptions) -> None:
        self.options = options
        self.pattern = ""
        self.cursor = 0
        self.selected = 0
        self.start = 0
        self.candidates = []
        self.results = RankedResults()
        self.matcher = Matcher("", options.type)
        self.started = True

    def insert(self, ch: str) -> None:
        """Insert one code point at the cursor."""
        self.pattern = self.pattern[:self.cursor] + ch + self.pattern[self.cursor:]
        self.cursor += 1

    def delete_before_cursor(self) -> bool:
        if self.cursor == 0:
            return False
        self.pattern = self.pattern[:self.cursor - 1] + self.pattern[self.cursor:]
        self.cursor -= 1
        return True

    def move_cursor(self, delta: int) -> None:
        self.cursor = min(max(self.cursor + delta, 0), len(self.pattern))

    def capacity(self, start: int) -> int:
        return window_capacity(self.results, start, self.max, self.options.type)

    def clamp(self) -> None:
        self.start, self.selected = clamp_view(
            self.total, self.start, self.selected, self.capacity
        )

    def step(self, delta: int) -> bool:
        """Move the selection with wraparound and slide the window minimally."""
        total = self.total
        if total == 0:
            return False
        self.clamp()
        self.selected = (self.selected + delta) % total
        if self.selected < self.start:
            self.start = self.selected
        while self.selected >= self.start + self.capacity(self.start):
            self.start += 1
        return True


class FinderController:
    """
    Owns the finder session and serializes every event touching it.

    Inbound events: run, char, backspace, clear, left, right, up, down,
    cancel, confirm, resume, update_max.
    Outbound notifications: finder_show, finder_hide, finder_pattern,
    finder_pattern_pos, finder_show_result, finder_select.
    """

    def __init__(
        self,
        channel: EventChannel,
        config: Optional[FinderConfig] = None,
        errors: Optional[ErrorTracker] = None
    ):
        self.config = config or FinderConfig()
        self.channel = channel
        self.errors = errors or ErrorTracker()
        self.session = FinderSession(max=self.config.default_max)
        self.publisher = ResultPublisher(channel, self.config.max_display_length)

        self._inbox: asyncio.Queue = asyncio.Queue()
        self._running = False
        self._processor_task: Optional[asyncio.Task] = None

        self._session_token: Optional[CancellationToken] = None
        self._pass_token: Optional[CancellationToken] = None
        self._pass_task: Optional[asyncio.Task] = None
        self._stream: Optional[SourceStream] = None

        self._handlers: Dict[str, Callable[..., Any]] = {
            "run": self._on_run,
            "char": self._on_char,
            "backspace": self._on_backspace,
            "clear": self._on_clear,
            "left": self._on_left,
            "right": self._on_right,
            "up": self._on_up,
            "down": self._on_down,
            "cancel": self._on_cancel,
            "confirm": self._on_confirm,
            "resume": self._on_resume,
            "update_max": self._on_update_max,
        }

        self._stats = defaultdict(int)
        self._latency_histogram: List[float] = []

    # Actor loop

    async def start(self) -> None:
        """Start processing inbound events."""
        if self._running:
            logger.warning("Finder controller already running")
            return
        self._running = True
        self._processor_task = asyncio.create_task(self._process_events())
        logger.info("Finder controller started")

    async def stop(self) -> None:
        """Stop event processing and release the session's tasks."""
        self._running = False
        if self._processor_task:
            await self._processor_task
            self._processor_task = None
        await self._retire()
        logger.info("Finder controller stopped")

    def submit(self, name: str, *args: Any) -> None:
        """Queue an inbound event; callable from any coroutine."""
        self._inbox.put_nowait((name, args))

    async def join(self) -> None:
        """Wait until every queued event was handled."""
        await self._inbox.join()

    async def _process_events(self) -> None:
        while self._running:
            try:
                name, args = await asyncio.wait_for(self._inbox.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            try:
                await self.handle(name, *args)
            finally:
                self._inbox.task_done()

    async def handle(self, name: str, *args: Any) -> None:
        """Handle one event. Only the actor loop (or tests) call this."""
        handler = self._handlers.get(name)
        if handler is None:
            logger.warning(f"Unhandled finder event: {name}")
            self._stats["unknown_events"] += 1
            return
        self._stats[f"event.{name}"] += 1
        try:
            await handler(*args)
        except Exception as e:
            logger.exception(f"Finder event {name} failed: {e}")
            self.errors.record("controller", e, ErrorSeverity.HIGH, event=name)

    # Lifecycle events

    async def _on_run(self, raw_options: Any = None, *_: Any) -> None:
        try:
            options = FinderOptions.parse(raw_options)
        except OptionsError as e:
            logger.warning(f"Ignoring run with invalid options: {e}")
            self._stats["invalid_runs"] += 1
            return

        await self._retire()
        self.session.reset(options)
        self.session.state = SessionState.RUNNING
        self.publisher.reset()

        self._session_token = CancellationToken()
        source = build_source(options, self.config, self.channel, self.errors)
        self._stream = SourceStream(source, self._session_token.child(), self.config.channel_capacity)
        self._stream.start()
        logger.debug(f"Session started with {source.name} source, type={options.type}")

        await self.channel.notify("finder_show")
        await self._notify_pattern()
        await self._restart_pass()

    async def _on_cancel(self, *_: Any) -> None:
        self.session.state = SessionState.IDLE
        await self._retire()
        await self.channel.notify("finder_hide")

    async def _on_confirm(self, *_: Any) -> None:
        session = self.session
        if not session.running:
            return
        session.clamp()
        entry = session.results.get(session.selected)
        await self._on_cancel()
        if entry is None:
            return

        options = session.options
        text = entry.text
        try:
            if options.sink:
                if "{}" in options.sink:
                    command = options.sink.replace("{}", text)
                else:
                    command = f"{options.sink} {text}"
                await self.channel.request("command", command)
            elif options.function:
                await self.channel.request(
                    "call_function", {"function": options.function, "arg": text}
                )
        except ChannelError as e:
            logger.error(f"Confirm action failed: {e}")
            self.errors.record("confirm", e, ErrorSeverity.MEDIUM, arg=text)
        self._stats["confirmed"] += 1

    async def _on_resume(self, *_: Any) -> None:
        session = self.session
        if session.running or not session.started:
            return
        session.state = SessionState.RUNNING
        # No stream: later passes rescore the candidates already collected
        self._session_token = CancellationToken()
        session.clamp()
        await self.channel.notify("finder_show")
        await self._notify_pattern()
        await self.publisher.flush(session, force=True)

    async def _on_update_max(self, value: Any = None, *_: Any) -> None:
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            logger.debug(f"Ignoring update_max({value!r})")
            return
        self.session.max = value
        if self.session.running:
            self.session.clamp()
            await self.publisher.flush(self.session)

    # Pattern edits

    async def _on_char(self, ch: Any = None, *_: Any) -> None:
        if not self.session.running or not isinstance(ch, str) or not ch:
            return
        self.session.insert(ch[0])
        await self._notify_pattern()
        await self._restart_pass()

    async def _on_backspace(self, *_: Any) -> None:
        if not self.session.running or not self.session.delete_before_cursor():
            return
        await self._notify_pattern()
        await self._restart_pass()

    async def _on_clear(self, *_: Any) -> None:
        if not self.session.running:
            return
        self.session.pattern = ""
        self.session.cursor = 0
        await self._notify_pattern()
        await self._restart_pass()

    async def _on_left(self, *_: Any) -> None:
        if self.session.running:
            self.session.move_cursor(-1)
            await self.channel.notify("finder_pattern_pos", cursor=self.session.cursor)

    async def _on_right(self, *_: Any) -> None:
        if self.session.running:
            self.session.move_cursor(1)
            await self.channel.notify("finder_pattern_pos", cursor=self.session.cursor)

    # Navigation

    async def _on_up(self, *_: Any) -> None:
        await self._navigate(-1)

    async def _on_down(self, *_: Any) -> None:
        await self._navigate(1)

    async def _navigate(self, delta: int) -> None:
        session = self.session
        if not session.running or not session.step(delta):
            return
        await self.publisher.flush(session)
        view = self.publisher.build_view(session)
        await self.channel.notify("finder_select", selected=view.selected)

    async def _notify_pattern(self) -> None:
        await self.channel.notify(
            "finder_pattern", text=self.session.pattern, cursor=self.session.cursor
        )

    # Filter passes

    async def _restart_pass(self) -> None:
        await self._stop_pass()
        if self._session_token is None or self._session_token.cancelled:
            return
        self.session.generation += 1
        token = self._session_token.child()
        self._pass_token = token
        self._pass_task = token.attach(
            asyncio.create_task(self._filter(token, self.session.generation))
        )

    async def _stop_pass(self) -> None:
        if self._pass_token is None:
            return
        self._pass_token.cancel()
        if not await self._pass_token.join(self.config.cancel_timeout):
            logger.warning("Superseded filter pass did not stop in time")
        self._pass_token = None
        self._pass_task = None

    async def _retire(self) -> None:
        """Stop the source and any pass of the current session."""
        if self._session_token is not None:
            self._session_token.cancel()
        await self._stop_pass()
        if self._stream is not None:
            if not await self._stream.close(self.config.cancel_timeout):
                logger.warning("Source did not stop in time")
            self._stream = None
        self._session_token = None

    async def _filter(self, token: CancellationToken, generation: int) -> None:
        """Score known candidates, then drain the source, then flush."""
        session = self.session
        started = time.perf_counter()
        session.results = RankedResults()
        session.matcher = Matcher(session.pattern, session.options.type)
        ticker = token.attach(asyncio.create_task(
            self.publisher.run_ticker(session, token, self.config.flush_interval)
        ))
        yield_every = self.config.yield_every

        try:
            known = len(session.candidates)
            for index in range(known):
                self._score(session.candidates[index])
                if (index + 1) % yield_every == 0:
                    await asyncio.sleep(0)

            stream = self._stream
            scored = known
            while stream is not None and not stream.exhausted:
                try:
                    item = await stream.get(self.config.stall_timeout)
                except asyncio.TimeoutError:
                    logger.debug(f"Pass {generation}: source stalled, finishing pass")
                    break
                if item is END:
                    break
                candidate = Candidate(item, len(session.candidates))
                session.candidates.append(candidate)
                self._score(candidate)
                scored += 1
                if scored % yield_every == 0:
                    await asyncio.sleep(0)
        except asyncio.CancelledError:
            logger.trace(f"Pass {generation} superseded")
            raise
        finally:
            ticker.cancel()

        if token.cancelled:
            return
        await self.publisher.flush(session, token)

        latency = (time.perf_counter() - started) * 1000
        self._latency_histogram.append(latency)
        if len(self._latency_histogram) > 1000:
            self._latency_histogram = self._latency_histogram[-1000:]
        self._stats["passes"] += 1
        logger.debug(
            f"Pass {generation} done: {session.total}/{len(session.candidates)} "
            f"matched in {latency:.1f}ms"
        )

    def _score(self, candidate: Candidate) -> None:
        match = self.session.matcher.match(candidate.text)
        if match is not None:
            self.session.results.add(candidate, match)

    # Introspection

    async def wait_for_pass(self, timeout: Optional[float] = None) -> bool:
        """Wait for the current filter pass to finish. False on timeout."""
        task = self._pass_task
        if task is None or task.done():
            return True
        _, pending = await asyncio.wait({task}, timeout=timeout)
        return not pending

    def get_performance_stats(self) -> Dict[str, float]:
        """Latency statistics of finished passes."""
        if not self._latency_histogram:
            return {}

        sorted_latencies = sorted(self._latency_histogram)
        n = len(sorted_latencies)

        return {
            "p50": sorted_latencies[int(n * 0.5)],
            "p95": sorted_latencies[int(n * 0.95)],
            "p99": sorted_latencies[int(n * 0.99)] if n > 100 else sorted_latencies[-1],
            "mean": sum(sorted_latencies) / n,
            "min": sorted_latencies[0],
            "max": sorted_latencies[-1]
        }

    def get_stats(self) -> Dict[str, Any]:
        session = self.session
        return {
            "state": session.state.value,
            "pattern": session.pattern,
            "total": session.total,
            "candidates": len(session.candidates),
            "generation": session.generation,
            "flushes": {
                "sent": self.publisher.sent,
                "suppressed": self.publisher.suppressed,
                "dropped": self.publisher.dropped
            },
            "events": dict(self._stats),
            "errors": self.errors.get_stats(),
            "latency_ms": self.get_performance_stats()
        }
