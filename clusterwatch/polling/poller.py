"""Poller — named fixed-interval fetch loops with an in-flight guard.

Each key owns a timer task that fires every ``interval_ms``.  A tick:

1. is skipped when the key's ``suppress()`` predicate returns True;
2. is dropped (not queued) when the previous invocation is still running;
3. otherwise starts ``fetch_fn()`` and hands its result to ``on_result``.

``stop(key)`` cancels both the timer and any in-flight invocation and is safe
to call repeatedly.  Results that arrive after a stop are discarded, so a
torn-down view never mutates shared state.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog

logger = structlog.stdlib.get_logger()

FetchFn = Callable[[], Awaitable[Any]]
ResultCallback = Callable[[Any], Awaitable[None] | None]
ErrorCallback = Callable[[Exception], Awaitable[None] | None]
SuppressFn = Callable[[], bool]


@dataclass
class PollerStats:
    """Counters for one poller key."""

    ticks: int = 0
    suppressed: int = 0
    dropped: int = 0
    errors: int = 0
    successes: int = 0
    last_success_at: float = 0.0


class _Handle:
    def __init__(
        self,
        key: str,
        interval_ms: int,
        fetch_fn: FetchFn,
        suppress: SuppressFn | None,
        on_result: ResultCallback | None,
        on_error: ErrorCallback | None,
        initial_delay_ms: int,
        owner: str | None,
    ) -> None:
        self.key = key
        self.interval_ms = interval_ms
        self.fetch_fn = fetch_fn
        self.suppress = suppress
        self.on_result = on_result
        self.on_error = on_error
        self.initial_delay_ms = initial_delay_ms
        self.owner = owner
        self.stats = PollerStats()
        self.active = True
        self.timer: asyncio.Task[None] | None = None
        self.in_flight: asyncio.Task[None] | None = None

    @property
    def busy(self) -> bool:
        return self.in_flight is not None and not self.in_flight.done()


class Poller:
    """Registry of named pollers for one engine session.

    Usage::

        poller = Poller()
        poller.start(
            "alarms.recent",
            30_000,
            client.get_recent_alarms,
            suppress=lambda: view.on_alarm_page,
            on_result=watcher.handle_alarms,
            owner="layout",
        )
        ...
        poller.stop_owner("layout")   # view torn down
        await poller.close()          # engine shutdown
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._handles: dict[str, _Handle] = {}

    # ── Queries ─────────────────────────────────────────────────

    @property
    def active_keys(self) -> list[str]:
        return sorted(self._handles)

    def is_running(self, key: str) -> bool:
        return key in self._handles

    def in_flight(self, key: str) -> bool:
        handle = self._handles.get(key)
        return handle is not None and handle.busy

    def stats(self, key: str) -> PollerStats | None:
        handle = self._handles.get(key)
        return None if handle is None else PollerStats(**vars(handle.stats))

    def keys_for_owner(self, owner: str) -> list[str]:
        return sorted(k for k, h in self._handles.items() if h.owner == owner)

    # ── Lifecycle ───────────────────────────────────────────────

    def start(
        self,
        key: str,
        interval_ms: int,
        fetch_fn: FetchFn,
        suppress: SuppressFn | None = None,
        *,
        on_result: ResultCallback | None = None,
        on_error: ErrorCallback | None = None,
        initial_delay_ms: int | None = None,
        owner: str | None = None,
    ) -> None:
        """Begin polling *key*; restarting a running key replaces it.

        Args:
            key: Logical name, unique per engine.
            interval_ms: Fixed tick interval.
            fetch_fn: Zero-arg coroutine function doing the I/O.
            suppress: Evaluated on every tick; True skips the tick.
            on_result: Receives each successful result while still active.
            on_error: Receives each fetch exception while still active.
            initial_delay_ms: Delay before the first tick. Defaults to
                *interval_ms*; 0 fires immediately.
            owner: View name used by :meth:`stop_owner` for teardown.
        """
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")
        if key in self._handles:
            self.stop(key)

        handle = _Handle(
            key=key,
            interval_ms=interval_ms,
            fetch_fn=fetch_fn,
            suppress=suppress,
            on_result=on_result,
            on_error=on_error,
            initial_delay_ms=interval_ms if initial_delay_ms is None else initial_delay_ms,
            owner=owner,
        )
        self._handles[key] = handle
        handle.timer = asyncio.create_task(self._run_timer(handle), name=f"poller:{key}")
        logger.info(
            "poller_started",
            key=key,
            interval_ms=interval_ms,
            initial_delay_ms=handle.initial_delay_ms,
            owner=owner,
        )

    def stop(self, key: str) -> bool:
        """Cancel *key*'s timer and in-flight fetch. Returns False if not running."""
        handle = self._handles.pop(key, None)
        if handle is None:
            return False
        handle.active = False
        current = asyncio.current_task()
        for task in (handle.timer, handle.in_flight):
            if task is not None and task is not current and not task.done():
                task.cancel()
        logger.info(
            "poller_stopped",
            key=key,
            ticks=handle.stats.ticks,
            dropped=handle.stats.dropped,
            errors=handle.stats.errors,
        )
        return True

    def stop_owner(self, owner: str) -> list[str]:
        """Stop every poller registered by *owner*; returns the stopped keys."""
        keys = self.keys_for_owner(owner)
        for key in keys:
            self.stop(key)
        return keys

    def stop_all(self) -> None:
        for key in list(self._handles):
            self.stop(key)

    async def close(self) -> None:
        """Stop everything and wait for the cancelled tasks to unwind."""
        handles = list(self._handles.values())
        self.stop_all()
        current = asyncio.current_task()
        tasks = [
            t
            for h in handles
            for t in (h.timer, h.in_flight)
            if t is not None and t is not current
        ]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ── Ticks ───────────────────────────────────────────────────

    def trigger(self, key: str) -> bool:
        """Run one invocation now, outside the schedule and the suppressor.

        Still honours the in-flight guard. Returns True if a fetch started.
        """
        handle = self._handles.get(key)
        if handle is None:
            return False
        return self._dispatch(handle)

    async def wait_idle(self, key: str) -> None:
        """Wait until *key* has no invocation in flight."""
        handle = self._handles.get(key)
        if handle is not None and handle.in_flight is not None:
            await asyncio.gather(handle.in_flight, return_exceptions=True)

    async def _run_timer(self, handle: _Handle) -> None:
        delay_secs = handle.initial_delay_ms / 1000.0
        interval_secs = handle.interval_ms / 1000.0
        while handle.active:
            try:
                await asyncio.sleep(delay_secs)
            except asyncio.CancelledError:
                break
            delay_secs = interval_secs
            self._tick(handle)

    def _tick(self, handle: _Handle) -> None:
        if not handle.active:
            return
        handle.stats.ticks += 1

        if handle.suppress is not None:
            try:
                suppressed = handle.suppress()
            except Exception:
                logger.exception("poller_suppress_error", key=handle.key)
                suppressed = True
            if suppressed:
                handle.stats.suppressed += 1
                return

        self._dispatch(handle)

    def _dispatch(self, handle: _Handle) -> bool:
        if handle.busy:
            handle.stats.dropped += 1
            logger.debug(
                "poller_tick_dropped",
                key=handle.key,
                dropped=handle.stats.dropped,
            )
            return False
        handle.in_flight = asyncio.create_task(
            self._invoke(handle), name=f"poller:{handle.key}:fetch",
        )
        return True

    async def _invoke(self, handle: _Handle) -> None:
        try:
            result = await handle.fetch_fn()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            handle.stats.errors += 1
            logger.warning(
                "poller_fetch_error",
                key=handle.key,
                error=str(exc),
                error_type=type(exc).__name__,
                error_count=handle.stats.errors,
                exc_info=True,
            )
            await self._deliver(handle, handle.on_error, exc)
            return

        handle.stats.successes += 1
        handle.stats.last_success_at = self._clock()
        await self._deliver(handle, handle.on_result, result)

    async def _deliver(
        self,
        handle: _Handle,
        callback: ResultCallback | ErrorCallback | None,
        value: Any,
    ) -> None:
        if not handle.active:
            logger.debug("poller_result_discarded", key=handle.key)
            return
        if callback is None:
            return
        try:
            outcome = callback(value)
            if asyncio.iscoroutine(outcome):
                await outcome
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("poller_callback_error", key=handle.key)
