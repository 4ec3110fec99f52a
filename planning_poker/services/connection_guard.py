from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional

from planning_poker.config.loader import get_session_guard_settings

logger = logging.getLogger(__name__)

ContextCallback = Callable[["ConnectionContext"], Awaitable[None]]


@dataclass(frozen=True)
class GuardSettings:
    enabled: bool
    rate_limit_window_seconds: float
    rate_limit_max_messages: int
    heartbeat_interval_seconds: float
    idle_timeout_seconds: float


@dataclass
class ConnectionContext:
    """Transient per-connection bookkeeping, keyed by connection id."""

    connection_id: str
    participant_id: Optional[str] = None
    last_activity: float = field(default_factory=time.monotonic)
    window_started: float = field(default_factory=time.monotonic)
    message_count: int = 0
    rate_limit_notified: bool = False
    awaiting_pong: bool = False
    heartbeat_task: Optional[asyncio.Task] = field(default=None, repr=False)
    idle_task: Optional[asyncio.Task] = field(default=None, repr=False)
    timers_cancelled: bool = False

    @property
    def joined(self) -> bool:
        return self.participant_id is not None

    def cancel_timers(self) -> bool:
        """Cancel both timers; returns False when they were already cancelled."""
        if self.timers_cancelled:
            return False
        self.timers_cancelled = True
        current = asyncio.current_task()
        for task in (self.heartbeat_task, self.idle_task):
            # A timer that is closing its own connection must not cancel itself mid-cleanup.
            if task is not None and task is not current and not task.done():
                task.cancel()
        self.heartbeat_task = None
        self.idle_task = None
        return True


class ConnectionGuard:
    """Per-connection message-rate accounting plus heartbeat and idle timers."""

    def __init__(
        self,
        settings: GuardSettings,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self._clock = clock
        self._contexts: Dict[str, ConnectionContext] = {}

    def open(self, connection_id: str) -> ConnectionContext:
        now = self._clock()
        context = ConnectionContext(
            connection_id=connection_id,
            last_activity=now,
            window_started=now,
        )
        self._contexts[connection_id] = context
        return context

    def get(self, connection_id: str) -> Optional[ConnectionContext]:
        return self._contexts.get(connection_id)

    def check_rate(self, context: ConnectionContext) -> bool:
        """Count one inbound message; True means allow, False means drop it."""
        if not self.settings.enabled:
            return True
        now = self._clock()
        if now - context.window_started >= self.settings.rate_limit_window_seconds:
            context.window_started = now
            context.message_count = 0
            context.rate_limit_notified = False
        context.message_count += 1
        return context.message_count <= self.settings.rate_limit_max_messages

    def record_activity(self, context: ConnectionContext) -> None:
        context.last_activity = self._clock()
        context.awaiting_pong = False

    def record_pong(self, context: ConnectionContext) -> None:
        context.awaiting_pong = False

    def idle_remaining(self, context: ConnectionContext) -> float:
        elapsed = self._clock() - context.last_activity
        return self.settings.idle_timeout_seconds - elapsed

    def start_timers(
        self,
        context: ConnectionContext,
        *,
        on_probe: ContextCallback,
        on_unresponsive: ContextCallback,
        on_expired: ContextCallback,
    ) -> None:
        if not self.settings.enabled or context.timers_cancelled:
            return
        context.heartbeat_task = asyncio.create_task(
            self._heartbeat_loop(context, on_probe, on_unresponsive),
            name=f"heartbeat-{context.connection_id}",
        )
        context.idle_task = asyncio.create_task(
            self._idle_loop(context, on_expired),
            name=f"idle-{context.connection_id}",
        )

    async def _heartbeat_loop(
        self,
        context: ConnectionContext,
        on_probe: ContextCallback,
        on_unresponsive: ContextCallback,
    ) -> None:
        while True:
            await asyncio.sleep(self.settings.heartbeat_interval_seconds)
            if context.awaiting_pong:
                logger.info(
                    "Heartbeat unanswered; terminating connection_id=%s",
                    context.connection_id,
                )
                await on_unresponsive(context)
                return
            context.awaiting_pong = True
            await on_probe(context)

    async def _idle_loop(self, context: ConnectionContext, on_expired: ContextCallback) -> None:
        while True:
            remaining = self.idle_remaining(context)
            if remaining <= 0:
                logger.info("Idle timeout; expiring connection_id=%s", context.connection_id)
                await on_expired(context)
                return
            await asyncio.sleep(remaining)

    def close(self, connection_id: str) -> Optional[ConnectionContext]:
        context = self._contexts.pop(connection_id, None)
        if context is not None:
            context.cancel_timers()
        return context

    def close_all(self) -> None:
        for connection_id in list(self._contexts):
            self.close(connection_id)


def load_guard_settings() -> GuardSettings:
    raw = get_session_guard_settings()
    return GuardSettings(
        enabled=bool(raw.get("enabled", True)),
        rate_limit_window_seconds=float(raw.get("rate_limit_window_seconds", 60)),
        rate_limit_max_messages=int(raw.get("rate_limit_max_messages", 100)),
        heartbeat_interval_seconds=float(raw.get("heartbeat_interval_seconds", 30)),
        idle_timeout_seconds=float(raw.get("idle_timeout_seconds", 1800)),
    )
