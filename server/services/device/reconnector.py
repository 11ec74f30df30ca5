"""
Transport Reconnector

Rebuilds the shared DeviceChannel after a screen stream fails and re-opens
every live client's stream against the replacement.

    STABLE --failure--> RECONNECTING --attempt ok / device down--> STABLE
                              |  ^
                              +--+ attempt failed (reschedule, delay doubles)

Failures that arrive while RECONNECTING are ignored, so N clients losing
their streams at once cost one attempt. The delay starts at
`initial_delay`, doubles per scheduled attempt up to `max_delay`, and drops
back to `initial_delay` after a successful rebuild.
"""
from enum import Enum
from typing import Callable, Iterable, Optional, Protocol

import structlog

from .channel import DeviceDimensions, DeviceLink
from .frames import FrameStreamManager, FrameSubscription, FrameSink
from .scheduling import Timer, TimerFactory, loop_timer, spawn

logger = structlog.get_logger()


class StreamOwner(FrameSink, Protocol):
    """A client whose frame subscription the reconnector may swap."""

    def attach_subscription(self, subscription: Optional[FrameSubscription]) -> None: ...

    def detach_subscription(self) -> None: ...

    async def send_config(self, dimensions: DeviceDimensions) -> None: ...


class ReconnectState(str, Enum):
    STABLE = "stable"
    RECONNECTING = "reconnecting"


class TransportReconnector:
    """Backoff-driven, single-flight rebuild of the device channel."""

    def __init__(
        self,
        link: DeviceLink,
        frames: FrameStreamManager,
        sessions: Callable[[], Iterable[StreamOwner]],
        is_running: Callable[[], bool],
        initial_delay: float = 1.0,
        max_delay: float = 10.0,
        timer_factory: TimerFactory = loop_timer,
    ):
        self.link = link
        self.frames = frames
        self._sessions = sessions
        self._is_running = is_running
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self._timer_factory = timer_factory
        self._timer: Optional[Timer] = None

        self.state = ReconnectState.STABLE
        self.next_delay = initial_delay
        self.scheduled_attempts = 0
        self.ignored_failures = 0
        self.reconnects = 0

    def signal_failure(self, subscription: Optional[FrameSubscription] = None) -> bool:
        """Report a dead stream. Returns True if this scheduled an attempt."""
        if subscription is not None and not subscription.sink.is_open:
            return False
        if self.state == ReconnectState.RECONNECTING:
            self.ignored_failures += 1
            return False

        self.state = ReconnectState.RECONNECTING
        self._schedule()
        return True

    def _schedule(self) -> None:
        delay = self.next_delay
        self.next_delay = min(self.next_delay * 2, self.max_delay)
        self.scheduled_attempts += 1
        logger.info("[Reconnect] Attempt scheduled", delay=delay, attempt=self.scheduled_attempts)
        self._timer = self._timer_factory(delay, self._fire)

    def _fire(self) -> None:
        self._timer = None
        spawn(self.attempt())

    async def attempt(self) -> bool:
        """Run the scheduled attempt. Returns True if the channel was rebuilt."""
        if not self._is_running():
            logger.info("[Reconnect] Device not running, skipping attempt")
            self.state = ReconnectState.STABLE
            return False

        try:
            healthy = await self.rebuild()
        except Exception as e:
            logger.error("[Reconnect] Rebuild failed", error=str(e), exc_info=True)
            healthy = False

        if healthy:
            self.next_delay = self.initial_delay
            self.state = ReconnectState.STABLE
            self.reconnects += 1
            logger.info("[Reconnect] Device channel restored", reconnects=self.reconnects)
            return True

        self._schedule()
        return False

    async def rebuild(self, announce: bool = False) -> bool:
        """Cancel every stream, swap the channel, re-subscribe every client.

        Args:
            announce: Send `config` to every client even if the dimensions
                are unchanged (device just came up)

        Returns:
            True if the replacement channel answered its probe
        """
        previous = self.link.dimensions
        async with self.link.lock:
            owners = [s for s in self._sessions() if s.is_open]
            for owner in owners:
                owner.detach_subscription()

            healthy = await self.link.replace_locked()
            if healthy:
                for owner in owners:
                    owner.attach_subscription(await self.frames.subscribe_locked(owner))

        if announce or (healthy and self.link.dimensions != previous):
            for owner in owners:
                await owner.send_config(self.link.dimensions)
        if not healthy:
            logger.warning("[Reconnect] Replacement channel did not answer", clients=len(owners))
            return False
        logger.info("[Reconnect] Streams restarted", clients=len(owners))
        return True

    def stop(self) -> None:
        """Drop any scheduled attempt and return to STABLE."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.state = ReconnectState.STABLE
