"""
Frame Stream Manager

One device screen stream per client. Frames are forwarded as raw encoded
bytes, filtered in order by:

1. Backpressure: a frame send still in flight for this client drops the frame.
2. Rate cap: frames closer together than `min_interval` are dropped.

Nothing is queued here. Stream errors and graceful ends are handed to the
reconnector; the manager never retries on its own.
"""
import asyncio
import time
from typing import Callable, Optional, Protocol

import structlog

from .channel import PNG, DeviceChannel, DeviceLink

logger = structlog.get_logger()

# ~60 fps ceiling
MIN_FRAME_INTERVAL = 0.016


class FrameSink(Protocol):
    """What a subscription needs from a client connection."""

    id: str

    @property
    def is_open(self) -> bool: ...

    def is_send_pending(self) -> bool: ...

    def send_frame(self, frame: bytes) -> None: ...


FailureCallback = Callable[["FrameSubscription"], None]


class FrameSubscription:
    """A single client's screen stream against one DeviceChannel."""

    def __init__(
        self,
        sink: FrameSink,
        channel: DeviceChannel,
        width: int,
        on_failure: FailureCallback,
        min_interval: float = MIN_FRAME_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        generation: int = 0,
    ):
        self.sink = sink
        self.channel = channel
        self.width = width
        self.generation = generation
        self.min_interval = min_interval
        self._on_failure = on_failure
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._last_sent: Optional[float] = None
        self.cancelled = False
        self.frames_sent = 0
        self.dropped_backpressure = 0
        self.dropped_rate = 0

    def start(self) -> None:
        self._task = asyncio.create_task(self._run())

    @property
    def active(self) -> bool:
        return not self.cancelled and self._task is not None and not self._task.done()

    def cancel(self) -> None:
        """Stop the stream; calling more than once is a no-op."""
        if self.cancelled:
            return
        self.cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.debug("[Frames] Subscription cancelled",
                    session_id=self.sink.id,
                    sent=self.frames_sent,
                    dropped_backpressure=self.dropped_backpressure,
                    dropped_rate=self.dropped_rate)

    def offer(self, frame: bytes) -> bool:
        """Apply both filters to one frame; True if it was forwarded."""
        if self.cancelled or not self.sink.is_open:
            return False
        if self.sink.is_send_pending():
            self.dropped_backpressure += 1
            return False
        now = self._clock()
        if self._last_sent is not None and now - self._last_sent < self.min_interval:
            self.dropped_rate += 1
            return False
        self.sink.send_frame(frame)
        self._last_sent = now
        self.frames_sent += 1
        return True

    async def _run(self) -> None:
        try:
            async for frame in self.channel.stream_screenshot(PNG, self.width):
                if self.cancelled:
                    return
                self.offer(frame)
            logger.info("[Frames] Screenshot stream ended", session_id=self.sink.id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("[Frames] Screenshot stream error", session_id=self.sink.id, error=str(e))

        if not self.cancelled:
            self._on_failure(self)


class FrameStreamManager:
    """Creates per-client subscriptions against the current device channel."""

    def __init__(
        self,
        link: DeviceLink,
        max_width: int = 540,
        min_interval: float = MIN_FRAME_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.link = link
        self.max_width = max_width
        self.min_interval = min_interval
        self._clock = clock
        self._on_failure: Optional[FailureCallback] = None

    def set_failure_handler(self, handler: FailureCallback) -> None:
        """Route stream failures (normally to the TransportReconnector)."""
        self._on_failure = handler

    async def subscribe(self, sink: FrameSink) -> Optional[FrameSubscription]:
        """Open a stream for `sink`, waiting out any channel replacement."""
        async with self.link.lock:
            return await self.subscribe_locked(sink)

    async def subscribe_locked(self, sink: FrameSink) -> Optional[FrameSubscription]:
        """`subscribe()` for callers already holding the link lock."""
        if self.link.channel is None:
            await self.link.replace_locked()
        channel = self.link.channel
        if channel is None or not sink.is_open:
            return None

        subscription = FrameSubscription(
            sink=sink,
            channel=channel,
            width=self.link.dimensions.stream_width(self.max_width),
            on_failure=self._handle_failure,
            min_interval=self.min_interval,
            clock=self._clock,
            generation=self.link.generation,
        )
        subscription.start()
        logger.info("[Frames] Stream started",
                   session_id=sink.id,
                   width=subscription.width or "native",
                   generation=subscription.generation)
        return subscription

    def _handle_failure(self, subscription: FrameSubscription) -> None:
        if self._on_failure is not None:
            self._on_failure(subscription)
