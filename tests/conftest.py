"""Shared fakes for relay tests: manual timers, a fake clock and a fake device."""

import asyncio
from types import SimpleNamespace
from typing import Callable, List, Optional

import pytest

from services.device.channel import DeviceChannel, DeviceDimensions, Touch


class FakeTimer:
    def __init__(self, delay: float, callback: Callable[[], None]):
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if not self.cancelled and not self.fired:
            self.fired = True
            self.callback()


class FakeTimerFactory:
    """TimerFactory whose timers only fire when a test says so."""

    def __init__(self):
        self.timers: List[FakeTimer] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def fire_pending(self) -> None:
        for timer in self.pending:
            timer.fire()


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDeviceChannel(DeviceChannel):
    """In-memory device: records input, streams frames pushed by the test."""

    def __init__(self, width: int = 1080, height: int = 2400, healthy: bool = True):
        self.width = width
        self.height = height
        self.healthy = healthy
        self.touches: List[List[Touch]] = []
        self.mouse_events: List[tuple] = []
        self.clipboard = ""
        self.closed = False
        self.stream_widths: List[int] = []
        self.fail_touch = False
        self._streams: List[asyncio.Queue] = []

    async def get_screenshot(self, fmt="PNG", width=0, height=0):
        if not self.healthy:
            raise ConnectionError("device unavailable")
        return SimpleNamespace(format=SimpleNamespace(width=self.width, height=self.height))

    async def stream_screenshot(self, fmt="PNG", width=0):
        self.stream_widths.append(width)
        queue: asyncio.Queue = asyncio.Queue()
        self._streams.append(queue)
        while True:
            item = await queue.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    def push_frame(self, frame: bytes) -> None:
        for queue in self._streams:
            queue.put_nowait(frame)

    def end_streams(self, error: Optional[Exception] = None) -> None:
        for queue in self._streams:
            queue.put_nowait(error)

    async def send_touch(self, touches):
        if self.fail_touch:
            raise ConnectionError("sendTouch failed")
        self.touches.append(list(touches))

    async def send_mouse(self, x, y, buttons):
        self.mouse_events.append((x, y, buttons))

    async def set_clipboard(self, text):
        self.clipboard = text

    async def get_clipboard(self):
        return self.clipboard

    async def close(self):
        self.closed = True


class FakeSink:
    """FrameSink / StreamOwner stand-in for a client connection."""

    def __init__(self, id: str = "sink"):
        self.id = id
        self.open = True
        self.pending = False
        self.frames: List[bytes] = []
        self.subscription = None
        self.configs: List[DeviceDimensions] = []

    @property
    def is_open(self) -> bool:
        return self.open

    def is_send_pending(self) -> bool:
        return self.pending

    def send_frame(self, frame: bytes) -> None:
        self.frames.append(frame)

    def attach_subscription(self, subscription) -> None:
        if self.subscription is not None and self.subscription is not subscription:
            self.subscription.cancel()
        self.subscription = subscription

    def detach_subscription(self) -> None:
        if self.subscription is not None:
            self.subscription.cancel()
            self.subscription = None

    async def send_config(self, dimensions: DeviceDimensions) -> None:
        self.configs.append(dimensions)


async def drain(rounds: int = 5) -> None:
    """Let spawned background tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def timers() -> FakeTimerFactory:
    return FakeTimerFactory()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def dims() -> DeviceDimensions:
    return DeviceDimensions(width=1080, height=2400)
