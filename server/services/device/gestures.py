"""
Gesture Synthesizer

The emulator touch API has no scroll or pinch primitive, so wheel input is
replayed as synthetic drags:

- Scroll: one finger goes down at the wheel position and is dragged opposite
  to the wheel delta. An idle timer lifts it once deltas stop arriving.
- Pinch: two fingers symmetric about the anchor spread apart or together.
  Multi-touch down must list every finger that is down, so setup is two
  sequential calls (A, then A+B). Until both complete the gesture is PENDING:
  moves are queued and a release is deferred; both are replayed on ACTIVE.

RPC errors are logged by the sender and never retried here.
"""
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Deque, List, Optional, Tuple

import structlog

from .channel import DeviceDimensions, Touch
from .scheduling import Timer, TimerFactory, loop_timer, spawn

logger = structlog.get_logger()

TOUCH_PRESSURE = 1024

# Synthetic identifiers, kept clear of real browser touch ids (0..n)
SCROLL_TOUCH_ID = 7
PINCH_TOUCH_IDS = (8, 9)

TouchSender = Callable[[List[Touch]], Awaitable[bool]]
DimensionsProvider = Callable[[], DeviceDimensions]


class GesturePhase(str, Enum):
    """Lifecycle of a synthetic gesture."""
    IDLE = "idle"
    PENDING = "pending"
    ACTIVE = "active"


@dataclass
class ScrollState:
    x: float
    y: float


class ScrollGesture:
    """Single-finger drag driven by wheel deltas."""

    def __init__(
        self,
        send_touch: TouchSender,
        dimensions: DimensionsProvider,
        idle_timeout: float = 0.15,
        scale_factor: float = 1.0,
        timer_factory: TimerFactory = loop_timer,
    ):
        self._send_touch = send_touch
        self._dimensions = dimensions
        self.idle_timeout = idle_timeout
        self.scale_factor = scale_factor
        self._timer_factory = timer_factory
        self._timer: Optional[Timer] = None
        self.state: Optional[ScrollState] = None

    @property
    def phase(self) -> GesturePhase:
        return GesturePhase.IDLE if self.state is None else GesturePhase.ACTIVE

    def on_delta(self, x: float, y: float, dx: float, dy: float) -> None:
        """Apply one wheel event."""
        dims = self._dimensions()

        if self.state is None:
            cx, cy = dims.clamp(x, y)
            self.state = ScrollState(cx, cy)
            self._emit(TOUCH_PRESSURE)

        nx, ny = dims.clamp(
            self.state.x - dx * self.scale_factor,
            self.state.y - dy * self.scale_factor,
        )
        self.state.x, self.state.y = nx, ny
        self._emit(TOUCH_PRESSURE)
        self._reset_timer()

    def release(self) -> None:
        """Lift the finger and forget the gesture."""
        self._cancel_timer()
        if self.state is None:
            return
        self._emit(0)
        self.state = None

    def close(self) -> None:
        self.release()

    def _emit(self, pressure: int) -> None:
        touch = Touch(
            x=round(self.state.x),
            y=round(self.state.y),
            pressure=pressure,
            identifier=SCROLL_TOUCH_ID,
        )
        spawn(self._send_touch([touch]))

    def _on_idle(self) -> None:
        self._timer = None
        self.release()

    def _reset_timer(self) -> None:
        self._cancel_timer()
        self._timer = self._timer_factory(self.idle_timeout, self._on_idle)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


class PinchGesture:
    """Two-finger pinch driven by discrete wheel steps."""

    def __init__(
        self,
        send_touch: TouchSender,
        dimensions: DimensionsProvider,
        idle_timeout: float = 0.15,
        initial_spread: int = 100,
        step: int = 30,
        min_spread: int = 20,
        timer_factory: TimerFactory = loop_timer,
    ):
        self._send_touch = send_touch
        self._dimensions = dimensions
        self.idle_timeout = idle_timeout
        self.initial_spread = initial_spread
        self.step = step
        self.min_spread = min_spread
        self._timer_factory = timer_factory
        self._timer: Optional[Timer] = None

        self.phase = GesturePhase.IDLE
        self.center: Tuple[float, float] = (0, 0)
        self.spread = initial_spread
        self.release_pending = False
        self._queue: Deque[Callable[[], None]] = deque()

    def on_delta(self, x: float, y: float, delta: float) -> None:
        """Apply one pinch step; positive delta (wheel down) pinches in."""
        if self.phase == GesturePhase.IDLE:
            self._begin(x, y)
        else:
            direction = -1 if delta > 0 else 1
            self.spread = max(self.min_spread, self.spread + direction * self.step)
            if self.phase == GesturePhase.PENDING:
                spread = self.spread
                self._queue.append(lambda: self._move(spread))
            else:
                self._move(self.spread)
        self._reset_timer()

    def release(self) -> None:
        """Lift both fingers now, or once setup completes if still PENDING."""
        if self.phase == GesturePhase.PENDING:
            self.release_pending = True
        elif self.phase == GesturePhase.ACTIVE:
            self._release_now()

    def close(self) -> None:
        self._cancel_timer()
        self.release()

    def _begin(self, x: float, y: float) -> None:
        self.center = self._dimensions().clamp(x, y)
        self.spread = self.initial_spread
        self.release_pending = False
        self._queue.clear()
        self.phase = GesturePhase.PENDING
        logger.debug("[Gesture] Pinch setup", center=self.center)
        spawn(self._setup(self.spread))

    async def _setup(self, spread: int) -> None:
        a, b = self._points(spread, TOUCH_PRESSURE)
        await self._send_touch([a])
        await self._send_touch([a, b])
        self._on_active()

    def _on_active(self) -> None:
        if self.phase != GesturePhase.PENDING:
            return
        self.phase = GesturePhase.ACTIVE
        while self._queue:
            self._queue.popleft()()
        if self.release_pending:
            self.release_pending = False
            self._release_now()

    def _move(self, spread: int) -> None:
        spawn(self._send_touch(list(self._points(spread, TOUCH_PRESSURE))))

    def _release_now(self) -> None:
        self._cancel_timer()
        spawn(self._send_touch(list(self._points(self.spread, 0))))
        self.phase = GesturePhase.IDLE
        self.release_pending = False
        self._queue.clear()
        self.spread = self.initial_spread

    def _points(self, spread: int, pressure: int) -> Tuple[Touch, Touch]:
        dims = self._dimensions()
        cx, cy = self.center
        ax, ay = dims.clamp(cx - spread, cy)
        bx, by = dims.clamp(cx + spread, cy)
        id_a, id_b = PINCH_TOUCH_IDS
        return (
            Touch(x=round(ax), y=round(ay), pressure=pressure, identifier=id_a),
            Touch(x=round(bx), y=round(by), pressure=pressure, identifier=id_b),
        )

    def _on_idle(self) -> None:
        self._timer = None
        self.release()

    def _reset_timer(self) -> None:
        self._cancel_timer()
        self._timer = self._timer_factory(self.idle_timeout, self._on_idle)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


class GestureSynthesizer:
    """Per-session owner of the scroll and pinch gestures."""

    def __init__(
        self,
        send_touch: TouchSender,
        dimensions: DimensionsProvider,
        scroll_idle_timeout: float = 0.15,
        scroll_scale_factor: float = 1.0,
        pinch_idle_timeout: float = 0.15,
        pinch_initial_spread: int = 100,
        pinch_step: int = 30,
        pinch_min_spread: int = 20,
        timer_factory: TimerFactory = loop_timer,
    ):
        self.scroll = ScrollGesture(
            send_touch, dimensions,
            idle_timeout=scroll_idle_timeout,
            scale_factor=scroll_scale_factor,
            timer_factory=timer_factory,
        )
        self.pinch = PinchGesture(
            send_touch, dimensions,
            idle_timeout=pinch_idle_timeout,
            initial_spread=pinch_initial_spread,
            step=pinch_step,
            min_spread=pinch_min_spread,
            timer_factory=timer_factory,
        )

    def on_scroll(self, x: float, y: float, dx: float, dy: float) -> None:
        self.scroll.on_delta(x, y, dx, dy)

    def on_pinch(self, x: float, y: float, delta: float) -> None:
        self.pinch.on_delta(x, y, delta)

    def close(self) -> None:
        """Cancel idle timers and lift any finger still down."""
        self.scroll.close()
        self.pinch.close()
