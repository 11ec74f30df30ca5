"""
Event-loop scheduling helpers shared by the gesture and reconnection state
machines. Both take a TimerFactory so tests can fire timers by hand.
"""
import asyncio
from typing import Any, Awaitable, Callable, Protocol, Set


class Timer(Protocol):
    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], Timer]

# Strong references so fire-and-forget tasks are not garbage collected mid-flight
_background_tasks: Set[asyncio.Task] = set()


def loop_timer(delay: float, callback: Callable[[], None]) -> Timer:
    """Default TimerFactory backed by loop.call_later."""
    return asyncio.get_running_loop().call_later(delay, callback)


def spawn(coro: Awaitable[Any]) -> asyncio.Task:
    """Run a coroutine in the background without awaiting it."""
    task = asyncio.ensure_future(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


def pending_background_tasks() -> int:
    return len(_background_tasks)
