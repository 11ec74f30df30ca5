"""
Device Lifecycle

Thin start/stop/status wrapper around configured shell commands (emulator
launch script, docker compose). Start completes asynchronously: the state is
STARTING until the status command exits 0, then RUNNING. Calls are
serialized; listeners are notified of every state change.
"""
import asyncio
from enum import Enum
from typing import Awaitable, Callable, List, Optional

import structlog

logger = structlog.get_logger()


class DeviceState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


StateListener = Callable[[str, DeviceState], Awaitable[None]]


async def run_shell(command: str, timeout: Optional[float] = None) -> int:
    """Run a shell command to completion and return its exit code."""
    process = await asyncio.create_subprocess_shell(
        command,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        _, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise
    if process.returncode != 0 and stderr:
        logger.debug("[Lifecycle] Command stderr", command=command,
                     output=stderr.decode(errors="replace").strip()[-500:])
    return process.returncode


class DeviceLifecycle:
    """Start/stop/status for one managed device."""

    def __init__(
        self,
        name: str,
        start_command: Optional[str] = None,
        stop_command: Optional[str] = None,
        status_command: Optional[str] = None,
        poll_interval: float = 1.0,
        start_timeout: float = 180.0,
    ):
        self.name = name
        self.start_command = start_command
        self.stop_command = stop_command
        self.status_command = status_command
        self.poll_interval = poll_interval
        self.start_timeout = start_timeout

        self._state = DeviceState.STOPPED
        self._lock = asyncio.Lock()
        self._listeners: List[StateListener] = []
        self._start_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> DeviceState:
        return self._state

    def status(self) -> DeviceState:
        return self._state

    def is_running(self) -> bool:
        return self._state == DeviceState.RUNNING

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    async def set_state(self, state: DeviceState) -> None:
        """Record a state change and notify listeners."""
        if state == self._state:
            return
        previous, self._state = self._state, state
        logger.info("[Lifecycle] State changed", device=self.name,
                   previous=previous.value, state=state.value)
        for listener in list(self._listeners):
            try:
                await listener(self.name, state)
            except Exception as e:
                logger.error("[Lifecycle] Listener failed", device=self.name, error=str(e), exc_info=True)

    async def probe(self) -> DeviceState:
        """Mark an already-running device as RUNNING (startup check)."""
        if self.status_command and self._state == DeviceState.STOPPED:
            if await self._check_ready():
                await self.set_state(DeviceState.RUNNING)
        return self._state

    async def start(self) -> DeviceState:
        """Kick off start; returns immediately with STARTING (or current state)."""
        async with self._lock:
            if self._state != DeviceState.STOPPED:
                return self._state
            await self.set_state(DeviceState.STARTING)
            self._start_task = asyncio.create_task(self._run_start())
            return self._state

    async def stop(self) -> DeviceState:
        async with self._lock:
            if self._state in (DeviceState.STOPPED, DeviceState.STOPPING):
                return self._state
            if self._start_task and not self._start_task.done():
                self._start_task.cancel()
            await self.set_state(DeviceState.STOPPING)
            if self.stop_command:
                try:
                    code = await run_shell(self.stop_command, timeout=self.start_timeout)
                    if code != 0:
                        logger.warning("[Lifecycle] Stop command failed", device=self.name, code=code)
                except (OSError, asyncio.TimeoutError) as e:
                    logger.error("[Lifecycle] Stop command error", device=self.name, error=str(e))
            await self.set_state(DeviceState.STOPPED)
            return self._state

    async def reset(self) -> DeviceState:
        await self.stop()
        return await self.start()

    async def wait_started(self) -> DeviceState:
        """Await completion of an in-flight start."""
        if self._start_task is not None:
            try:
                await self._start_task
            except asyncio.CancelledError:
                pass
        return self._state

    async def _run_start(self) -> None:
        try:
            if self.start_command:
                code = await run_shell(self.start_command, timeout=self.start_timeout)
                if code != 0:
                    logger.error("[Lifecycle] Start command failed", device=self.name, code=code)
                    await self.set_state(DeviceState.STOPPED)
                    return

            ready = await self._wait_ready()
            await self.set_state(DeviceState.RUNNING if ready else DeviceState.STOPPED)
        except asyncio.CancelledError:
            raise
        except (OSError, asyncio.TimeoutError) as e:
            logger.error("[Lifecycle] Start failed", device=self.name, error=str(e))
            await self.set_state(DeviceState.STOPPED)

    async def _wait_ready(self) -> bool:
        if not self.status_command:
            return True
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.start_timeout
        while loop.time() < deadline:
            if await self._check_ready():
                return True
            await asyncio.sleep(self.poll_interval)
        logger.error("[Lifecycle] Device did not become ready", device=self.name, timeout=self.start_timeout)
        return False

    async def _check_ready(self) -> bool:
        try:
            return await run_shell(self.status_command, timeout=30.0) == 0
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug("[Lifecycle] Status check failed", device=self.name, error=str(e))
            return False
