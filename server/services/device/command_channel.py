"""
Command Channel

A persistent shell (adb shell, docker exec sh) fed one line per command.
Every command is backgrounded in the shell so a slow one never holds up the
next; submission order is preserved by a single writer task. stdout is
discarded, stderr is logged, and a dead shell is respawned on next use.
Commands already written to a shell that later dies are not replayed.
"""
import asyncio
from typing import List, Optional

import structlog

logger = structlog.get_logger()


class CommandChannel:
    """Serialized fire-and-forget executor over a long-lived shell process."""

    def __init__(self, name: str, argv: List[str]):
        """
        Args:
            name: Label used in logs ('adb', 'linux')
            argv: Command line that starts an interactive shell reading stdin
        """
        self.name = name
        self.argv = list(argv)
        self._process: Optional[asyncio.subprocess.Process] = None
        self._queue: Optional[asyncio.Queue] = None
        self._writer_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._spawn_lock = asyncio.Lock()
        self._closed = False
        self.spawn_count = 0

    @property
    def is_alive(self) -> bool:
        return self._process is not None and self._process.returncode is None

    def submit(self, command: str) -> None:
        """Queue a command for execution; never blocks."""
        if self._closed or not command:
            return
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._writer_task is None or self._writer_task.done():
            self._writer_task = asyncio.create_task(self._writer_loop())
        self._queue.put_nowait(command)

    async def start(self) -> None:
        """Spawn the shell ahead of the first command."""
        if self._closed:
            return
        try:
            await self._ensure_process()
        except OSError as e:
            logger.error("[Command] Failed to pre-warm shell", channel=self.name, error=str(e))

    async def close(self) -> None:
        """Stop the writer and terminate the shell."""
        self._closed = True
        for task in (self._writer_task, self._stderr_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        process, self._process = self._process, None
        if process is not None and process.returncode is None:
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=5.0)
            except asyncio.TimeoutError:
                process.kill()
        logger.info("[Command] Channel closed", channel=self.name)

    async def _writer_loop(self) -> None:
        while True:
            command = await self._queue.get()
            try:
                process = await self._ensure_process()
                process.stdin.write(f"{command} &\n".encode())
                await process.stdin.drain()
                logger.debug("[Command] Submitted", channel=self.name, command=command)
            except (BrokenPipeError, ConnectionResetError) as e:
                logger.warning("[Command] Shell pipe closed, command dropped",
                               channel=self.name, command=command, error=str(e))
                self._process = None
            except OSError as e:
                logger.error("[Command] Failed to run command",
                             channel=self.name, command=command, error=str(e))
                self._process = None

    async def _ensure_process(self) -> asyncio.subprocess.Process:
        if self.is_alive:
            return self._process

        # Pre-warm and the writer may both get here; only one may spawn
        async with self._spawn_lock:
            if self.is_alive:
                return self._process

            logger.info("[Command] Spawning persistent shell", channel=self.name, argv=self.argv)
            process = await asyncio.create_subprocess_exec(
                *self.argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
            self._process = process
            self.spawn_count += 1
            self._stderr_task = asyncio.create_task(self._watch(process))
            return process

    async def _watch(self, process: asyncio.subprocess.Process) -> None:
        """Log stderr until the shell exits, then log the exit."""
        try:
            while True:
                line = await process.stderr.readline()
                if not line:
                    break
                logger.warning("[Command] stderr", channel=self.name,
                               output=line.decode(errors="replace").strip())
            code = await process.wait()
            logger.info("[Command] Shell exited", channel=self.name, code=code)
        finally:
            if self._process is process:
                self._process = None
