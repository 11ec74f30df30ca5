"""Unit tests for the persistent shell command channel."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from conftest import drain
from services.device.command_channel import CommandChannel


class FakeStdin:
    def __init__(self):
        self.written = []
        self.broken = False

    def write(self, data: bytes) -> None:
        self.written.append(data)

    async def drain(self) -> None:
        if self.broken:
            raise BrokenPipeError("stdin closed")


class FakeStderr:
    def __init__(self):
        self.lines: asyncio.Queue = asyncio.Queue()

    async def readline(self) -> bytes:
        return await self.lines.get()


class FakeProcess:
    def __init__(self):
        self.stdin = FakeStdin()
        self.stderr = FakeStderr()
        self.returncode = None
        self._exited = asyncio.Event()

    def exit(self, code: int) -> None:
        self.returncode = code
        self.stderr.lines.put_nowait(b"")
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode

    def terminate(self) -> None:
        self.exit(-15)

    def kill(self) -> None:
        self.exit(-9)


@pytest.fixture
def processes():
    spawned = []

    async def spawn(*argv, **kwargs):
        process = FakeProcess()
        process.argv = argv
        spawned.append(process)
        return process

    mock = AsyncMock(side_effect=spawn)
    with patch("services.device.command_channel.asyncio.create_subprocess_exec", mock):
        yield spawned


def lines(process):
    return [data.decode() for data in process.stdin.written]


class TestCommandChannel:
    """Tests for CommandChannel."""

    @pytest.mark.asyncio
    async def test_preserves_submission_order(self, processes):
        channel = CommandChannel("adb", ["adb", "shell"])

        for command in ("input keyevent 66", "input text 'a'", "input keyevent 67"):
            channel.submit(command)
        await drain(10)

        assert len(processes) == 1
        assert processes[0].argv == ("adb", "shell")
        assert lines(processes[0]) == [
            "input keyevent 66 &\n",
            "input text 'a' &\n",
            "input keyevent 67 &\n",
        ]
        await channel.close()

    @pytest.mark.asyncio
    async def test_submit_never_blocks(self, processes):
        channel = CommandChannel("adb", ["adb", "shell"])

        assert channel.submit("input keyevent 4") is None
        assert processes == []

        await drain(10)
        assert len(processes) == 1
        await channel.close()

    @pytest.mark.asyncio
    async def test_respawns_after_exit(self, processes):
        channel = CommandChannel("adb", ["adb", "shell"])
        channel.submit("first")
        await drain(10)

        processes[0].exit(1)
        await drain(10)
        assert not channel.is_alive

        channel.submit("second")
        await drain(10)

        assert channel.spawn_count == 2
        assert lines(processes[0]) == ["first &\n"]
        assert lines(processes[1]) == ["second &\n"]
        await channel.close()

    @pytest.mark.asyncio
    async def test_broken_pipe_drops_command(self, processes):
        channel = CommandChannel("linux", ["docker", "exec", "-i", "box", "sh"])
        await channel.start()
        processes[0].stdin.broken = True

        channel.submit("lost")
        await drain(10)
        channel.submit("next")
        await drain(10)

        assert len(processes) == 2
        assert lines(processes[1]) == ["next &\n"]

        await channel.close()

    @pytest.mark.asyncio
    async def test_start_prewarms_shell(self, processes):
        channel = CommandChannel("adb", ["adb", "shell"])

        await channel.start()

        assert channel.is_alive
        assert channel.spawn_count == 1
        await channel.close()

    @pytest.mark.asyncio
    async def test_prewarm_racing_submit_spawns_one_shell(self):
        spawned = []

        async def slow_spawn(*argv, **kwargs):
            await asyncio.sleep(0)
            spawned.append(FakeProcess())
            return spawned[-1]

        channel = CommandChannel("adb", ["adb", "shell"])
        with patch("services.device.command_channel.asyncio.create_subprocess_exec",
                   AsyncMock(side_effect=slow_spawn)):
            prewarm = asyncio.create_task(channel.start())
            channel.submit("input keyevent 3")
            await prewarm
            await drain(10)

        assert channel.spawn_count == 1
        assert len(spawned) == 1
        assert lines(spawned[0]) == ["input keyevent 3 &\n"]
        await channel.close()

    @pytest.mark.asyncio
    async def test_close_terminates_and_rejects_new_commands(self, processes):
        channel = CommandChannel("adb", ["adb", "shell"])
        await channel.start()

        await channel.close()
        channel.submit("ignored")
        await drain(10)

        assert processes[0].returncode == -15
        assert lines(processes[0]) == []
