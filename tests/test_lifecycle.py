"""Unit tests for device start/stop/status handling."""

from unittest.mock import AsyncMock, patch

import pytest

from services.device.lifecycle import DeviceLifecycle, DeviceState


def make_lifecycle(**kwargs):
    defaults = dict(
        start_command="start-device",
        stop_command="stop-device",
        status_command="device-ready",
        poll_interval=0.001,
        start_timeout=1.0,
    )
    defaults.update(kwargs)
    return DeviceLifecycle("emulator", **defaults)


class Listener:
    def __init__(self):
        self.events = []

    async def __call__(self, device, state):
        self.events.append((device, state))


class TestDeviceLifecycle:
    """Tests for DeviceLifecycle."""

    @pytest.mark.asyncio
    async def test_start_runs_until_ready(self):
        lifecycle = make_lifecycle()
        listener = Listener()
        lifecycle.add_listener(listener)

        # start command ok, status fails once, then succeeds
        shell = AsyncMock(side_effect=[0, 1, 0])
        with patch("services.device.lifecycle.run_shell", shell):
            assert await lifecycle.start() == DeviceState.STARTING
            assert await lifecycle.wait_started() == DeviceState.RUNNING

        assert listener.events == [
            ("emulator", DeviceState.STARTING),
            ("emulator", DeviceState.RUNNING),
        ]
        assert lifecycle.is_running()

    @pytest.mark.asyncio
    async def test_failed_start_command_returns_to_stopped(self):
        lifecycle = make_lifecycle()

        with patch("services.device.lifecycle.run_shell", AsyncMock(return_value=2)):
            await lifecycle.start()
            assert await lifecycle.wait_started() == DeviceState.STOPPED

    @pytest.mark.asyncio
    async def test_start_times_out(self):
        lifecycle = make_lifecycle(start_timeout=0.01)

        shell = AsyncMock(side_effect=lambda command, timeout=None: 0 if command == "start-device" else 1)
        with patch("services.device.lifecycle.run_shell", shell):
            await lifecycle.start()
            assert await lifecycle.wait_started() == DeviceState.STOPPED

    @pytest.mark.asyncio
    async def test_start_while_running_is_noop(self):
        lifecycle = make_lifecycle()
        await lifecycle.set_state(DeviceState.RUNNING)

        shell = AsyncMock(return_value=0)
        with patch("services.device.lifecycle.run_shell", shell):
            assert await lifecycle.start() == DeviceState.RUNNING
        shell.assert_not_called()

    @pytest.mark.asyncio
    async def test_stop(self):
        lifecycle = make_lifecycle()
        await lifecycle.set_state(DeviceState.RUNNING)
        listener = Listener()
        lifecycle.add_listener(listener)

        shell = AsyncMock(return_value=0)
        with patch("services.device.lifecycle.run_shell", shell):
            assert await lifecycle.stop() == DeviceState.STOPPED

        shell.assert_awaited_once_with("stop-device", timeout=1.0)
        assert [s for _, s in listener.events] == [DeviceState.STOPPING, DeviceState.STOPPED]

    @pytest.mark.asyncio
    async def test_probe_detects_running_device(self):
        lifecycle = make_lifecycle()

        with patch("services.device.lifecycle.run_shell", AsyncMock(return_value=0)):
            assert await lifecycle.probe() == DeviceState.RUNNING

    @pytest.mark.asyncio
    async def test_probe_without_status_command(self):
        lifecycle = make_lifecycle(status_command=None)

        assert await lifecycle.probe() == DeviceState.STOPPED

    @pytest.mark.asyncio
    async def test_listener_errors_do_not_break_state_changes(self):
        lifecycle = make_lifecycle()
        lifecycle.add_listener(AsyncMock(side_effect=RuntimeError("boom")))
        listener = Listener()
        lifecycle.add_listener(listener)

        await lifecycle.set_state(DeviceState.RUNNING)

        assert lifecycle.state == DeviceState.RUNNING
        assert listener.events == [("emulator", DeviceState.RUNNING)]

    @pytest.mark.asyncio
    async def test_reset_restarts(self):
        lifecycle = make_lifecycle()
        await lifecycle.set_state(DeviceState.RUNNING)

        with patch("services.device.lifecycle.run_shell", AsyncMock(return_value=0)):
            assert await lifecycle.reset() == DeviceState.STARTING
            assert await lifecycle.wait_started() == DeviceState.RUNNING
