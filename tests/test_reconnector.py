"""Unit tests for transport reconnection and backoff."""

import pytest

from conftest import FakeDeviceChannel, FakeSink, drain
from services.device.channel import DeviceDimensions, DeviceLink
from services.device.frames import FrameStreamManager
from services.device.reconnector import ReconnectState, TransportReconnector


class ChannelFactory:
    """Hands out fresh fake channels; `healthy` controls the dimension probe."""

    def __init__(self, width=1080, height=2400):
        self.healthy = True
        self.width = width
        self.height = height
        self.created = []

    def __call__(self):
        channel = FakeDeviceChannel(self.width, self.height, healthy=self.healthy)
        self.created.append(channel)
        return channel


def build(timers, sessions=(), running=True, factory=None):
    factory = factory or ChannelFactory()
    link = DeviceLink(factory, DeviceDimensions(1080, 2400))
    frames = FrameStreamManager(link)
    state = {"running": running}
    reconnector = TransportReconnector(
        link, frames,
        sessions=lambda: list(sessions),
        is_running=lambda: state["running"],
        initial_delay=1.0,
        max_delay=10.0,
        timer_factory=timers,
    )
    frames.set_failure_handler(reconnector.signal_failure)
    return reconnector, link, factory, state


class TestSingleFlight:
    """Tests for failure coalescing."""

    @pytest.mark.asyncio
    async def test_many_failures_one_attempt(self, timers):
        reconnector, *_ = build(timers)

        results = [reconnector.signal_failure() for _ in range(25)]

        assert results.count(True) == 1
        assert reconnector.state == ReconnectState.RECONNECTING
        assert reconnector.scheduled_attempts == 1
        assert reconnector.ignored_failures == 24
        assert len(timers.pending) == 1

    @pytest.mark.asyncio
    async def test_failure_from_closed_sink_ignored(self, timers):
        reconnector, link, *_ = build(timers)
        sink = FakeSink()
        sub = await reconnector.frames.subscribe(sink)
        sink.open = False

        assert reconnector.signal_failure(sub) is False
        assert reconnector.state == ReconnectState.STABLE
        sub.cancel()


class TestBackoff:
    """Tests for the exponential delay."""

    @pytest.mark.asyncio
    async def test_delay_doubles_to_ceiling(self, timers):
        reconnector, link, factory, _ = build(timers)
        factory.healthy = False

        reconnector.signal_failure()
        for _ in range(6):
            timers.fire_pending()
            await drain()

        delays = [t.delay for t in timers.timers]
        assert delays == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0, 10.0]
        assert all(a <= b for a, b in zip(delays, delays[1:]))
        assert reconnector.state == ReconnectState.RECONNECTING

    @pytest.mark.asyncio
    async def test_success_resets_delay(self, timers):
        reconnector, link, factory, _ = build(timers)
        factory.healthy = False

        reconnector.signal_failure()
        timers.fire_pending()
        await drain()
        factory.healthy = True
        timers.fire_pending()
        await drain()

        assert reconnector.state == ReconnectState.STABLE
        assert reconnector.reconnects == 1
        assert reconnector.next_delay == 1.0

        reconnector.signal_failure()
        assert timers.pending[0].delay == 1.0

    @pytest.mark.asyncio
    async def test_device_not_running_skips_attempt(self, timers):
        reconnector, link, factory, state = build(timers)
        state["running"] = False

        reconnector.signal_failure()
        timers.fire_pending()
        await drain()

        assert factory.created == []
        assert reconnector.state == ReconnectState.STABLE
        assert timers.pending == []

    @pytest.mark.asyncio
    async def test_stop_cancels_scheduled_attempt(self, timers):
        reconnector, *_ = build(timers)

        reconnector.signal_failure()
        reconnector.stop()

        assert timers.pending == []
        assert reconnector.state == ReconnectState.STABLE


class TestRebuild:
    """Tests for channel replacement and re-subscription."""

    @pytest.mark.asyncio
    async def test_rebuild_resubscribes_every_open_session(self, timers):
        sinks = [FakeSink("a"), FakeSink("b"), FakeSink("closed")]
        sinks[2].open = False
        reconnector, link, factory, _ = build(timers, sessions=sinks)

        for sink in sinks[:2]:
            sink.attach_subscription(await reconnector.frames.subscribe(sink))
        old_subs = [s.subscription for s in sinks[:2]]
        old_channel = link.channel

        assert await reconnector.rebuild()
        await drain()

        assert link.channel is not old_channel
        assert old_channel.closed
        for sink, old in zip(sinks[:2], old_subs):
            assert old.cancelled
            assert sink.subscription is not None
            assert sink.subscription.channel is link.channel
        assert sinks[2].subscription is None

        for sink in sinks[:2]:
            sink.detach_subscription()

    @pytest.mark.asyncio
    async def test_stream_death_reconnects_end_to_end(self, timers):
        sink = FakeSink()
        reconnector, link, factory, _ = build(timers, sessions=[sink])
        sink.attach_subscription(await reconnector.frames.subscribe(sink))
        await drain()

        factory.created[0].end_streams()
        await drain()
        assert reconnector.state == ReconnectState.RECONNECTING

        timers.fire_pending()
        await drain()

        assert reconnector.state == ReconnectState.STABLE
        assert len(factory.created) == 2
        assert sink.subscription.channel is factory.created[1]
        sink.detach_subscription()

    @pytest.mark.asyncio
    async def test_changed_dimensions_resend_config(self, timers):
        sink = FakeSink()
        factory = ChannelFactory()
        reconnector, link, *_ = build(timers, sessions=[sink], factory=factory)
        await link.ensure()

        factory.width, factory.height = 720, 1280
        await reconnector.rebuild()

        assert sink.configs == [DeviceDimensions(720, 1280)]
        sink.detach_subscription()
