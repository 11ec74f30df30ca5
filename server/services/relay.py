"""Device relay service.

Wires the relay components together and exposes the operations the
WebSocket router dispatches to: session open/close, touch/mouse/key input,
clipboard, and device lifecycle reactions.
"""

import asyncio
from typing import Callable, Dict, Optional

from core.config import Settings
from core.logging import get_logger
from services.device import keycodes
from services.device.channel import DeviceChannel, DeviceDimensions, DeviceLink, EmulatorChannel, EmulatorProtocol, Touch
from services.device.command_channel import CommandChannel
from services.device.frames import FrameStreamManager
from services.device.gestures import GestureSynthesizer
from services.device.lifecycle import DeviceLifecycle, DeviceState
from services.device.reconnector import TransportReconnector
from services.device.scheduling import TimerFactory, loop_timer, spawn
from services.session import ClientSession
from services.status_broadcaster import StatusBroadcaster

logger = get_logger(__name__)

EMULATOR = "emulator"
LINUX = "linux"

CHROME_PACKAGE = "com.android.chrome"
CHROME_ACTIVITY = "com.android.chrome/com.google.android.apps.chrome.Main"


def build_channel_factory(settings: Settings) -> Callable[[], DeviceChannel]:
    """Load the controller proto once and return a channel factory.

    Raises:
        ProtoLoadError: the descriptor is missing or invalid (fatal at startup)
    """
    protocol = EmulatorProtocol.load(settings.emulator_proto_path)
    return lambda: EmulatorChannel(protocol, settings.grpc_target)


class DeviceRelay:
    """Owns the shared device link and every component built on it."""

    def __init__(
        self,
        settings: Settings,
        broadcaster: StatusBroadcaster,
        channel_factory: Callable[[], DeviceChannel],
        adb_channel: Optional[CommandChannel] = None,
        linux_channel: Optional[CommandChannel] = None,
        emulator_lifecycle: Optional[DeviceLifecycle] = None,
        linux_lifecycle: Optional[DeviceLifecycle] = None,
        timer_factory: TimerFactory = loop_timer,
    ):
        self.settings = settings
        self.broadcaster = broadcaster
        self._timer_factory = timer_factory

        self.link = DeviceLink(
            channel_factory,
            DeviceDimensions(settings.default_device_width, settings.default_device_height),
        )
        self.frames = FrameStreamManager(
            self.link,
            max_width=settings.stream_max_width,
            min_interval=settings.min_frame_interval,
        )
        self.emulator = emulator_lifecycle or DeviceLifecycle(
            EMULATOR,
            start_command=settings.emulator_start_command,
            stop_command=settings.emulator_stop_command,
            status_command=settings.emulator_status_command,
            poll_interval=settings.lifecycle_poll_interval,
            start_timeout=settings.lifecycle_start_timeout,
        )
        self.linux = linux_lifecycle or DeviceLifecycle(
            LINUX,
            start_command=settings.linux_start_command,
            stop_command=settings.linux_stop_command,
            status_command=settings.linux_status_command,
            poll_interval=settings.lifecycle_poll_interval,
            start_timeout=settings.lifecycle_start_timeout,
        )
        self.reconnector = TransportReconnector(
            self.link,
            self.frames,
            sessions=broadcaster.sessions,
            is_running=self.emulator.is_running,
            initial_delay=settings.reconnect_initial_delay,
            max_delay=settings.reconnect_max_delay,
            timer_factory=timer_factory,
        )
        self.frames.set_failure_handler(self.reconnector.signal_failure)

        self.adb = adb_channel or CommandChannel("adb", [settings.adb_path, "shell"])
        self.linux_shell = linux_channel or CommandChannel("linux", [
            "docker", "exec", "-i", "-e", f"DISPLAY={settings.linux_display}",
            settings.linux_container, "sh",
        ])

        self.emulator.add_listener(self.on_device_state)
        self.linux.add_listener(self.on_device_state)

    @property
    def lifecycles(self) -> Dict[str, DeviceLifecycle]:
        return {EMULATOR: self.emulator, LINUX: self.linux}

    def is_running(self, device: str) -> bool:
        lifecycle = self.lifecycles.get(device)
        return lifecycle is not None and lifecycle.is_running()

    # =========================================================================
    # Startup / Shutdown
    # =========================================================================

    async def startup(self):
        """Probe device state and pre-warm the adb shell."""
        await self.emulator.probe()
        await self.linux.probe()
        if self.emulator.is_running():
            await self.adb.start()
        logger.info("[Relay] Started",
                   emulator=self.emulator.state.value,
                   linux=self.linux.state.value)

    async def shutdown(self):
        self.reconnector.stop()
        for session in self.broadcaster.sessions():
            session.close()
        await self.link.close()
        await self.adb.close()
        await self.linux_shell.close()
        logger.info("[Relay] Shutdown complete")

    # =========================================================================
    # Sessions
    # =========================================================================

    def create_session(self, websocket) -> ClientSession:
        s = self.settings
        gestures = GestureSynthesizer(
            self.send_touch,
            lambda: self.link.dimensions,
            scroll_idle_timeout=s.scroll_idle_timeout,
            scroll_scale_factor=s.scroll_scale_factor,
            pinch_idle_timeout=s.pinch_idle_timeout,
            pinch_initial_spread=s.pinch_initial_spread,
            pinch_step=s.pinch_step,
            pinch_min_spread=s.pinch_min_spread,
            timer_factory=self._timer_factory,
        )
        return ClientSession(websocket, gestures)

    async def open_session(self, session: ClientSession):
        """Register the session, send status, and start streaming if running."""
        await self.broadcaster.connect(session)
        for message in self.broadcaster.status_messages():
            await session.send_json(message)

        if self.emulator.is_running():
            await self.link.ensure()
            await session.send_config(self.link.dimensions)
            session.attach_subscription(await self.frames.subscribe(session))

    async def close_session(self, session: ClientSession):
        session.close()
        await self.broadcaster.disconnect(session)

    # =========================================================================
    # Lifecycle reactions
    # =========================================================================

    async def on_device_state(self, device: str, state: DeviceState):
        await self.broadcaster.update_device_status(device, state.value)

        if device != EMULATOR:
            return
        if state == DeviceState.RUNNING:
            await self.adb.start()
            if not await self.reconnector.rebuild(announce=True):
                self.reconnector.signal_failure()
        elif state in (DeviceState.STOPPING, DeviceState.STOPPED):
            self.reconnector.stop()
            for session in self.broadcaster.sessions():
                session.detach_subscription()
            await self.link.close()

    # =========================================================================
    # Structured input (gRPC)
    # =========================================================================

    async def send_touch(self, touches) -> bool:
        """Best-effort touch RPC; errors are logged, never retried."""
        channel = self.link.channel
        if channel is None:
            return False
        try:
            await channel.send_touch(touches)
            return True
        except Exception as e:
            logger.error("[Relay] sendTouch error", error=str(e))
            return False

    async def touch(self, x: int, y: int, pressure: int, identifier: int = 0) -> bool:
        return await self.send_touch([Touch(x=x, y=y, pressure=pressure, identifier=identifier)])

    async def mouse(self, x: int, y: int, buttons: int) -> bool:
        channel = self.link.channel
        if channel is None:
            return False
        try:
            await channel.send_mouse(x, y, buttons)
            return True
        except Exception as e:
            logger.error("[Relay] sendMouse error", error=str(e))
            return False

    async def paste(self, text: str) -> bool:
        """Push text to the device clipboard, then press Ctrl+V."""
        channel = self.link.channel
        if channel is None:
            return False
        try:
            await channel.set_clipboard(text)
        except Exception as e:
            logger.error("[Relay] setClipboard error", error=str(e))
            return False
        self.adb.submit(keycodes.paste_shortcut())
        return True

    async def read_clipboard(self) -> Optional[str]:
        channel = self.link.channel
        if channel is None:
            return None
        try:
            return await channel.get_clipboard()
        except Exception as e:
            logger.error("[Relay] getClipboard error", error=str(e))
            return None

    # =========================================================================
    # Shell input (command channels)
    # =========================================================================

    def key(self, event_type: str, key: str, ctrl: bool, shift: bool, alt: bool) -> bool:
        command = keycodes.translate_key(event_type, key, ctrl, shift, alt).to_shell()
        if command is None:
            return False
        self.adb.submit(command)
        return True

    def reset_chrome(self) -> None:
        """Clear Chrome data, reopen it on about:blank, then press Back."""
        self.adb.submit(f"pm clear {CHROME_PACKAGE}")
        spawn(self._reopen_chrome())

    async def _reopen_chrome(self):
        await asyncio.sleep(0.5)
        self.adb.submit(
            f"am start -a android.intent.action.VIEW -d about:blank -n {CHROME_ACTIVITY}"
        )
        await asyncio.sleep(3.0)
        self.adb.submit("input keyevent 4")

    def linux_key(self, key: str, ctrl: bool, shift: bool, alt: bool) -> bool:
        command = keycodes.translate_linux_key(key, ctrl, shift, alt)
        if command is None:
            return False
        self.linux_shell.submit(command)
        return True

    def linux_type(self, text: str) -> bool:
        command = keycodes.linux_type_command(text)
        if command is None:
            return False
        self.linux_shell.submit(command)
        return True

    def linux_paste(self, text: str) -> bool:
        command = keycodes.linux_paste_command(text)
        if command is None:
            return False
        self.linux_shell.submit(command)
        return True

    async def read_linux_clipboard(self) -> Optional[str]:
        """One-shot read of the X clipboard inside the container."""
        s = self.settings
        try:
            process = await asyncio.create_subprocess_exec(
                "docker", "exec", "-e", f"DISPLAY={s.linux_display}", s.linux_container,
                "xclip", "-o", "-selection", "clipboard",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=5.0)
        except (OSError, asyncio.TimeoutError) as e:
            logger.error("[Relay] Linux clipboard read failed", error=str(e))
            return None
        if process.returncode != 0:
            logger.warning("[Relay] xclip failed", code=process.returncode,
                           stderr=stderr.decode(errors="replace").strip())
            return None
        return stdout.decode(errors="replace")
