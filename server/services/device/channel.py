"""
Device Channel

Structured control channel to the Android emulator's gRPC
`android.emulation.control.EmulatorController` service, plus the DeviceLink
handle that owns the current channel and swaps it on reconnection.

The controller proto ships with the emulator and is loaded at runtime, so no
generated stubs are checked in. Two gRPC channels are opened per
DeviceChannel: one for the high-bandwidth screenshot stream and one for
low-latency input, so frames never queue in front of touches.
"""
import asyncio
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Callable, List, Optional

import grpc
import structlog
from google.protobuf import empty_pb2

logger = structlog.get_logger()

PNG = "PNG"


class ProtoLoadError(Exception):
    """The emulator controller descriptor could not be loaded."""


@dataclass(frozen=True)
class Touch:
    """A single touch point; pressure 0 lifts the pointer."""
    x: int
    y: int
    pressure: int = 1024
    identifier: int = 0


@dataclass(frozen=True)
class DeviceDimensions:
    """Logical surface size of the device."""
    width: int
    height: int

    def clamp(self, x: float, y: float) -> tuple[float, float]:
        return (
            min(max(x, 0), self.width),
            min(max(y, 0), self.height),
        )

    def stream_width(self, max_width: int) -> int:
        """Output width for the screen stream; 0 requests native resolution."""
        return 0 if self.width <= max_width else max_width


class DeviceChannel(ABC):
    """Interface the relay consumes from a controllable device."""

    @abstractmethod
    async def get_screenshot(self, fmt: str = PNG, width: int = 0, height: int = 0) -> Any:
        """Single screenshot; result exposes `.format.width` / `.format.height`."""

    @abstractmethod
    def stream_screenshot(self, fmt: str = PNG, width: int = 0) -> AsyncIterator[bytes]:
        """Long-lived iterator of encoded frame bytes."""

    @abstractmethod
    async def send_touch(self, touches: List[Touch]) -> None:
        """Replace the set of currently-down touch points."""

    @abstractmethod
    async def send_mouse(self, x: int, y: int, buttons: int) -> None:
        ...

    @abstractmethod
    async def set_clipboard(self, text: str) -> None:
        ...

    @abstractmethod
    async def get_clipboard(self) -> str:
        ...

    async def close(self) -> None:
        """Release transport resources."""

    async def discover_dimensions(self, default: DeviceDimensions) -> Optional[DeviceDimensions]:
        """Query the native screen size; None if the device did not answer."""
        try:
            image = await self.get_screenshot(PNG, 0, 0)
        except Exception as e:
            logger.error("[Channel] Failed to get initial screenshot", error=str(e))
            return None
        fmt = getattr(image, "format", None)
        width = getattr(fmt, "width", 0) or default.width
        height = getattr(fmt, "height", 0) or default.height
        return DeviceDimensions(width=width, height=height)


class EmulatorProtocol:
    """Runtime-loaded message classes and stub for EmulatorController."""

    def __init__(self, protos: Any, services: Any):
        self.protos = protos
        self.services = services

    @classmethod
    def load(cls, proto_path: str) -> "EmulatorProtocol":
        """Load emulator_controller.proto; raises ProtoLoadError if unusable."""
        path = Path(proto_path).resolve()
        if not path.is_file():
            raise ProtoLoadError(f"Emulator controller proto not found: {path}")

        # grpc resolves proto paths against sys.path entries
        include_dir = str(path.parent)
        if include_dir not in sys.path:
            sys.path.append(include_dir)

        try:
            protos, services = grpc.protos_and_services(path.name)
        except Exception as e:
            raise ProtoLoadError(f"Failed to load {path.name}: {e}") from e

        if not hasattr(services, "EmulatorControllerStub"):
            raise ProtoLoadError(f"{path.name} does not define EmulatorController")

        logger.info("[Channel] Loaded emulator controller proto", path=str(path))
        return cls(protos, services)

    def stub(self, channel: grpc.aio.Channel) -> Any:
        return self.services.EmulatorControllerStub(channel)


class EmulatorChannel(DeviceChannel):
    """DeviceChannel backed by the emulator's gRPC controller."""

    def __init__(self, protocol: EmulatorProtocol, target: str):
        self.target = target
        self._protocol = protocol
        self._stream_channel = grpc.aio.insecure_channel(target)
        self._input_channel = grpc.aio.insecure_channel(target)
        self._stream_stub = protocol.stub(self._stream_channel)
        self._input_stub = protocol.stub(self._input_channel)

    def _image_format(self, fmt: str, width: int, height: int = 0) -> Any:
        image_format = self._protocol.protos.ImageFormat
        return image_format(
            format=image_format.ImgFormat.Value(fmt),
            width=width,
            height=height,
        )

    async def get_screenshot(self, fmt: str = PNG, width: int = 0, height: int = 0) -> Any:
        return await self._stream_stub.getScreenshot(self._image_format(fmt, width, height))

    async def stream_screenshot(self, fmt: str = PNG, width: int = 0) -> AsyncIterator[bytes]:
        call = self._stream_stub.streamScreenshot(self._image_format(fmt, width))
        try:
            async for image in call:
                yield image.image
        finally:
            call.cancel()

    async def send_touch(self, touches: List[Touch]) -> None:
        protos = self._protocol.protos
        event = protos.TouchEvent(touches=[
            protos.Touch(x=t.x, y=t.y, pressure=t.pressure, identifier=t.identifier)
            for t in touches
        ])
        await self._input_stub.sendTouch(event)

    async def send_mouse(self, x: int, y: int, buttons: int) -> None:
        await self._input_stub.sendMouse(self._protocol.protos.MouseEvent(x=x, y=y, buttons=buttons))

    async def set_clipboard(self, text: str) -> None:
        await self._input_stub.setClipboard(self._protocol.protos.ClipData(text=text))

    async def get_clipboard(self) -> str:
        clip = await self._input_stub.getClipboard(empty_pb2.Empty())
        return clip.text

    async def close(self) -> None:
        await self._stream_channel.close()
        await self._input_channel.close()


class DeviceLink:
    """
    Owned handle to the current DeviceChannel and its dimensions.

    Only `replace()` changes the channel. Replacement and subscription creation
    both run under `lock`, so nobody subscribes against a channel that is being
    swapped out.
    """

    def __init__(
        self,
        channel_factory: Callable[[], DeviceChannel],
        default_dimensions: DeviceDimensions
    ):
        self._channel_factory = channel_factory
        self._default_dimensions = default_dimensions
        self._channel: Optional[DeviceChannel] = None
        self._dimensions: DeviceDimensions = default_dimensions
        self.generation = 0
        self.lock = asyncio.Lock()

    @property
    def channel(self) -> Optional[DeviceChannel]:
        return self._channel

    @property
    def dimensions(self) -> DeviceDimensions:
        return self._dimensions

    async def ensure(self) -> DeviceChannel:
        """Return the current channel, creating the first one on demand."""
        if self._channel is not None:
            return self._channel
        async with self.lock:
            if self._channel is None:
                await self._swap()
        return self._channel

    async def replace(self) -> bool:
        """Tear down the current channel and install a fresh one.

        Returns:
            True if the new channel answered the dimension probe
        """
        async with self.lock:
            return await self._swap()

    async def replace_locked(self) -> bool:
        """`replace()` for callers already holding `lock`."""
        return await self._swap()

    async def _swap(self) -> bool:
        old = self._channel
        new = self._channel_factory()
        dimensions = await new.discover_dimensions(self._default_dimensions)
        healthy = dimensions is not None
        self._channel = new
        self._dimensions = dimensions or self._default_dimensions
        self.generation += 1
        logger.info("[Channel] Device channel ready",
                   generation=self.generation,
                   healthy=healthy,
                   width=self._dimensions.width,
                   height=self._dimensions.height)
        if old is not None:
            await self._close_quietly(old)
        return healthy

    async def close(self) -> None:
        """Drop the current channel without replacing it."""
        async with self.lock:
            old, self._channel = self._channel, None
        if old is not None:
            await self._close_quietly(old)

    async def _close_quietly(self, channel: DeviceChannel) -> None:
        try:
            await channel.close()
        except Exception as e:
            logger.warning("[Channel] Error closing stale channel", error=str(e))
