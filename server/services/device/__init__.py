"""
Device Control Relay

Components (leaf-first):
- keycodes.py: browser key events -> adb / xdotool commands
- gestures.py: wheel scroll/pinch -> synthetic multi-touch sequences
- channel.py: gRPC EmulatorController channel + DeviceLink handle
- frames.py: per-client screen streams with backpressure and rate cap
- reconnector.py: single-flight backoff rebuild of the device channel
- command_channel.py: persistent serialized shell executor
- lifecycle.py: start/stop/status of the emulator and Linux container
"""

from .channel import (
    DeviceChannel,
    DeviceDimensions,
    DeviceLink,
    EmulatorChannel,
    EmulatorProtocol,
    ProtoLoadError,
    Touch,
)
from .command_channel import CommandChannel
from .frames import FrameStreamManager, FrameSubscription
from .gestures import GestureSynthesizer, GesturePhase
from .lifecycle import DeviceLifecycle, DeviceState
from .reconnector import ReconnectState, TransportReconnector

__all__ = [
    "DeviceChannel",
    "DeviceDimensions",
    "DeviceLink",
    "EmulatorChannel",
    "EmulatorProtocol",
    "ProtoLoadError",
    "Touch",
    "CommandChannel",
    "FrameStreamManager",
    "FrameSubscription",
    "GestureSynthesizer",
    "GesturePhase",
    "DeviceLifecycle",
    "DeviceState",
    "ReconnectState",
    "TransportReconnector",
]
