"""Pydantic models for inbound client messages.

Every WebSocket text frame is a JSON object discriminated by `type`. Parsing
goes through one TypeAdapter over the union, so a message either validates to
exactly one variant or is rejected as malformed.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError


class ClientMessage(BaseModel):
    """Base class for inbound messages; unknown fields are ignored."""
    model_config = {"extra": "ignore", "populate_by_name": True}


# =============================================================================
# EMULATOR INPUT
# =============================================================================

class TouchMessage(ClientMessage):
    type: Literal["touch"]
    x: float
    y: float
    pressure: int = 1024
    id: int = 0


class MouseMessage(ClientMessage):
    type: Literal["mouse"]
    x: float
    y: float
    buttons: int = 0


class ScrollMessage(ClientMessage):
    type: Literal["scroll"]
    x: float
    y: float
    dx: float = 0.0
    dy: float = 0.0


class PinchMessage(ClientMessage):
    type: Literal["pinch"]
    x: float
    y: float
    delta: float


class KeyMessage(ClientMessage):
    type: Literal["key"]
    event_type: str = Field(default="keydown", alias="eventType")
    key: str
    ctrl: bool = False
    shift: bool = False
    alt: bool = False


class PasteMessage(ClientMessage):
    type: Literal["paste"]
    text: str


class ClipboardReadMessage(ClientMessage):
    type: Literal["clipboard-read"]


class ResetChromeMessage(ClientMessage):
    type: Literal["reset-chrome"]


# =============================================================================
# LINUX INPUT
# =============================================================================

class LinuxKeyMessage(ClientMessage):
    type: Literal["linux-key"]
    key: str
    ctrl: bool = False
    shift: bool = False
    alt: bool = False


class LinuxTypeMessage(ClientMessage):
    type: Literal["linux-type"]
    text: str


class LinuxPasteMessage(ClientMessage):
    type: Literal["linux-paste"]
    text: str


class LinuxClipboardReadMessage(ClientMessage):
    type: Literal["linux-clipboard-read"]


# =============================================================================
# CONTROL
# =============================================================================

class PingMessage(ClientMessage):
    type: Literal["ping"]


class StatusReadMessage(ClientMessage):
    type: Literal["status-read"]


InboundMessage = Annotated[
    Union[
        TouchMessage, MouseMessage, ScrollMessage, PinchMessage, KeyMessage,
        PasteMessage, ClipboardReadMessage, ResetChromeMessage,
        LinuxKeyMessage, LinuxTypeMessage, LinuxPasteMessage, LinuxClipboardReadMessage,
        PingMessage, StatusReadMessage,
    ],
    Field(discriminator="type")
]

_inbound_adapter = TypeAdapter(InboundMessage)


def parse_message(raw: Any) -> Optional[ClientMessage]:
    """Parse a decoded JSON value; returns None for anything malformed."""
    if not isinstance(raw, dict):
        return None
    try:
        return _inbound_adapter.validate_python(raw)
    except ValidationError:
        return None
