"""Per-connection client state for the device relay."""

import asyncio
import uuid
from typing import Any, Dict, Optional

import orjson
from fastapi import WebSocket
from starlette.websockets import WebSocketState

from core.logging import get_logger
from services.device.channel import DeviceDimensions
from services.device.frames import FrameSubscription
from services.device.gestures import GestureSynthesizer

logger = get_logger(__name__)


class ClientSession:
    """One live browser connection.

    Owns its frame subscription and gesture state; `close()` cancels both, and
    nothing else holds a reference to the session afterwards.
    """

    def __init__(self, websocket: WebSocket, gestures: Optional[GestureSynthesizer] = None):
        self.id = uuid.uuid4().hex[:12]
        self.websocket = websocket
        self.gestures = gestures
        self.subscription: Optional[FrameSubscription] = None
        self.closed = False
        self._send_lock = asyncio.Lock()
        self._frame_send: Optional[asyncio.Task] = None

    # =========================================================================
    # Connection state
    # =========================================================================

    @property
    def is_open(self) -> bool:
        return (
            not self.closed
            and self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    def is_send_pending(self) -> bool:
        """True while the previous frame has not been flushed to the socket."""
        return self._frame_send is not None and not self._frame_send.done()

    # =========================================================================
    # Outbound
    # =========================================================================

    def send_frame(self, frame: bytes) -> None:
        """Start sending one binary frame without awaiting it."""
        self._frame_send = asyncio.create_task(self._send_bytes(frame))

    async def _send_bytes(self, frame: bytes) -> None:
        async with self._send_lock:
            if not self.is_open:
                return
            try:
                await self.websocket.send_bytes(frame)
            except Exception as e:
                logger.debug("[Session] Frame send failed", session_id=self.id, error=str(e))

    async def send_json(self, message: Dict[str, Any]) -> bool:
        """Send a JSON control message; returns False if the socket is gone."""
        payload = orjson.dumps(message).decode()
        async with self._send_lock:
            if not self.is_open:
                return False
            try:
                await self.websocket.send_text(payload)
                return True
            except Exception as e:
                logger.warning("[Session] Send failed", session_id=self.id, error=str(e))
                return False

    async def send_config(self, dimensions: DeviceDimensions) -> None:
        await self.send_json({
            "type": "config",
            "deviceWidth": dimensions.width,
            "deviceHeight": dimensions.height,
        })

    # =========================================================================
    # Frame subscription
    # =========================================================================

    def attach_subscription(self, subscription: Optional[FrameSubscription]) -> None:
        """Adopt a new subscription, cancelling any previous one first."""
        if self.subscription is not None and self.subscription is not subscription:
            self.subscription.cancel()
        if self.closed and subscription is not None:
            subscription.cancel()
            subscription = None
        self.subscription = subscription

    def detach_subscription(self) -> None:
        if self.subscription is not None:
            self.subscription.cancel()
            self.subscription = None

    # =========================================================================
    # Teardown
    # =========================================================================

    def close(self) -> None:
        """Cancel the frame stream and gesture timers; idempotent."""
        if self.closed:
            return
        self.closed = True
        self.detach_subscription()
        if self.gestures is not None:
            self.gestures.close()
        if self._frame_send is not None and not self._frame_send.done():
            self._frame_send.cancel()
        logger.debug("[Session] Closed", session_id=self.id)
