"""WebSocket Status Broadcaster Service.

Tracks connected client sessions and broadcasts device status changes to all
of them.
"""

import asyncio
from typing import Dict, Any, List, Optional

from core.logging import get_logger
from services.session import ClientSession

logger = get_logger(__name__)


class StatusBroadcaster:
    """Registry of live client sessions plus the last known device status."""

    def __init__(self, novnc_port: int = 7900):
        self._sessions: Dict[str, ClientSession] = {}
        self._lock = asyncio.Lock()
        self.novnc_port = novnc_port

        self._status: Dict[str, str] = {
            "emulator": "stopped",
            "linux": "stopped",
        }

    @property
    def connection_count(self) -> int:
        return len(self._sessions)

    def sessions(self) -> List[ClientSession]:
        """Snapshot of currently registered sessions."""
        return list(self._sessions.values())

    async def connect(self, session: ClientSession):
        """Register an accepted session."""
        async with self._lock:
            self._sessions[session.id] = session
        logger.info(f"[StatusBroadcaster] Client connected. Total: {len(self._sessions)}")

    async def disconnect(self, session: ClientSession):
        """Remove a session."""
        async with self._lock:
            self._sessions.pop(session.id, None)
        logger.info(f"[StatusBroadcaster] Client disconnected. Total: {len(self._sessions)}")

    async def broadcast(self, message: Dict[str, Any]):
        """Broadcast a JSON message to all connected sessions concurrently."""
        async with self._lock:
            sessions = list(self._sessions.values())

        if not sessions:
            return

        results = await asyncio.gather(
            *(session.send_json(message) for session in sessions),
            return_exceptions=True
        )
        failed = [s for s, ok in zip(sessions, results) if ok is not True]
        if failed:
            logger.warning("[StatusBroadcaster] Send failed", clients=len(failed))

    # =========================================================================
    # Device Status
    # =========================================================================

    def get_status(self) -> Dict[str, Any]:
        """REST-shaped status snapshot."""
        return {**self._status, "novncPort": self.novnc_port}

    def get_device_status(self, device: str) -> Optional[str]:
        return self._status.get(device)

    def emulator_status_message(self) -> Dict[str, Any]:
        state = self._status["emulator"]
        return {"type": "status", "device": "emulator", "state": state, "emulator": state}

    def linux_status_message(self) -> Dict[str, Any]:
        state = self._status["linux"]
        return {"type": "linux-status", "state": state, "linux": state, "novncPort": self.novnc_port}

    def status_messages(self) -> List[Dict[str, Any]]:
        return [self.emulator_status_message(), self.linux_status_message()]

    async def update_device_status(self, device: str, state: str):
        """Record a device state change and broadcast it."""
        self._status[device] = state
        if device == "emulator":
            await self.broadcast(self.emulator_status_message())
        else:
            await self.broadcast(self.linux_status_message())
