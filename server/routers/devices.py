"""Device lifecycle routes used by the dashboard."""

from fastapi import APIRouter, Depends, HTTPException
from typing import Dict, Any

from core.container import container
from core.logging import get_logger
from services.device.lifecycle import DeviceLifecycle
from services.relay import DeviceRelay, LINUX
from services.status_broadcaster import StatusBroadcaster

logger = get_logger(__name__)
router = APIRouter(prefix="/api", tags=["devices"])


def _lifecycle(relay: DeviceRelay, device: str) -> DeviceLifecycle:
    lifecycle = relay.lifecycles.get(device)
    if lifecycle is None:
        raise HTTPException(status_code=404, detail=f"Unknown device: {device}")
    return lifecycle


@router.get("/status")
async def get_status(
    broadcaster: StatusBroadcaster = Depends(lambda: container.status_broadcaster())
) -> Dict[str, Any]:
    """Current state of both devices plus the noVNC port."""
    return broadcaster.get_status()


@router.post("/{device}/start")
async def start_device(
    device: str,
    relay: DeviceRelay = Depends(lambda: container.relay())
) -> Dict[str, Any]:
    """Begin starting a device; returns immediately with the new state.

    Startup completes in the background and is announced over the WebSocket
    as a status message.
    """
    lifecycle = _lifecycle(relay, device)
    logger.info("[Devices API] Start requested", device=device)
    state = await lifecycle.start()
    return {"success": True, "device": device, "state": state.value}


@router.post("/{device}/stop")
async def stop_device(
    device: str,
    relay: DeviceRelay = Depends(lambda: container.relay())
) -> Dict[str, Any]:
    lifecycle = _lifecycle(relay, device)
    logger.info("[Devices API] Stop requested", device=device)
    state = await lifecycle.stop()
    return {"success": True, "device": device, "state": state.value}


@router.post("/linux/reset")
async def reset_linux(
    relay: DeviceRelay = Depends(lambda: container.relay())
) -> Dict[str, Any]:
    """Stop and restart the Linux desktop container."""
    logger.info("[Devices API] Reset requested", device=LINUX)
    state = await relay.linux.reset()
    return {"success": True, "device": LINUX, "state": state.value}


