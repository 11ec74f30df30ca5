"""Health check utilities for daemon monitoring.

Provides uptime tracking and the relay health status for the /health endpoint.
"""
import time
from typing import Dict, Any, TYPE_CHECKING

import psutil

from services.device.scheduling import pending_background_tasks

if TYPE_CHECKING:
    from services.relay import DeviceRelay

# Module-level startup time tracking
_startup_time: float = 0.0


def set_startup_time() -> None:
    """Record the application startup time. Call once during lifespan startup."""
    global _startup_time
    _startup_time = time.time()


def get_uptime() -> float:
    """Get uptime in seconds since startup."""
    return time.time() - _startup_time if _startup_time else 0.0


def get_memory_mb() -> float:
    """Get current process memory usage in MB."""
    try:
        return psutil.Process().memory_info().rss / (1024 * 1024)
    except psutil.Error:
        return 0.0


def get_cpu_percent() -> float:
    """Get current process CPU usage percentage (non-blocking sample)."""
    try:
        return psutil.Process().cpu_percent(interval=None)
    except psutil.Error:
        return 0.0


def get_health_status(relay: "DeviceRelay") -> Dict[str, Any]:
    """Get health status for /health endpoint.

    The relay itself is healthy whenever it is serving; a device channel that is
    reconnecting only marks the status as degraded.
    """
    reconnector = relay.reconnector
    degraded = relay.emulator.is_running() and (
        relay.link.channel is None or reconnector.state.value != "stable"
    )

    return {
        "status": "degraded" if degraded else "healthy",
        "uptime_seconds": round(get_uptime(), 1),
        "memory_mb": round(get_memory_mb(), 1),
        "cpu_percent": round(get_cpu_percent(), 1),
        "devices": {
            name: lifecycle.state.value
            for name, lifecycle in relay.lifecycles.items()
        },
        "relay": {
            "clients": relay.broadcaster.connection_count,
            "channel_generation": relay.link.generation,
            "reconnect_state": reconnector.state.value,
            "reconnects": reconnector.reconnects,
            "adb_shell_alive": relay.adb.is_alive,
            "background_tasks": pending_background_tasks(),
        },
    }
