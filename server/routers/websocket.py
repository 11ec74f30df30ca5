"""WebSocket router for the device-control relay.

One socket per browser page carries everything:
- inbound JSON input (touch, mouse, wheel gestures, keys, clipboard)
- outbound binary screen frames
- outbound JSON control messages (config, status, clipboard, pong)

Each message kind is routed to the device it targets and dropped silently when
that device is not running, except for the always-allowed control messages.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, NamedTuple, Optional, Set

import orjson
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from core.container import container
from core.logging import get_logger
from models.messages import (
    ClientMessage,
    ClipboardReadMessage,
    KeyMessage,
    LinuxClipboardReadMessage,
    LinuxKeyMessage,
    LinuxPasteMessage,
    LinuxTypeMessage,
    MouseMessage,
    PasteMessage,
    PinchMessage,
    ResetChromeMessage,
    ScrollMessage,
    TouchMessage,
    parse_message,
)
from services.relay import EMULATOR, LINUX
from services.session import ClientSession

logger = get_logger(__name__)

router = APIRouter(tags=["websocket"])

# Type for message handlers; a returned dict is sent back to the client
MessageHandler = Callable[[Any, ClientSession], Awaitable[Optional[Dict[str, Any]]]]


class MessageRoute(NamedTuple):
    device: Optional[str]  # None: accepted regardless of device state
    handler: MessageHandler


# ============================================================================
# Control Handlers
# ============================================================================

async def handle_ping(message: ClientMessage, session: ClientSession) -> Dict[str, Any]:
    """Handle ping request."""
    return {"type": "pong", "timestamp": time.time()}


async def handle_status_read(message: ClientMessage, session: ClientSession) -> None:
    """Resend the current device status messages."""
    broadcaster = container.status_broadcaster()
    for status in broadcaster.status_messages():
        await session.send_json(status)


# ============================================================================
# Emulator Handlers
# ============================================================================

async def handle_touch(message: TouchMessage, session: ClientSession) -> None:
    relay = container.relay()
    await relay.touch(round(message.x), round(message.y), message.pressure, message.id)


async def handle_mouse(message: MouseMessage, session: ClientSession) -> None:
    relay = container.relay()
    await relay.mouse(round(message.x), round(message.y), message.buttons)


async def handle_scroll(message: ScrollMessage, session: ClientSession) -> None:
    session.gestures.on_scroll(message.x, message.y, message.dx, message.dy)


async def handle_pinch(message: PinchMessage, session: ClientSession) -> None:
    session.gestures.on_pinch(message.x, message.y, message.delta)


async def handle_key(message: KeyMessage, session: ClientSession) -> None:
    relay = container.relay()
    relay.key(message.event_type, message.key, message.ctrl, message.shift, message.alt)


async def handle_paste(message: PasteMessage, session: ClientSession) -> None:
    relay = container.relay()
    await relay.paste(message.text)


async def handle_clipboard_read(message: ClipboardReadMessage, session: ClientSession) -> Optional[Dict[str, Any]]:
    relay = container.relay()
    text = await relay.read_clipboard()
    if text is None:
        return None
    return {"type": "clipboard", "text": text}


async def handle_reset_chrome(message: ResetChromeMessage, session: ClientSession) -> None:
    """Wipe Chrome's data and reopen it on a blank page."""
    relay = container.relay()
    logger.info("[WebSocket] Resetting Chrome", session_id=session.id)
    relay.reset_chrome()


# ============================================================================
# Linux Handlers
# ============================================================================

async def handle_linux_key(message: LinuxKeyMessage, session: ClientSession) -> None:
    relay = container.relay()
    relay.linux_key(message.key, message.ctrl, message.shift, message.alt)


async def handle_linux_type(message: LinuxTypeMessage, session: ClientSession) -> None:
    relay = container.relay()
    relay.linux_type(message.text)


async def handle_linux_paste(message: LinuxPasteMessage, session: ClientSession) -> None:
    relay = container.relay()
    relay.linux_paste(message.text)


async def handle_linux_clipboard_read(
    message: LinuxClipboardReadMessage, session: ClientSession
) -> Optional[Dict[str, Any]]:
    relay = container.relay()
    text = await relay.read_linux_clipboard()
    if text is None:
        return None
    return {"type": "linux-clipboard", "text": text}


# ============================================================================
# Message Router
# ============================================================================

MESSAGE_HANDLERS: Dict[str, MessageRoute] = {
    # Always allowed
    "ping": MessageRoute(None, handle_ping),
    "status-read": MessageRoute(None, handle_status_read),

    # Emulator
    "touch": MessageRoute(EMULATOR, handle_touch),
    "mouse": MessageRoute(EMULATOR, handle_mouse),
    "scroll": MessageRoute(EMULATOR, handle_scroll),
    "pinch": MessageRoute(EMULATOR, handle_pinch),
    "key": MessageRoute(EMULATOR, handle_key),
    "paste": MessageRoute(EMULATOR, handle_paste),
    "clipboard-read": MessageRoute(EMULATOR, handle_clipboard_read),
    "reset-chrome": MessageRoute(EMULATOR, handle_reset_chrome),

    # Linux desktop
    "linux-key": MessageRoute(LINUX, handle_linux_key),
    "linux-type": MessageRoute(LINUX, handle_linux_type),
    "linux-paste": MessageRoute(LINUX, handle_linux_paste),
    "linux-clipboard-read": MessageRoute(LINUX, handle_linux_clipboard_read),
}


def decode_message(text: str) -> Optional[ClientMessage]:
    """Decode one text frame; None for invalid JSON or an unknown/invalid shape."""
    try:
        raw = orjson.loads(text)
    except orjson.JSONDecodeError:
        return None
    return parse_message(raw)


def route_message(message: ClientMessage) -> Optional[MessageRoute]:
    """Look up the route, or None if its device is not running."""
    route = MESSAGE_HANDLERS.get(message.type)
    if route is None:
        return None
    if route.device is not None and not container.relay().is_running(route.device):
        return None
    return route


async def _execute_handler(route: MessageRoute, message: ClientMessage, session: ClientSession):
    """Run one handler and send its reply, if any."""
    try:
        result = await route.handler(message, session)
        if result is not None:
            await session.send_json(result)
    except asyncio.CancelledError:
        logger.debug("[WebSocket] Handler cancelled", msg_type=message.type)
        raise
    except Exception as e:
        logger.error("Handler error", msg_type=message.type, error=str(e), exc_info=True)


@router.websocket("/")
async def websocket_relay_endpoint(websocket: WebSocket):
    """WebSocket endpoint for screen streaming and device input.

    Uses the decoupled receive/process pattern with asyncio.Queue:
    - Receive task: reads frames into the queue, skipping binary input
    - Process task: validates, gates and dispatches each message in arrival
      order; handlers run as tasks so a slow clipboard read never stalls input
    """
    relay = container.relay()
    await websocket.accept()

    session = relay.create_session(websocket)
    await relay.open_session(session)
    logger.info("[WebSocket] Client connected", session_id=session.id)

    message_queue: asyncio.Queue = asyncio.Queue()
    handler_tasks: Set[asyncio.Task] = set()

    async def receive_loop():
        """Receives text frames and puts them in queue - never blocks on handlers."""
        try:
            while True:
                frame = await websocket.receive()
                if frame["type"] == "websocket.disconnect":
                    break
                text = frame.get("text")
                if text is not None:
                    await message_queue.put(text)
        except WebSocketDisconnect:
            pass
        except asyncio.CancelledError:
            await message_queue.put(None)
            raise
        except Exception as e:
            if not isinstance(e, (KeyboardInterrupt, SystemExit)):
                logger.error(f"[WebSocket] Receive error: {e}")
        await message_queue.put(None)  # Signal shutdown

    async def process_loop():
        """Processes messages from queue - spawns one handler task per message."""
        while True:
            text = await message_queue.get()
            if text is None:
                break

            message = decode_message(text)
            if message is None:
                continue

            route = route_message(message)
            if route is None:
                continue

            task = asyncio.create_task(_execute_handler(route, message, session))
            handler_tasks.add(task)
            task.add_done_callback(handler_tasks.discard)

    try:
        async with asyncio.TaskGroup() as tg:
            tg.create_task(receive_loop())
            tg.create_task(process_loop())

    except* WebSocketDisconnect:
        pass  # Normal disconnect
    except* asyncio.CancelledError:
        pass  # Task cancelled during shutdown
    except* Exception as eg:
        for exc in eg.exceptions:
            logger.error(f"[WebSocket] TaskGroup error: {exc}")
    finally:
        for task in list(handler_tasks):
            if not task.done():
                task.cancel()
        if handler_tasks:
            await asyncio.gather(*handler_tasks, return_exceptions=True)

        await relay.close_session(session)
        logger.info("[WebSocket] Client disconnected", session_id=session.id)


@router.get("/ws/info")
async def websocket_info():
    """Get WebSocket connection info."""
    broadcaster = container.status_broadcaster()
    return {
        "endpoint": "/",
        "connected_clients": broadcaster.connection_count,
        "current_status": broadcaster.get_status(),
        "supported_message_types": list(MESSAGE_HANDLERS.keys()),
    }
