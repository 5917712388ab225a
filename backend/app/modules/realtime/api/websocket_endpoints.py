"""
Realtime API Endpoints
WebSocket entry point for dashboard clients plus a small status API.

Client → server frames are JSON: {"event": "<name>", "data": <payload>}
"""
import logging
from typing import Any, Awaitable, Callable, Dict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.modules.realtime.services.notification_service import notification_manager
from app.modules.whatsapp.constants import GENERAL_ROOM, customer_room
from app.shared.utils.date_utils import utcnow

router = APIRouter()
logger = logging.getLogger("realtime_api")


def _room_from(data: Any) -> str:
    if isinstance(data, dict):
        return str(data.get("room") or "")
    return str(data or "")


def _customer_from(data: Any) -> str:
    if isinstance(data, dict):
        return str(data.get("customerId") or data.get("customer_id") or "")
    return str(data or "")


# ============================================
# CLIENT EVENT HANDLERS
# ============================================

async def _handle_message(session_id: str, data: Any) -> None:
    await notification_manager.send_to_client(session_id, "messageReceived", {
        "originalMessage": data,
        "receivedAt": utcnow().isoformat(),
    })
    await notification_manager.broadcast_to_all(
        "messageBroadcast",
        {"from": session_id, "message": data},
        exclude={session_id}
    )


async def _handle_join_room(session_id: str, data: Any) -> None:
    room = _room_from(data)
    if not room:
        await notification_manager.send_to_client(session_id, "error", {"message": "room is required"})
        return
    notification_manager.join_room(session_id, room)
    await notification_manager.send_to_client(session_id, "roomJoined", {"room": room})


async def _handle_leave_room(session_id: str, data: Any) -> None:
    room = _room_from(data)
    notification_manager.leave_room(session_id, room)
    await notification_manager.send_to_client(session_id, "roomLeft", {"room": room})


async def _handle_room_message(session_id: str, data: Any) -> None:
    room = _room_from(data)
    message = data.get("message") if isinstance(data, dict) else None
    await notification_manager.send_to_room(room, "roomMessage", {
        "from": session_id,
        "room": room,
        "message": message,
    })


async def _handle_join_general(session_id: str, data: Any) -> None:
    notification_manager.join_room(session_id, GENERAL_ROOM)
    await notification_manager.send_to_client(session_id, "whatsappGeneralJoined", {"room": GENERAL_ROOM})


async def _handle_join_customer(session_id: str, data: Any) -> None:
    customer_id = _customer_from(data)
    if not customer_id:
        await notification_manager.send_to_client(session_id, "error", {"message": "customerId is required"})
        return
    room = customer_room(customer_id)
    notification_manager.join_room(session_id, room)
    await notification_manager.send_to_client(session_id, "whatsappCustomerJoined", {
        "room": room,
        "customerId": customer_id,
    })


async def _handle_leave_customer(session_id: str, data: Any) -> None:
    customer_id = _customer_from(data)
    room = customer_room(customer_id)
    notification_manager.leave_room(session_id, room)
    await notification_manager.send_to_client(session_id, "whatsappCustomerLeft", {
        "room": room,
        "customerId": customer_id,
    })


CLIENT_EVENT_HANDLERS: Dict[str, Callable[[str, Any], Awaitable[None]]] = {
    "message": _handle_message,
    "joinRoom": _handle_join_room,
    "leaveRoom": _handle_leave_room,
    "roomMessage": _handle_room_message,
    "joinWhatsAppGeneral": _handle_join_general,
    "joinWhatsAppCustomer": _handle_join_customer,
    "leaveWhatsAppCustomer": _handle_leave_customer,
}


async def handle_client_event(session_id: str, frame: Any) -> None:
    """Dispatch one client frame; unknown events get an error reply."""
    if not isinstance(frame, dict):
        await notification_manager.send_to_client(session_id, "error", {"message": "Frames must be JSON objects"})
        return

    event = frame.get("event", "")
    handler = CLIENT_EVENT_HANDLERS.get(event)
    if not handler:
        logger.warning(f"Unknown client event '{event}' from {session_id}")
        await notification_manager.send_to_client(session_id, "error", {"message": f"Unknown event: {event}"})
        return

    await handler(session_id, frame.get("data"))


# ============================================
# ENDPOINTS
# ============================================

@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    metadata = {
        "origin": websocket.headers.get("origin"),
        "user_agent": websocket.headers.get("user-agent"),
        "ip": websocket.client.host if websocket.client else None,
    }
    session_id = await notification_manager.connect(websocket, metadata=metadata)

    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except ValueError:
                await notification_manager.send_to_client(session_id, "error", {"message": "Invalid JSON"})
                continue
            await handle_client_event(session_id, frame)
    except WebSocketDisconnect:
        pass
    finally:
        await notification_manager.disconnect(session_id)


@router.get("/api/v1/realtime/status", summary="Real-time channel status")
async def get_status():
    return {
        "connectedClients": notification_manager.get_connected_clients_count(),
        "status": "active" if notification_manager.started else "stopped",
        "timestamp": utcnow().isoformat(),
    }


@router.get("/api/v1/realtime/clients", summary="List connected real-time clients")
async def get_clients():
    clients = notification_manager.get_connected_clients()
    return {"count": len(clients), "clients": clients}
