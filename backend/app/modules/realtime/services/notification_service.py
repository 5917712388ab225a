"""
Notification Service
Real-time fan-out of conversation events to dashboard WebSocket clients.

Rooms:
- "general": every WhatsApp event
- "customer:<id>": events of one customer

Delivery is best-effort and at-most-once: nothing is queued for sessions that
are not connected, and a session whose send fails is dropped.

The registry is only touched from the event loop. Broadcasts iterate over a
snapshot, so a connect/disconnect that happens while a send is awaiting does
not disturb the loop.
"""
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from app.modules.whatsapp.constants import RealtimeEvent, GENERAL_ROOM, customer_room
from app.shared.utils.date_utils import utcnow

logger = logging.getLogger("notification_service")


@dataclass
class ClientInfo:
    """Metadata recorded for each connected session."""
    id: str
    connected_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "connected_at": self.connected_at.isoformat(),
            "metadata": self.metadata,
        }


class ConnectionManager:
    """
    Registry of WebSocket sessions and rooms.

    Lifecycle: `startup()` when the app starts, `shutdown()` when it stops
    (closes every session and clears the registry).
    """

    def __init__(self):
        self.active_connections: Dict[str, WebSocket] = {}
        self.connection_metadata: Dict[str, ClientInfo] = {}
        self.rooms: Dict[str, Set[str]] = defaultdict(set)
        self.started = False

    # ============================================
    # LIFECYCLE
    # ============================================

    def startup(self) -> None:
        self.active_connections.clear()
        self.connection_metadata.clear()
        self.rooms.clear()
        self.started = True
        logger.info("Notification manager started")

    async def shutdown(self) -> None:
        for session_id, websocket in list(self.active_connections.items()):
            try:
                await websocket.close()
            except Exception as e:
                logger.debug(f"Error closing session {session_id}: {e}")
        self.active_connections.clear()
        self.connection_metadata.clear()
        self.rooms.clear()
        self.started = False
        logger.info("Notification manager stopped, all sessions closed")

    # ============================================
    # CONNECTIONS
    # ============================================

    async def connect(self, websocket: WebSocket, metadata: Optional[dict] = None) -> str:
        """Accept and register a session; greet it and tell the others."""
        await websocket.accept()

        session_id = uuid.uuid4().hex
        self.active_connections[session_id] = websocket
        self.connection_metadata[session_id] = ClientInfo(
            id=session_id,
            connected_at=utcnow(),
            metadata=metadata or {}
        )

        logger.info(
            f"WS connected session={session_id} ip={(metadata or {}).get('ip')} "
            f"total={len(self.active_connections)}"
        )

        await self.send_to_client(session_id, RealtimeEvent.CONNECTED.value, {
            "message": "Successfully connected to WebSocket server",
            "clientId": session_id,
        })
        await self.broadcast_to_all(
            RealtimeEvent.CLIENT_JOINED.value,
            {"clientId": session_id},
            exclude={session_id}
        )
        return session_id

    async def disconnect(self, session_id: str) -> None:
        """Deregister a session and tell the others it left."""
        if not self._remove(session_id):
            return
        logger.info(f"WS disconnected session={session_id}")
        await self.broadcast_to_all(RealtimeEvent.CLIENT_LEFT.value, {"clientId": session_id})

    def _remove(self, session_id: str) -> bool:
        websocket = self.active_connections.pop(session_id, None)
        self.connection_metadata.pop(session_id, None)
        for room in list(self.rooms):
            members = self.rooms[room]
            members.discard(session_id)
            if not members:
                del self.rooms[room]
        return websocket is not None

    def is_connected(self, session_id: str) -> bool:
        return session_id in self.active_connections

    def get_connected_clients(self) -> List[dict]:
        return [info.to_dict() for info in self.connection_metadata.values()]

    def get_connected_clients_count(self) -> int:
        return len(self.active_connections)

    # ============================================
    # ROOMS
    # ============================================

    def join_room(self, session_id: str, room: str) -> bool:
        if session_id not in self.active_connections:
            return False
        self.rooms[room].add(session_id)
        logger.debug(f"Session {session_id} joined room {room}")
        return True

    def leave_room(self, session_id: str, room: str) -> bool:
        members = self.rooms.get(room)
        if not members or session_id not in members:
            return False
        members.discard(session_id)
        if not members:
            del self.rooms[room]
        logger.debug(f"Session {session_id} left room {room}")
        return True

    def get_room_members(self, room: str) -> Set[str]:
        return set(self.rooms.get(room, set()))

    # ============================================
    # SEND PRIMITIVES
    # ============================================

    @staticmethod
    def build_payload(event: str, data: Optional[dict]) -> dict:
        body = dict(data or {})
        body.setdefault("timestamp", utcnow().isoformat())
        return {"event": event, "data": jsonable_encoder(body)}

    async def _deliver(self, session_ids: Iterable[str], payload: dict) -> int:
        """Send to each session once; drop sessions whose send fails."""
        delivered = 0
        failed = []
        for session_id in list(dict.fromkeys(session_ids)):
            websocket = self.active_connections.get(session_id)
            if websocket is None:
                continue
            try:
                await websocket.send_json(payload)
                delivered += 1
            except Exception as e:
                logger.warning(f"Send to session {session_id} failed, dropping it: {e}")
                failed.append(session_id)

        for session_id in failed:
            self._remove(session_id)
        return delivered

    async def send_to_client(self, session_id: str, event: str, data: Optional[dict] = None) -> bool:
        if session_id not in self.active_connections:
            logger.warning(f"Client {session_id} not found")
            return False
        return await self._deliver([session_id], self.build_payload(event, data)) == 1

    async def send_to_room(self, room: str, event: str, data: Optional[dict] = None) -> int:
        return await self.send_to_rooms([room], event, data)

    async def send_to_rooms(self, rooms: Iterable[str], event: str, data: Optional[dict] = None) -> int:
        """Send to the union of several rooms; a session in two rooms gets it once."""
        targets: List[str] = []
        for room in rooms:
            targets.extend(sorted(self.rooms.get(room, set())))
        return await self._deliver(targets, self.build_payload(event, data))

    async def broadcast_to_all(
        self,
        event: str,
        data: Optional[dict] = None,
        exclude: Optional[Set[str]] = None
    ) -> int:
        exclude = exclude or set()
        targets = [sid for sid in list(self.active_connections) if sid not in exclude]
        return await self._deliver(targets, self.build_payload(event, data))

    # ============================================
    # DOMAIN EVENTS
    # ============================================

    async def emit_whatsapp_message(self, message: dict) -> int:
        """New inbound/outbound message → general + the customer's room."""
        customer_id = message.get("customer_id")
        data = {
            "id": message.get("id"),
            "conversationId": message.get("conversation_id"),
            "customerId": customer_id,
            "whatsappNumber": message.get("whatsapp_number"),
            "messageId": message.get("provider_message_id"),
            "senderType": message.get("sender_type"),
            "messageType": message.get("message_type"),
            "content": message.get("content"),
            "status": message.get("status"),
            "isTemplate": message.get("is_template", False),
            "templateName": message.get("template_name"),
            "createdAt": message.get("created_at"),
        }
        delivered = await self.send_to_rooms(
            [GENERAL_ROOM, customer_room(customer_id)],
            RealtimeEvent.WHATSAPP_MESSAGE.value,
            data
        )
        logger.info(f"whatsappMessage emitted to general and {customer_room(customer_id)} ({delivered} sessions)")
        return delivered

    async def emit_message_status(self, message_id: str, status: str, customer_id: Any) -> int:
        return await self.send_to_rooms(
            [GENERAL_ROOM, customer_room(customer_id)],
            RealtimeEvent.WHATSAPP_MESSAGE_STATUS.value,
            {"messageId": message_id, "status": status, "customerId": customer_id}
        )

    async def emit_customer_prospect_status(
        self,
        customer_id: Any,
        is_prospect: bool,
        prospect_date: Optional[datetime] = None,
        prospect_source: Optional[str] = None,
        additional_notes: Optional[str] = None
    ) -> int:
        delivered = await self.send_to_rooms(
            [GENERAL_ROOM, customer_room(customer_id)],
            RealtimeEvent.CUSTOMER_PROSPECT_STATUS.value,
            {
                "customerId": customer_id,
                "isProspect": is_prospect,
                "prospectDate": prospect_date,
                "prospectSource": prospect_source,
                "additionalNotes": additional_notes,
            }
        )
        logger.info(f"customerProspectStatus emitted: {customer_id} -> {is_prospect}")
        return delivered

    async def emit_webhook_event(
        self,
        event_type: str,
        challenge: Optional[str] = None,
        data: Optional[dict] = None
    ) -> int:
        """Webhook activity (e.g. verification) → every connected session."""
        delivered = await self.broadcast_to_all(
            RealtimeEvent.WHATSAPP_WEBHOOK.value,
            {"type": event_type, "challenge": challenge, "data": data}
        )
        logger.info(f"whatsappWebhook event emitted: {event_type}")
        return delivered


# Process-wide instance; initialised/cleared by the app lifespan
notification_manager = ConnectionManager()
