import asyncio

from app.modules.realtime.services.notification_service import ConnectionManager
from app.modules.whatsapp.constants import GENERAL_ROOM, customer_room


class FakeWebSocket:
    """Records every frame sent to it; can be told to fail on send."""

    def __init__(self, fail_on_send=False):
        self.sent = []
        self.accepted = False
        self.closed = False
        self.fail_on_send = fail_on_send

    async def accept(self):
        self.accepted = True

    async def send_json(self, payload):
        if self.fail_on_send:
            raise RuntimeError("connection closed")
        self.sent.append(payload)

    async def close(self):
        self.closed = True

    def events(self):
        return [frame["event"] for frame in self.sent]


SAMPLE_MESSAGE = {
    "id": 1,
    "conversation_id": 10,
    "customer_id": 7,
    "whatsapp_number": "5215512345678",
    "provider_message_id": "wamid.IN1",
    "sender_type": "customer",
    "message_type": "text",
    "content": "Hola",
    "status": "delivered",
}


def test_connect_greets_client_and_notifies_others():
    async def test_logic():
        manager = ConnectionManager()
        manager.startup()

        first_ws, second_ws = FakeWebSocket(), FakeWebSocket()
        first = await manager.connect(first_ws, metadata={"ip": "127.0.0.1"})
        second = await manager.connect(second_ws)

        assert first_ws.accepted is True
        assert first_ws.events() == ["connected", "clientJoined"]
        assert second_ws.events() == ["connected"]
        assert second_ws.sent[0]["data"]["clientId"] == second
        assert manager.get_connected_clients_count() == 2

        await manager.disconnect(second)
        assert first_ws.events()[-1] == "clientLeft"
        assert manager.is_connected(first)
        assert not manager.is_connected(second)

    asyncio.run(test_logic())


def test_message_reaches_general_and_customer_rooms_once():
    """
    A session in both the general and the customer room receives the event once.
    """
    async def test_logic():
        manager = ConnectionManager()
        manager.startup()

        both_ws, general_ws, other_customer_ws, idle_ws = (FakeWebSocket() for _ in range(4))
        both = await manager.connect(both_ws)
        general = await manager.connect(general_ws)
        other = await manager.connect(other_customer_ws)
        await manager.connect(idle_ws)

        manager.join_room(both, GENERAL_ROOM)
        manager.join_room(both, customer_room(7))
        manager.join_room(general, GENERAL_ROOM)
        manager.join_room(other, customer_room(8))

        delivered = await manager.emit_whatsapp_message(SAMPLE_MESSAGE)

        assert delivered == 2
        assert both_ws.events().count("whatsappMessage") == 1
        assert general_ws.events().count("whatsappMessage") == 1
        assert "whatsappMessage" not in other_customer_ws.events()
        assert "whatsappMessage" not in idle_ws.events()

        payload = both_ws.sent[-1]["data"]
        assert payload["messageId"] == "wamid.IN1"
        assert payload["customerId"] == 7
        assert "timestamp" in payload

    asyncio.run(test_logic())


def test_failed_send_drops_session():
    async def test_logic():
        manager = ConnectionManager()
        manager.startup()

        healthy_ws = FakeWebSocket()
        healthy = await manager.connect(healthy_ws)
        broken_ws = FakeWebSocket()
        broken = await manager.connect(broken_ws)
        manager.join_room(healthy, GENERAL_ROOM)
        manager.join_room(broken, GENERAL_ROOM)

        broken_ws.fail_on_send = True
        delivered = await manager.emit_message_status("wamid.OUT1", "read", 7)

        assert delivered == 1
        assert not manager.is_connected(broken)
        assert broken not in manager.get_room_members(GENERAL_ROOM)
        assert healthy_ws.sent[-1]["data"]["status"] == "read"

    asyncio.run(test_logic())


def test_rooms_join_leave_and_shutdown():
    async def test_logic():
        manager = ConnectionManager()
        manager.startup()

        ws = FakeWebSocket()
        session = await manager.connect(ws)

        assert manager.join_room("unknown-session", GENERAL_ROOM) is False
        assert manager.join_room(session, customer_room(7)) is True
        assert manager.get_room_members(customer_room(7)) == {session}
        assert manager.leave_room(session, customer_room(7)) is True
        assert manager.get_room_members(customer_room(7)) == set()
        assert manager.leave_room(session, customer_room(7)) is False

        await manager.shutdown()
        assert ws.closed is True
        assert manager.get_connected_clients_count() == 0
        assert manager.started is False

    asyncio.run(test_logic())


def test_prospect_and_webhook_events():
    async def test_logic():
        manager = ConnectionManager()
        manager.startup()

        watcher_ws, bystander_ws = FakeWebSocket(), FakeWebSocket()
        watcher = await manager.connect(watcher_ws)
        await manager.connect(bystander_ws)
        manager.join_room(watcher, customer_room(7))

        await manager.emit_customer_prospect_status(7, is_prospect=True, prospect_source="ai_agent")
        await manager.emit_webhook_event("verification", challenge="12345")

        assert watcher_ws.events()[-2:] == ["customerProspectStatus", "whatsappWebhook"]
        # Webhook activity goes to every session; prospect status only to the room
        assert "customerProspectStatus" not in bystander_ws.events()
        assert bystander_ws.events()[-1] == "whatsappWebhook"
        assert bystander_ws.sent[-1]["data"]["challenge"] == "12345"

    asyncio.run(test_logic())
