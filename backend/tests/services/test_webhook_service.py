import asyncio
from unittest.mock import MagicMock, patch, AsyncMock

from app.modules.whatsapp.services.webhook_service import WebhookService, extract_message_content
from app.modules.whatsapp.constants import UNKNOWN_MESSAGE_CONTENT

EMIT_MESSAGE_PATH = "app.modules.whatsapp.services.webhook_service.notification_manager.emit_whatsapp_message"
EMIT_WEBHOOK_PATH = "app.modules.whatsapp.services.webhook_service.notification_manager.emit_webhook_event"


def build_service(conversation=None, stored=None):
    """WebhookService with mocked conversation store, status tracker and AI dispatcher."""
    dispatcher = AsyncMock()
    service = WebhookService(MagicMock(), ai_dispatcher=dispatcher)

    service.conversations = MagicMock()
    service.conversations.get_active_by_whatsapp_number = AsyncMock(return_value=conversation)
    service.conversations.record_message = AsyncMock(return_value=stored)

    service.status_tracker = MagicMock()
    service.status_tracker.apply_status_event = AsyncMock(return_value={"success": True, "applied": True})
    return service, dispatcher


# --- CONTENT EXTRACTION ---

def test_extract_message_content_variants():
    assert extract_message_content({"type": "text", "text": {"body": "Hola"}}) == ("Hola", "text")
    assert extract_message_content(
        {"type": "button", "button": {"payload": "YES_CONTACT", "text": "Sí"}}
    ) == ("YES_CONTACT", "button")
    assert extract_message_content(
        {"type": "interactive", "interactive": {"button_reply": {"id": "b1", "title": "Agendar visita"}}}
    ) == ("Agendar visita", "button")
    assert extract_message_content({"type": "image", "image": {"id": "media1"}}) == (UNKNOWN_MESSAGE_CONTENT, "image")
    assert extract_message_content({"type": "sticker"}) == (UNKNOWN_MESSAGE_CONTENT, "text")


# --- INBOUND MESSAGES ---

def test_inbound_message_is_recorded_broadcast_and_dispatched(sample_inbound_payload, sample_conversation):
    """
    A text message on an active conversation is stored as delivered, broadcast and handed to the AI.
    """
    async def test_logic():
        stored = {"id": 1, "customer_id": 7, "provider_message_id": "wamid.IN1"}
        service, dispatcher = build_service(conversation=sample_conversation, stored=stored)

        with patch(EMIT_MESSAGE_PATH, new_callable=AsyncMock) as mock_emit:
            result = await service.process_payload(sample_inbound_payload)

        assert result == {"success": True}

        kwargs = service.conversations.record_message.call_args.kwargs
        assert kwargs["provider_message_id"] == "wamid.IN1"
        assert kwargs["sender_type"] == "customer"
        assert kwargs["status"] == "delivered"
        assert kwargs["content"] == "Hola, me interesa un lote"
        assert kwargs["delivered_at"] is not None
        assert kwargs["extra_data"]["customer_data"]["profile"]["name"] == "Ana"

        mock_emit.assert_awaited_once_with(stored)
        dispatcher.assert_awaited_once_with("5215512345678", "Hola, me interesa un lote", "wamid.IN1")

    asyncio.run(test_logic())


def test_inbound_message_without_conversation_is_dropped(sample_inbound_payload):
    async def test_logic():
        service, dispatcher = build_service(conversation=None)

        with patch(EMIT_MESSAGE_PATH, new_callable=AsyncMock) as mock_emit:
            result = await service.process_payload(sample_inbound_payload)

        # The delivery itself is acknowledged
        assert result["success"] is True
        service.conversations.record_message.assert_not_called()
        mock_emit.assert_not_awaited()
        dispatcher.assert_not_awaited()

    asyncio.run(test_logic())


def test_duplicate_delivery_is_not_rebroadcast(sample_inbound_payload, sample_conversation):
    async def test_logic():
        service, dispatcher = build_service(conversation=sample_conversation, stored=None)

        with patch(EMIT_MESSAGE_PATH, new_callable=AsyncMock) as mock_emit:
            message = sample_inbound_payload["entry"][0]["changes"][0]["value"]["messages"][0]
            result = await service.process_customer_message(message)

        assert result == {"success": True, "duplicate": True}
        mock_emit.assert_not_awaited()
        dispatcher.assert_not_awaited()

    asyncio.run(test_logic())


def test_unreadable_message_is_stored_but_skips_ai(sample_conversation):
    async def test_logic():
        stored = {"id": 2, "customer_id": 7, "provider_message_id": "wamid.IMG"}
        service, dispatcher = build_service(conversation=sample_conversation, stored=stored)
        message = {"from": "5215512345678", "id": "wamid.IMG", "type": "image", "image": {"id": "m1"}}

        with patch(EMIT_MESSAGE_PATH, new_callable=AsyncMock) as mock_emit:
            result = await service.process_customer_message(message)

        assert result == {"success": True, "ai": False}
        assert service.conversations.record_message.call_args.kwargs["content"] == UNKNOWN_MESSAGE_CONTENT
        mock_emit.assert_awaited_once()
        dispatcher.assert_not_awaited()

    asyncio.run(test_logic())


def test_failing_message_does_not_stop_the_batch(sample_conversation):
    """
    One broken item is logged; the statuses in the same delivery are still applied.
    """
    async def test_logic():
        service, dispatcher = build_service(conversation=sample_conversation)
        service.conversations.record_message = AsyncMock(side_effect=RuntimeError("db down"))

        payload = {
            "object": "whatsapp_business_account",
            "entry": [{"changes": [{"field": "messages", "value": {
                "messages": [{"from": "5215512345678", "id": "wamid.X", "type": "text", "text": {"body": "hi"}}],
                "statuses": [{"id": "wamid.OUT1", "status": "read", "timestamp": "1700000300"}]
            }}]}]
        }

        with patch(EMIT_MESSAGE_PATH, new_callable=AsyncMock):
            result = await service.process_payload(payload)

        assert result["success"] is True
        service.status_tracker.apply_status_event.assert_awaited_once()
        dispatcher.assert_not_awaited()

    asyncio.run(test_logic())


# --- STATUSES & ENVELOPE ---

def test_status_events_go_to_tracker(sample_status_payload):
    async def test_logic():
        service, _ = build_service()
        result = await service.process_payload(sample_status_payload)

        assert result["success"] is True
        event = service.status_tracker.apply_status_event.call_args.args[0]
        assert event["id"] == "wamid.OUT1"
        assert event["status"] == "delivered"

    asyncio.run(test_logic())


def test_malformed_and_foreign_payloads():
    async def test_logic():
        service, _ = build_service()

        malformed = await service.process_payload({"object": "whatsapp_business_account", "entry": "nope"})
        assert malformed == {"success": False, "error": "Invalid webhook payload"}

        foreign = await service.process_payload({"object": "page", "entry": []})
        assert foreign == {"success": True}
        service.status_tracker.apply_status_event.assert_not_called()

    asyncio.run(test_logic())


# --- VERIFICATION ---

def test_verification_echoes_challenge():
    async def test_logic():
        service, _ = build_service()

        with patch(EMIT_WEBHOOK_PATH, new_callable=AsyncMock) as mock_emit, \
             patch("app.modules.whatsapp.services.webhook_service.settings.WHATSAPP_VERIFY_TOKEN", ""):
            challenge = await service.handle_verification(
                {"hub.mode": "subscribe", "hub.verify_token": "anything", "hub.challenge": "12345"}
            )

        assert challenge == "12345"
        mock_emit.assert_awaited_once()

    asyncio.run(test_logic())


def test_verification_rejects_wrong_token_when_configured():
    async def test_logic():
        service, _ = build_service()

        with patch(EMIT_WEBHOOK_PATH, new_callable=AsyncMock) as mock_emit, \
             patch("app.modules.whatsapp.services.webhook_service.settings.WHATSAPP_VERIFY_TOKEN", "secret"):
            rejected = await service.handle_verification(
                {"hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "12345"}
            )
            accepted = await service.handle_verification(
                {"hub.mode": "subscribe", "hub.verify_token": "secret", "hub.challenge": "67890"}
            )

        assert rejected is None
        assert accepted == "67890"
        mock_emit.assert_awaited_once()

    asyncio.run(test_logic())


def test_contact_profile_only_attached_for_matching_sender(sample_conversation):
    async def test_logic():
        stored = {"id": 3, "customer_id": 7, "provider_message_id": "wamid.IN9"}
        service, _ = build_service(conversation=sample_conversation, stored=stored)
        message = {"from": "5215512345678", "id": "wamid.IN9", "type": "text", "text": {"body": "Hola"}}
        other_contact = [{"profile": {"name": "Luis"}, "wa_id": "5215599999999"}]

        with patch(EMIT_MESSAGE_PATH, new_callable=AsyncMock):
            await service.process_customer_message(message, contacts=other_contact)

        assert service.conversations.record_message.call_args.kwargs["extra_data"]["customer_data"] is None

    asyncio.run(test_logic())


def test_crashed_ai_turn_is_logged(caplog):
    """
    An AI turn that fails before the agent's own error handling (e.g. no DB
    session) is collected by the done callback and logged.
    """
    from app.modules.whatsapp.services import webhook_service

    async def test_logic():
        with patch.object(webhook_service, "run_ai_turn", new_callable=AsyncMock,
                          side_effect=RuntimeError("database unavailable")):
            await webhook_service.schedule_ai_turn("5215512345678", "Hola", "wamid.IN1")
            await webhook_service.drain_ai_turns()
            # Let the done callbacks run
            await asyncio.sleep(0)

        assert not webhook_service._ai_tasks

    with caplog.at_level("ERROR", logger="webhook_service"):
        asyncio.run(test_logic())

    assert any("database unavailable" in record.getMessage() for record in caplog.records)
