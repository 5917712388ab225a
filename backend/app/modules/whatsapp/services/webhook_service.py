"""
Webhook Service
Routes WhatsApp Cloud API webhook deliveries.

- messages[] → record the customer's message, broadcast it, start the AI turn
- statuses[] → MessageStatusTracker

The provider retries anything that is not answered with 200, so nothing in
here raises: every item is processed in isolation and failures are logged.
"""
import asyncio
import logging
from typing import Optional, Dict, Any, List, Tuple, Callable, Awaitable, Set

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.realtime.services.notification_service import notification_manager
from app.modules.whatsapp.constants import (
    SenderType,
    MessageType,
    MessageStatus,
    UNKNOWN_MESSAGE_CONTENT,
    WEBHOOK_OBJECT_TYPE,
    WEBHOOK_MESSAGES_FIELD,
)
from app.modules.whatsapp.schemas.webhook_schemas import WebhookPayload
from app.modules.whatsapp.services.ai_agent_service import AIAgentService
from app.modules.whatsapp.services.conversation_service import ConversationService
from app.modules.whatsapp.services.status_tracker import MessageStatusTracker
from app.shared.core.config import settings
from app.shared.core.logging import correlation_scope, get_correlation_id
from app.shared.db.session import AsyncSessionLocal
from app.shared.utils.date_utils import from_epoch_seconds, utcnow
from app.shared.utils.phone_utils import normalize_whatsapp_number

logger = logging.getLogger("webhook_service")

AITurnDispatcher = Callable[[str, str, Optional[str]], Awaitable[Any]]


# ============================================
# AI TURNS (one task per inbound message)
# ============================================

_ai_tasks: Set[asyncio.Task] = set()


async def run_ai_turn(whatsapp_number: str, content: str, provider_message_id: Optional[str]) -> Dict[str, Any]:
    """Run the AI turn with its own session; the webhook request has already returned."""
    with correlation_scope(f"{get_correlation_id() or 'evt'}:ai"):
        async with AsyncSessionLocal() as db:
            result = await AIAgentService(db).process_customer_message(
                whatsapp_number, content, provider_message_id
            )
            logger.info(f"AI turn for {provider_message_id}: {result.get('action')}")
            return result


def _on_ai_turn_done(task: asyncio.Task) -> None:
    _ai_tasks.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"❌ AI turn crashed outside the agent pipeline: {error}", exc_info=error)


async def schedule_ai_turn(whatsapp_number: str, content: str, provider_message_id: Optional[str]) -> None:
    task = asyncio.create_task(run_ai_turn(whatsapp_number, content, provider_message_id))
    _ai_tasks.add(task)
    task.add_done_callback(_on_ai_turn_done)


async def drain_ai_turns() -> None:
    """Wait for AI turns still running (app shutdown)."""
    if _ai_tasks:
        logger.info(f"Waiting for {len(_ai_tasks)} AI turn(s) to finish")
        await asyncio.gather(*list(_ai_tasks), return_exceptions=True)


# ============================================
# CONTENT EXTRACTION
# ============================================

def extract_message_content(message: Dict[str, Any]) -> Tuple[str, str]:
    """
    (content, message_type) of an inbound message.

    Quick-reply buttons carry their payload; interactive replies their title.
    Anything we cannot read is kept with a placeholder content.
    """
    provider_type = message.get("type", "")

    button = message.get("button")
    if isinstance(button, dict) and (button.get("payload") or button.get("text")):
        return button.get("payload") or button.get("text"), MessageType.BUTTON.value

    interactive = message.get("interactive")
    if isinstance(interactive, dict):
        reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
        if reply.get("title") or reply.get("id"):
            return reply.get("title") or reply.get("id"), MessageType.BUTTON.value

    text = message.get("text")
    if isinstance(text, dict) and text.get("body"):
        return text["body"], MessageType.TEXT.value

    return UNKNOWN_MESSAGE_CONTENT, MessageType.from_provider(provider_type).value


def _customer_data(contacts: List[Dict[str, Any]], wa_id: str) -> Optional[Dict[str, Any]]:
    for contact in contacts:
        if normalize_whatsapp_number(contact.get("wa_id")) == wa_id:
            return contact
    return None


class WebhookService:

    def __init__(self, db: AsyncSession, ai_dispatcher: Optional[AITurnDispatcher] = None):
        self.db = db
        self.conversations = ConversationService(db)
        self.status_tracker = MessageStatusTracker(db)
        self.ai_dispatcher = ai_dispatcher or schedule_ai_turn

    # ============================================
    # VERIFICATION
    # ============================================

    async def handle_verification(self, query: Dict[str, str]) -> Optional[str]:
        """
        Subscription handshake. Returns the challenge to echo, or None when a
        verify token is configured and the request carries a different one.
        """
        mode = query.get("hub.mode")
        token = query.get("hub.verify_token")
        challenge = query.get("hub.challenge", "")

        if settings.WHATSAPP_VERIFY_TOKEN and mode == "subscribe" and token != settings.WHATSAPP_VERIFY_TOKEN:
            logger.warning("❌ Webhook verification rejected: verify token mismatch")
            return None

        logger.info("✅ Webhook verification request")
        await notification_manager.emit_webhook_event("verification", challenge=challenge, data=dict(query))
        return challenge

    # ============================================
    # EVENTS
    # ============================================

    async def process_payload(self, payload: Any) -> Dict[str, Any]:
        """Process one webhook delivery. Never raises."""
        try:
            envelope = WebhookPayload.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"Malformed webhook payload: {e.error_count()} validation error(s)")
            return {"success": False, "error": "Invalid webhook payload"}

        if envelope.object != WEBHOOK_OBJECT_TYPE:
            logger.info(f"Ignoring webhook for object '{envelope.object}'")
            return {"success": True}

        for entry in envelope.entry:
            for change in entry.changes:
                if change.field != WEBHOOK_MESSAGES_FIELD:
                    logger.debug(f"Ignoring webhook change field '{change.field}'")
                    continue

                value = change.value
                for message in value.messages:
                    try:
                        await self.process_customer_message(message, value.metadata, value.contacts)
                    except Exception as e:
                        logger.error(f"❌ Failed to process message {message.get('id')}: {e}", exc_info=True)

                for status_event in value.statuses:
                    try:
                        await self.status_tracker.apply_status_event(status_event)
                    except Exception as e:
                        logger.error(f"❌ Failed to process status for {status_event.get('id')}: {e}")

        return {"success": True}

    async def process_customer_message(
        self,
        message: Dict[str, Any],
        metadata: Optional[Dict[str, Any]] = None,
        contacts: Optional[List[Dict[str, Any]]] = None
    ) -> Dict[str, Any]:
        whatsapp_number = normalize_whatsapp_number(message.get("from"))
        provider_message_id = message.get("id")

        if not whatsapp_number or not provider_message_id:
            logger.warning("Inbound message without sender or id, skipping")
            return {"success": False, "error": "Missing sender or message id"}

        conversation = await self.conversations.get_active_by_whatsapp_number(whatsapp_number)
        if not conversation:
            logger.warning(f"No active conversation for {whatsapp_number}, dropping message {provider_message_id}")
            return {"success": False, "error": "No active conversation"}

        content, message_type = extract_message_content(message)

        stored = await self.conversations.record_message(
            conversation_id=conversation["id"],
            customer_id=conversation["customer_id"],
            whatsapp_number=whatsapp_number,
            provider_message_id=provider_message_id,
            sender_type=SenderType.CUSTOMER.value,
            message_type=message_type,
            content=content,
            status=MessageStatus.DELIVERED.value,
            delivered_at=from_epoch_seconds(message.get("timestamp")) or utcnow(),
            extra_data={
                "message": message,
                "metadata": metadata or {},
                "customer_data": _customer_data(contacts or [], whatsapp_number),
            }
        )

        if stored is None:
            logger.info(f"Message {provider_message_id} already processed, skipping")
            return {"success": True, "duplicate": True}

        logger.info(f"📩 Message {provider_message_id} from {whatsapp_number} on conversation {conversation['id']}")
        await notification_manager.emit_whatsapp_message(stored)

        if content == UNKNOWN_MESSAGE_CONTENT:
            return {"success": True, "ai": False}

        await self.ai_dispatcher(whatsapp_number, content, provider_message_id)
        return {"success": True, "ai": True}
