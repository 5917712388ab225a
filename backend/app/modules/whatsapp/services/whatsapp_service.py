"""
WhatsApp Service
Explicit outbound flows: start a conversation with a template, send text,
clear conversations.

Transport errors (WhatsAppSendError) propagate to the caller; the API layer
maps them to 502. Inside the autonomous AI turn the caller catches them.
"""
import logging
from typing import Optional, Dict, Any, List

from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.customers.repositories.customer_repository import CustomerRepository
from app.modules.realtime.services.notification_service import notification_manager
from app.modules.whatsapp.constants import SenderType, MessageType, MessageStatus
from app.modules.whatsapp.services.conversation_service import ConversationService
from app.modules.whatsapp.services.whatsapp_client import whatsapp_client, extract_provider_message_id
from app.modules.whatsapp.templates import (
    get_template_language,
    get_template_body,
    render_template_content,
    build_template_parameters,
)
from app.shared.core.config import settings
from app.shared.utils.exceptions import EntityNotFoundError, InvalidStateError
from app.shared.utils.phone_utils import normalize_whatsapp_number

logger = logging.getLogger("whatsapp_service")


class WhatsAppService:
    """
    Outbound messaging on top of the Cloud API client.

    Every message we send is recorded with status pending; the status
    webhook moves it forward.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.conversations = ConversationService(db)
        self.customer_repo = CustomerRepository(db)

    async def _get_customer_with_whatsapp(self, customer_id: int) -> Dict[str, Any]:
        customer = await self.customer_repo.get_by_id(customer_id)
        if not customer:
            raise EntityNotFoundError("Customer", customer_id)

        whatsapp_number = normalize_whatsapp_number(customer.get("whatsapp"))
        if not whatsapp_number:
            raise InvalidStateError("Customer does not have WhatsApp number")

        customer["whatsapp"] = whatsapp_number
        return customer

    async def _record_and_broadcast(self, **fields) -> Optional[Dict[str, Any]]:
        """Store an outbound message; broadcast only what was actually stored."""
        message = await self.conversations.record_message(**fields)
        if message:
            await notification_manager.emit_whatsapp_message(message)
        return message

    # ============================================
    # TEMPLATES
    # ============================================

    async def start_conversation(
        self,
        customer_id: int,
        template_name: str,
        language_code: Optional[str] = None,
        parameters: Optional[List[Dict[str, Any]]] = None
    ) -> Dict[str, Any]:
        """
        Open (or reuse) the customer's active conversation with a template.

        The customer's name fills the template's {{customer_name}} placeholder
        unless explicit `parameters` (Graph API components) are given.

        Raises:
            EntityNotFoundError: unknown customer
            InvalidStateError: customer has no WhatsApp number
            WhatsAppSendError: transport failure
        """
        customer = await self._get_customer_with_whatsapp(customer_id)
        conversation = await self.conversations.find_or_create(customer_id, customer["whatsapp"])

        message = await self.send_template_to_conversation(
            conversation,
            template_name,
            language_code,
            customer_name=customer.get("name"),
            parameters=parameters
        )

        logger.info(f"✅ Conversation {conversation['id']} started with template '{template_name}'")
        return {
            "success": True,
            "conversation_id": conversation["id"],
            "message_id": message["provider_message_id"] if message else None,
            "message": message,
        }

    async def send_template_to_conversation(
        self,
        conversation: Dict[str, Any],
        template_name: str,
        language_code: Optional[str] = None,
        customer_name: Optional[str] = None,
        parameters: Optional[List[Dict[str, Any]]] = None
    ) -> Optional[Dict[str, Any]]:
        """Send a template on an existing conversation and record it. Returns the stored message."""
        language_code = language_code or get_template_language(template_name, settings.WHATSAPP_DEFAULT_LANGUAGE)
        if parameters is None:
            parameters = build_template_parameters(template_name, customer_name)

        response = await whatsapp_client.send_template(
            conversation["whatsapp_number"],
            template_name,
            language_code,
            parameters
        )

        return await self._record_and_broadcast(
            conversation_id=conversation["id"],
            customer_id=conversation["customer_id"],
            whatsapp_number=conversation["whatsapp_number"],
            provider_message_id=extract_provider_message_id(response),
            sender_type=SenderType.AGENT.value,
            message_type=MessageType.TEMPLATE.value,
            content=render_template_content(template_name),
            status=MessageStatus.PENDING.value,
            is_template=True,
            template_name=template_name,
            extra_data={**response, "template_body": get_template_body(template_name, customer_name)}
        )

    # ============================================
    # TEXT
    # ============================================

    async def send_text_message(self, to: str, body: str, customer_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Send free text. When a customer id is given and the number has an
        active conversation, the message is recorded and broadcast.
        """
        to = normalize_whatsapp_number(to)
        response = await whatsapp_client.send_text(to, body)
        provider_message_id = extract_provider_message_id(response)

        message = None
        if customer_id is not None:
            conversation = await self.conversations.get_active_by_whatsapp_number(to)
            if conversation and conversation["customer_id"] != customer_id:
                logger.warning(
                    f"Active conversation for {to} belongs to customer {conversation['customer_id']}, "
                    f"not {customer_id}; message {provider_message_id} not recorded"
                )
            elif conversation:
                message = await self._record_and_broadcast(
                    conversation_id=conversation["id"],
                    customer_id=conversation["customer_id"],
                    whatsapp_number=to,
                    provider_message_id=provider_message_id,
                    sender_type=SenderType.AGENT.value,
                    message_type=MessageType.TEXT.value,
                    content=body,
                    status=MessageStatus.PENDING.value,
                    extra_data=response
                )
            else:
                logger.warning(f"No active conversation for {to}, message {provider_message_id} not recorded")

        return {
            "success": True,
            "message_id": provider_message_id,
            "recorded": message is not None,
            "data": response,
        }

    async def send_follow_up_message(self, customer_id: int, body: str) -> Dict[str, Any]:
        """Agent-initiated text to a known customer."""
        customer = await self._get_customer_with_whatsapp(customer_id)
        result = await self.send_text_message(customer["whatsapp"], body, customer_id=customer_id)
        logger.info(f"Follow-up message sent to customer {customer_id}")
        return result

    # ============================================
    # CLEAR
    # ============================================

    async def clear_conversation(self, conversation_id: int) -> Dict[str, Any]:
        conversation = await self.conversations.clear(conversation_id)
        return {"success": True, "conversation": conversation}

    async def clear_conversation_by_customer(self, customer_id: int) -> Dict[str, Any]:
        conversation = await self.conversations.clear_by_customer(customer_id)
        return {"success": True, "conversation": conversation}
