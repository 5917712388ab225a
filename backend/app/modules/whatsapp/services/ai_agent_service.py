"""
AI Agent Service
Turns one inbound customer message into at most one outbound agent message.

Flow per message:
1. Resolve the active conversation for the sender
2. Load the last messages as role-tagged history
3. Customer's first answer (message_count == 2) → information template, once
4. Otherwise: sentiment analysis → context → generated reply
5. Execute the model's function call (if any)
6. Send the reply, record it, broadcast it

Runs unattended from the webhook, so it never raises: failures are logged and
reported as {"success": False, "action": "aborted"}.
"""
import logging
from typing import Optional, Dict, Any, List

from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.ai.repositories.sentiment_repository import SentimentRepository
from app.modules.ai.services.function_calls import parse_function_call, execute_function_call
from app.modules.ai.services.llm_service import llm_service
from app.modules.realtime.services.notification_service import notification_manager
from app.modules.whatsapp.constants import SenderType, MessageType, MessageStatus
from app.modules.whatsapp.services.conversation_service import ConversationService
from app.modules.whatsapp.services.whatsapp_client import (
    whatsapp_client,
    extract_provider_message_id,
    WhatsAppSendError,
)
from app.modules.whatsapp.services.whatsapp_service import WhatsAppService
from app.shared.core.config import settings
from app.shared.core.constants import (
    AI_HISTORY_WINDOW,
    INFORMATION_TEMPLATE_TRIGGER_COUNT,
    SENTIMENT_TREND_WINDOW,
)
from app.shared.utils.exceptions import EntityNotFoundError

logger = logging.getLogger("ai_agent_service")

DEFAULT_START_TEMPLATE = "start_conversation_es"

ROLE_BY_SENDER = {
    SenderType.CUSTOMER.value: "user",
    SenderType.AGENT.value: "assistant",
}


def build_history(messages: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Stored messages → [{"role": "user"|"assistant", "content": ...}]."""
    return [
        {"role": ROLE_BY_SENDER.get(m.get("sender_type"), "user"), "content": m.get("content") or ""}
        for m in messages
    ]


def build_context(conversation: Dict[str, Any], analysis: Dict[str, Any]) -> str:
    """Conversation metadata plus the sentiment summary, as plain text for the prompt."""
    lead = analysis.get("lead_qualification") or {}
    lines = [
        f"Conversation ID: {conversation.get('id')}",
        f"Customer ID: {conversation.get('customer_id')}",
        f"Messages so far: {conversation.get('message_count', 0)}",
        f"Last message from: {conversation.get('last_message_from')}",
        f"Customer sentiment: {analysis.get('sentiment', 'neutral')} "
        f"(confidence {analysis.get('confidence', 0.5)})",
    ]
    if analysis.get("reasoning"):
        lines.append(f"Sentiment reasoning: {analysis['reasoning']}")
    if lead:
        lines.append(
            f"Lead: urgency={lead.get('urgency')}, buying_intent={lead.get('buying_intent')}, "
            f"timeline={lead.get('timeline')}"
        )
        if lead.get("next_best_action"):
            lines.append(f"Next best action: {lead['next_best_action']}")
    return "\n".join(lines)


def analysis_from_record(record: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Stored sentiment row → the analysis shape build_context expects."""
    if not record:
        return {}
    return {
        "sentiment": record.get("sentiment"),
        "confidence": record.get("confidence"),
        "reasoning": record.get("reasoning"),
        "lead_qualification": {
            "urgency": record.get("urgency"),
            "buying_intent": record.get("buying_intent"),
            "timeline": record.get("timeline"),
            "next_best_action": record.get("next_best_action"),
        },
    }


class AIAgentService:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.conversations = ConversationService(db)
        self.whatsapp = WhatsAppService(db)
        self.sentiment_repo = SentimentRepository(db)
        self.llm = llm_service

    # ============================================
    # INBOUND PIPELINE
    # ============================================

    async def process_customer_message(
        self,
        whatsapp_number: str,
        content: str,
        provider_message_id: Optional[str] = None
    ) -> Dict[str, Any]:
        try:
            return await self._process(whatsapp_number, content, provider_message_id)
        except Exception as e:
            logger.error(f"❌ AI turn for {whatsapp_number} failed: {e}", exc_info=True)
            await self.db.rollback()
            return {"success": False, "action": "aborted", "error": str(e)}

    async def _process(
        self,
        whatsapp_number: str,
        content: str,
        provider_message_id: Optional[str]
    ) -> Dict[str, Any]:
        conversation = await self.conversations.get_active_by_whatsapp_number(whatsapp_number)
        if not conversation:
            logger.warning(f"No active conversation for {whatsapp_number}, skipping AI turn")
            return {"success": False, "action": "no_conversation"}

        recent = await self.conversations.get_recent_messages(
            conversation["id"],
            limit=AI_HISTORY_WINDOW,
            exclude_provider_message_id=provider_message_id
        )
        history = build_history(recent)

        if await self._should_send_information_template(conversation):
            return await self._send_information_template(conversation)

        # Sentiment / lead qualification
        sentiment = await self.llm.analyze_sentiment(content, history)
        if not sentiment.get("success"):
            logger.error(f"Sentiment analysis failed for conversation {conversation['id']}: {sentiment.get('error')}")
            return {"success": False, "action": "aborted", "error": sentiment.get("error")}

        analysis = sentiment["analysis"]
        context = build_context(conversation, analysis)
        await self._save_sentiment(conversation, content, analysis, context)

        # Reply
        reply = await self.llm.generate_response(content, history, context)
        if not reply.get("success"):
            logger.error(f"Reply generation failed for conversation {conversation['id']}: {reply.get('error')}")
            return {"success": False, "action": "aborted", "error": reply.get("error")}

        function_result = await self._run_function_call(reply.get("function_call"), conversation["customer_id"])

        customer_message = reply["customer_message"]
        try:
            response = await whatsapp_client.send_text(conversation["whatsapp_number"], customer_message)
        except WhatsAppSendError as e:
            logger.error(f"Failed to send AI reply to {conversation['whatsapp_number']}: {e}")
            return {
                "success": False,
                "action": "aborted",
                "error": str(e),
                "function_result": function_result,
            }

        message = await self.conversations.record_message(
            conversation_id=conversation["id"],
            customer_id=conversation["customer_id"],
            whatsapp_number=conversation["whatsapp_number"],
            provider_message_id=extract_provider_message_id(response),
            sender_type=SenderType.AGENT.value,
            message_type=MessageType.TEXT.value,
            content=customer_message,
            status=MessageStatus.PENDING.value,
            is_template=False,
            extra_data={"ai_generated": True, "sentiment": analysis.get("sentiment"), "response": response}
        )

        if message:
            await notification_manager.emit_whatsapp_message(message)
        else:
            logger.warning(f"AI reply for conversation {conversation['id']} was not persisted, not broadcasting")

        logger.info(f"🤖 AI reply sent on conversation {conversation['id']}")
        return {
            "success": True,
            "action": "ai_response_sent",
            "message": message,
            "sentiment": analysis.get("sentiment"),
            "function_result": function_result,
        }

    async def _should_send_information_template(self, conversation: Dict[str, Any]) -> bool:
        if conversation.get("message_count") != INFORMATION_TEMPLATE_TRIGGER_COUNT:
            return False
        return not await self.conversations.has_template_been_sent(
            conversation["id"], settings.INFORMATION_TEMPLATE_NAME
        )

    async def _send_information_template(self, conversation: Dict[str, Any]) -> Dict[str, Any]:
        template_name = settings.INFORMATION_TEMPLATE_NAME
        try:
            message = await self.whatsapp.send_template_to_conversation(
                conversation,
                template_name,
                settings.INFORMATION_TEMPLATE_LANGUAGE
            )
        except WhatsAppSendError as e:
            logger.error(f"Failed to send information template on conversation {conversation['id']}: {e}")
            return {"success": False, "action": "aborted", "error": str(e)}

        logger.info(f"📋 Information template '{template_name}' sent on conversation {conversation['id']}")
        return {"success": True, "action": "template_sent", "template_name": template_name, "message": message}

    async def _save_sentiment(
        self,
        conversation: Dict[str, Any],
        content: str,
        analysis: Dict[str, Any],
        context: str
    ) -> None:
        """Sentiment history is a side record; failing to save it does not stop the reply."""
        try:
            await self.sentiment_repo.save(
                customer_id=conversation["customer_id"],
                message=content,
                analysis=analysis,
                conversation_id=conversation["id"],
                message_index=conversation.get("message_count"),
                conversation_context={"summary": context},
                analysis_trigger="message"
            )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to save sentiment for conversation {conversation['id']}: {e}")

    async def _run_function_call(self, raw_call: Any, customer_id: int) -> Optional[Dict[str, Any]]:
        call = parse_function_call(raw_call)
        if call is None:
            return None

        try:
            return await execute_function_call(call, customer_id, self.db)
        except Exception as e:
            logger.error(f"Function call '{call.name}' failed for customer {customer_id}: {e}")
            return {"success": False, "error": str(e)}

    # ============================================
    # EXPLICIT FLOWS
    # ============================================

    async def start_automated_conversation(
        self,
        customer_id: int,
        template_name: Optional[str] = None
    ) -> Dict[str, Any]:
        """Open a conversation with the greeting template. Errors propagate."""
        return await self.whatsapp.start_conversation(customer_id, template_name or DEFAULT_START_TEMPLATE)

    async def send_follow_up_message(self, customer_id: int, message: str) -> Dict[str, Any]:
        return await self.whatsapp.send_follow_up_message(customer_id, message)

    async def _customer_history(self, customer_id: int):
        """(active conversation, chronological role-tagged history) or EntityNotFoundError."""
        data = await self.conversations.get_conversation_history(customer_id)
        conversation = data["conversation"]
        if not conversation:
            raise EntityNotFoundError("Active conversation for customer", customer_id)
        messages = list(reversed(data["messages"]))[-AI_HISTORY_WINDOW:]
        return conversation, build_history(messages)

    async def send_intelligent_follow_up(self, customer_id: int) -> Dict[str, Any]:
        """
        Ask the model for follow-up suggestions on the customer's active
        conversation and send the first one.

        Raises:
            EntityNotFoundError: no customer / no active conversation
            WhatsAppSendError: transport failure
        """
        conversation, history = await self._customer_history(customer_id)

        latest = await self.sentiment_repo.get_history_for_customer(customer_id, limit=1)
        context = build_context(conversation, analysis_from_record(latest[0] if latest else None))

        suggestions = await self.llm.generate_follow_up_suggestions(history, context)
        follow_up = suggestions[0]

        result = await self.whatsapp.send_follow_up_message(customer_id, follow_up)
        logger.info(f"💡 Intelligent follow-up sent to customer {customer_id}")
        return {**result, "follow_up": follow_up, "suggestions": suggestions}

    async def get_conversation_analytics(self, customer_id: int) -> Dict[str, Any]:
        """Conversation totals plus a model summary and the recent sentiment trend."""
        analytics = await self.conversations.get_conversation_analytics(customer_id)
        _, history = await self._customer_history(customer_id)

        summary = await self.llm.generate_conversation_summary(history)
        records = await self.sentiment_repo.get_history_for_customer(customer_id, limit=SENTIMENT_TREND_WINDOW)

        return {
            **analytics,
            "summary": summary.get("summary"),
            "latest_sentiment": records[0]["sentiment"] if records else None,
            "sentiment_trend": [r["sentiment"] for r in reversed(records)],
        }

    def get_model_status(self) -> Dict[str, Any]:
        return self.llm.get_model_status()
