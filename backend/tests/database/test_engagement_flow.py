import asyncio
import copy
from itertools import count
from unittest.mock import MagicMock, patch, AsyncMock
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker

from app.shared.db.base import Base
from app.modules.customers.models.customer import Customer  # noqa: F401
from app.modules.whatsapp.models import Conversation, Message  # noqa: F401
from app.modules.ai.models.sentiment_history import CustomerSentimentHistory  # noqa: F401
from app.modules.ai.services.llm_service import GeminiAgentService
from app.modules.customers.repositories.customer_repository import CustomerRepository
from app.modules.whatsapp.repositories.conversation_repository import ConversationRepository
from app.modules.whatsapp.services.ai_agent_service import AIAgentService
from app.modules.whatsapp.services.conversation_service import ConversationService
from app.modules.whatsapp.services.status_tracker import MessageStatusTracker
from app.modules.whatsapp.services.webhook_service import WebhookService
from app.modules.whatsapp.services.whatsapp_service import WhatsAppService
from app.shared.core.config import settings

WHATSAPP_NUMBER = "5215512345678"
START_TEMPLATE = "start_conversation_es"

WHATSAPP_SERVICE_CLIENT = "app.modules.whatsapp.services.whatsapp_service.whatsapp_client"
AI_AGENT_CLIENT = "app.modules.whatsapp.services.ai_agent_service.whatsapp_client"
AI_AGENT_LLM = "app.modules.whatsapp.services.ai_agent_service.llm_service"


def fake_transport():
    """Cloud API client double handing out sequential wamids."""
    ids = count(1)

    async def sent(*args, **kwargs):
        return {"messaging_product": "whatsapp", "messages": [{"id": f"wamid.OUT{next(ids)}"}]}

    client = MagicMock()
    client.send_template = AsyncMock(side_effect=sent)
    client.send_text = AsyncMock(side_effect=sent)
    return client


def inbound_payload(base_payload, provider_message_id, body):
    payload = copy.deepcopy(base_payload)
    message = payload["entry"][0]["changes"][0]["value"]["messages"][0]
    message["id"] = provider_message_id
    message["text"]["body"] = body
    return payload


def test_template_gating_end_to_end(sqlite_url, sample_inbound_payload):
    """
    Start template → first reply gets the information template (once, even
    when the webhook is redelivered) → the next reply gets an AI answer.
    Only the transport is faked; store, services and fan-out are real.
    """
    async def test_logic():
        engine = create_async_engine(sqlite_url, echo=False)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        session_factory = sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

        actions = []

        async def run_ai_inline(whatsapp_number, content, provider_message_id):
            async with session_factory() as ai_session:
                result = await AIAgentService(ai_session).process_customer_message(
                    whatsapp_number, content, provider_message_id
                )
                actions.append(result["action"])

        transport = fake_transport()
        try:
            with patch(WHATSAPP_SERVICE_CLIENT, transport), \
                 patch(AI_AGENT_CLIENT, transport), \
                 patch(AI_AGENT_LLM, GeminiAgentService(api_key="")):

                async with session_factory() as session:
                    customer = await CustomerRepository(session).create(name="Ana", whatsapp=WHATSAPP_NUMBER)
                    await session.commit()

                    started = await WhatsAppService(session).start_conversation(customer["id"], START_TEMPLATE)
                    conversation_id = started["conversation_id"]

                    conversation = await ConversationRepository(session).get_by_id(conversation_id)
                    assert conversation["message_count"] == 1

                # Customer answers; the same delivery arrives twice
                first_reply = inbound_payload(sample_inbound_payload, "wamid.IN1", "Hola, me interesa")
                for _ in range(2):
                    async with session_factory() as session:
                        result = await WebhookService(session, ai_dispatcher=run_ai_inline).process_payload(first_reply)
                        assert result["success"] is True

                assert actions == ["template_sent"]
                async with session_factory() as session:
                    service = ConversationService(session)
                    assert await service.has_template_been_sent(conversation_id, settings.INFORMATION_TEMPLATE_NAME)
                    conversation = await ConversationRepository(session).get_by_id(conversation_id)
                    assert conversation["message_count"] == 3

                # Third customer message → AI reply
                second_reply = inbound_payload(sample_inbound_payload, "wamid.IN2", "What is the price of a lot?")
                async with session_factory() as session:
                    await WebhookService(session, ai_dispatcher=run_ai_inline).process_payload(second_reply)

                assert actions == ["template_sent", "ai_response_sent"]

                async with session_factory() as session:
                    conversation = await ConversationRepository(session).get_by_id(conversation_id)
                    assert conversation["message_count"] == 5
                    assert conversation["last_message_from"] == "agent"

                    history = await ConversationService(session).get_conversation_history(customer["id"])
                    newest = history["messages"][0]
                    assert newest["sender_type"] == "agent"
                    assert newest["is_template"] is False
                    assert newest["content"].startswith("I'd be happy to help you with pricing")

            assert transport.send_template.await_count == 2
            assert transport.send_text.await_count == 1

            # A late delivery report does not move a read message backwards
            reply_id = newest["provider_message_id"]
            async with session_factory() as session:
                tracker = MessageStatusTracker(session)
                read = await tracker.apply_status_event({"id": reply_id, "status": "read", "timestamp": "1700000300"})
                late = await tracker.apply_status_event({"id": reply_id, "status": "delivered", "timestamp": "1700000200"})

            assert read["applied"] is True
            assert late["applied"] is False
        finally:
            await engine.dispose()

    asyncio.run(test_logic())
