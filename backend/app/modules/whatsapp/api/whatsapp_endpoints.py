"""
WhatsApp API Endpoints
Cloud API webhook, outbound messaging, conversation history and the AI agent.
"""
import logging
from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, Query, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.shared.core.config import settings
from app.shared.db.session import get_db
from app.shared.utils.exceptions import EntityNotFoundError, InvalidStateError
from app.modules.whatsapp.constants import ConversationStatus
from app.modules.whatsapp.services.whatsapp_client import whatsapp_client, WhatsAppSendError
from app.modules.whatsapp.services.conversation_service import ConversationService
from app.modules.whatsapp.services.whatsapp_service import WhatsAppService
from app.modules.whatsapp.services.webhook_service import WebhookService
from app.modules.whatsapp.services.ai_agent_service import AIAgentService
from app.modules.whatsapp.schemas.whatsapp_schemas import (
    # Request schemas
    SendMessageRequest,
    StartConversationRequest,
    ProcessMessageRequest,
    FollowUpRequest,
    # Response schemas
    ConversationHistoryResponse,
    ConversationsListResponse,
    MessagesListResponse,
    ChatMessagesResponse,
    SendMessageResponse,
    IntelligentFollowUpResponse,
    StartConversationResponse,
    ClearConversationResponse,
    DeleteConversationResponse,
    ConversationAnalyticsResponse,
    ProcessMessageResponse,
)
from app.modules.whatsapp.schemas.webhook_schemas import WebhookResponse
from app.shared.core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

router = APIRouter()
logger = logging.getLogger("whatsapp_api")


def _http_error(e: Exception) -> HTTPException:
    """Map service exceptions onto HTTP errors."""
    if isinstance(e, EntityNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidStateError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, WhatsAppSendError):
        return HTTPException(status_code=502, detail=f"WhatsApp send failed: {e.message}")
    logger.error(f"Unhandled error: {e}", exc_info=True)
    return HTTPException(status_code=500, detail=str(e))


# ============================================
# CONFIGURATION ENDPOINT
# ============================================

def _mask_sensitive_string(value: str, show_chars: int = 4) -> str:
    """
    Mask a sensitive string, showing only first few characters.
    Example: "106540352242922" -> "1065***********"
    """
    if not value:
        return ""
    if len(value) <= show_chars:
        return "*" * len(value)
    return value[:show_chars] + "*" * (len(value) - show_chars)


@router.get("/config", summary="Check WhatsApp configuration status")
async def get_config_status():
    """
    Check if the Cloud API is properly configured.

    Note: Sensitive values are masked for security.
    """
    phone_number_id = settings.WHATSAPP_PHONE_NUMBER_ID

    return {
        "configured": whatsapp_client.is_configured(),
        "api_version": settings.WHATSAPP_API_VERSION,
        "phone_number_id_hint": _mask_sensitive_string(phone_number_id, 4) if phone_number_id else None,
        "verify_token_enabled": bool(settings.WHATSAPP_VERIFY_TOKEN),
        "information_template": settings.INFORMATION_TEMPLATE_NAME,
    }


# ============================================
# WEBHOOK ENDPOINTS
# ============================================

@router.get("/webhook", response_class=PlainTextResponse, summary="Cloud API webhook verification")
async def verify_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    """Echo `hub.challenge` so Meta accepts the subscription."""
    service = WebhookService(db)
    challenge = await service.handle_verification(dict(request.query_params))

    if challenge is None:
        raise HTTPException(status_code=403, detail="Verification token mismatch")

    return PlainTextResponse(content=challenge)


@router.post("/webhook", response_model=WebhookResponse, summary="Cloud API webhook handler")
async def receive_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Handle incoming WhatsApp webhook events (messages and statuses).

    Always answers 200: a non-2xx makes Meta redeliver a payload we could
    not process anyway.
    """
    try:
        payload = await request.json()
    except Exception as e:
        logger.error(f"Invalid webhook JSON payload: {str(e)}")
        return WebhookResponse(success=False, error="Invalid JSON payload")

    entries = len(payload.get("entry", [])) if isinstance(payload, dict) else 0
    logger.info(f"Webhook received: object={payload.get('object') if isinstance(payload, dict) else None}, entries={entries}")

    service = WebhookService(db)
    try:
        result = await service.process_payload(payload)
    except Exception as e:
        logger.error(f"Webhook processing crashed: {e}", exc_info=True)
        result = {"success": False, "error": "Internal error"}

    if not result.get("success"):
        logger.warning(f"Webhook processing failed: error={result.get('error')}")

    return WebhookResponse(**result)


# ============================================
# OUTBOUND MESSAGING
# ============================================

@router.post("/send-message", response_model=SendMessageResponse, summary="Send a text message")
async def send_message(request: SendMessageRequest, db: AsyncSession = Depends(get_db)):
    service = WhatsAppService(db)
    try:
        result = await service.send_text_message(request.to, request.message, request.customer_id)
    except Exception as e:
        raise _http_error(e)
    return SendMessageResponse(**result)


@router.post("/start-conversation", response_model=StartConversationResponse, summary="Start a conversation with a template")
async def start_conversation(request: StartConversationRequest, db: AsyncSession = Depends(get_db)):
    service = WhatsAppService(db)
    try:
        result = await service.start_conversation(
            request.customer_id,
            request.template_name,
            request.language_code,
            request.parameters
        )
    except Exception as e:
        raise _http_error(e)
    return StartConversationResponse(**result)


# ============================================
# CONVERSATIONS
# ============================================

@router.get("/conversation/{customer_id}", response_model=ConversationHistoryResponse, summary="Active conversation of a customer")
async def get_conversation(customer_id: int, db: AsyncSession = Depends(get_db)):
    """Active conversation with its latest messages (only those after the last clear)."""
    service = ConversationService(db)
    return await service.get_conversation_history(customer_id)


@router.get("/conversations", response_model=ConversationsListResponse, summary="List conversations")
async def list_conversations(
    status: Optional[ConversationStatus] = Query(default=None),
    customer_id: Optional[int] = Query(default=None),
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db)
):
    service = ConversationService(db)
    return await service.list_conversations(
        status=status.value if status else None,
        customer_id=customer_id,
        skip=skip,
        limit=limit
    )


@router.get("/messages/last-50", response_model=MessagesListResponse, summary="Latest 50 messages")
async def get_last_messages(db: AsyncSession = Depends(get_db)):
    service = ConversationService(db)
    messages = await service.get_last_messages()
    return {"messages": messages, "total": len(messages)}


@router.get("/messages/chat-list/{customer_id}", response_model=ChatMessagesResponse, summary="Paginated chat of a customer")
async def get_chat_messages(
    customer_id: int,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db)
):
    service = ConversationService(db)
    return await service.get_chat_messages(customer_id, page=page, limit=limit)


@router.post("/conversation/{conversation_id}/clear", response_model=ClearConversationResponse, summary="Clear a conversation")
async def clear_conversation(conversation_id: int, db: AsyncSession = Depends(get_db)):
    service = WhatsAppService(db)
    try:
        return await service.clear_conversation(conversation_id)
    except Exception as e:
        raise _http_error(e)


@router.post("/conversation/customer/{customer_id}/clear", response_model=ClearConversationResponse, summary="Clear a customer's active conversation")
async def clear_customer_conversation(customer_id: int, db: AsyncSession = Depends(get_db)):
    service = WhatsAppService(db)
    try:
        return await service.clear_conversation_by_customer(customer_id)
    except Exception as e:
        raise _http_error(e)


@router.delete("/conversation/{conversation_id}", response_model=DeleteConversationResponse, summary="Delete a conversation and its messages")
async def delete_conversation(conversation_id: int, db: AsyncSession = Depends(get_db)):
    service = ConversationService(db)
    try:
        result = await service.delete(conversation_id)
    except Exception as e:
        raise _http_error(e)
    return DeleteConversationResponse(success=True, **result)


# ============================================
# AI AGENT
# ============================================

@router.post("/ai/process-message", response_model=ProcessMessageResponse, summary="Run the AI agent on a message")
async def process_message(request: ProcessMessageRequest, db: AsyncSession = Depends(get_db)):
    service = AIAgentService(db)
    result = await service.process_customer_message(
        request.whatsapp_number,
        request.message,
        request.message_id
    )
    return ProcessMessageResponse(**{k: v for k, v in result.items() if k in ProcessMessageResponse.model_fields})


@router.post("/ai/start-conversation/{customer_id}", response_model=StartConversationResponse, summary="Start an automated conversation")
async def start_automated_conversation(
    customer_id: int,
    template_name: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db)
):
    service = AIAgentService(db)
    try:
        result = await service.start_automated_conversation(customer_id, template_name)
    except Exception as e:
        raise _http_error(e)
    return StartConversationResponse(**result)


@router.post("/ai/follow-up/{customer_id}", response_model=SendMessageResponse, summary="Send a follow-up message")
async def send_follow_up(customer_id: int, request: FollowUpRequest, db: AsyncSession = Depends(get_db)):
    service = AIAgentService(db)
    try:
        result = await service.send_follow_up_message(customer_id, request.message)
    except Exception as e:
        raise _http_error(e)
    return SendMessageResponse(**result)


@router.post(
    "/ai/intelligent-follow-up/{customer_id}",
    response_model=IntelligentFollowUpResponse,
    summary="Send a model-suggested follow-up message"
)
async def send_intelligent_follow_up(customer_id: int, db: AsyncSession = Depends(get_db)):
    service = AIAgentService(db)
    try:
        result = await service.send_intelligent_follow_up(customer_id)
    except Exception as e:
        raise _http_error(e)
    return IntelligentFollowUpResponse(**result)


@router.get("/ai/analytics/{customer_id}", response_model=ConversationAnalyticsResponse, summary="Conversation analytics")
async def get_analytics(customer_id: int, db: AsyncSession = Depends(get_db)):
    service = AIAgentService(db)
    try:
        return await service.get_conversation_analytics(customer_id)
    except Exception as e:
        raise _http_error(e)


@router.get("/ai/model-status", summary="AI model availability")
async def get_model_status(db: AsyncSession = Depends(get_db)):
    return AIAgentService(db).get_model_status()
