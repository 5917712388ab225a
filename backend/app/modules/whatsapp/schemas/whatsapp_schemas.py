"""
WhatsApp - Pydantic Schemas
Request and Response models for API endpoints.
"""
from typing import Optional, List, Dict, Any
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.shared.core.config import settings
from app.shared.utils.phone_utils import validate_phone


# ============================================
# REQUEST MODELS
# ============================================

class SendMessageRequest(BaseModel):
    """Request to send a free-text WhatsApp message"""
    to: str = Field(..., description="Recipient WhatsApp number (international format)")
    message: str = Field(..., min_length=1, max_length=4096)
    customer_id: Optional[int] = Field(
        default=None,
        description="When set, the message is recorded on the customer's active conversation"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "to": "5215512345678",
                "message": "Hola, ¿en qué podemos ayudarte?",
                "customer_id": 1
            }
        }

    @field_validator("to")
    @classmethod
    def validate_to(cls, v: str) -> str:
        result = validate_phone(v, settings.WHATSAPP_DEFAULT_COUNTRY)
        if not result.is_valid:
            raise ValueError(result.error or "Invalid phone number")
        return result.normalized


class StartConversationRequest(BaseModel):
    """Request to open a conversation with a template"""
    customer_id: int
    template_name: str = Field(..., min_length=1)
    language_code: Optional[str] = Field(
        default=None,
        description="Template language; defaults to the template's own language"
    )
    parameters: Optional[List[Dict[str, Any]]] = Field(
        default=None,
        description="Graph API template components; defaults to the customer name body parameter"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "customer_id": 1,
                "template_name": "start_conversation_es",
                "language_code": "es"
            }
        }


class ProcessMessageRequest(BaseModel):
    """Manually run the AI turn for a message"""
    whatsapp_number: str
    message: str = Field(..., min_length=1)
    message_id: Optional[str] = None


class FollowUpRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=4096)


# ============================================
# RESPONSE MODELS
# ============================================

class MessageItem(BaseModel):
    """Single stored message"""
    model_config = ConfigDict(populate_by_name=True)

    id: int
    conversation_id: int
    customer_id: int
    whatsapp_number: str
    provider_message_id: str
    sender_type: str
    message_type: str
    content: str
    status: str
    is_template: bool = False
    template_name: Optional[str] = None
    failed_reason: Optional[str] = None
    extra_data: Optional[Any] = Field(default=None, serialization_alias="metadata")
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ConversationItem(BaseModel):
    """Single conversation"""
    id: int
    customer_id: int
    whatsapp_number: str
    status: str
    message_count: int = 0
    last_message_at: Optional[datetime] = None
    last_message_from: Optional[str] = None
    cleared_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ConversationHistoryResponse(BaseModel):
    conversation: Optional[ConversationItem] = None
    messages: List[MessageItem] = []


class ConversationsListResponse(BaseModel):
    conversations: List[ConversationItem]
    total: int
    skip: int
    limit: int


class MessagesListResponse(BaseModel):
    messages: List[MessageItem]
    total: int


class PaginationInfo(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class ChatMessagesResponse(BaseModel):
    messages: List[MessageItem]
    pagination: PaginationInfo


class SendMessageResponse(BaseModel):
    success: bool
    message_id: Optional[str] = None
    recorded: bool = False


class IntelligentFollowUpResponse(SendMessageResponse):
    follow_up: str
    suggestions: List[str] = []


class StartConversationResponse(BaseModel):
    success: bool
    conversation_id: int
    message_id: Optional[str] = None


class ClearConversationResponse(BaseModel):
    success: bool
    conversation: Optional[ConversationItem] = None


class DeleteConversationResponse(BaseModel):
    success: bool
    conversation_id: int
    deleted_messages: int


class ConversationAnalyticsResponse(BaseModel):
    conversation_id: int
    total_messages: int
    customer_messages: int
    agent_messages: int
    last_message_at: Optional[datetime] = None
    status: str
    average_response_time_ms: Optional[int] = None
    summary: Optional[str] = None
    latest_sentiment: Optional[str] = None
    sentiment_trend: List[str] = []


class ProcessMessageResponse(BaseModel):
    success: bool
    action: str
    error: Optional[str] = None
    template_name: Optional[str] = None
    sentiment: Optional[str] = None
    function_result: Optional[Dict[str, Any]] = None
