"""
WhatsApp Schemas

Pydantic models for API request/response validation and the webhook envelope.
"""

from .webhook_schemas import (
    WebhookPayload,
    WebhookEntry,
    WebhookChange,
    WebhookValue,
    WebhookResponse,
)
from .whatsapp_schemas import (
    # Request schemas
    SendMessageRequest,
    StartConversationRequest,
    ProcessMessageRequest,
    FollowUpRequest,
    # Response schemas
    MessageItem,
    ConversationItem,
    ConversationHistoryResponse,
    ConversationsListResponse,
    MessagesListResponse,
    PaginationInfo,
    ChatMessagesResponse,
    SendMessageResponse,
    StartConversationResponse,
    ClearConversationResponse,
    DeleteConversationResponse,
    ConversationAnalyticsResponse,
    ProcessMessageResponse,
)

__all__ = [
    "WebhookPayload",
    "WebhookEntry",
    "WebhookChange",
    "WebhookValue",
    "WebhookResponse",
    "SendMessageRequest",
    "StartConversationRequest",
    "ProcessMessageRequest",
    "FollowUpRequest",
    "MessageItem",
    "ConversationItem",
    "ConversationHistoryResponse",
    "ConversationsListResponse",
    "MessagesListResponse",
    "PaginationInfo",
    "ChatMessagesResponse",
    "SendMessageResponse",
    "StartConversationResponse",
    "ClearConversationResponse",
    "DeleteConversationResponse",
    "ConversationAnalyticsResponse",
    "ProcessMessageResponse",
]
