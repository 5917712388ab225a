"""
WhatsApp Module Constants
Centralized enums and constants for conversations, messages and real-time events.
"""
from enum import Enum


class ConversationStatus(str, Enum):
    """
    Conversation lifecycle.

    ACTIVE → ARCHIVED (clear / delete)
           ↘ CLOSED
    At most one ACTIVE conversation per customer.
    """
    ACTIVE = "active"
    CLOSED = "closed"
    ARCHIVED = "archived"


class SenderType(str, Enum):
    """Who wrote a message."""
    AGENT = "agent"        # We sent it (template, AI reply, manual send)
    CUSTOMER = "customer"  # Customer sent it (webhook)


class MessageType(str, Enum):
    TEXT = "text"
    TEMPLATE = "template"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    DOCUMENT = "document"
    BUTTON = "button"

    @classmethod
    def from_provider(cls, provider_type: str) -> "MessageType":
        """Map a Cloud API message type onto ours; unknown kinds become TEXT."""
        try:
            return cls(provider_type)
        except ValueError:
            return cls.TEXT


class MessageStatus(str, Enum):
    """
    Message delivery status.

    Status Flow:
    PENDING → SENT → DELIVERED → READ
        ↘       ↘         ↘
                FAILED

    Only forward moves are applied; FAILED is terminal and reachable from
    any non-terminal state.
    """
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"

    @classmethod
    def allowed_predecessors(cls, status: "MessageStatus") -> list:
        """Statuses a message must be in for a move to `status` to be applied."""
        if status == cls.FAILED:
            return [cls.PENDING, cls.SENT, cls.DELIVERED]
        order = [cls.PENDING, cls.SENT, cls.DELIVERED, cls.READ]
        return order[:order.index(status)]


# Timestamp column stamped (once) for each status
STATUS_TIMESTAMP_FIELDS = {
    MessageStatus.SENT: "sent_at",
    MessageStatus.DELIVERED: "delivered_at",
    MessageStatus.READ: "read_at",
}

# Stored as content for inbound messages we cannot interpret
UNKNOWN_MESSAGE_CONTENT = "Unknown message type"

# Envelope object type for WhatsApp Business Account webhooks
WEBHOOK_OBJECT_TYPE = "whatsapp_business_account"
WEBHOOK_MESSAGES_FIELD = "messages"


class RealtimeEvent(str, Enum):
    """Event names pushed to dashboard clients."""
    WHATSAPP_MESSAGE = "whatsappMessage"
    WHATSAPP_MESSAGE_STATUS = "whatsappMessageStatus"
    CUSTOMER_PROSPECT_STATUS = "customerProspectStatus"
    WHATSAPP_WEBHOOK = "whatsappWebhook"
    CONNECTED = "connected"
    CLIENT_JOINED = "clientJoined"
    CLIENT_LEFT = "clientLeft"


GENERAL_ROOM = "general"


def customer_room(customer_id) -> str:
    return f"customer:{customer_id}"
