"""
WhatsApp Repositories

Conversation store: database access for conversations and messages.
"""

from .conversation_repository import ConversationRepository
from .message_repository import MessageRepository

__all__ = [
    "ConversationRepository",
    "MessageRepository",
]
