"""
WhatsApp Models

Exports all ORM models for the WhatsApp module.
"""

from .conversation import Conversation
from .message import Message

__all__ = [
    "Conversation",
    "Message",
]
