"""
WhatsApp Module

Handles customer conversations over the WhatsApp Cloud API.
Key features:
- Webhook ingestion (inbound messages, delivery statuses, verification)
- Conversation lifecycle with one active conversation per customer
- Idempotent message bookkeeping keyed on the WhatsApp message id
- AI reply pipeline with first-response template gating
"""

from app.modules.customers.models.customer import Customer
from .models.conversation import Conversation
from .models.message import Message

__all__ = [
    "Customer",
    "Conversation",
    "Message",
]
