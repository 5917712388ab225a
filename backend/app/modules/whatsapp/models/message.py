"""
Message ORM Model
SQLAlchemy model representing the 'messages' table.

Stores every inbound and outbound WhatsApp message of a conversation.
`provider_message_id` (the wamid) is unique and is the idempotency key for
both webhook redeliveries and status updates.
"""
from sqlalchemy import Column, BigInteger, Text, Boolean, DateTime, Index, ForeignKey
from sqlalchemy.sql import func
from app.shared.db.base import Base, BigIntPK, JSONDocument


class Message(Base):
    """ORM Model for the messages table."""
    __tablename__ = "messages"

    # Primary Key
    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    # ============================================
    # OWNERSHIP
    # ============================================
    conversation_id = Column(
        BigInteger,
        ForeignKey('conversations.id', ondelete='CASCADE'),
        nullable=False
    )
    customer_id = Column(BigInteger, nullable=False)
    whatsapp_number = Column(Text, nullable=False)

    # ============================================
    # PROVIDER TRACKING
    # ============================================
    provider_message_id = Column(Text, nullable=False, unique=True)  # wamid.xxx

    # ============================================
    # CONTENT
    # ============================================
    sender_type = Column(Text, nullable=False)                    # agent/customer
    message_type = Column(Text, nullable=False, default='text')   # text/template/image/audio/video/document/button
    content = Column(Text, nullable=False)
    is_template = Column(Boolean, nullable=False, default=False, server_default='false')
    template_name = Column(Text, nullable=True)
    extra_data = Column(JSONDocument, nullable=True)  # Raw provider payload / send response

    # ============================================
    # DELIVERY STATUS
    # ============================================
    status = Column(Text, nullable=False, default='pending', server_default='pending')
    failed_reason = Column(Text, nullable=True)

    # ============================================
    # TIMESTAMPS (set once)
    # ============================================
    sent_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # ============================================
    # INDEXES
    # ============================================
    __table_args__ = (
        Index('idx_messages_conversation_created', 'conversation_id', 'created_at'),
        Index('idx_messages_customer_id', 'customer_id'),
        Index('idx_messages_created', 'created_at'),
    )

    def __repr__(self):
        return f"<Message(id={self.id}, conversation_id={self.conversation_id}, sender='{self.sender_type}', status='{self.status}')>"
