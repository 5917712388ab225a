"""
Conversation ORM Model
SQLAlchemy model representing the 'conversations' table.

One engagement thread with a customer. A customer has at most one active
conversation; clearing archives it and a fresh one is created on the next
message.
"""
from sqlalchemy import Column, BigInteger, Integer, Text, DateTime, Index, ForeignKey, text
from app.shared.db.base import Base, BigIntPK, TimestampMixin


class Conversation(Base, TimestampMixin):
    """ORM Model for the conversations table."""
    __tablename__ = "conversations"

    # Primary Key
    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    # ============================================
    # OWNER
    # ============================================
    customer_id = Column(
        BigInteger,
        ForeignKey('customers.id', ondelete='CASCADE'),
        nullable=False
    )
    whatsapp_number = Column(Text, nullable=False)  # Digits only

    # ============================================
    # STATE
    # ============================================
    status = Column(Text, nullable=False, default='active', server_default='active')  # active/closed/archived
    cleared_at = Column(DateTime(timezone=True), nullable=True)

    # ============================================
    # MESSAGE BOOKKEEPING (atomic UPDATEs only)
    # ============================================
    message_count = Column(Integer, nullable=False, default=0, server_default='0')
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    last_message_from = Column(Text, nullable=False, default='customer', server_default='customer')

    # ============================================
    # INDEXES
    # ============================================
    __table_args__ = (
        Index('idx_conversations_customer_id', 'customer_id'),
        Index('idx_conversations_whatsapp_number', 'whatsapp_number'),
        Index('idx_conversations_last_message_at', 'last_message_at'),
        # At most one active conversation per customer
        Index(
            'uq_conversations_active_customer',
            'customer_id',
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    def __repr__(self):
        return f"<Conversation(id={self.id}, customer_id={self.customer_id}, status='{self.status}', count={self.message_count})>"
