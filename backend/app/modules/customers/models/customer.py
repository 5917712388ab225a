"""
Customer ORM Model
SQLAlchemy model representing the 'customers' table.

Customer CRUD lives outside this service; conversations only need to look a
customer up by id / WhatsApp number and flip the prospect flag.
"""
from sqlalchemy import Column, Text, Boolean, DateTime, Index
from app.shared.db.base import Base, BigIntPK, TimestampMixin


class Customer(Base, TimestampMixin):
    """ORM Model for the customers table."""
    __tablename__ = "customers"

    # Primary Key
    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    # ============================================
    # CONTACT INFORMATION
    # ============================================
    name = Column(Text, nullable=False)
    phone = Column(Text, nullable=True)
    email = Column(Text, nullable=True)
    whatsapp = Column(Text, nullable=True)     # Digits only, e.g. "5215512345678"
    address = Column(Text, nullable=True)

    # ============================================
    # PROSPECT FLAG (set by the AI agent)
    # ============================================
    is_prospect = Column(Boolean, nullable=False, default=False, server_default='false')
    prospect_date = Column(DateTime(timezone=True), nullable=True)
    prospect_source = Column(Text, nullable=True)   # 'ai_agent' / 'manual'
    prospect_notes = Column(Text, nullable=True)

    __table_args__ = (
        Index('idx_customers_whatsapp', 'whatsapp'),
        Index('idx_customers_is_prospect', 'is_prospect'),
    )

    def __repr__(self):
        return f"<Customer(id={self.id}, name='{self.name}', is_prospect={self.is_prospect})>"
