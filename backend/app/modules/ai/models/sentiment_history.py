"""
Customer Sentiment History ORM Model
SQLAlchemy model representing the 'customer_sentiment_history' table.

One row per analysed customer message: sentiment label, lead qualification
and the customer profile the model inferred at that point of the conversation.
"""
from sqlalchemy import Column, BigInteger, Integer, Float, Text, Boolean, DateTime, Index
from sqlalchemy.sql import func
from app.shared.db.base import Base, BigIntPK, JSONDocument


class CustomerSentimentHistory(Base):
    """ORM Model for the customer_sentiment_history table."""
    __tablename__ = "customer_sentiment_history"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    # ============================================
    # WHAT WAS ANALYSED
    # ============================================
    customer_id = Column(BigInteger, nullable=False)
    conversation_id = Column(BigInteger, nullable=True)
    message_index = Column(Integer, nullable=True)     # conversation.message_count at analysis time
    message = Column(Text, nullable=False)
    analysis_trigger = Column(Text, nullable=False, default='message')  # message/manual/scheduled

    # ============================================
    # SENTIMENT
    # ============================================
    sentiment = Column(Text, nullable=False)            # positive/negative/neutral
    confidence = Column(Float, nullable=False, default=0.5)
    reasoning = Column(Text, nullable=True)

    # ============================================
    # LEAD QUALIFICATION
    # ============================================
    urgency = Column(Text, nullable=True)               # high/medium/low
    buying_intent = Column(Text, nullable=True)         # strong/moderate/weak/none
    budget_indication = Column(Text, nullable=True)     # high/medium/low/unknown
    decision_maker = Column(Boolean, nullable=True)
    timeline = Column(Text, nullable=True)              # immediate/short_term/long_term/unknown
    pain_points = Column(JSONDocument, nullable=True)
    objections = Column(JSONDocument, nullable=True)
    positive_signals = Column(JSONDocument, nullable=True)
    risk_factors = Column(JSONDocument, nullable=True)
    next_best_action = Column(Text, nullable=True)

    # ============================================
    # CUSTOMER PROFILE
    # ============================================
    expertise = Column(Text, nullable=True)
    industry = Column(Text, nullable=True)
    company_size = Column(Text, nullable=True)
    role = Column(Text, nullable=True)
    communication_style = Column(Text, nullable=True)

    conversation_context = Column(JSONDocument, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index('idx_sentiment_customer_created', 'customer_id', 'created_at'),
        Index('idx_sentiment_conversation', 'conversation_id'),
    )

    def __repr__(self):
        return f"<CustomerSentimentHistory(id={self.id}, customer_id={self.customer_id}, sentiment='{self.sentiment}')>"
