"""Create conversation engine tables

Revision ID: c3d4e5f6a7b8
Revises:
Create Date: 2026-10-19

This migration adds:
- customers: narrow customer record (WhatsApp number, prospect flag)
- conversations: one engagement thread per customer (one active at a time)
- messages: inbound/outbound WhatsApp messages keyed by provider_message_id
- customer_sentiment_history: per-message sentiment / lead qualification
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = 'c3d4e5f6a7b8'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create customers table
    op.create_table(
        'customers',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('phone', sa.Text(), nullable=True),
        sa.Column('email', sa.Text(), nullable=True),
        sa.Column('whatsapp', sa.Text(), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),

        # Prospect flag
        sa.Column('is_prospect', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('prospect_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('prospect_source', sa.Text(), nullable=True),
        sa.Column('prospect_notes', sa.Text(), nullable=True),

        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('idx_customers_whatsapp', 'customers', ['whatsapp'])
    op.create_index('idx_customers_is_prospect', 'customers', ['is_prospect'])

    # Create conversations table
    op.create_table(
        'conversations',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('customer_id', sa.BigInteger(), sa.ForeignKey('customers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('whatsapp_number', sa.Text(), nullable=False),

        # State
        sa.Column('status', sa.Text(), nullable=False, server_default='active'),
        sa.Column('cleared_at', sa.DateTime(timezone=True), nullable=True),

        # Message bookkeeping
        sa.Column('message_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_message_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_message_from', sa.Text(), nullable=False, server_default='customer'),

        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('idx_conversations_customer_id', 'conversations', ['customer_id'])
    op.create_index('idx_conversations_whatsapp_number', 'conversations', ['whatsapp_number'])
    op.create_index('idx_conversations_last_message_at', 'conversations', ['last_message_at'])
    op.create_index(
        'uq_conversations_active_customer',
        'conversations',
        ['customer_id'],
        unique=True,
        postgresql_where=sa.text("status = 'active'")
    )

    # Create messages table
    op.create_table(
        'messages',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('conversation_id', sa.BigInteger(), sa.ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('customer_id', sa.BigInteger(), nullable=False),
        sa.Column('whatsapp_number', sa.Text(), nullable=False),
        sa.Column('provider_message_id', sa.Text(), nullable=False, unique=True),

        # Content
        sa.Column('sender_type', sa.Text(), nullable=False),
        sa.Column('message_type', sa.Text(), nullable=False, server_default='text'),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('is_template', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('template_name', sa.Text(), nullable=True),
        sa.Column('extra_data', postgresql.JSONB(), nullable=True),

        # Delivery status
        sa.Column('status', sa.Text(), nullable=False, server_default='pending'),
        sa.Column('failed_reason', sa.Text(), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),

        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )
    op.create_index('idx_messages_conversation_created', 'messages', ['conversation_id', 'created_at'])
    op.create_index('idx_messages_customer_id', 'messages', ['customer_id'])
    op.create_index('idx_messages_created', 'messages', ['created_at'])

    # Create customer_sentiment_history table
    op.create_table(
        'customer_sentiment_history',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('customer_id', sa.BigInteger(), nullable=False),
        sa.Column('conversation_id', sa.BigInteger(), nullable=True),
        sa.Column('message_index', sa.Integer(), nullable=True),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('analysis_trigger', sa.Text(), nullable=False, server_default='message'),

        # Sentiment
        sa.Column('sentiment', sa.Text(), nullable=False),
        sa.Column('confidence', sa.Float(), nullable=False, server_default='0.5'),
        sa.Column('reasoning', sa.Text(), nullable=True),

        # Lead qualification
        sa.Column('urgency', sa.Text(), nullable=True),
        sa.Column('buying_intent', sa.Text(), nullable=True),
        sa.Column('budget_indication', sa.Text(), nullable=True),
        sa.Column('decision_maker', sa.Boolean(), nullable=True),
        sa.Column('timeline', sa.Text(), nullable=True),
        sa.Column('pain_points', postgresql.JSONB(), nullable=True),
        sa.Column('objections', postgresql.JSONB(), nullable=True),
        sa.Column('positive_signals', postgresql.JSONB(), nullable=True),
        sa.Column('risk_factors', postgresql.JSONB(), nullable=True),
        sa.Column('next_best_action', sa.Text(), nullable=True),

        # Customer profile
        sa.Column('expertise', sa.Text(), nullable=True),
        sa.Column('industry', sa.Text(), nullable=True),
        sa.Column('company_size', sa.Text(), nullable=True),
        sa.Column('role', sa.Text(), nullable=True),
        sa.Column('communication_style', sa.Text(), nullable=True),

        sa.Column('conversation_context', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )
    op.create_index('idx_sentiment_customer_created', 'customer_sentiment_history', ['customer_id', 'created_at'])
    op.create_index('idx_sentiment_conversation', 'customer_sentiment_history', ['conversation_id'])


def downgrade() -> None:
    op.drop_index('idx_sentiment_conversation', table_name='customer_sentiment_history')
    op.drop_index('idx_sentiment_customer_created', table_name='customer_sentiment_history')
    op.drop_table('customer_sentiment_history')

    op.drop_index('idx_messages_created', table_name='messages')
    op.drop_index('idx_messages_customer_id', table_name='messages')
    op.drop_index('idx_messages_conversation_created', table_name='messages')
    op.drop_table('messages')

    op.drop_index('uq_conversations_active_customer', table_name='conversations')
    op.drop_index('idx_conversations_last_message_at', table_name='conversations')
    op.drop_index('idx_conversations_whatsapp_number', table_name='conversations')
    op.drop_index('idx_conversations_customer_id', table_name='conversations')
    op.drop_table('conversations')

    op.drop_index('idx_customers_is_prospect', table_name='customers')
    op.drop_index('idx_customers_whatsapp', table_name='customers')
    op.drop_table('customers')
