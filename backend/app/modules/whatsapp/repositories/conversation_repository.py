"""
Conversation Repository
Database operations for the conversations table.

Repositories flush but never commit; the service layer owns the transaction.
"""
from datetime import datetime
from typing import Optional, List
from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.whatsapp.models.conversation import Conversation
from app.modules.whatsapp.constants import ConversationStatus
from app.shared.core.constants import DEFAULT_PAGE_SIZE
from app.shared.utils.date_utils import utcnow


class ConversationRepository:
    """Repository for conversation CRUD and bookkeeping."""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    # ============================================
    # READ OPERATIONS
    # ============================================

    async def get_by_id(self, conversation_id: int) -> Optional[dict]:
        """Fetch a single conversation by ID."""
        query = (
            select(Conversation)
            .where(Conversation.id == conversation_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        conversation = result.scalar_one_or_none()

        if conversation:
            return {k: v for k, v in conversation.__dict__.items() if not k.startswith('_')}
        return None

    async def get_active_by_customer(self, customer_id: int) -> Optional[dict]:
        """The customer's active conversation, if any."""
        query = (
            select(Conversation)
            .where(
                Conversation.customer_id == customer_id,
                Conversation.status == ConversationStatus.ACTIVE.value
            )
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        conversation = result.scalar_one_or_none()

        if conversation:
            return {k: v for k, v in conversation.__dict__.items() if not k.startswith('_')}
        return None

    async def get_active_by_whatsapp_number(self, whatsapp_number: str) -> Optional[dict]:
        """
        Active conversation for a WhatsApp number (digits only).
        If several customers share the number, the most recently active wins.
        """
        query = (
            select(Conversation)
            .where(
                Conversation.whatsapp_number == whatsapp_number,
                Conversation.status == ConversationStatus.ACTIVE.value
            )
            .order_by(Conversation.last_message_at.desc(), Conversation.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        conversation = result.scalars().first()

        if conversation:
            return {k: v for k, v in conversation.__dict__.items() if not k.startswith('_')}
        return None

    async def list_conversations(
        self,
        status: Optional[str] = None,
        customer_id: Optional[int] = None,
        skip: int = 0,
        limit: int = DEFAULT_PAGE_SIZE
    ) -> List[dict]:
        """List conversations, most recently active first."""
        query = select(Conversation)

        if status:
            query = query.where(Conversation.status == status)
        if customer_id is not None:
            query = query.where(Conversation.customer_id == customer_id)

        query = (
            query
            .order_by(Conversation.last_message_at.desc(), Conversation.created_at.desc(), Conversation.id.desc())
            .offset(skip)
            .limit(limit)
            .execution_options(populate_existing=True)
        )

        result = await self.db.execute(query)
        conversations = result.scalars().all()

        return [{k: v for k, v in c.__dict__.items() if not k.startswith('_')} for c in conversations]

    async def count_conversations(
        self,
        status: Optional[str] = None,
        customer_id: Optional[int] = None
    ) -> int:
        query = select(func.count()).select_from(Conversation)

        if status:
            query = query.where(Conversation.status == status)
        if customer_id is not None:
            query = query.where(Conversation.customer_id == customer_id)

        result = await self.db.execute(query)
        return result.scalar() or 0

    async def get_latest_cleared_at(self, customer_id: int) -> Optional[datetime]:
        """When the customer's history was last cleared (None if never)."""
        query = select(func.max(Conversation.cleared_at)).where(Conversation.customer_id == customer_id)
        result = await self.db.execute(query)
        return result.scalar()

    # ============================================
    # CREATE OPERATIONS
    # ============================================

    async def create(self, customer_id: int, whatsapp_number: str) -> dict:
        """
        Create a new active conversation.
        Raises IntegrityError (on flush) if the customer already has one.
        """
        conversation = Conversation(
            customer_id=customer_id,
            whatsapp_number=whatsapp_number,
            status=ConversationStatus.ACTIVE.value,
            message_count=0,
            last_message_at=utcnow(),
            created_at=utcnow()
        )

        self.db.add(conversation)
        await self.db.flush()  # Flush to get ID, let service manage commit
        await self.db.refresh(conversation)

        return {k: v for k, v in conversation.__dict__.items() if not k.startswith('_')}

    # ============================================
    # UPDATE OPERATIONS
    # ============================================

    async def increment_message_count(
        self,
        conversation_id: int,
        sender_type: str,
        at: Optional[datetime] = None
    ) -> bool:
        """
        Count one more message and stamp the last-message fields.
        Single UPDATE with `message_count + 1` so concurrent writers never lose increments.
        """
        stmt = (
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(
                message_count=Conversation.message_count + 1,
                last_message_at=at or utcnow(),
                last_message_from=sender_type,
                updated_at=utcnow()
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount > 0

    async def archive(self, conversation_id: int, at: Optional[datetime] = None) -> bool:
        """Archive a conversation and stamp cleared_at. No-op if already archived."""
        at = at or utcnow()
        stmt = (
            update(Conversation)
            .where(
                Conversation.id == conversation_id,
                Conversation.status != ConversationStatus.ARCHIVED.value
            )
            .values(
                status=ConversationStatus.ARCHIVED.value,
                cleared_at=at,
                last_message_at=at,
                updated_at=at
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount > 0

    async def archive_active_for_customer(self, customer_id: int, at: Optional[datetime] = None) -> int:
        """Archive the customer's active conversation. Returns rows affected (0 or 1)."""
        at = at or utcnow()
        stmt = (
            update(Conversation)
            .where(
                Conversation.customer_id == customer_id,
                Conversation.status == ConversationStatus.ACTIVE.value
            )
            .values(
                status=ConversationStatus.ARCHIVED.value,
                cleared_at=at,
                last_message_at=at,
                updated_at=at
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount

    # ============================================
    # DELETE OPERATIONS
    # ============================================

    async def delete(self, conversation_id: int) -> bool:
        stmt = delete(Conversation).where(Conversation.id == conversation_id)
        result = await self.db.execute(stmt)
        return result.rowcount > 0
