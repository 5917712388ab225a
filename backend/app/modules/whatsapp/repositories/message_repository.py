"""
Message Repository
Database operations for the messages table.

Inbound webhooks are delivered at least once, so creation is insert-if-absent
keyed on provider_message_id. Status changes are conditional UPDATEs so a
late or duplicated delivery report can never move a message backwards.
"""
from datetime import datetime
from typing import Optional, List
from sqlalchemy import select, update, delete, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.whatsapp.models.message import Message
from app.modules.whatsapp.constants import MessageStatus, STATUS_TIMESTAMP_FIELDS
from app.shared.core.constants import DEFAULT_PAGE_SIZE, AI_HISTORY_WINDOW, LAST_MESSAGES_LIMIT
from app.shared.utils.date_utils import utcnow


_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class MessageRepository:
    """Repository for WhatsApp message CRUD operations."""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    # ============================================
    # READ OPERATIONS
    # ============================================

    async def get_by_id(self, message_id: int) -> Optional[dict]:
        """Fetch a single message by ID."""
        query = (
            select(Message)
            .where(Message.id == message_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        message = result.scalar_one_or_none()

        if message:
            return {k: v for k, v in message.__dict__.items() if not k.startswith('_')}
        return None

    async def get_by_provider_message_id(self, provider_message_id: str) -> Optional[dict]:
        """Fetch a message by the WhatsApp message id (wamid)."""
        query = (
            select(Message)
            .where(Message.provider_message_id == provider_message_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        message = result.scalar_one_or_none()

        if message:
            return {k: v for k, v in message.__dict__.items() if not k.startswith('_')}
        return None

    async def get_messages_for_conversation(
        self,
        conversation_id: int,
        skip: int = 0,
        limit: int = DEFAULT_PAGE_SIZE,
        newest_first: bool = True
    ) -> List[dict]:
        """Conversation history, most recent first by default."""
        if newest_first:
            ordering = (Message.created_at.desc(), Message.id.desc())
        else:
            ordering = (Message.created_at.asc(), Message.id.asc())

        query = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(*ordering)
            .offset(skip)
            .limit(limit)
            .execution_options(populate_existing=True)
        )

        result = await self.db.execute(query)
        messages = result.scalars().all()

        return [{k: v for k, v in m.__dict__.items() if not k.startswith('_')} for m in messages]

    async def get_recent_for_conversation(
        self,
        conversation_id: int,
        limit: int = AI_HISTORY_WINDOW,
        exclude_provider_message_id: Optional[str] = None
    ) -> List[dict]:
        """
        Last `limit` messages of a conversation in chronological order.
        Used as model context; the message being answered can be excluded.
        """
        query = select(Message).where(Message.conversation_id == conversation_id)

        if exclude_provider_message_id:
            query = query.where(Message.provider_message_id != exclude_provider_message_id)

        query = query.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit)

        result = await self.db.execute(query)
        messages = list(result.scalars().all())
        messages.reverse()

        return [{k: v for k, v in m.__dict__.items() if not k.startswith('_')} for m in messages]

    async def get_messages_for_customer(
        self,
        customer_id: int,
        created_after: Optional[datetime] = None,
        skip: int = 0,
        limit: int = DEFAULT_PAGE_SIZE
    ) -> List[dict]:
        """All of a customer's messages across conversations, newest first."""
        query = select(Message).where(Message.customer_id == customer_id)

        if created_after is not None:
            query = query.where(Message.created_at > created_after)

        query = (
            query
            .order_by(Message.created_at.desc(), Message.id.desc())
            .offset(skip)
            .limit(limit)
            .execution_options(populate_existing=True)
        )

        result = await self.db.execute(query)
        messages = result.scalars().all()

        return [{k: v for k, v in m.__dict__.items() if not k.startswith('_')} for m in messages]

    async def count_for_customer(self, customer_id: int, created_after: Optional[datetime] = None) -> int:
        query = select(func.count()).select_from(Message).where(Message.customer_id == customer_id)
        if created_after is not None:
            query = query.where(Message.created_at > created_after)
        result = await self.db.execute(query)
        return result.scalar() or 0

    async def get_last_messages(self, limit: int = LAST_MESSAGES_LIMIT) -> List[dict]:
        """Most recent messages across all conversations (dashboard feed)."""
        query = (
            select(Message)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )

        result = await self.db.execute(query)
        messages = result.scalars().all()

        return [{k: v for k, v in m.__dict__.items() if not k.startswith('_')} for m in messages]

    async def template_exists(self, conversation_id: int, template_name: str) -> bool:
        """True if the template was already sent in this conversation."""
        query = (
            select(Message.id)
            .where(
                Message.conversation_id == conversation_id,
                Message.is_template.is_(True),
                Message.template_name == template_name
            )
            .limit(1)
        )
        result = await self.db.execute(query)
        return result.first() is not None

    # ============================================
    # CREATE OPERATIONS
    # ============================================

    async def create_if_absent(
        self,
        conversation_id: int,
        customer_id: int,
        whatsapp_number: str,
        provider_message_id: str,
        sender_type: str,
        content: str,
        message_type: str = "text",
        status: str = MessageStatus.PENDING.value,
        is_template: bool = False,
        template_name: Optional[str] = None,
        extra_data: Optional[dict] = None,
        sent_at: Optional[datetime] = None,
        delivered_at: Optional[datetime] = None
    ) -> Optional[dict]:
        """
        Insert a message unless one with the same provider_message_id exists.

        Returns the stored message, or None when it was a duplicate delivery.
        """
        values = {
            "conversation_id": conversation_id,
            "customer_id": customer_id,
            "whatsapp_number": whatsapp_number,
            "provider_message_id": provider_message_id,
            "sender_type": sender_type,
            "message_type": message_type,
            "content": content,
            "status": status,
            "is_template": is_template,
            "template_name": template_name,
            "extra_data": extra_data,
            "sent_at": sent_at,
            "delivered_at": delivered_at,
            "created_at": utcnow(),
        }

        dialect_name = self.db.get_bind().dialect.name
        insert_fn = _UPSERT_DIALECTS.get(dialect_name)

        if insert_fn is not None:
            stmt = (
                insert_fn(Message)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["provider_message_id"])
                .returning(Message.id)
            )
            result = await self.db.execute(stmt)
            new_id = result.scalar_one_or_none()
            if new_id is None:
                return None
            return await self.get_by_id(new_id)

        # Other backends: check then insert (unique constraint still guards the race)
        if await self.get_by_provider_message_id(provider_message_id):
            return None
        message = Message(**values)
        self.db.add(message)
        await self.db.flush()
        await self.db.refresh(message)
        return {k: v for k, v in message.__dict__.items() if not k.startswith('_')}

    # ============================================
    # UPDATE OPERATIONS
    # ============================================

    async def advance_status(
        self,
        provider_message_id: str,
        status: MessageStatus,
        at: datetime,
        failed_reason: Optional[str] = None
    ) -> bool:
        """
        Move a message forward to `status`.

        Applied only while the message is in one of the status's allowed
        predecessors; the matching timestamp is set only if still empty.
        Returns False when nothing changed (duplicate, regression, unknown id).
        """
        predecessors = [s.value for s in MessageStatus.allowed_predecessors(status)]
        if not predecessors:
            return False

        update_values = {"status": status.value}

        timestamp_field = STATUS_TIMESTAMP_FIELDS.get(status)
        if timestamp_field:
            column = getattr(Message, timestamp_field)
            update_values[timestamp_field] = func.coalesce(column, at)

        if status == MessageStatus.FAILED:
            update_values["failed_reason"] = failed_reason or "Unknown error"

        stmt = (
            update(Message)
            .where(
                Message.provider_message_id == provider_message_id,
                Message.status.in_(predecessors)
            )
            .values(**update_values)
            .execution_options(synchronize_session=False)
        )

        result = await self.db.execute(stmt)
        return result.rowcount > 0

    async def fill_status_timestamp(
        self,
        provider_message_id: str,
        status: MessageStatus,
        at: datetime
    ) -> bool:
        """
        Re-applied status: stamp its timestamp if it was never set.
        Never overwrites an existing value.
        """
        timestamp_field = STATUS_TIMESTAMP_FIELDS.get(status)
        if not timestamp_field:
            return False

        column = getattr(Message, timestamp_field)
        stmt = (
            update(Message)
            .where(
                Message.provider_message_id == provider_message_id,
                Message.status == status.value,
                column.is_(None)
            )
            .values(**{timestamp_field: at})
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount > 0

    # ============================================
    # DELETE OPERATIONS
    # ============================================

    async def delete_for_conversation(self, conversation_id: int) -> int:
        """Delete all messages of a conversation. Returns rows deleted."""
        stmt = delete(Message).where(Message.conversation_id == conversation_id)
        result = await self.db.execute(stmt)
        return result.rowcount
