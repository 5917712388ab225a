"""
Conversation Service
Lifecycle of conversations and the messages recorded in them.

Owns the transaction: repositories flush, this service commits or rolls back.
"""
import logging
from typing import Optional, Dict, Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.whatsapp.repositories.conversation_repository import ConversationRepository
from app.modules.whatsapp.repositories.message_repository import MessageRepository
from app.modules.whatsapp.constants import ConversationStatus, SenderType
from app.shared.core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, LAST_MESSAGES_LIMIT, AI_HISTORY_WINDOW
from app.shared.utils.date_utils import as_utc
from app.shared.utils.exceptions import EntityNotFoundError

logger = logging.getLogger("conversation_service")


class ConversationService:
    """Find-or-create, record, clear and read conversations."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.conversation_repo = ConversationRepository(db)
        self.message_repo = MessageRepository(db)

    # ============================================
    # LIFECYCLE
    # ============================================

    async def find_or_create(self, customer_id: int, whatsapp_number: str) -> Dict[str, Any]:
        """
        The customer's active conversation, creating one if there is none.

        Two concurrent callers race on the partial unique index; the loser
        rolls back and returns the winner's conversation.
        """
        conversation = await self.conversation_repo.get_active_by_customer(customer_id)
        if conversation:
            return conversation

        try:
            conversation = await self.conversation_repo.create(customer_id, whatsapp_number)
            await self.db.commit()
            logger.info(f"Created conversation {conversation['id']} for customer {customer_id}")
            return conversation
        except IntegrityError:
            await self.db.rollback()
            logger.info(f"Active conversation for customer {customer_id} created concurrently, re-reading")
            conversation = await self.conversation_repo.get_active_by_customer(customer_id)
            if conversation is None:
                raise
            return conversation

    async def record_message(self, **fields) -> Optional[Dict[str, Any]]:
        """
        Store a message and count it on its conversation.

        Accepts the keyword arguments of MessageRepository.create_if_absent.
        Returns the stored message, or None when the provider id was already
        recorded (the conversation count is left untouched).
        """
        try:
            message = await self.message_repo.create_if_absent(**fields)
            if message is None:
                await self.db.rollback()
                logger.info(f"Duplicate message {fields.get('provider_message_id')} ignored")
                return None

            await self.conversation_repo.increment_message_count(
                message["conversation_id"],
                sender_type=message["sender_type"],
                at=message.get("created_at")
            )
            await self.db.commit()
            return message
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to record message {fields.get('provider_message_id')}: {e}")
            raise

    async def clear(self, conversation_id: int) -> Dict[str, Any]:
        """Archive a conversation; the next inbound contact starts a fresh one."""
        conversation = await self.conversation_repo.get_by_id(conversation_id)
        if not conversation:
            raise EntityNotFoundError("Conversation", conversation_id)

        try:
            await self.conversation_repo.archive(conversation_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Conversation {conversation_id} cleared")
        return await self.conversation_repo.get_by_id(conversation_id)

    async def clear_by_customer(self, customer_id: int) -> Dict[str, Any]:
        """Archive the customer's active conversation in a single UPDATE."""
        conversation = await self.conversation_repo.get_active_by_customer(customer_id)
        if not conversation:
            raise EntityNotFoundError("Active conversation for customer", customer_id)

        try:
            archived = await self.conversation_repo.archive_active_for_customer(customer_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        if not archived:
            # Cleared concurrently between the lookup and the update
            raise EntityNotFoundError("Active conversation for customer", customer_id)

        logger.info(f"Conversation {conversation['id']} of customer {customer_id} cleared")
        return await self.conversation_repo.get_by_id(conversation["id"])

    async def delete(self, conversation_id: int) -> Dict[str, Any]:
        """Delete a conversation and all of its messages."""
        conversation = await self.conversation_repo.get_by_id(conversation_id)
        if not conversation:
            raise EntityNotFoundError("Conversation", conversation_id)

        try:
            deleted_messages = await self.message_repo.delete_for_conversation(conversation_id)
            await self.conversation_repo.delete(conversation_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"🗑️ Deleted conversation {conversation_id} ({deleted_messages} messages)")
        return {"conversation_id": conversation_id, "deleted_messages": deleted_messages}

    async def has_template_been_sent(self, conversation_id: int, template_name: str) -> bool:
        return await self.message_repo.template_exists(conversation_id, template_name)

    # ============================================
    # READS
    # ============================================

    async def get_active_by_whatsapp_number(self, whatsapp_number: str) -> Optional[Dict[str, Any]]:
        return await self.conversation_repo.get_active_by_whatsapp_number(whatsapp_number)

    async def get_recent_messages(
        self,
        conversation_id: int,
        limit: int = AI_HISTORY_WINDOW,
        exclude_provider_message_id: Optional[str] = None
    ) -> list:
        """Chronological tail of a conversation, used as model context."""
        return await self.message_repo.get_recent_for_conversation(
            conversation_id,
            limit=limit,
            exclude_provider_message_id=exclude_provider_message_id
        )

    async def get_conversation_history(self, customer_id: int) -> Dict[str, Any]:
        """
        Active conversation and its latest messages (newest first).
        Messages from before the customer's last clear are hidden.
        """
        conversation = await self.conversation_repo.get_active_by_customer(customer_id)
        if not conversation:
            return {"conversation": None, "messages": []}

        cleared_at = await self.conversation_repo.get_latest_cleared_at(customer_id)
        messages = await self.message_repo.get_messages_for_conversation(
            conversation["id"],
            limit=LAST_MESSAGES_LIMIT
        )
        if cleared_at is not None:
            cutoff = as_utc(cleared_at)
            messages = [m for m in messages if as_utc(m["created_at"]) > cutoff]

        return {"conversation": conversation, "messages": messages}

    async def list_conversations(
        self,
        status: Optional[str] = None,
        customer_id: Optional[int] = None,
        skip: int = 0,
        limit: int = DEFAULT_PAGE_SIZE
    ) -> Dict[str, Any]:
        limit = min(limit, MAX_PAGE_SIZE)
        conversations = await self.conversation_repo.list_conversations(
            status=status, customer_id=customer_id, skip=skip, limit=limit
        )
        total = await self.conversation_repo.count_conversations(status=status, customer_id=customer_id)
        return {"conversations": conversations, "total": total, "skip": skip, "limit": limit}

    async def get_last_messages(self, limit: int = LAST_MESSAGES_LIMIT) -> list:
        return await self.message_repo.get_last_messages(limit)

    async def get_chat_messages(self, customer_id: int, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> Dict[str, Any]:
        """A customer's chat across conversations, paginated, after the last clear."""
        page = max(page, 1)
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        skip = (page - 1) * limit

        cleared_at = await self.conversation_repo.get_latest_cleared_at(customer_id)
        messages = await self.message_repo.get_messages_for_customer(
            customer_id, created_after=cleared_at, skip=skip, limit=limit
        )
        total = await self.message_repo.count_for_customer(customer_id, created_after=cleared_at)
        total_pages = (total + limit - 1) // limit if total else 0

        return {
            "messages": messages,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": total_pages,
                "has_next": page < total_pages,
                "has_prev": page > 1,
            },
        }

    async def get_conversation_analytics(self, customer_id: int) -> Dict[str, Any]:
        """
        Totals by sender and the average agent response time for the
        customer's active conversation.
        """
        conversation = await self.conversation_repo.get_active_by_customer(customer_id)
        if not conversation:
            raise EntityNotFoundError("Active conversation for customer", customer_id)

        messages = await self.message_repo.get_messages_for_conversation(
            conversation["id"],
            limit=MAX_PAGE_SIZE,
            newest_first=False
        )

        customer_messages = [m for m in messages if m["sender_type"] == SenderType.CUSTOMER.value]
        agent_messages = [m for m in messages if m["sender_type"] == SenderType.AGENT.value]

        return {
            "conversation_id": conversation["id"],
            "total_messages": conversation["message_count"],
            "customer_messages": len(customer_messages),
            "agent_messages": len(agent_messages),
            "last_message_at": conversation.get("last_message_at"),
            "status": conversation.get("status", ConversationStatus.ACTIVE.value),
            "average_response_time_ms": average_response_time_ms(messages),
        }


def average_response_time_ms(messages: list) -> Optional[int]:
    """
    Mean time from each customer message to the first agent message after it, in ms.
    None when the customer has not been answered yet.
    """
    customer_times = [as_utc(m["created_at"]) for m in messages if m["sender_type"] == SenderType.CUSTOMER.value]
    agent_times = sorted(as_utc(m["created_at"]) for m in messages if m["sender_type"] == SenderType.AGENT.value)

    response_times = []
    for asked_at in customer_times:
        answered_at = next((t for t in agent_times if t > asked_at), None)
        if answered_at is not None:
            response_times.append((answered_at - asked_at).total_seconds() * 1000)

    if not response_times:
        return None
    return round(sum(response_times) / len(response_times))
