"""
Message Status Tracker
Applies Cloud API delivery reports (sent / delivered / read / failed) to stored messages.

Reports arrive at least once and in any order. A report is applied only when
it moves the message forward; duplicates and regressions are logged and left
alone, and a status timestamp is never overwritten once set.
"""
import logging
from typing import Dict, Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.whatsapp.constants import MessageStatus
from app.modules.whatsapp.repositories.message_repository import MessageRepository
from app.modules.realtime.services.notification_service import notification_manager
from app.shared.utils.date_utils import from_epoch_seconds, utcnow

logger = logging.getLogger("status_tracker")


def _failure_reason(event: Dict[str, Any]) -> Optional[str]:
    errors = event.get("errors") or []
    if not errors or not isinstance(errors[0], dict):
        return None
    error = errors[0]
    return error.get("title") or error.get("message") or str(error.get("code", "")) or None


class MessageStatusTracker:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.message_repo = MessageRepository(db)

    async def apply_status_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply one `statuses[]` item from a webhook.

        Never raises; unknown message ids and unknown statuses are logged.
        """
        provider_message_id = event.get("id")
        raw_status = event.get("status")

        try:
            message = await self.message_repo.get_by_provider_message_id(provider_message_id) if provider_message_id else None
            if not message:
                logger.warning(f"Status '{raw_status}' for unknown message {provider_message_id}")
                return {"success": False, "error": "Message not found"}

            try:
                status = MessageStatus(raw_status)
            except ValueError:
                logger.warning(f"Unknown status '{raw_status}' for message {provider_message_id}")
                return {"success": False, "error": f"Unknown status: {raw_status}"}

            at = from_epoch_seconds(event.get("timestamp")) or utcnow()

            applied = await self.message_repo.advance_status(
                provider_message_id,
                status,
                at,
                failed_reason=_failure_reason(event)
            )

            if not applied:
                # Same status again may still carry the first timestamp we saw
                await self.message_repo.fill_status_timestamp(provider_message_id, status, at)

            await self.db.commit()

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to apply status '{raw_status}' to {provider_message_id}: {e}")
            return {"success": False, "error": str(e)}

        if applied:
            logger.info(f"Message {provider_message_id}: {message['status']} → {status.value}")
            await notification_manager.emit_message_status(
                provider_message_id, status.value, message["customer_id"]
            )
        elif message["status"] == status.value:
            logger.info(f"Duplicate status '{status.value}' for message {provider_message_id}")
        else:
            logger.info(
                f"Ignoring out-of-order status '{status.value}' for message {provider_message_id} "
                f"(current: {message['status']})"
            )

        return {
            "success": True,
            "applied": applied,
            "message_id": provider_message_id,
            "status": status.value,
        }
