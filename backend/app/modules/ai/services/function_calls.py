"""
AI Function Calls
Side-effecting actions the model may request alongside its reply.

The raw `function_call` object from the model is parsed into one of the known
call types below; anything else becomes UnknownFunctionCall and is only logged.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.customers.repositories.customer_repository import CustomerRepository
from app.modules.realtime.services.notification_service import notification_manager
from app.shared.utils.date_utils import utcnow
from app.shared.utils.json_utils import safe_json_parse

logger = logging.getLogger("function_calls")

PROSPECT_SOURCE_AI = "ai_agent"


@dataclass(frozen=True)
class MarkCustomerAsProspect:
    name = "markCustomerAsProspect"
    notes: Optional[str] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class UnknownFunctionCall:
    name: str
    parameters: Dict[str, Any] = field(default_factory=dict)


FunctionCall = Union[MarkCustomerAsProspect, UnknownFunctionCall]


def parse_function_call(raw: Any) -> Optional[FunctionCall]:
    """
    Build a typed call from the model's `function_call` object.

    Accepts {"name": ..., "parameters": {...}} (or "arguments"/"args"), as a
    dict or a JSON string. Returns None when there is no call.
    """
    raw = safe_json_parse(raw)
    if not raw or not isinstance(raw, dict):
        return None

    name = str(raw.get("name") or "").strip()
    if not name:
        return None

    parameters = safe_json_parse(raw.get("parameters") or raw.get("arguments") or raw.get("args"), default={})
    if not isinstance(parameters, dict):
        parameters = {}

    if name == MarkCustomerAsProspect.name:
        return MarkCustomerAsProspect(
            notes=parameters.get("notes") or parameters.get("additionalNotes"),
            reason=parameters.get("reason"),
        )

    return UnknownFunctionCall(name=name, parameters=parameters)


async def _mark_customer_as_prospect(call: MarkCustomerAsProspect, customer_id: int, db: AsyncSession) -> Dict[str, Any]:
    repo = CustomerRepository(db)
    prospect_date = utcnow()
    notes = call.notes or call.reason

    try:
        updated = await repo.mark_as_prospect(
            customer_id,
            source=PROSPECT_SOURCE_AI,
            notes=notes,
            at=prospect_date
        )
        if not updated:
            await db.rollback()
            logger.warning(f"Customer {customer_id} not found, cannot mark as prospect")
            return {"success": False, "error": "Customer not found"}
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(f"🎯 Customer {customer_id} marked as prospect by AI agent")

    await notification_manager.emit_customer_prospect_status(
        customer_id,
        is_prospect=True,
        prospect_date=prospect_date,
        prospect_source=PROSPECT_SOURCE_AI,
        additional_notes=notes
    )
    return {"success": True, "function": call.name}


async def execute_function_call(call: FunctionCall, customer_id: int, db: AsyncSession) -> Dict[str, Any]:
    """Run a parsed call for a customer. Raises on database errors."""
    if isinstance(call, MarkCustomerAsProspect):
        return await _mark_customer_as_prospect(call, customer_id, db)

    if isinstance(call, UnknownFunctionCall):
        logger.warning(f"Ignoring unknown function call '{call.name}' for customer {customer_id}")
        return {"success": False, "error": f"Unknown function: {call.name}"}

    raise TypeError(f"Unsupported function call type: {type(call).__name__}")
