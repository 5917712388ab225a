"""
Sentiment History Repository
Write-through for per-message sentiment / lead-qualification analysis.
"""
from typing import Optional, List
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.ai.models.sentiment_history import CustomerSentimentHistory
from app.shared.utils.date_utils import utcnow


class SentimentRepository:

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def save(
        self,
        customer_id: int,
        message: str,
        analysis: dict,
        conversation_id: Optional[int] = None,
        message_index: Optional[int] = None,
        conversation_context: Optional[dict] = None,
        analysis_trigger: str = "message"
    ) -> dict:
        """
        Persist one analysis result (the normalised shape returned by the
        LLM service: sentiment, confidence, reasoning, lead_qualification,
        customer_profile).
        """
        lead = analysis.get("lead_qualification") or {}
        profile = analysis.get("customer_profile") or {}

        record = CustomerSentimentHistory(
            customer_id=customer_id,
            conversation_id=conversation_id,
            message_index=message_index,
            message=message,
            analysis_trigger=analysis_trigger,
            sentiment=analysis.get("sentiment", "neutral"),
            confidence=analysis.get("confidence", 0.5),
            reasoning=analysis.get("reasoning"),
            urgency=lead.get("urgency"),
            buying_intent=lead.get("buying_intent"),
            budget_indication=lead.get("budget_indication"),
            decision_maker=lead.get("decision_maker"),
            timeline=lead.get("timeline"),
            pain_points=lead.get("pain_points") or [],
            objections=lead.get("objections") or [],
            positive_signals=lead.get("positive_signals") or [],
            risk_factors=lead.get("risk_factors") or [],
            next_best_action=lead.get("next_best_action"),
            expertise=profile.get("expertise"),
            industry=profile.get("industry"),
            company_size=profile.get("company_size"),
            role=profile.get("role"),
            communication_style=profile.get("communication_style"),
            conversation_context=conversation_context,
            created_at=utcnow()
        )

        self.db.add(record)
        await self.db.flush()
        await self.db.refresh(record)

        return {k: v for k, v in record.__dict__.items() if not k.startswith('_')}

    async def get_history_for_customer(self, customer_id: int, limit: int = 20) -> List[dict]:
        query = (
            select(CustomerSentimentHistory)
            .where(CustomerSentimentHistory.customer_id == customer_id)
            .order_by(CustomerSentimentHistory.created_at.desc(), CustomerSentimentHistory.id.desc())
            .limit(limit)
        )
        result = await self.db.execute(query)
        records = result.scalars().all()

        return [{k: v for k, v in r.__dict__.items() if not k.startswith('_')} for r in records]
