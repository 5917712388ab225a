"""
Customer Repository
The narrow slice of customer persistence the conversation engine needs.
"""
from datetime import datetime
from typing import Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.customers.models.customer import Customer
from app.shared.utils.date_utils import utcnow


class CustomerRepository:
    """Lookup by id and prospect flagging."""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def get_by_id(self, customer_id: int) -> Optional[dict]:
        query = (
            select(Customer)
            .where(Customer.id == customer_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        customer = result.scalar_one_or_none()

        if customer:
            return {k: v for k, v in customer.__dict__.items() if not k.startswith('_')}
        return None

    async def create(self, name: str, whatsapp: Optional[str] = None, **fields) -> dict:
        """Used by seed data and tests; customer CRUD lives in another service."""
        customer = Customer(name=name, whatsapp=whatsapp, created_at=utcnow(), **fields)
        self.db.add(customer)
        await self.db.flush()
        await self.db.refresh(customer)
        return {k: v for k, v in customer.__dict__.items() if not k.startswith('_')}

    async def mark_as_prospect(
        self,
        customer_id: int,
        source: str,
        notes: Optional[str] = None,
        at: Optional[datetime] = None
    ) -> bool:
        """Flag the customer as a prospect. Returns False if the customer does not exist."""
        stmt = (
            update(Customer)
            .where(Customer.id == customer_id)
            .values(
                is_prospect=True,
                prospect_date=at or utcnow(),
                prospect_source=source,
                prospect_notes=notes,
                updated_at=utcnow()
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount > 0
