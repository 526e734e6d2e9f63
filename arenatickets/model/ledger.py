from __future__ import annotations
import logging
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import DuplicateCodeError, DuplicatePaymentReference
from ..helpers import now_ts
from ..infra.timings import timeit
from .orm import (
    Ticket, TICKET_CANCELLED, TICKET_CONFIRMED, TICKET_PENDING
)

log = logging.getLogger(__name__)


class TicketLedger:
    """Durable record of issued tickets.

    Uniqueness of `code` and `payment_reference` is enforced by the
    database. `insert` is a single INSERT; a violated constraint is mapped
    to the matching domain error after the fact.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def insert(self, ticket: Ticket) -> str:
        if ticket.created_at is None:
            ticket.created_at = now_ts()
        try:
            async with timeit("ledger.insert"):
                async with self.db.begin():
                    self.db.add(ticket)
        except IntegrityError:
            # rollback already expunged the pending row
            ref = ticket.payment_reference
            if ref and await self.find_by_payment_reference(ref) is not None:
                raise DuplicatePaymentReference(ref)
            if await self.find_by_code(ticket.code) is not None:
                raise DuplicateCodeError(ticket.code)
            raise
        log.debug("ledger insert %s (%s)", ticket.code, ticket.status)
        return ticket.code

    async def _one(self, stmt) -> Optional[Ticket]:
        async with self.db.begin():
            result = await self.db.execute(stmt)
        return result.scalars().first()

    async def find_by_code(self, code: str) -> Optional[Ticket]:
        return await self._one(select(Ticket).where(Ticket.code == code))

    async def find_by_payment_reference(
        self, reference: str
    ) -> Optional[Ticket]:
        async with timeit("ledger.find_by_payment_reference"):
            return await self._one(
                select(Ticket).where(Ticket.payment_reference == reference)
            )

    async def find_by_email(
        self, email: str, status: Optional[str] = None
    ) -> List[Ticket]:
        stmt = select(Ticket).where(Ticket.email == email)
        if status:
            stmt = stmt.where(Ticket.status == status)
        stmt = stmt.order_by(Ticket.created_at.desc(), Ticket.id.desc())
        async with self.db.begin():
            result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def _transition(self, code: str, to: str, allowed) -> bool:
        async with self.db.begin():
            result = await self.db.execute(
                update(Ticket)
                .where(Ticket.code == code, Ticket.status.in_(allowed))
                .values(status=to)
                .execution_options(synchronize_session="evaluate")
            )
        return result.rowcount == 1

    async def mark_confirmed(self, code: str) -> bool:
        # pending -> confirmed happens at most once
        return await self._transition(
            code, TICKET_CONFIRMED, (TICKET_PENDING,)
        )

    async def mark_cancelled(self, code: str) -> bool:
        return await self._transition(
            code, TICKET_CANCELLED, (TICKET_PENDING, TICKET_CONFIRMED)
        )

    async def list(
        self, status: Optional[str] = None, limit: int = 50, offset: int = 0
    ) -> List[Ticket]:
        stmt = select(Ticket)
        if status:
            stmt = stmt.where(Ticket.status == status)
        stmt = (
            stmt.order_by(Ticket.created_at.desc(), Ticket.id.desc())
            .limit(max(1, min(limit, 500)))
            .offset(max(0, offset))
        )
        async with self.db.begin():
            result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def count(self, status: Optional[str] = None) -> int:
        stmt = select(func.count(Ticket.id))
        if status:
            stmt = stmt.where(Ticket.status == status)
        async with self.db.begin():
            result = await self.db.execute(stmt)
        return int(result.scalar_one())
