from __future__ import annotations
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..helpers import now_ts
from .orm import Signup


class SignupStore:
    """Append-only email signups."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def add(self, email: str) -> Optional[Signup]:
        """Returns None when the email is already registered."""
        signup = Signup(email=email, created_at=now_ts(), notified=False)
        try:
            async with self.db.begin():
                self.db.add(signup)
        except IntegrityError:
            return None
        return signup

    async def mark_notified(self, signup_id: int) -> None:
        async with self.db.begin():
            await self.db.execute(
                update(Signup)
                .where(Signup.id == signup_id)
                .values(notified=True)
            )

    async def unnotified(self) -> List[Signup]:
        """Signups no bulk update has reached yet, oldest first."""
        async with self.db.begin():
            result = await self.db.execute(
                select(Signup)
                .where(Signup.notified.is_(False))
                .order_by(Signup.created_at, Signup.id)
            )
        return list(result.scalars().all())

    async def all(self) -> List[Signup]:
        async with self.db.begin():
            result = await self.db.execute(
                select(Signup).order_by(Signup.created_at.desc())
            )
        return list(result.scalars().all())

    async def count(self) -> int:
        async with self.db.begin():
            result = await self.db.execute(select(func.count(Signup.id)))
        return int(result.scalar_one())
