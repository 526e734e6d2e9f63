from __future__ import annotations
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..helpers import now_ts
from .orm import Competitor

PROFILE_FIELDS = (
    "email",
    "full_name",
    "github_username",
    "twitter_username",
    "profile_photo_url",
    "bio",
)


class DuplicateCompetitorEmail(Exception):
    pass


class CompetitorStore:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def create(self, profile: Dict[str, Any]) -> Competitor:
        ts = now_ts()
        competitor = Competitor(
            **{k: profile.get(k) for k in PROFILE_FIELDS},
            submission_files="[]",
            status="pending",
            created_at=ts,
            updated_at=ts,
        )
        try:
            async with self.db.begin():
                self.db.add(competitor)
        except IntegrityError:
            raise DuplicateCompetitorEmail(profile.get("email"))
        return competitor

    async def get(self, competitor_id: int) -> Optional[Competitor]:
        async with self.db.begin():
            return await self.db.get(Competitor, competitor_id)

    async def list(
        self, status: Optional[str] = None, limit: int = 50, offset: int = 0
    ) -> List[Competitor]:
        stmt = select(Competitor)
        if status:
            stmt = stmt.where(Competitor.status == status)
        stmt = (
            stmt.order_by(Competitor.created_at.desc())
            .limit(max(1, min(limit, 500)))
            .offset(max(0, offset))
        )
        async with self.db.begin():
            result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def update(
        self, competitor_id: int, profile: Dict[str, Any]
    ) -> Optional[Competitor]:
        """Returns None when the competitor does not exist."""
        try:
            async with self.db.begin():
                competitor = await self.db.get(Competitor, competitor_id)
                if competitor is None:
                    return None
                for k in PROFILE_FIELDS:
                    setattr(competitor, k, profile.get(k))
                if profile.get("status"):
                    competitor.status = profile["status"]
                competitor.updated_at = now_ts()
        except IntegrityError:
            raise DuplicateCompetitorEmail(profile.get("email"))
        return competitor

    async def append_files(
        self, competitor_id: int, paths: List[str]
    ) -> Optional[Competitor]:
        async with self.db.begin():
            competitor = await self.db.get(Competitor, competitor_id)
            if competitor is None:
                return None
            competitor.files = competitor.files + list(paths)
            competitor.updated_at = now_ts()
        return competitor

    async def delete(self, competitor_id: int) -> Optional[List[str]]:
        """Deletes the row and returns its file paths for cleanup."""
        async with self.db.begin():
            competitor = await self.db.get(Competitor, competitor_id)
            if competitor is None:
                return None
            files = competitor.files
            await self.db.delete(competitor)
        return files
