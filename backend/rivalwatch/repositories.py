"""Relational store access for diff history and competitor lookups."""
from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import and_, desc, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rivalwatch.db import async_session_factory
from rivalwatch.models.competitor import Competitor, CompetitorUrl, Subscription
from rivalwatch.models.diff import DiffRecord
from rivalwatch.schemas.diff import DiffAnalysis


class DiffRepository:
    """Append-only diff history. Replayed inserts add rows, never overwrite."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = async_session_factory) -> None:
        self._session_factory = session_factory

    async def insert(
        self,
        *,
        url: str,
        run_id1: str,
        run_id2: str,
        week_number: str,
        differences: DiffAnalysis,
    ) -> DiffRecord:
        row = DiffRecord(
            url=url,
            run_id1=run_id1,
            run_id2=run_id2,
            week_number=week_number,
            **{f"{name}_changes": changes for name, changes in differences.model_dump().items()},
        )
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
        return row

    async def history(
        self,
        *,
        url: str,
        from_run_id: str | None = None,
        to_run_id: str | None = None,
        week_number: str | None = None,
        limit: int = 10,
    ) -> list[DiffRecord]:
        """Newest-first rows for `url`, optionally filtered by run range and week."""
        stmt = select(DiffRecord).where(DiffRecord.url == url)
        if week_number:
            stmt = stmt.where(DiffRecord.week_number == week_number)

        if from_run_id and to_run_id:
            stmt = stmt.where(
                or_(
                    DiffRecord.run_id1.between(from_run_id, to_run_id),
                    DiffRecord.run_id2.between(from_run_id, to_run_id),
                )
            )
        elif from_run_id:
            stmt = stmt.where(or_(DiffRecord.run_id1 >= from_run_id, DiffRecord.run_id2 >= from_run_id))
        elif to_run_id:
            stmt = stmt.where(or_(DiffRecord.run_id1 <= to_run_id, DiffRecord.run_id2 <= to_run_id))

        stmt = stmt.order_by(desc(DiffRecord.created_at), desc(DiffRecord.id)).limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())


@dataclass
class CompetitorWithUrls:
    id: int
    name: str
    domain: str
    urls: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "domain": self.domain, "urls": list(self.urls)}


class CompetitorRepository:
    """Read-only view of the competitor/URL/subscription tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = async_session_factory) -> None:
        self._session_factory = session_factory

    async def get_competitor(self, competitor_id: int) -> CompetitorWithUrls | None:
        async with self._session_factory() as session:
            competitor = (
                await session.execute(select(Competitor).where(Competitor.id == competitor_id))
            ).scalar()
            if competitor is None:
                return None
            urls = (
                await session.execute(
                    select(CompetitorUrl.url)
                    .where(CompetitorUrl.competitor_id == competitor_id)
                    .order_by(CompetitorUrl.id)
                )
            ).scalars().all()
        return CompetitorWithUrls(
            id=competitor.id,
            name=competitor.name,
            domain=competitor.domain,
            urls=list(urls),
        )

    async def list_urls(self, *, limit: int, offset: int) -> list[str]:
        stmt = (
            select(CompetitorUrl.url)
            .distinct()
            .order_by(CompetitorUrl.url)
            .limit(limit)
            .offset(offset)
        )
        async with self._session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def list_competitor_ids(self, *, limit: int, offset: int) -> list[int]:
        stmt = select(Competitor.id).order_by(Competitor.id).limit(limit).offset(offset)
        async with self._session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def active_subscribers(self, competitor_id: int) -> list[str]:
        stmt = (
            select(Subscription.email)
            .where(and_(Subscription.competitor_id == competitor_id, Subscription.status == "active"))
            .order_by(Subscription.id)
        )
        async with self._session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())
