import json
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .errors import NotFound, PersistenceError
from .models import Analysis, DailyUsage
from .schemas import AnalysisResult, StoredAnalysis, SubjectKind

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Naive UTC, so values round-trip through SQLite and Postgres alike."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class NewAnalysis:
    owner: str
    subject: str
    subject_kind: SubjectKind
    result: AnalysisResult
    vision_analysis: Optional[str] = None
    transcript: Optional[str] = None
    embeddings: Optional[list[float]] = None


def _to_schema(row: Analysis) -> StoredAnalysis:
    return StoredAnalysis(
        id=row.id,
        owner=row.owner,
        subject=row.subject,
        subject_kind=row.subject_kind,
        virality_score=row.virality_score,
        emotional_tone=row.emotional_tone,
        suggestions=json.loads(row.suggestions),
        created_at=row.created_at,
        vision_analysis=row.vision_analysis,
        transcript=row.transcript,
        embeddings=json.loads(row.embeddings) if row.embeddings is not None else None,
    )


class ResultStore:
    """Append-only access to persisted analyses."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utcnow,
    ):
        self._sessions = session_factory
        self._clock = clock

    async def create(self, new: NewAnalysis) -> StoredAnalysis:
        row = Analysis(
            id=str(uuid.uuid4()),
            created_at=self._clock(),
            owner=new.owner,
            subject=new.subject,
            subject_kind=new.subject_kind,
            virality_score=new.result.virality_score,
            emotional_tone=new.result.emotional_tone,
            suggestions=json.dumps(new.result.suggestions),
            vision_analysis=new.vision_analysis,
            transcript=new.transcript,
            embeddings=json.dumps(new.embeddings) if new.embeddings is not None else None,
        )
        try:
            async with self._sessions() as session:
                session.add(row)
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise PersistenceError(f"Could not store analysis: {exc}") from exc

        logger.info("Stored analysis %s for owner %s", row.id, row.owner)
        return _to_schema(row)

    async def get_by_id(self, analysis_id: str, owner: Optional[str] = None) -> StoredAnalysis:
        async with self._sessions() as session:
            row = await session.get(Analysis, analysis_id)

        # Someone else's record looks exactly like a missing one.
        if row is None or (owner is not None and row.owner != owner):
            raise NotFound(analysis_id)
        return _to_schema(row)

    async def list_by_owner(self, owner: str) -> list[StoredAnalysis]:
        stmt = (
            select(Analysis)
            .where(Analysis.owner == owner)
            .order_by(Analysis.created_at.desc())
        )
        async with self._sessions() as session:
            rows = (await session.scalars(stmt)).all()
        return [_to_schema(row) for row in rows]

    async def usage_today(self) -> int:
        async with self._sessions() as session:
            usage = await session.get(DailyUsage, date.today())
        return usage.count if usage else 0

    async def record_usage(self) -> None:
        today = date.today()
        async with self._sessions() as session:
            usage = await session.get(DailyUsage, today)
            if usage:
                usage.count += 1
            else:
                session.add(DailyUsage(usage_date=today, count=1))
            await session.commit()
