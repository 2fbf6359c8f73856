import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import String, Integer, Text, DateTime, Date
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


class Analysis(Base):
    __tablename__ = "analyses"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    owner: Mapped[str] = mapped_column(String(64), index=True)
    subject: Mapped[str] = mapped_column(Text)
    subject_kind: Mapped[str] = mapped_column(String(16), default="text")
    virality_score: Mapped[int] = mapped_column(Integer)
    emotional_tone: Mapped[str] = mapped_column(String(255))
    # Stored as JSON arrays
    suggestions: Mapped[str] = mapped_column(Text)
    embeddings: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    vision_analysis: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    transcript: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class DailyUsage(Base):
    __tablename__ = "daily_usage"

    usage_date: Mapped[date] = mapped_column(Date, primary_key=True)
    count: Mapped[int] = mapped_column(Integer, default=0)
