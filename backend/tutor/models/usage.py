"""Per-user quota counters. A new period key starts a fresh row at zero."""

from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Integer

from tutor.database import Base


class UsageDaily(Base):
    __tablename__ = "ai_usage_daily"

    id = Column(String(160), primary_key=True)  # <uid>_<YYYYMMDD>
    user_id = Column(String(128), nullable=False)
    date = Column(String(8), nullable=False)
    count = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))


class UsageMonthly(Base):
    __tablename__ = "ai_usage_monthly"

    id = Column(String(160), primary_key=True)  # <uid>_<YYYYMM>
    user_id = Column(String(128), nullable=False)
    month = Column(String(6), nullable=False)
    tokens_used = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
