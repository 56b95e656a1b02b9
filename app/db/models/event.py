from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, String, DateTime, Index, JSON, Integer, MetaData
from sqlalchemy.ext.declarative import declarative_base

from app.core.config import settings

BaseORM = declarative_base(metadata=MetaData(naming_convention=settings.db.naming_convention))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Event(BaseORM):
    __tablename__ = "events"

    # Surrogate key; its ascending order is the insertion order used to break timestamp ties
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    # Caller-supplied strings are unbounded
    event_id = Column(String, unique=True, nullable=False)
    user_id = Column(String, nullable=False, index=True)
    event_name = Column(String, nullable=False, index=True)
    properties = Column(JSON, nullable=False, default=dict)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    session_id = Column(String, nullable=True)
    organization_id = Column(String(64), nullable=False, index=True)
    project_id = Column(String(64), nullable=False, index=True)
    user_agent = Column(String, nullable=True)
    ip_address = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_tenant_time", "organization_id", "project_id", "timestamp"),
    )
