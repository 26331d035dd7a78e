# content_sync/models/records.py
"""
Record tables the SQL record store reads and updates.

The tables belong to the host application; they are mapped here only so that
SqlRecordStore can query them by owner and touch them during a sync.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, String, Text, DateTime

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PageRecord(Base):
    """Generated page"""
    __tablename__ = "pages"

    id = Column(String(64), primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    title = Column(String(255), nullable=False, default="")
    content = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


class UserPageRecord(Base):
    """Page authored by the user"""
    __tablename__ = "user_pages"

    id = Column(String(64), primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    title = Column(String(255), nullable=False, default="")
    content = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


class TemplateRecord(Base):
    """Shareable template; owned through creator_id and stores sanitized content"""
    __tablename__ = "templates"

    id = Column(String(64), primary_key=True, index=True)
    creator_id = Column(String(64), nullable=False, index=True)
    title = Column(String(255), nullable=False, default="")
    sanitized_content = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
