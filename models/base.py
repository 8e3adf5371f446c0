"""
SQLAlchemy base configuration for Identity Reconciliation System
This module sets up the SQLAlchemy declarative base and the shared
columns every table carries (id, timestamps, soft delete marker)
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer
from sqlalchemy.orm import DeclarativeBase


def utc_now() -> datetime:
    """Naive UTC timestamp, comparable with values read back from any backend"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models"""
    pass


class BaseModel(Base):
    """
    Abstract model with an autoincrement id and audit timestamps

    Records are never physically deleted; a non-null deleted_at
    marks a row as excluded.
    """
    __abstract__ = True

    id = Column(Integer, primary_key=True, autoincrement=True)

    created_at = Column(
        DateTime,
        nullable=False,
        default=utc_now,
        index=True,
        comment="Creation time, the ordering key for 'oldest wins'"
    )

    updated_at = Column(
        DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now
    )

    deleted_at = Column(DateTime, nullable=True, index=True)

    @property
    def is_excluded(self) -> bool:
        return self.deleted_at is not None

    def to_dict(self):
        """Convert model columns to a plain dictionary"""
        return {column.name: getattr(self, column.name) for column in self.__table__.columns}
