"""
Base SQLAlchemy models for Know Your Grape API
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Boolean, JSON
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator, String as SqlString

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON (TEXT) everywhere else
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow():
    return datetime.now(timezone.utc)


class GUID(TypeDecorator):
    """Platform-independent GUID type that uses PostgreSQL UUID or String for SQLite"""
    impl = SqlString
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(UUID(as_uuid=True))
        else:
            return dialect.type_descriptor(SqlString(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, str):
            value = uuid.UUID(value)
        if dialect.name == 'postgresql':
            return value
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        return uuid.UUID(value) if isinstance(value, str) else value


def as_uuid(value):
    """Coerce path/body identifiers to UUID; None when malformed"""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def iso(value):
    return value.isoformat() if value else None


class BaseModel(Base):
    """Base model with common fields for all tables"""
    __abstract__ = True

    id = Column(GUID(), primary_key=True, default=uuid.uuid4, comment="Primary key using UUID")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, comment="Timestamp when record was created")
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow, comment="Timestamp when record was last updated")
    active = Column(Boolean, nullable=False, default=True, comment="Soft delete flag")

    def __repr__(self):
        return f"<{self.__class__.__name__}(id={self.id})>"
