from datetime import datetime, UTC
from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes. Treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# Base Database Model
class BaseModel(SQLModel):
    """
    Abstract base model that adds common fields to all tables.
    Using an abstract class ensures consistency across our schema.
    """
    # always use UTC in production to avoid timezone headaches
    created_at: datetime = Field(
        default_factory=lambda: utcnow(),
        sa_type=DateTime(timezone=True),
        nullable=False,
    )
