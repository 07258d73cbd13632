from typing import List, Literal, Optional
from sqlalchemy import JSON, Column, ForeignKey, String, Text
from sqlmodel import Field
from chatrelay.models.base import BaseModel

MessageRole = Literal["user", "assistant"]

# Message Model
class Message(BaseModel, table=True):
    """
    One turn in a session. Role and content are fixed at insert time.
    """

    # Autoincrement id doubles as the tie-breaker when two turns share a timestamp
    id: Optional[int] = Field(default=None, primary_key=True)

    session_id: str = Field(
        sa_column=Column(
            String(128),
            ForeignKey("session.id", ondelete="CASCADE"),
            index=True,
            nullable=False,
        )
    )

    role: str = Field(max_length=16)

    content: str = Field(sa_column=Column(Text, nullable=False))

    # NULL means "not semantically searchable"
    embedding: Optional[List[float]] = Field(default=None, sa_column=Column(JSON(none_as_null=True), nullable=True))
