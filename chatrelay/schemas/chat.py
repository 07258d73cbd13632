from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from chatrelay.utils.sanitizer import contains_script_tag

# chat schemas
class ChatRequest(BaseModel):
    """
    Payload sent to POST /api/chat
    """
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(..., description="The user's message", max_length=3000)
    session_id: Optional[str] = Field(default=None, alias="sessionId", max_length=128,
                                      description="Conversation to continue. Omit to resume the cookie session")
    new_session: bool = Field(default=False, alias="newSession",
                              description="Start a fresh conversation even if a session cookie is present")

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        """
        Must be non-empty after trimming. Sanitization: reject script tags outright.
        """
        if not v.strip():
            raise ValueError("Message is required and must be a non-empty string")
        if contains_script_tag(v):
            raise ValueError("Content contains potentially harmful script tags")
        return v

    @field_validator("session_id")
    @classmethod
    def blank_session_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v


class MessageOut(BaseModel):
    """
    Represents a single message in the conversation history.
    """
    role: Literal["user", "assistant"] = Field(..., description="Who sent the message")
    content: str = Field(..., description="The message content")
    created_at: datetime = Field(..., serialization_alias="createdAt")


class SessionMessagesResponse(BaseModel):
    session_id: str = Field(..., serialization_alias="sessionId")
    messages: List[MessageOut]


class HistoryItem(BaseModel):
    """
    One entry of the sidebar history list.
    """
    id: str
    created_at: datetime = Field(..., serialization_alias="createdAt")
    title: str = Field(..., description="Preview of the first message, or a placeholder")


class DeleteResponse(BaseModel):
    success: bool = True


class ErrorResponse(BaseModel):
    error: str
