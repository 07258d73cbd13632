from typing import Optional
from sqlmodel import Field
from chatrelay.models.base import BaseModel

# Session Model
class Session(BaseModel, table=True):
    """
    Represents a single conversation thread.
    Anonymous until an authenticated user touches it; once owned, never re-owned.
    """

    # String IDs (uuid hex, or whatever id the client resumes with)
    id: str = Field(primary_key=True, max_length=128)

    # Owning user id from the verified token. NULL = anonymous
    owner_id: Optional[str] = Field(default=None, index=True, max_length=128)

# Messages reference this table with ON DELETE CASCADE; see message.py
