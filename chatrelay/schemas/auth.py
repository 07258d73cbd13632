from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

# Authentication schemas
# Credentials live in the auth service. We only ever see a verified identity.

class Identity(BaseModel):
    """
    The caller's verified identity, decoded from a trusted token.
    """
    user_id: str = Field(..., description="Stable user identifier (token subject)")
    email: Optional[str] = Field(default=None, description="User's email address, if the token carries it")


class Token(BaseModel):
    """
    Schema for the JWT Access Token Response.
    """
    access_token: str = Field(..., description="The JWT Access Token")
    token_type: str = Field(default="bearer", description="The type of token")
    expires_at: datetime = Field(..., description="The token expiration timestamp")
