"""
Database Models Export.
This allows us to make simple imports like:
'from chatrelay.models.database import Session, Message'
"""
from chatrelay.models.message import Message, MessageRole
from chatrelay.models.session import Session

# Explicitly define what is exported
__all__ = ["Message", "MessageRole", "Session"]
