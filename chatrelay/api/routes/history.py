from typing import List

from fastapi import APIRouter, Depends

from chatrelay.api.deps import get_store, require_identity
from chatrelay.schemas.auth import Identity
from chatrelay.schemas.chat import ErrorResponse, HistoryItem
from chatrelay.services.database_service import DatabaseService

router = APIRouter(prefix="/api/history", tags=["history"])


@router.get("", response_model=List[HistoryItem], responses={401: {"model": ErrorResponse, "description": "No identity"}})
async def list_history(
    identity: Identity = Depends(require_identity),
    store: DatabaseService = Depends(get_store),
):
    """The caller's sessions, newest first, titled by their first message."""
    sessions = await store.list_sessions_for_owner(identity.user_id)
    return [HistoryItem(id=s.id, created_at=s.created_at, title=s.title) for s in sessions]
