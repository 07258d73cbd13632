from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import StreamingResponse

from chatrelay.api.deps import (
    get_coordinator,
    get_optional_identity,
    get_session_cookie,
    get_store,
    require_identity,
)
from chatrelay.core.config import Environment, settings
from chatrelay.core.errors import GenerationInterrupted, NotFound, Unauthorized
from chatrelay.core.limiter import client_key
from chatrelay.core.logging import logger
from chatrelay.models.base import as_utc
from chatrelay.schemas.auth import Identity
from chatrelay.schemas.chat import (
    ChatRequest,
    DeleteResponse,
    ErrorResponse,
    MessageOut,
    SessionMessagesResponse,
)
from chatrelay.services.database_service import DatabaseService
from chatrelay.services.exchange import Exchange, ExchangeCoordinator, ExchangeRequest

router = APIRouter(prefix="/api/chat", tags=["chat"])

SESSION_HEADER = "X-Session-Id"

# error payloads documented on every route, all shaped {"error": message}
CHAT_ERRORS = {
    400: {"model": ErrorResponse, "description": "Invalid message"},
    404: {"model": ErrorResponse, "description": "Session belongs to someone else"},
    429: {"model": ErrorResponse, "description": "Cooldown still running"},
    500: {"model": ErrorResponse, "description": "Store or model failure"},
}
SESSION_ERRORS = {
    401: {"model": ErrorResponse, "description": "No identity"},
    404: {"model": ErrorResponse, "description": "Session not found or not owned"},
}


def set_session_cookie(response: Response, session_id: str) -> None:
    response.set_cookie(
        settings.SESSION_COOKIE_NAME,
        session_id,
        httponly=True,
        samesite="lax",
        path="/",
        secure=settings.ENVIRONMENT == Environment.PRODUCTION,
    )


async def _relay(exchange: Exchange):
    try:
        async for chunk in exchange.chunks():
            yield chunk
    except GenerationInterrupted:
        # re-raise so the server aborts the response instead of ending it cleanly
        logger.warning("stream_interrupted", session_id=exchange.session_id)
        raise


@router.post("", response_class=StreamingResponse, responses=CHAT_ERRORS)
async def chat(
    body: ChatRequest,
    request: Request,
    identity: Optional[Identity] = Depends(get_optional_identity),
    session_cookie: Optional[str] = Depends(get_session_cookie),
    coordinator: ExchangeCoordinator = Depends(get_coordinator),
):
    """
    Send a message and stream the answer back as plain text chunks.
    The resolved session id comes back in the X-Session-Id header and the session cookie.
    """
    session_id = body.session_id
    from_cookie = False
    if session_id is None and not body.new_session and session_cookie:
        session_id = session_cookie
        from_cookie = True

    exchange = await coordinator.start(ExchangeRequest(
        message=body.message,
        session_id=session_id,
        user_id=identity.user_id if identity else None,
        client_key=client_key(request),
        from_cookie=from_cookie,
    ))

    response = StreamingResponse(
        _relay(exchange),
        media_type="text/plain; charset=utf-8",
        headers={SESSION_HEADER: exchange.session_id},
    )
    set_session_cookie(response, exchange.session_id)
    return response


@router.get("/{session_id}", response_model=SessionMessagesResponse, responses=SESSION_ERRORS)
async def get_session(
    session_id: str,
    identity: Optional[Identity] = Depends(get_optional_identity),
    session_cookie: Optional[str] = Depends(get_session_cookie),
    store: DatabaseService = Depends(get_store),
):
    """
    Full message log of a session.
    Signed-in callers see their own sessions; anonymous callers only the anonymous
    session their cookie points at.
    """
    if identity is None and session_cookie != session_id:
        raise Unauthorized()

    messages = await store.get_session_messages(session_id, identity.user_id if identity else None)
    return SessionMessagesResponse(
        session_id=session_id,
        messages=[MessageOut(role=m.role, content=m.content, created_at=as_utc(m.created_at)) for m in messages],
    )


@router.delete("/{session_id}", response_model=DeleteResponse, responses=SESSION_ERRORS)
async def delete_session(
    session_id: str,
    identity: Identity = Depends(require_identity),
    store: DatabaseService = Depends(get_store),
):
    if not await store.delete_session(session_id, identity.user_id):
        raise NotFound("Session not found or unauthorized")
    return DeleteResponse(success=True)
