from typing import Optional

from fastapi import Request

from chatrelay.core.config import settings
from chatrelay.core.errors import Unauthorized
from chatrelay.schemas.auth import Identity
from chatrelay.services.database_service import DatabaseService
from chatrelay.services.exchange import ExchangeCoordinator
from chatrelay.services.llm_service import GenerationProvider
from chatrelay.utils.auth import verify_token


# Components live on app.state (built in create_app); nothing here is a global.
def get_store(request: Request) -> DatabaseService:
    return request.app.state.store


def get_coordinator(request: Request) -> ExchangeCoordinator:
    return request.app.state.coordinator


def get_generator(request: Request) -> GenerationProvider:
    return request.app.state.generator


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token:
        return token.strip()
    return None


def get_optional_identity(request: Request) -> Optional[Identity]:
    """Identity from the auth cookie or a Bearer header. Invalid tokens count as anonymous."""
    token = request.cookies.get(settings.AUTH_COOKIE_NAME) or _bearer_token(request)
    if not token:
        return None
    return verify_token(token)


def require_identity(request: Request) -> Identity:
    token = request.cookies.get(settings.AUTH_COOKIE_NAME) or _bearer_token(request)
    if not token:
        raise Unauthorized()
    identity = verify_token(token)
    if identity is None:
        raise Unauthorized("Invalid token")
    return identity


def get_session_cookie(request: Request) -> Optional[str]:
    return request.cookies.get(settings.SESSION_COOKIE_NAME) or None
