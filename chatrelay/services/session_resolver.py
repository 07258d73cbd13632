from typing import Callable, Optional
from uuid import uuid4

from chatrelay.core.errors import NotFound
from chatrelay.core.logging import logger
from chatrelay.services.database_service import DatabaseService


def new_session_id() -> str:
    return uuid4().hex


class SessionResolver:
    """
    Maps (claimed session id, verified user) to a stored session id.

    Sessions exist lazily: every exchange re-asserts the session, so there is no
    separate "create chat" step. A missing id mints a new one.
    """

    def __init__(self, store: DatabaseService, id_factory: Callable[[], str] = new_session_id):
        self.store = store
        self._id_factory = id_factory

    async def resolve(
        self,
        provided_session_id: Optional[str],
        user_id: Optional[str],
        fresh_on_conflict: bool = False,
    ) -> str:
        """Return the session id this exchange writes to, upserting it with the caller as owner.

        Args:
            provided_session_id: Session the caller wants to continue, if any
            user_id: Verified user id, or None for anonymous callers
            fresh_on_conflict: Start a new session instead of failing when the claimed one
                belongs to someone else (the id came from a cookie, not from the caller's request)

        Raises:
            NotFound: If the claimed session is owned by a different identity
        """
        session_id = provided_session_id or self._id_factory()
        try:
            await self.store.upsert_session(session_id, owner_id=user_id)
        except NotFound:
            if not fresh_on_conflict or provided_session_id is None:
                raise
            session_id = self._id_factory()
            await self.store.upsert_session(session_id, owner_id=user_id)
            logger.info("stale_session_replaced", session_id=session_id, authenticated=user_id is not None)
            return session_id

        logger.debug("session_resolved", session_id=session_id,
                     minted=provided_session_id is None, authenticated=user_id is not None)
        return session_id
