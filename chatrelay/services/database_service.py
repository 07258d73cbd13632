import math
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Iterator, List, Optional, Sequence

from sqlalchemy import and_, delete, func, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import QueuePool
from sqlmodel import Session, SQLModel, create_engine, select, col

from chatrelay.core.config import Environment, settings
from chatrelay.core.errors import DependencyFailure, NotFound
from chatrelay.core.logging import logger
from chatrelay.models.base import as_utc, utcnow
from chatrelay.models.database import Message, MessageRole
from chatrelay.models.database import Session as ChatSession

NEW_CHAT_TITLE = "New Chat"


@dataclass
class SessionSummary:
    """A session as shown in the history list."""
    id: str
    created_at: datetime
    title: str


def build_engine() -> Engine:
    """
    Build the production engine with robust pooling settings.
    """
    if settings.DATABASE_URL:
        return create_engine(settings.DATABASE_URL, pool_pre_ping=True)

    # Create the connection URL from settings
    connection_url = (
        f"postgresql://{settings.POSTGRES_USER}:{settings.POSTGRES_PASSWORD}"
        f"@{settings.POSTGRES_HOST}:{settings.POSTGRES_PORT}/{settings.POSTGRES_DB}"
    )

    # pool_size: no. of connections to keep open permanently
    # max_overflow: no. of temporary connections to allow during spikes
    return create_engine(
        connection_url,
        pool_pre_ping=True,  # check if connection is alive before using it
        poolclass=QueuePool,
        pool_size=settings.POSTGRES_POOL_SIZE,
        max_overflow=settings.POSTGRES_MAX_OVERFLOW,
        pool_timeout=30,     # Fail if no connection available after 30s
        pool_recycle=1800,   # Recycle connections every 30 mins to prevent stale sockets
    )


def make_preview(content: Optional[str], length: int = settings.TITLE_PREVIEW_LENGTH) -> str:
    """First-message preview for the history list."""
    if content is None:
        return NEW_CHAT_TITLE
    if len(content) > length:
        return content[:length] + "..."
    return content


# Database Service
class DatabaseService:
    """
    The session store: sessions, their ownership and their ordered message logs.
    Uses SQLModel for ORM operations. Each public method is one transaction.
    Storage errors surface as DependencyFailure, never as raw SQLAlchemy errors.
    """
    def __init__(self, engine: Optional[Engine] = None):
        try:
            self.engine = engine if engine is not None else build_engine()
            # Create tables if they don't exist (code-first migration)
            SQLModel.metadata.create_all(self.engine)

            logger.info(
                "database_initialized",
                environment=settings.ENVIRONMENT.value,
                dialect=self.engine.dialect.name,
            )

        except SQLAlchemyError as e:
            logger.error("database_initialization_error", error=str(e), environment=settings.ENVIRONMENT.value)
            # In Dev, we want to crash. In prod the health check reports it and we keep serving.
            if settings.ENVIRONMENT != Environment.PRODUCTION:
                raise

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        """Open a session, translating storage errors into DependencyFailure."""
        try:
            with Session(self.engine) as session:
                yield session
        except SQLAlchemyError as e:
            logger.error("database_operation_failed", operation=operation, error=str(e))
            raise DependencyFailure(f"{operation} failed") from e

    # Sessions
    async def upsert_session(self, session_id: str, owner_id: Optional[str] = None) -> ChatSession:
        """Create the session if absent; attach an owner if it has none.

        An owner is never cleared and never replaced.

        Args:
            session_id: The session to ensure
            owner_id: Verified user id of the caller, or None for anonymous callers

        Returns:
            ChatSession: The stored session

        Raises:
            NotFound: If the session belongs to someone other than `owner_id`
        """
        with self._session("upsert_session") as session:
            chat_session = session.exec(
                select(ChatSession).where(ChatSession.id == session_id).with_for_update()
            ).first()

            if chat_session is None:
                chat_session = ChatSession(id=session_id, owner_id=owner_id)
                session.add(chat_session)
                session.commit()
                session.refresh(chat_session)
                logger.info("session_created", session_id=session_id, owned=owner_id is not None)
                return chat_session

            if chat_session.owner_id is not None and chat_session.owner_id != owner_id:
                logger.warning("session_owner_conflict", session_id=session_id, anonymous=owner_id is None)
                raise NotFound()

            if chat_session.owner_id is None and owner_id is not None:
                chat_session.owner_id = owner_id
                session.add(chat_session)
                session.commit()
                session.refresh(chat_session)
                logger.info("session_claimed", session_id=session_id)

            return chat_session

    async def list_sessions_for_owner(self, owner_id: str) -> List[SessionSummary]:
        """List a user's sessions, newest first, each with a first-message preview.

        Args:
            owner_id: The ID of the user

        Returns:
            List[SessionSummary]: The user's sessions
        """
        owned_ids = select(ChatSession.id).where(ChatSession.owner_id == owner_id)
        # rank 1 = first message of each owned session, all sessions in one pass
        ranked = (
            select(
                Message.session_id,
                Message.content,
                func.row_number().over(
                    partition_by=Message.session_id,
                    order_by=(col(Message.created_at).asc(), col(Message.id).asc()),
                ).label("position"),
            )
            .where(col(Message.session_id).in_(owned_ids))
            .subquery()
        )
        statement = (
            select(ChatSession.id, ChatSession.created_at, ranked.c.content)
            .outerjoin(ranked, and_(ranked.c.session_id == ChatSession.id, ranked.c.position == 1))
            .where(ChatSession.owner_id == owner_id)
            .order_by(col(ChatSession.created_at).desc(), col(ChatSession.id).desc())
        )
        with self._session("list_sessions_for_owner") as session:
            return [
                SessionSummary(id=session_id, created_at=as_utc(created_at), title=make_preview(first))
                for session_id, created_at, first in session.exec(statement).all()
            ]

    async def delete_session(self, session_id: str, owner_id: str) -> bool:
        """Delete a session and all its messages, only if `owner_id` owns it.

        The ownership check is the WHERE clause of the delete itself, so there is no
        window where ownership could change between check and delete.

        Returns:
            bool: True if deleted, False if the session is missing or owned by someone else
        """
        with self._session("delete_session") as session:
            result = session.execute(
                delete(ChatSession).where(
                    col(ChatSession.id) == session_id,
                    col(ChatSession.owner_id) == owner_id,
                )
            )
            if result.rowcount == 0:
                session.rollback()
                logger.info("session_delete_rejected", session_id=session_id)
                return False

            # FK cascade covers postgres; do it explicitly for backends that don't enforce it
            session.execute(delete(Message).where(col(Message.session_id) == session_id))
            session.commit()
            logger.info("session_deleted", session_id=session_id)
            return True

    # Messages
    async def append_message(
        self,
        session_id: str,
        role: MessageRole,
        content: str,
        embedding: Optional[Sequence[float]] = None,
    ) -> int:
        """Append one message to a session's log.

        The session row is locked for the duration of the insert, and the timestamp is
        bumped past the current tail, so a session's log is strictly ordered even when
        two exchanges write at once or the clock steps back.

        Returns:
            int: The new message id

        Raises:
            NotFound: If the session was never upserted
        """
        with self._session("append_message") as session:
            chat_session = session.exec(
                select(ChatSession).where(ChatSession.id == session_id).with_for_update()
            ).first()
            if chat_session is None:
                raise NotFound()

            last = session.exec(
                select(Message.created_at)
                .where(Message.session_id == session_id)
                .order_by(col(Message.created_at).desc())
                .limit(1)
            ).first()

            created_at = utcnow()
            if last is not None and created_at <= as_utc(last):
                created_at = as_utc(last) + timedelta(microseconds=1)

            message = Message(
                session_id=session_id,
                role=role,
                content=content,
                created_at=created_at,
                embedding=list(embedding) if embedding is not None else None,
            )
            session.add(message)
            session.commit()
            session.refresh(message)
            logger.debug("message_appended", session_id=session_id, role=role,
                         message_id=message.id, length=len(content))
            return message.id

    async def set_message_embedding(self, message_id: int, embedding: Sequence[float]) -> bool:
        """Attach an embedding to a message that has none. Content is never touched."""
        with self._session("set_message_embedding") as session:
            result = session.execute(
                update(Message)
                .where(col(Message.id) == message_id, col(Message.embedding).is_(None))
                .values(embedding=list(embedding))
            )
            session.commit()
            return result.rowcount > 0

    async def list_messages(self, session_id: str, limit: Optional[int] = None) -> List[Message]:
        """Messages of a session, oldest first.

        Args:
            session_id: The session to read
            limit: If set, only the most recent `limit` messages (still returned oldest first)
        """
        with self._session("list_messages") as session:
            if limit is None:
                statement = (
                    select(Message)
                    .where(Message.session_id == session_id)
                    .order_by(col(Message.created_at).asc(), col(Message.id).asc())
                )
                return list(session.exec(statement).all())

            statement = (
                select(Message)
                .where(Message.session_id == session_id)
                .order_by(col(Message.created_at).desc(), col(Message.id).desc())
                .limit(limit)
            )
            tail = list(session.exec(statement).all())
            tail.reverse()
            return tail

    async def get_session_messages(self, session_id: str, owner_id: Optional[str]) -> List[Message]:
        """Full log of a session, only if `owner_id` owns it (None = anonymous sessions only).

        Raises:
            NotFound: If the session is missing or owned by someone else
        """
        with self._session("get_session_messages") as session:
            owner_clause = (
                col(ChatSession.owner_id).is_(None) if owner_id is None
                else col(ChatSession.owner_id) == owner_id
            )
            chat_session = session.exec(
                select(ChatSession).where(ChatSession.id == session_id, owner_clause)
            ).first()
            if chat_session is None:
                raise NotFound()

            statement = (
                select(Message)
                .where(Message.session_id == session_id)
                .order_by(col(Message.created_at).asc(), col(Message.id).asc())
            )
            return list(session.exec(statement).all())

    async def nearest_messages(
        self,
        session_id: str,
        embedding: Sequence[float],
        limit: int,
        exclude_ids: Iterable[int] = (),
    ) -> List[Message]:
        """The `limit` messages of a session closest to `embedding` (Euclidean distance).

        Only messages with a stored embedding of the same dimension are eligible.
        Ties keep chronological order (stable sort).
        """
        excluded = set(exclude_ids)
        with self._session("nearest_messages") as session:
            statement = (
                select(Message)
                .where(Message.session_id == session_id, col(Message.embedding).is_not(None))
                .order_by(col(Message.created_at).asc(), col(Message.id).asc())
            )
            candidates = [
                m for m in session.exec(statement).all()
                if m.id not in excluded and m.embedding and len(m.embedding) == len(embedding)
            ]

        candidates.sort(key=lambda m: math.dist(m.embedding, embedding))
        return candidates[:limit]

    async def health_check(self) -> bool:
        """Check database connection health.

        Returns:
            bool: True if database is healthy, False otherwise
        """
        try:
            with Session(self.engine) as session:
                # Execute a simple query to check connection
                session.exec(select(1)).first()
                return True
        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            return False
