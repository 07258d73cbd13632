from dataclasses import dataclass
from typing import List, Literal, Optional

from chatrelay.core.config import settings
from chatrelay.core.logging import logger
from chatrelay.models.message import Message
from chatrelay.services.database_service import DatabaseService
from chatrelay.services.embedding_service import EmbeddingProvider

ContextStrategy = Literal["recency", "semantic"]

CONTEXT_HEADER = "Relevant conversation context:"
CURRENT_MESSAGE_HEADER = "Current user message:"


@dataclass
class AssembledPrompt:
    """The prompt text, plus the query embedding when one was computed."""
    text: str
    query_embedding: Optional[List[float]] = None


def render_history(messages: List[Message]) -> str:
    """`role: content` lines, oldest first."""
    return "\n".join(f"{m.role}: {m.content}" for m in messages)


def render_context(messages: List[Message]) -> str:
    """Labeled lines for retrieved context."""
    return "\n".join(
        f"{'User' if m.role == 'user' else 'Assistant'}: {m.content}" for m in messages
    )


class ContextAssembler:
    """
    Builds the prompt sent to the model for a new user message.

    Two strategies:
      - recency: system instruction + last N turns + the new message
      - semantic: the K stored turns nearest to the new message's embedding + the new message.
        If the embedding cannot be computed the prompt is just the new message.

    Store failures propagate (the exchange aborts); embedding failures never do.
    """

    def __init__(
        self,
        store: DatabaseService,
        strategy: ContextStrategy = settings.CONTEXT_STRATEGY,
        embedder: Optional[EmbeddingProvider] = None,
        recent_limit: int = settings.RECENT_MESSAGE_LIMIT,
        semantic_limit: int = settings.SEMANTIC_MATCH_LIMIT,
        system_prompt: str = settings.SYSTEM_PROMPT,
    ):
        if strategy == "semantic" and embedder is None:
            raise ValueError("semantic context strategy needs an embedding provider")
        self.store = store
        self.strategy = strategy
        self.embedder = embedder
        self.recent_limit = recent_limit
        self.semantic_limit = semantic_limit
        self.system_prompt = system_prompt

    async def build_prompt(self, session_id: str, new_message: str) -> str:
        assembled = await self.assemble(session_id, new_message)
        return assembled.text

    async def assemble(
        self,
        session_id: str,
        new_message: str,
        exclude_message_id: Optional[int] = None,
    ) -> AssembledPrompt:
        """Build the prompt.

        Args:
            session_id: Session whose history is used
            new_message: The user's new message, always the last part of the prompt
            exclude_message_id: Stored copy of `new_message` to leave out of the history
        """
        if self.strategy == "semantic":
            return await self._semantic(session_id, new_message, exclude_message_id)
        return await self._recency(session_id, new_message, exclude_message_id)

    async def _recency(self, session_id: str, new_message: str, exclude_message_id: Optional[int]) -> AssembledPrompt:
        # one extra row in case the tail is the new message itself
        recent = await self.store.list_messages(session_id, limit=self.recent_limit + 1)
        history = [m for m in recent if m.id != exclude_message_id][-self.recent_limit:]

        parts = [self.system_prompt]
        if history:
            parts.append(render_history(history))
        parts.append(f"user: {new_message}")

        logger.debug("prompt_built", strategy="recency", session_id=session_id, history=len(history))
        return AssembledPrompt(text="\n\n".join(parts))

    async def _semantic(self, session_id: str, new_message: str, exclude_message_id: Optional[int]) -> AssembledPrompt:
        current = f"{CURRENT_MESSAGE_HEADER}\n{new_message}"

        result = await self.embedder.embed(new_message)
        if not result.ok:
            logger.warning("context_degraded_no_embedding", session_id=session_id, reason=result.error)
            return AssembledPrompt(text=current)

        exclude = [exclude_message_id] if exclude_message_id is not None else []
        matches = await self.store.nearest_messages(
            session_id, result.vector, limit=self.semantic_limit, exclude_ids=exclude
        )

        logger.debug("prompt_built", strategy="semantic", session_id=session_id, matches=len(matches))
        if not matches:
            return AssembledPrompt(text=current, query_embedding=result.vector)

        text = f"{CONTEXT_HEADER}\n\n{render_context(matches)}\n\n{current}"
        return AssembledPrompt(text=text, query_embedding=result.vector)

    @property
    def indexes_messages(self) -> bool:
        return self.strategy == "semantic"

    async def index_message(self, message_id: int, text: str, embedding: Optional[List[float]] = None) -> bool:
        """Make a stored message searchable. Best effort: failures are logged, never raised."""
        if not self.indexes_messages:
            return False

        if embedding is None:
            result = await self.embedder.embed(text)
            if not result.ok:
                logger.warning("message_index_skipped", message_id=message_id, reason=result.error)
                return False
            embedding = result.vector

        try:
            return await self.store.set_message_embedding(message_id, embedding)
        except Exception as e:
            logger.warning("message_index_failed", message_id=message_id, error=str(e))
            return False
