import asyncio
from dataclasses import dataclass
from typing import List, Optional, Protocol

from langchain_openai import OpenAIEmbeddings

from chatrelay.core.config import settings
from chatrelay.core.logging import logger


@dataclass(frozen=True)
class EmbeddingResult:
    """Outcome of one embedding attempt. Exactly one of `vector` / `error` is set."""
    vector: Optional[List[float]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.vector is not None

    @classmethod
    def success(cls, vector: List[float]) -> "EmbeddingResult":
        return cls(vector=vector)

    @classmethod
    def failure(cls, error: str) -> "EmbeddingResult":
        return cls(error=error)


class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> EmbeddingResult: ...


class EmbeddingService:
    """
    Embeds text with an OpenAI embedding model.
    One attempt per call, bounded by a timeout. Never raises: failure comes back
    as an EmbeddingResult so callers decide how to degrade.
    """

    def __init__(
        self,
        model: str = settings.EMBEDDING_MODEL,
        dimensions: int = settings.EMBEDDING_DIMENSIONS,
        timeout_seconds: float = settings.EMBEDDING_TIMEOUT_SECONDS,
    ):
        self.dimensions = dimensions
        self.timeout_seconds = timeout_seconds
        self._client = OpenAIEmbeddings(
            model=model,
            dimensions=dimensions,
            api_key=settings.OPENAI_API_KEY,
            max_retries=0,  # one attempt, the fallback is "no context"
        )
        logger.info("embedding_service_initialised", model=model, dimensions=dimensions)

    async def embed(self, text: str) -> EmbeddingResult:
        try:
            vector = await asyncio.wait_for(self._client.aembed_query(text), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("embedding_timeout", timeout_seconds=self.timeout_seconds)
            return EmbeddingResult.failure("timeout")
        except Exception as e:
            logger.warning("embedding_failed", error_type=type(e).__name__, error=str(e))
            return EmbeddingResult.failure(type(e).__name__)

        if len(vector) != self.dimensions:
            logger.warning("embedding_dimension_mismatch", expected=self.dimensions, got=len(vector))
            return EmbeddingResult.failure("dimension_mismatch")
        return EmbeddingResult.success(list(vector))
