from __future__ import annotations

from typing import AsyncIterator, Dict, List, Optional

from chatrelay.core.config import settings
from chatrelay.core.limiter import CooldownRateLimiter
from chatrelay.services.context_service import ContextAssembler
from chatrelay.services.database_service import DatabaseService
from chatrelay.services.embedding_service import EmbeddingResult
from chatrelay.services.exchange import ExchangeCoordinator
from chatrelay.services.llm_service import GenerationError
from chatrelay.services.session_resolver import SessionResolver
from chatrelay.utils.auth import create_access_token


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGenerator:
    """
    Scripted generation provider.

    `chunks` are yielded in order; `fail_after=n` raises after n chunks
    (n=0 means before the first chunk).
    """

    def __init__(self, chunks: Optional[List[str]] = None, fail_after: Optional[int] = None):
        self.chunks = chunks if chunks is not None else ["Hi", " there", "!"]
        self.fail_after = fail_after
        self.prompts: List[str] = []

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        self.prompts.append(prompt)
        for i, chunk in enumerate(self.chunks):
            if self.fail_after is not None and i == self.fail_after:
                raise GenerationError("provider exploded", mid_stream=i > 0)
            yield chunk
        if self.fail_after is not None and self.fail_after >= len(self.chunks):
            raise GenerationError("provider exploded", mid_stream=True)


class FakeEmbedder:
    """
    Keyword embedder: one dimension per keyword, counts occurrences.
    `fail=True` makes every call fail.
    """

    KEYWORDS = ("cat", "dog", "pizza")

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[str] = []

    async def embed(self, text: str) -> EmbeddingResult:
        self.calls.append(text)
        if self.fail:
            return EmbeddingResult.failure("ConnectionError")
        lowered = text.lower()
        return EmbeddingResult.success([float(lowered.count(k)) for k in self.KEYWORDS])


def build_coordinator(
    store: DatabaseService,
    rate_limiter: CooldownRateLimiter,
    generator,
    strategy: str = "recency",
    embedder=None,
    generation_timeout: float = 5.0,
) -> ExchangeCoordinator:
    return ExchangeCoordinator(
        rate_limiter=rate_limiter,
        resolver=SessionResolver(store),
        store=store,
        assembler=ContextAssembler(store, strategy=strategy, embedder=embedder),
        generator=generator,
        generation_timeout=generation_timeout,
    )


def auth_cookies(user_id: str, email: Optional[str] = None) -> Dict[str, str]:
    token = create_access_token(user_id, email or f"{user_id}@example.com")
    return {settings.AUTH_COOKIE_NAME: token.access_token}


def auth_headers(user_id: str, email: Optional[str] = None) -> Dict[str, str]:
    token = create_access_token(user_id, email or f"{user_id}@example.com")
    return {"Authorization": f"Bearer {token.access_token}"}
