"""
Streaming exchange coordinator.

One exchange = one user message in, one streamed assistant answer out:

    ADMITTED -> USER_PERSISTED -> CONTEXT_BUILT -> GENERATING -> COMPLETED
    (any state) -> ABORTED

The provider is drained by a producer task that pushes every chunk onto a
queue (the caller's channel) and into an accumulator. The producer does not
depend on anyone reading the queue, so a caller that goes away does not stop
the assistant turn from being recorded. A failed generation never stores a
partial answer.
"""
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, List, Optional, Set, Union

from chatrelay.core.config import settings
from chatrelay.core.errors import DependencyFailure, GenerationInterrupted, RateLimited, ValidationError
from chatrelay.core.limiter import CooldownRateLimiter
from chatrelay.core.logging import logger
from chatrelay.services.context_service import ContextAssembler
from chatrelay.services.database_service import DatabaseService
from chatrelay.services.llm_service import GenerationProvider
from chatrelay.services.session_resolver import SessionResolver


class ExchangeState(str, Enum):
    ADMITTED = "admitted"
    USER_PERSISTED = "user_persisted"
    CONTEXT_BUILT = "context_built"
    GENERATING = "generating"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass
class ExchangeRequest:
    message: str
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    # rate-limit key when no session id is supplied (caller network identity)
    client_key: str = "anonymous"
    # session_id came from the session cookie; a session owned by someone else is replaced
    from_cookie: bool = False


@dataclass
class _StreamFailed:
    error: BaseException


class _EndOfStream:
    pass


_END = _EndOfStream()

ChannelItem = Union[str, _StreamFailed, _EndOfStream]


class Exchange:
    """A running exchange. Read the answer with `chunks()`."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.state = ExchangeState.ADMITTED
        self.user_message_id: Optional[int] = None
        self.assistant_message_id: Optional[int] = None
        self._channel: "asyncio.Queue[ChannelItem]" = asyncio.Queue()
        self._pending: Optional[ChannelItem] = None
        self._task: Optional[asyncio.Task] = None

    async def chunks(self) -> AsyncIterator[str]:
        """
        Yield the answer chunk by chunk, as fast as the provider produces them.

        Raises:
            GenerationInterrupted: if the provider failed after some text was delivered
        """
        while True:
            if self._pending is not None:
                item, self._pending = self._pending, None
            else:
                item = await self._channel.get()

            if isinstance(item, _EndOfStream):
                return
            if isinstance(item, _StreamFailed):
                raise GenerationInterrupted(str(item.error))
            yield item

    async def wait(self) -> ExchangeState:
        """Wait for the producer to finish (answer stored or exchange aborted)."""
        if self._task is not None:
            await asyncio.shield(self._task)
        return self.state


class ExchangeCoordinator:
    """
    Runs exchanges: rate check, session resolve, persist user turn, build context,
    stream generation, persist assistant turn.
    """

    def __init__(
        self,
        rate_limiter: CooldownRateLimiter,
        resolver: SessionResolver,
        store: DatabaseService,
        assembler: ContextAssembler,
        generator: GenerationProvider,
        generation_timeout: float = settings.GENERATION_TIMEOUT_SECONDS,
    ):
        self.rate_limiter = rate_limiter
        self.resolver = resolver
        self.store = store
        self.assembler = assembler
        self.generator = generator
        self.generation_timeout = generation_timeout
        # strong refs so running producers are not garbage collected mid-stream
        self._producers: Set[asyncio.Task] = set()

    async def start(self, request: ExchangeRequest) -> Exchange:
        """
        Run an exchange up to its first generated chunk.

        Returns:
            Exchange: streaming; the caller reads `chunks()`

        Raises:
            ValidationError: empty message
            RateLimited: the key is cooling down; nothing was written
            NotFound: the claimed session belongs to someone else
            DependencyFailure: store failure, or generation failed before producing anything
        """
        if not request.message or not request.message.strip():
            raise ValidationError("Message is required and must be a non-empty string")

        rate_key = request.session_id or request.client_key
        if not self.rate_limiter.allow(rate_key):
            logger.info("exchange_rate_limited", session_id=request.session_id)
            raise RateLimited()

        session_id = await self.resolver.resolve(
            request.session_id, request.user_id, fresh_on_conflict=request.from_cookie
        )
        exchange = Exchange(session_id)
        log = logger.bind(session_id=session_id)

        try:
            exchange.user_message_id = await self.store.append_message(session_id, "user", request.message)
            exchange.state = ExchangeState.USER_PERSISTED

            assembled = await self.assembler.assemble(
                session_id, request.message, exclude_message_id=exchange.user_message_id
            )
            exchange.state = ExchangeState.CONTEXT_BUILT
        except Exception:
            exchange.state = ExchangeState.ABORTED
            log.error("exchange_aborted_before_generation", state=exchange.state.value)
            raise

        if assembled.query_embedding is not None:
            await self.assembler.index_message(
                exchange.user_message_id, request.message, embedding=assembled.query_embedding
            )

        exchange.state = ExchangeState.GENERATING
        task = asyncio.create_task(self._produce(exchange, assembled.text), name=f"exchange-{session_id}")
        exchange._task = task
        self._producers.add(task)
        task.add_done_callback(self._producers.discard)

        first = await exchange._channel.get()
        if isinstance(first, (_StreamFailed, _EndOfStream)):
            await exchange.wait()
            log.error("exchange_failed_before_first_chunk",
                      error=str(first.error) if isinstance(first, _StreamFailed) else "empty completion")
            raise DependencyFailure("generation produced no output")

        exchange._pending = first
        return exchange

    async def _produce(self, exchange: Exchange, prompt: str) -> None:
        """Run the exchange to its end. A cancelled producer still closes the caller's channel."""
        try:
            await self._generate_and_record(exchange, prompt)
        except asyncio.CancelledError as e:
            if exchange.assistant_message_id is not None:
                # answer already delivered and stored, only indexing was cut short
                exchange.state = ExchangeState.COMPLETED
                exchange._channel.put_nowait(_END)
            else:
                exchange.state = ExchangeState.ABORTED
                exchange._channel.put_nowait(_StreamFailed(e))
            logger.warning("exchange_cancelled", session_id=exchange.session_id, state=exchange.state.value)
            raise

    async def _generate_and_record(self, exchange: Exchange, prompt: str) -> None:
        """Drain the provider into the channel and the accumulator, then record the answer."""
        log = logger.bind(session_id=exchange.session_id)
        accumulated: List[str] = []

        try:
            async with asyncio.timeout(self.generation_timeout):
                async for chunk in self.generator.stream(prompt):
                    if not chunk:
                        continue
                    accumulated.append(chunk)
                    exchange._channel.put_nowait(chunk)
        except Exception as e:
            # partial text stays delivered but is never stored as an answer
            exchange.state = ExchangeState.ABORTED
            log.error("exchange_generation_failed",
                      error_type=type(e).__name__,
                      error=str(e),
                      chunks_delivered=len(accumulated))
            exchange._channel.put_nowait(_StreamFailed(e))
            return

        if not accumulated:
            exchange.state = ExchangeState.ABORTED
            log.error("exchange_empty_completion")
            exchange._channel.put_nowait(_END)
            return

        answer = "".join(accumulated)
        try:
            exchange.assistant_message_id = await self.store.append_message(
                exchange.session_id, "assistant", answer
            )
        except Exception as e:
            # already delivered; the log will miss this turn
            log.error("assistant_message_persist_failed", error_type=type(e).__name__, error=str(e))
        else:
            if self.assembler.indexes_messages:
                await self.assembler.index_message(exchange.assistant_message_id, answer)

        exchange.state = ExchangeState.COMPLETED
        exchange._channel.put_nowait(_END)
        log.info("exchange_completed",
                 chunks=len(accumulated),
                 length=len(answer),
                 persisted=exchange.assistant_message_id is not None)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight producers so their answers get recorded (shutdown)."""
        pending = list(self._producers)
        if not pending:
            return
        logger.info("draining_exchanges", count=len(pending))
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        if not still_running:
            return
        for task in still_running:
            task.cancel()
        # cancelled producers push their terminal marker before they finish
        await asyncio.gather(*still_running, return_exceptions=True)
        logger.warning("exchanges_cancelled_on_shutdown", count=len(still_running))
