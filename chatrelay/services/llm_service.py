from typing import AsyncIterator, List, Optional, Protocol, Tuple
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage
from openai import APIConnectionError, APITimeoutError, InternalServerError, RateLimitError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from chatrelay.core.config import settings
from chatrelay.core.logging import logger
from chatrelay.services.llm_registry import LLMRegistry
from chatrelay.utils.llm import chunk_text

# Worth another attempt: nothing has been delivered yet and the error is transient
RETRYABLE_ERRORS = (RateLimitError, APITimeoutError, APIConnectionError, InternalServerError)


class GenerationError(Exception):
    """Generation failed. `mid_stream` tells whether chunks were already produced."""

    def __init__(self, message: str, mid_stream: bool):
        super().__init__(message)
        self.mid_stream = mid_stream


class GenerationProvider(Protocol):
    def stream(self, prompt: str) -> AsyncIterator[str]: ...


class LLMService:
    """
    Streams completions with retry and circular model fallback.

    Retry and fallback only happen while opening the stream (before the first
    chunk). Once text has been produced a failure is final, since it has
    already gone out to the caller.
    """

    def __init__(self, provider: str = settings.DEFAULT_LLM_PROVIDER, model_name: str = settings.DEFAULT_LLM_MODEL):
        self.provider = provider
        self._current_model_index: int = 0

        all_names = LLMRegistry.get_all_names(provider)
        if not all_names:
            raise ValueError(f"No models registered for provider '{provider}'")
        try:
            self._current_model_index = all_names.index(model_name)
        except ValueError:
            logger.warning("default_model_not_found_using_first", requested=model_name, using=all_names[0])
        logger.info("llm_service_initialised",
                    provider=provider,
                    default_model=all_names[self._current_model_index],
                    total_models=len(all_names),
                    environment=settings.ENVIRONMENT.value)

    @property
    def current_model(self) -> str:
        return LLMRegistry.get_all_names(self.provider)[self._current_model_index]

    def _get_llm(self) -> BaseChatModel:
        return LLMRegistry.get(self.provider, self.current_model)

    def _switch_to_next_model(self) -> None:
        """Circular Fallback: Switches to the next available model in the registry."""
        names = LLMRegistry.get_all_names(self.provider)
        next_index = (self._current_model_index + 1) % len(names)
        logger.warning("switching_to_next_model", from_model=names[self._current_model_index], to_model=names[next_index])
        self._current_model_index = next_index

    # The Retry Decorator
    # If opening the stream raises a transient error,
    # Tenacity will wait (exponentially) and try again
    @retry(
        stop=stop_after_attempt(settings.MAX_LLM_CALL_RETRIES),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        before_sleep=before_sleep_log(logger, 30),   # level = Warning (represented by number 30)
        reraise=True,
    )
    async def _open_stream(self, messages: List[BaseMessage]) -> Tuple[AsyncIterator, Optional[str]]:
        """
        Start streaming and wait for the first non-empty chunk.

        Returns:
            The live chunk iterator and the first text (None if the model produced nothing)
        """
        iterator = self._get_llm().astream(messages).__aiter__()
        async for chunk in iterator:
            text = chunk_text(chunk)
            if text:
                return iterator, text
        return iterator, None

    async def _open_with_fallback(self, messages: List[BaseMessage]) -> Tuple[AsyncIterator, Optional[str]]:
        total_models = len(LLMRegistry.get_all_names(self.provider))
        last_error: Optional[BaseException] = None

        for models_tried in range(1, total_models + 1):
            try:
                return await self._open_stream(messages)
            except Exception as e:
                last_error = e
                logger.error("llm_stream_open_failed",
                             model=self.current_model,
                             models_tried=models_tried,
                             total_models=total_models,
                             error_type=type(e).__name__,
                             error=str(e))
                if models_tried < total_models:
                    self._switch_to_next_model()

        logger.error("all_models_failed", models_tried=total_models)
        raise GenerationError(f"all models failed: {last_error}", mid_stream=False) from last_error

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        """
        Stream the completion for `prompt` as text chunks.

        Raises:
            GenerationError: mid_stream=False if nothing was produced, True otherwise
        """
        messages: List[BaseMessage] = [HumanMessage(content=prompt)]
        iterator, first = await self._open_with_fallback(messages)
        if first is None:
            return

        yield first
        produced = 1
        try:
            async for chunk in iterator:
                text = chunk_text(chunk)
                if text:
                    produced += 1
                    yield text
        except Exception as e:
            logger.error("llm_stream_failed", model=self.current_model, chunks=produced,
                         error_type=type(e).__name__, error=str(e))
            raise GenerationError(str(e), mid_stream=True) from e
        logger.debug("llm_stream_finished", model=self.current_model, chunks=produced)
