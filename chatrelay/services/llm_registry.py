from typing import Any, Callable, Dict, List, Optional
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_openai import ChatOpenAI
from langchain_groq import ChatGroq

from chatrelay.core.config import settings
from chatrelay.core.logging import logger


# LLM Registry
class LLMRegistry:
    """
    Registry of available chat models, per provider, in fallback order.
    Clients are built on first use so importing this module needs no API keys.
    """

    # Each entry: a name and a factory. Retries are off inside the client,
    # the service owns retry and fallback.
    LLMS: Dict[str, List[Dict[str, Any]]] = {
        "groq": [
            {
                "name": "openai/gpt-oss-20b",
                "factory": lambda: ChatGroq(
                    model="openai/gpt-oss-20b",
                    api_key=settings.GROQ_API_KEY,
                    max_tokens=settings.MAX_TOKENS,
                    temperature=settings.DEFAULT_LLM_TEMPERATURE,
                    max_retries=0,
                    streaming=True,
                ),
            },
            {
                "name": "qwen/qwen3-32b",
                "factory": lambda: ChatGroq(
                    model="qwen/qwen3-32b",
                    api_key=settings.GROQ_API_KEY,
                    max_tokens=settings.MAX_TOKENS,
                    reasoning_format="hidden",
                    temperature=settings.DEFAULT_LLM_TEMPERATURE,
                    max_retries=0,
                    streaming=True,
                ),
            },
        ],
        "openai": [
            {
                "name": "gpt-4o-mini",
                "factory": lambda: ChatOpenAI(
                    model="gpt-4o-mini",
                    temperature=settings.DEFAULT_LLM_TEMPERATURE,
                    api_key=settings.OPENAI_API_KEY,
                    max_completion_tokens=settings.MAX_TOKENS,
                    max_retries=0,
                    streaming=True,
                ),
            },
            {
                "name": "gpt-4o",
                "factory": lambda: ChatOpenAI(
                    model="gpt-4o",
                    temperature=settings.DEFAULT_LLM_TEMPERATURE,
                    api_key=settings.OPENAI_API_KEY,
                    max_completion_tokens=settings.MAX_TOKENS,
                    max_retries=0,
                    streaming=True,
                ),
            },
        ],
    }

    _instances: Dict[str, BaseChatModel] = {}

    @classmethod
    def _entries(cls, llm_provider: str) -> List[Dict[str, Any]]:
        provider = llm_provider.lower()
        if provider not in cls.LLMS:
            logger.error("invalid_llm_provider", provider=llm_provider)
            raise ValueError(f"Invalid Provider: {llm_provider}")
        return cls.LLMS[provider]

    @classmethod
    def get(cls, llm_provider: str, model_name: str) -> BaseChatModel:
        """Retrieve (building on first use) a specific model instance by name."""
        entry = next((e for e in cls._entries(llm_provider) if e["name"] == model_name), None)
        if entry is None:
            available_models = cls.get_all_names(llm_provider)
            raise ValueError(
                f"model '{model_name}' not found in registry. available models: {', '.join(available_models)}"
            )

        key = f"{llm_provider.lower()}/{model_name}"
        if key not in cls._instances:
            factory: Callable[[], BaseChatModel] = entry["factory"]
            cls._instances[key] = factory()
            logger.debug("llm_instance_created", model_name=key)
        return cls._instances[key]

    @classmethod
    def get_all_names(cls, llm_provider: Optional[str] = None) -> List[str]:
        """
        If llm_provider is passed: returns names for that provider.
        If None: return fully qualified names like "openai/gpt-4o".
        """
        if llm_provider:
            return [e["name"] for e in cls.LLMS.get(llm_provider.lower(), [])]

        out: List[str] = []
        for provider, entries in cls.LLMS.items():
            for e in entries:
                out.append(f"{provider}/{e['name']}")
        return out
