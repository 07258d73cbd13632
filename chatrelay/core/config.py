from enum import Enum
from typing import List, Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


# Environment
class Environment(str, Enum):
    """
    Deployment environments. Controls logging format, cookie security
    and how hard we fail on startup errors.
    """
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


# Application Settings
class Settings(BaseSettings):
    """
    Central configuration, read from the OS environment and an optional .env file.
    Every knob the relay uses lives here so nothing is hardcoded in services.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    ENVIRONMENT: Environment = Environment.DEVELOPMENT
    LOG_LEVEL: str = "INFO"
    PROJECT_NAME: str = "chatrelay"

    # Database
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "chatrelay"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_POOL_SIZE: int = 20
    POSTGRES_MAX_OVERFLOW: int = 10
    # full URL wins over the POSTGRES_* parts when set (e.g. sqlite for local runs)
    DATABASE_URL: Optional[str] = None

    # JWT (verification only, tokens are issued by the auth service)
    JWT_SECRET_KEY: str = "change-me-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_DAYS: int = 7

    # Rate limiting
    RATE_LIMIT_DEFAULT: List[str] = ["200 per minute"]
    CHAT_COOLDOWN_SECONDS: float = 3.0
    RATE_LIMIT_SWEEP_INTERVAL_SECONDS: float = 60.0

    # LLM
    DEFAULT_LLM_PROVIDER: str = "groq"
    DEFAULT_LLM_MODEL: str = "openai/gpt-oss-20b"
    DEFAULT_LLM_TEMPERATURE: float = 0.2
    MAX_TOKENS: int = 2000
    MAX_LLM_CALL_RETRIES: int = 3
    GROQ_API_KEY: Optional[str] = None
    OPENAI_API_KEY: Optional[str] = None
    GENERATION_TIMEOUT_SECONDS: float = 120.0

    # Embeddings
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    EMBEDDING_DIMENSIONS: int = 768
    EMBEDDING_TIMEOUT_SECONDS: float = 10.0

    # Context assembly
    CONTEXT_STRATEGY: Literal["recency", "semantic"] = "semantic"
    RECENT_MESSAGE_LIMIT: int = 2
    SEMANTIC_MATCH_LIMIT: int = 5
    SYSTEM_PROMPT: str = "You are a helpful assistant. Answer the user's latest message using the conversation so far."

    # Sessions
    TITLE_PREVIEW_LENGTH: int = 30
    SESSION_COOKIE_NAME: str = "gpt_session_id"
    AUTH_COOKIE_NAME: str = "auth_token"


settings = Settings()
