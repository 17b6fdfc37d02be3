import os
from typing import List, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "VirtuFit Generation Relay"
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["*"]

    # Which image-to-3D backend this deployment talks to
    GENERATION_PROVIDER: Literal["tripo", "meshy"] = "tripo"

    TRIPO_API_KEY: Optional[str] = None
    TRIPO_BASE_URL: str = "https://api.tripo3d.ai/v2/openapi"
    TRIPO_MODEL_VERSION: Optional[str] = None
    STS_REGION: str = "us-west-2"

    MESHY_API_KEY: Optional[str] = None
    MESHY_BASE_URL: str = "https://api.meshy.ai"
    MESHY_AI_MODEL: Optional[str] = None

    # Chat relay
    OPENROUTER_API_KEY: Optional[str] = None
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    CHAT_MODEL: str = "openai/gpt-3.5-turbo"
    CHAT_SYSTEM_PROMPT: str = "You are a helpful AI fashion stylist."
    CHAT_CONTEXT_LIMIT: int = 10

    # Outbound HTTP
    HTTP_TIMEOUT: float = 60.0  # seconds
    MAX_RETRIES: int = Field(default=3, ge=0)
    RETRY_BACKOFF_BASE: float = 0.5  # seconds, doubled per attempt

    # Polling
    POLLING_INTERVAL: float = Field(default=2.0, gt=0)  # seconds
    GENERATION_TIME_BUDGET: float = Field(default=120.0, ge=0)  # seconds
    PLATFORM_EXECUTION_CEILING: Optional[float] = None  # hard limit of the host
    EXECUTION_SAFETY_MARGIN: float = 5.0
    UNRECOGNIZED_STATUS_TOLERANCE: int = Field(default=3, ge=1)

    # Payloads above this go through the object-storage upload path
    INLINE_UPLOAD_LIMIT_BYTES: int = 100 * 1024

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def effective_time_budget(self) -> float:
        """Polling budget for one request, capped by the host's own time limit."""
        budget = self.GENERATION_TIME_BUDGET
        if self.PLATFORM_EXECUTION_CEILING is not None:
            ceiling = self.PLATFORM_EXECUTION_CEILING - self.EXECUTION_SAFETY_MARGIN
            budget = min(budget, ceiling)
        return max(budget, 0.0)


class LocalSettings(Settings):
    ENV: str = "dev"


class ProductionSettings(Settings):
    ENV: str = "production"
    LOG_LEVEL: str = "INFO"
    # Serverless hosts kill requests at roughly 60s
    PLATFORM_EXECUTION_CEILING: Optional[float] = 55.0


# Factory to choose the right config
def get_settings() -> Settings:
    env = os.getenv("ENV", "local")
    if env == "production":
        return ProductionSettings()
    return LocalSettings()


settings = get_settings()
