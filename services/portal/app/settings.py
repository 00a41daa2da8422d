from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFINITIONS_DIR = Path(__file__).resolve().parent / "definitions"


class Settings(BaseSettings):
    APP_NAME: str = "Grants Portal"
    ENVIRONMENT: str = "local"          # "local" | "dev" | "test" | "prod"
    LOG_LEVEL: str = "info"

    # Grant definitions (one JSON file per grant, slug = file name)
    GRANT_DEFINITIONS_DIR: str = str(DEFINITIONS_DIR)

    # Session cache
    SESSION_CACHE_ENGINE: Literal["memory", "redis"] = "memory"
    REDIS_URL: str = "redis://redis:6379/0"
    SESSION_TTL_SECONDS: int = 60 * 60 * 24 * 28  # 28 days

    # Durable state backend; disabled when MONGO_URI is empty
    MONGO_URI: Optional[str] = None
    MONGO_DB: str = "grants_portal"

    # Grant Administration Service
    GAS_API_URL: str = "http://gas:3001"
    GAS_API_TOKEN: str = ""
    GAS_TIMEOUT_SECONDS: float = 5.0

    # Agreements service (cross-service handoff after an offer)
    AGREEMENTS_BASE_URL: str = "http://agreements:3555/agreement"

    # Identity used when the auth proxy sends no credentials
    PLACEHOLDER_USER_ID: str = "placeholder-user-id"
    PLACEHOLDER_BUSINESS_ID: str = "placeholder-business-id"

    model_config = SettingsConfigDict(env_prefix="PORTAL_", env_file=".env", extra="ignore")

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "prod"


settings = Settings()
