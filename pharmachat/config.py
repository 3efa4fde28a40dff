from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):

    MONGODB_URL: str = "mongodb://localhost:27017"
    MONGODB_DB: str = "pharmachat"
    # message create + conversation summary in one transaction (needs a replica set)
    MONGODB_TRANSACTIONS: bool = True

    # unset -> in-process bus
    REDIS_URL: Optional[str] = None

    CONVERSATION_LIST_LIMIT: int = 100
    MESSAGE_LIST_LIMIT: int = 100
    SUBSCRIPTION_WATCHDOG_SECONDS: float = 5.0

    MAX_IMAGE_BYTES: int = 5 * 1024 * 1024
    UPLOAD_DIR: str = "./uploads"
    API_BASE_URL: str = "http://localhost:8000"

    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    @property
    def allowed_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
