"""Application configuration using environment variables."""
import os
from functools import lru_cache
from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Application settings loaded from environment variables."""

    # Server
    HOST: str = os.getenv("HOST", "127.0.0.1")
    PORT: int = int(os.getenv("PORT", "8000"))
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # CORS - Frontend URL
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:3000")

    # Battle Constants
    ROUND_CAP: int = int(os.getenv("ROUND_CAP", "20"))
    COACHING_TIMEOUT_SECONDS: int = int(os.getenv("COACHING_TIMEOUT_SECONDS", "90"))
    MAX_COACHING_TIMEOUTS: int = int(os.getenv("MAX_COACHING_TIMEOUTS", "3"))
    ADHERENCE_JITTER: float = float(os.getenv("ADHERENCE_JITTER", "10"))
    DEFAULT_JUDGE: str = os.getenv("DEFAULT_JUDGE", "Judge Wisdom")

    # Seconds a second writer waits for a busy battle before being rejected
    BATTLE_LOCK_TIMEOUT: float = float(os.getenv("BATTLE_LOCK_TIMEOUT", "0"))


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
