from functools import lru_cache
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Compiler settings loaded from environment variables."""

    # Value resolver
    SIMILARITY_THRESHOLD: float = 0.8
    RESOLVER_CACHE_SIZE: int = 4096
    RESOLVER_TIMEOUT_SECONDS: float = 2.0
    VALUE_MAPPINGS_CSV: Optional[str] = None

    # Logging / audit
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False
    AUDIT_DIR: str = "runs"

    @field_validator('SIMILARITY_THRESHOLD')
    @classmethod
    def threshold_range(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("SIMILARITY_THRESHOLD must be between 0 and 1")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
