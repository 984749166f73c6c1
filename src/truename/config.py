"""Configuration and environment loading for TrueName."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Supabase
    supabase_url: str
    supabase_key: str

    # Store backend ("memory" keeps everything in-process, for local demos)
    store_backend: Literal["supabase", "memory"] = "supabase"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    # OIDC claims
    oidc_issuer: str = "https://truenameapi.demo"
    claims_ttl_seconds: int = 3600

    # Bearer sessions
    session_ttl_seconds: int = 7200  # 2 hours, fixed by the authorize contract
    token_max_retries: int = 10

    # Resolution
    anonymous_name: str = "Anonymous User"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
