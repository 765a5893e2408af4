from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    # -------------------------------------------------
    # General
    # -------------------------------------------------
    PROJECT_NAME: str = "Condo Sync"
    ENV: str = "development"

    # -------------------------------------------------
    # Supabase (Auth, rows, RPC, realtime)
    # -------------------------------------------------
    SUPABASE_URL: Optional[str] = Field(None, env="SUPABASE_URL")
    SUPABASE_ANON_KEY: Optional[str] = Field(None, env="SUPABASE_ANON_KEY")
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = Field(None, env="SUPABASE_SERVICE_ROLE_KEY")

    # Schema that the change-feed channels listen on
    REALTIME_SCHEMA: str = "public"

    # Key under which the persisted session token is stored
    AUTH_STORAGE_KEY: str = "supabase.auth.token"

    # -------------------------------------------------
    # Backend call limits
    # -------------------------------------------------
    BACKEND_TIMEOUT_SECONDS: float = Field(
        15.0,
        env="BACKEND_TIMEOUT_SECONDS",
        description="Upper bound for any single backend call before it is treated as failed",
    )

    # Poll for the trigger-created profile row after sign-up
    PROFILE_POLL_ATTEMPTS: int = Field(5, env="PROFILE_POLL_ATTEMPTS")
    PROFILE_POLL_INITIAL_DELAY: float = Field(0.5, env="PROFILE_POLL_INITIAL_DELAY")
    PROFILE_POLL_BACKOFF: float = Field(2.0, env="PROFILE_POLL_BACKOFF")

    # -------------------------------------------------
    # Function routes (FastAPI)
    # -------------------------------------------------
    BACKEND_CORS_ORIGINS: List[str] = ["*"]

    # -------------------------------------------------
    # Webhooks / Sync notifications
    # -------------------------------------------------
    SYNC_WEBHOOK_URL: Optional[str] = Field(None, env="SYNC_WEBHOOK_URL")

    # -------------------------------------------------
    # Model Config
    # -------------------------------------------------
    class Config:
        case_sensitive = True


# Instantiate settings
settings = Settings()
