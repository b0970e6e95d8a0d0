"""
Configuration and settings for the persona backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from backend.voices import DEFAULT_VOICE, normalize_voice

# Placeholder values that deployment tooling leaves behind for unset secrets.
_UNSET_SECRET_VALUES = {"", "0", "undefined", "null"}


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")
    environment: str = Field(
        default="development",
        validation_alias=AliasChoices("APP_ENV", "NODE_ENV", "environment"),
    )

    # Database (SQLAlchemy URL, Postgres expected)
    database_url: Optional[str] = Field(default=None)

    # Firebase / Firestore
    firebase_project_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "FIREBASE_PROJECT_ID",
            "GOOGLE_CLOUD_PROJECT",
            "GCLOUD_PROJECT",
            "firebase_project_id",
        ),
    )
    firebase_service_account_key: Optional[str] = Field(default=None)
    firestore_timeout_seconds: float = Field(default=10.0, gt=0)

    # Text-to-speech provider
    openai_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "OPENAI_API_KEY", "OPENAI_TOKEN", "openai_api_key"
        ),
    )
    openai_base_url: str = Field(default="https://api.openai.com/v1")
    openai_tts_model: str = Field(default="gpt-4o-mini-tts")
    openai_tts_voice: Optional[str] = Field(default=DEFAULT_VOICE)
    openai_timeout_seconds: float = Field(default=60.0, gt=0)

    # Avatar reassembly
    avatar_fetch_timeout_seconds: float = Field(default=15.0, gt=0)
    avatar_fetch_workers: int = Field(default=8, ge=1, le=64)

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "PERSONA_USE_IN_MEMORY_BACKENDS", "use_in_memory_backends"
        ),
    )

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"

    @property
    def uses_firebase(self) -> bool:
        return bool(
            (self.firebase_project_id or "").strip()
            or (self.firebase_service_account_key or "").strip()
        )

    @property
    def fallback_voice(self) -> str:
        """Voice used when neither the caller nor the persona decides."""
        return normalize_voice(self.openai_tts_voice) or DEFAULT_VOICE

    def openai_key(self) -> Optional[str]:
        key = (self.openai_api_key or "").strip()
        if key in _UNSET_SECRET_VALUES:
            return None
        return key


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
