"""
Dependency wiring for the FastAPI app.

Clients are built once by ``create_app`` and kept on ``app.state``; the
``get_*`` functions below hand them to routes through ``Depends``.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Request

from backend.auth import ActorVerifier, FirebaseActorVerifier, InMemoryActorVerifier
from backend.avatars import AvatarAssetStore
from backend.config import Settings
from backend.db import DbClient, InMemoryDbClient, PostgresDbClient
from backend.firestore_db import FirestoreDbClient, get_firebase_app
from models.openai_tts import OpenAiTtsClient, SpeechSynthesizer

logger = logging.getLogger(__name__)


def build_db_client(settings: Settings) -> DbClient:
    if settings.use_in_memory_backends:
        return InMemoryDbClient()
    if settings.database_url:
        return PostgresDbClient(settings.database_url)
    if settings.uses_firebase:
        return FirestoreDbClient(
            project_id=settings.firebase_project_id,
            service_account_key=settings.firebase_service_account_key,
            timeout=settings.firestore_timeout_seconds,
        )
    logger.warning("No database configured; using in-memory backend")
    return InMemoryDbClient()


def build_actor_verifier(settings: Settings) -> ActorVerifier:
    if settings.use_in_memory_backends or not settings.uses_firebase:
        return InMemoryActorVerifier()
    return FirebaseActorVerifier(
        lambda: get_firebase_app(
            project_id=settings.firebase_project_id,
            service_account_key=settings.firebase_service_account_key,
        )
    )


def build_tts_client(settings: Settings) -> Optional[SpeechSynthesizer]:
    api_key = settings.openai_key()
    if not api_key:
        return None
    return OpenAiTtsClient(
        api_key=api_key,
        model=settings.openai_tts_model,
        base_url=settings.openai_base_url,
        timeout=settings.openai_timeout_seconds,
    )


def build_avatar_store(settings: Settings, db: DbClient) -> AvatarAssetStore:
    return AvatarAssetStore(
        db,
        max_workers=settings.avatar_fetch_workers,
        fetch_timeout=settings.avatar_fetch_timeout_seconds,
    )


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db_client(request: Request) -> DbClient:
    return request.app.state.db


def get_tts_client(request: Request) -> Optional[SpeechSynthesizer]:
    return request.app.state.tts


def get_actor_verifier(request: Request) -> ActorVerifier:
    return request.app.state.verifier


def get_avatar_store(request: Request) -> AvatarAssetStore:
    return request.app.state.avatar_store
