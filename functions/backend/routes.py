"""
HTTP routes for the persona backend API.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, Response

from backend.activity_logs import (
    ip_from_headers,
    normalize_optional,
    normalize_required,
    platform_from_headers,
    user_agent_from_headers,
    write_activity_log,
)
from backend.auth import ActorVerifier, InvalidTokenError, VerifiedActor, bearer_token
from backend.avatars import CACHE_CONTROL_IMMUTABLE, AvatarAssetStore, AvatarStatus
from backend.config import Settings
from backend.db import DbClient
from backend.dependencies import (
    get_actor_verifier,
    get_app_settings,
    get_avatar_store,
    get_db_client,
    get_tts_client,
)
from backend.errors import (
    ApiError,
    BackendUnavailableError,
    UpstreamError,
    configuration_error_message,
    is_configuration_error,
)
from backend.schemas import (
    ActivityLogRequest,
    ActivityLogResponse,
    ErrorResponse,
    HealthResponse,
    TtsRequest,
)
from backend.voices import PersonaDescriptor, resolve_voice
from models.openai_tts import SpeechSynthesizer

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


def _optional_actor(request: Request, verifier: ActorVerifier) -> Optional[VerifiedActor]:
    token = bearer_token(request.headers.get("authorization"))
    if not token:
        return None
    try:
        return verifier.verify(token)
    except (InvalidTokenError, BackendUnavailableError) as e:
        logger.warning("Ignoring unverifiable caller token: %s", e)
        return None


def _unavailable(error: BaseException, settings: Settings) -> ApiError:
    if is_configuration_error(error):
        return ApiError(
            503, configuration_error_message(error, production=settings.is_production)
        )
    return ApiError(503, "Service unavailable.")


@router.get("/healthz", response_model=HealthResponse)
def healthz():
    return HealthResponse()


@router.post(
    "/ai/tts",
    response_class=Response,
    responses={200: {"content": {"audio/mpeg": {}}}, **ERROR_RESPONSES},
)
def synthesize_speech(
    payload: TtsRequest,
    request: Request,
    db: DbClient = Depends(get_db_client),
    tts: Optional[SpeechSynthesizer] = Depends(get_tts_client),
    verifier: ActorVerifier = Depends(get_actor_verifier),
    settings: Settings = Depends(get_app_settings),
):
    """
    Synthesize ``text`` with the voice that best fits the persona.
    """
    text = (payload.text or "").strip()
    if not text:
        raise ApiError(400, "Missing text.")

    actor = _optional_actor(request, verifier)

    if tts is None:
        raise ApiError(502, "OpenAI API key missing.")

    ai_id = (payload.ai_id or "").strip()
    persona = None
    if ai_id:
        try:
            persona = PersonaDescriptor.from_profile(db.get_persona(ai_id))
        except BackendUnavailableError as e:
            logger.warning("[%s] Persona lookup failed for TTS: %s", ai_id, e)

    override = payload.voice if isinstance(payload.voice, str) else None
    voice = resolve_voice(override, persona, settings.fallback_voice)

    try:
        audio = tts.synthesize(text, voice)
    except UpstreamError as e:
        raise ApiError(502, e.message) from e

    if actor:
        try:
            write_activity_log(
                db,
                action="tts_generated",
                actor_id=actor.uid,
                actor_mail=actor.email,
                target_type="aiProfile" if ai_id else "system",
                target_id=ai_id or None,
                platform=platform_from_headers(request.headers),
                ip=ip_from_headers(request.headers),
                user_agent=user_agent_from_headers(request.headers),
                details={
                    "aiId": ai_id or None,
                    "model": tts.model,
                    "voice": voice,
                    "textLength": len(text),
                },
            )
        except (BackendUnavailableError, ValueError) as e:
            logger.warning("Could not write tts_generated log: %s", e)

    return Response(
        content=audio,
        media_type="audio/mpeg",
        headers={"Cache-Control": "no-store"},
    )


@router.get(
    "/ai/avatar/{ai_id}",
    response_class=Response,
    responses={200: {"content": {"image/png": {}}}, 304: {}, **ERROR_RESPONSES},
)
def get_avatar(
    ai_id: str,
    if_none_match: Optional[str] = Header(default=None),
    store: AvatarAssetStore = Depends(get_avatar_store),
    settings: Settings = Depends(get_app_settings),
):
    result = store.get_avatar(ai_id, if_none_match)

    if result.status is AvatarStatus.NOT_FOUND:
        raise ApiError(404, "Avatar not found.")
    if result.status is AvatarStatus.UNAVAILABLE:
        raise _unavailable(BackendUnavailableError(result.error or ""), settings)

    headers = {"Cache-Control": CACHE_CONTROL_IMMUTABLE}
    if result.etag:
        headers["ETag"] = result.etag
    if result.status is AvatarStatus.NOT_MODIFIED:
        return Response(status_code=304, headers=headers)
    return Response(content=result.body, media_type=result.content_type, headers=headers)


@router.post(
    "/logs",
    response_model=ActivityLogResponse,
    responses={401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}, **ERROR_RESPONSES},
)
def post_activity_log(
    payload: ActivityLogRequest,
    request: Request,
    db: DbClient = Depends(get_db_client),
    verifier: ActorVerifier = Depends(get_actor_verifier),
    settings: Settings = Depends(get_app_settings),
):
    token = bearer_token(request.headers.get("authorization"))
    if not token:
        raise ApiError(401, "Unauthorized")
    try:
        actor = verifier.verify(token)
    except InvalidTokenError as e:
        logger.warning("Invalid token for /logs: %s", e)
        raise ApiError(401, "Unauthorized") from e
    except BackendUnavailableError as e:
        logger.error("Token verification unavailable for /logs: %s", e)
        raise _unavailable(e, settings) from e

    try:
        action = normalize_required(payload.action, "action")
        target_type = normalize_required(payload.target_type, "targetType")
    except ValueError as e:
        raise ApiError(400, str(e)) from e

    try:
        write_activity_log(
            db,
            action=action,
            actor_id=actor.uid,
            actor_mail=actor.email,
            target_type=target_type,
            target_id=normalize_optional(payload.target_id),
            details=payload.details if isinstance(payload.details, dict) else None,
            platform=platform_from_headers(request.headers),
            ip=ip_from_headers(request.headers),
            user_agent=user_agent_from_headers(request.headers),
        )
    except BackendUnavailableError as e:
        logger.error("Could not write activity log: %s", e)
        if is_configuration_error(e):
            raise _unavailable(e, settings) from e
        raise ApiError(500, "Could not write activity log.") from e

    return ActivityLogResponse()
