"""
Caller identity: bearer-token extraction and Firebase ID token verification.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

from firebase_admin import App, auth

from backend.errors import BackendUnavailableError

logger = logging.getLogger(__name__)

_BEARER_PATTERN = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)


class InvalidTokenError(Exception):
    """The presented ID token is malformed, expired or revoked."""


@dataclass(frozen=True)
class VerifiedActor:
    uid: str
    email: Optional[str] = None


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    value = (authorization or "").strip()
    if not value:
        return None
    match = _BEARER_PATTERN.match(value)
    if not match:
        return None
    token = match.group(1).strip()
    return token or None


class ActorVerifier(Protocol):
    def verify(self, token: str) -> VerifiedActor:
        ...


class InMemoryActorVerifier:
    """Token table for development and tests."""

    def __init__(self, actors: Optional[Dict[str, VerifiedActor]] = None):
        self.actors: Dict[str, VerifiedActor] = dict(actors or {})

    def verify(self, token: str) -> VerifiedActor:
        actor = self.actors.get(token)
        if actor is None:
            raise InvalidTokenError("Unknown token")
        return actor


class FirebaseActorVerifier:
    """Verifies Firebase Auth ID tokens with firebase_admin."""

    def __init__(self, app_provider: Callable[[], App]):
        # The app is resolved lazily so that missing credentials surface as a
        # per-request configuration error rather than a startup crash.
        self._app_provider = app_provider

    def verify(self, token: str) -> VerifiedActor:
        app = self._app_provider()
        try:
            decoded = auth.verify_id_token(token, app=app)
        except auth.CertificateFetchError as exc:
            raise BackendUnavailableError(f"Token certificates unavailable: {exc}") from exc
        except (auth.InvalidIdTokenError, ValueError) as exc:
            raise InvalidTokenError(str(exc)) from exc
        email = decoded.get("email")
        return VerifiedActor(
            uid=decoded["uid"],
            email=email if isinstance(email, str) else None,
        )
