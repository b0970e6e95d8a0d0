"""
Firestore-backed ``DbClient`` using firebase_admin.

Collections follow the layout written by the web and mobile clients:

  iaProfiles/{personaId}
  iaProfiles/{personaId}/assets/avatar
  iaProfiles/{personaId}/assets/avatar/chunks/chunk_NNNN
  utilisateurs/{userId}
  adminLogs/{autoId}
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as google_auth_exceptions

from backend.db import ActivityLogRecord
from backend.errors import BackendConfigurationError, BackendUnavailableError

logger = logging.getLogger(__name__)

PERSONAS_COLLECTION = "iaProfiles"
USERS_COLLECTION = "utilisateurs"
ACTIVITY_LOGS_COLLECTION = "adminLogs"
ASSETS_COLLECTION = "assets"
AVATAR_DOCUMENT = "avatar"
CHUNKS_COLLECTION = "chunks"

# Firestore caps a commit at 500 writes and about 10 MiB of payload.
MAX_BATCH_WRITES = 450
MAX_BATCH_BYTES = 9_000_000


def load_service_account(raw_value: str) -> dict:
    """
    Parse a service account key given as JSON or base64-encoded JSON.

    Escaped newlines in the private key are restored, since env files usually
    carry the key on a single line.
    """
    trimmed = (raw_value or "").strip()
    if not trimmed:
        raise BackendConfigurationError("Firebase service account is empty")

    parsed = None
    try:
        parsed = json.loads(trimmed)
    except ValueError:
        try:
            decoded = base64.b64decode(trimmed, validate=True).decode("utf-8")
            parsed = json.loads(decoded)
        except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
            raise BackendConfigurationError(
                "Invalid Firebase service account (FIREBASE_SERVICE_ACCOUNT_KEY)"
            ) from exc
    if not isinstance(parsed, dict):
        raise BackendConfigurationError("Invalid Firebase service account payload")

    info = dict(parsed)
    for snake, camel in (
        ("project_id", "projectId"),
        ("client_email", "clientEmail"),
        ("private_key", "privateKey"),
    ):
        if not info.get(snake) and info.get(camel):
            info[snake] = info[camel]
    if isinstance(info.get("private_key"), str):
        info["private_key"] = info["private_key"].replace("\\n", "\n")
    info.setdefault("type", "service_account")
    return info


def get_firebase_app(
    *,
    project_id: Optional[str] = None,
    service_account_key: Optional[str] = None,
) -> firebase_admin.App:
    """Return the default firebase_admin app, initializing it on first use."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    project_id = (project_id or "").strip() or None
    try:
        if service_account_key and service_account_key.strip():
            info = load_service_account(service_account_key)
            credential = credentials.Certificate(info)
            project_id = info.get("project_id") or project_id
        else:
            credential = credentials.ApplicationDefault()
        options = {"projectId": project_id} if project_id else None
        return firebase_admin.initialize_app(credential, options)
    except (ValueError, google_auth_exceptions.GoogleAuthError) as exc:
        raise BackendConfigurationError(f"Firebase Admin not configured: {exc}") from exc


class _BatchWriter:
    """Groups writes into as few commits as the per-commit limits allow."""

    def __init__(self, client, timeout: float):
        self._client = client
        self._timeout = timeout
        self._batch = None
        self._writes = 0
        self._bytes = 0

    def _reserve(self, size: int):
        if self._batch is not None and (
            self._writes >= MAX_BATCH_WRITES or self._bytes + size > MAX_BATCH_BYTES
        ):
            self.flush()
        if self._batch is None:
            self._batch = self._client.batch()
        self._writes += 1
        self._bytes += size
        return self._batch

    def set(self, ref, data: dict, *, size: int = 0, merge: bool = False) -> None:
        self._reserve(size).set(ref, data, merge=merge)

    def delete(self, ref) -> None:
        self._reserve(0).delete(ref)

    def flush(self) -> None:
        if self._batch is not None:
            self._batch.commit(timeout=self._timeout)
        self._batch = None
        self._writes = 0
        self._bytes = 0


class FirestoreDbClient:
    """Firestore implementation of ``DbClient``."""

    def __init__(
        self,
        *,
        project_id: Optional[str] = None,
        service_account_key: Optional[str] = None,
        timeout: float = 10.0,
    ):
        self.project_id = project_id
        self.service_account_key = service_account_key
        self.timeout = timeout
        self._client = None

    def app(self) -> firebase_admin.App:
        return get_firebase_app(
            project_id=self.project_id,
            service_account_key=self.service_account_key,
        )

    @property
    def client(self):
        if self._client is None:
            try:
                self._client = firestore.client(self.app())
            except google_auth_exceptions.GoogleAuthError as exc:
                raise BackendConfigurationError(str(exc)) from exc
        return self._client

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except google_auth_exceptions.GoogleAuthError as exc:
            raise BackendConfigurationError(f"{operation}: {exc}") from exc
        except google_exceptions.GoogleAPIError as exc:
            raise BackendUnavailableError(f"{operation}: {exc}") from exc

    def _avatar_ref(self, asset_id: str):
        return (
            self.client.collection(PERSONAS_COLLECTION)
            .document(asset_id)
            .collection(ASSETS_COLLECTION)
            .document(AVATAR_DOCUMENT)
        )

    def get_persona(self, persona_id: str) -> Optional[dict]:
        with self._guard("get_persona"):
            snap = (
                self.client.collection(PERSONAS_COLLECTION)
                .document(persona_id)
                .get(timeout=self.timeout)
            )
        if not snap.exists:
            return None
        return {**(snap.to_dict() or {}), "id": snap.id}

    def get_user(self, user_id: str) -> Optional[dict]:
        with self._guard("get_user"):
            snap = (
                self.client.collection(USERS_COLLECTION)
                .document(user_id)
                .get(timeout=self.timeout)
            )
        return (snap.to_dict() or {}) if snap.exists else None

    def get_avatar_manifest(self, asset_id: str) -> Optional[dict]:
        with self._guard("get_avatar_manifest"):
            snap = self._avatar_ref(asset_id).get(timeout=self.timeout)
        return (snap.to_dict() or {}) if snap.exists else None

    def get_avatar_chunk(self, asset_id: str, chunk_id: str) -> Optional[dict]:
        with self._guard("get_avatar_chunk"):
            snap = (
                self._avatar_ref(asset_id)
                .collection(CHUNKS_COLLECTION)
                .document(chunk_id)
                .get(timeout=self.timeout)
            )
        return (snap.to_dict() or {}) if snap.exists else None

    def save_avatar(
        self, asset_id: str, manifest: dict, chunks: list[bytes]
    ) -> None:
        """
        Write chunks, then the manifest, then drop chunks the manifest no
        longer covers, so a reader never sees a count ahead of its chunks.
        """
        keep = {f"chunk_{index:04d}" for index in range(len(chunks))}
        with self._guard("save_avatar"):
            avatar_ref = self._avatar_ref(asset_id)
            chunks_ref = avatar_ref.collection(CHUNKS_COLLECTION)
            writer = _BatchWriter(self.client, self.timeout)
            for index, data in enumerate(chunks):
                writer.set(
                    chunks_ref.document(f"chunk_{index:04d}"),
                    {"index": index, "data": data},
                    size=len(data),
                )
            writer.set(
                avatar_ref,
                {**manifest, "updatedAt": firestore.SERVER_TIMESTAMP},
                merge=True,
            )
            writer.flush()
            for stale in chunks_ref.list_documents(timeout=self.timeout):
                if stale.id not in keep:
                    writer.delete(stale)
            writer.flush()

    def save_activity_log(self, entry: ActivityLogRecord) -> None:
        payload = entry.as_dict()
        payload["createdAt"] = firestore.SERVER_TIMESTAMP
        with self._guard("save_activity_log"):
            self.client.collection(ACTIVITY_LOGS_COLLECTION).document().set(
                payload, timeout=self.timeout
            )
