"""
Chunked avatar storage: read path with conditional-GET support, and ingestion.

An avatar is stored as a manifest (content type, chunk count, sha256) plus
``chunkCount`` chunk documents ``chunk_0000 .. chunk_NNNN`` holding raw bytes.
Avatars are atomic: a missing or unreadable chunk means the avatar is absent.
"""

from __future__ import annotations

import concurrent.futures
import enum
import hashlib
import logging
import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from backend.db import DbClient
from backend.errors import BackendUnavailableError

logger = logging.getLogger(__name__)

CACHE_CONTROL_IMMUTABLE = "public, max-age=31536000, immutable"
DEFAULT_CONTENT_TYPE = "image/png"
AVATAR_CHUNK_SIZE = 450_000
MAX_AVATAR_BYTES = 50_000_000
MAX_CHUNK_COUNT = math.ceil(MAX_AVATAR_BYTES / AVATAR_CHUNK_SIZE)
DEFAULT_FETCH_TIMEOUT_SECONDS = 15.0
DEFAULT_FETCH_WORKERS = 8


def chunk_id(index: int) -> str:
    return f"chunk_{index:04d}"


def _chunk_count(value: Any) -> int:
    # bool is an int subclass; a flag is not a count.
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    return 0


def _coerce_bytes(value: Any) -> Optional[bytes]:
    if isinstance(value, bytes):
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    return None


@dataclass(frozen=True)
class AvatarManifest:
    content_type: str
    chunk_count: int
    sha256: Optional[str] = None

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "AvatarManifest":
        content_type = data.get("contentType")
        if not isinstance(content_type, str) or not content_type.strip():
            content_type = DEFAULT_CONTENT_TYPE
        sha256 = data.get("sha256")
        if not isinstance(sha256, str) or not sha256.strip():
            sha256 = None
        return cls(
            content_type=content_type.strip(),
            chunk_count=_chunk_count(data.get("chunkCount")),
            sha256=sha256.strip() if sha256 else None,
        )

    @property
    def etag(self) -> Optional[str]:
        return f'"{self.sha256}"' if self.sha256 else None


class AvatarStatus(enum.Enum):
    OK = "ok"
    NOT_MODIFIED = "not_modified"
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class AvatarResult:
    status: AvatarStatus
    body: bytes = b""
    content_type: Optional[str] = None
    etag: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def not_found(cls) -> "AvatarResult":
        return cls(status=AvatarStatus.NOT_FOUND)

    @classmethod
    def unavailable(cls, error: str) -> "AvatarResult":
        return cls(status=AvatarStatus.UNAVAILABLE, error=error)


class _MissingChunk(Exception):
    pass


class AvatarAssetStore:
    """
    Serves reassembled avatars from a ``DbClient``.

    Chunk reads are fanned out over a thread pool and joined before the
    payload is concatenated in index order. The whole fan-out is bounded by
    ``fetch_timeout``; per-read timeouts are left to the db client.
    """

    def __init__(
        self,
        db: DbClient,
        *,
        max_workers: int = DEFAULT_FETCH_WORKERS,
        fetch_timeout: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
    ):
        self.db = db
        self.max_workers = max_workers
        self.fetch_timeout = fetch_timeout

    def get_avatar(
        self, asset_id: Optional[str], client_etag: Optional[str] = None
    ) -> AvatarResult:
        asset_id = (asset_id or "").strip()
        if not asset_id:
            return AvatarResult.not_found()

        try:
            document = self.db.get_avatar_manifest(asset_id)
        except BackendUnavailableError as exc:
            logger.error("[%s] Avatar manifest read failed: %s", asset_id, exc)
            return AvatarResult.unavailable(str(exc))
        if not document:
            return AvatarResult.not_found()

        manifest = AvatarManifest.from_document(document)
        if manifest.chunk_count <= 0:
            return AvatarResult.not_found()
        if manifest.chunk_count > MAX_CHUNK_COUNT:
            logger.warning(
                "[%s] Avatar manifest claims %d chunks, over the %d limit",
                asset_id,
                manifest.chunk_count,
                MAX_CHUNK_COUNT,
            )
            return AvatarResult.not_found()

        # The validator comes from the manifest read above, never from a
        # previous request.
        etag = manifest.etag
        if etag is not None and client_etag == etag:
            return AvatarResult(
                status=AvatarStatus.NOT_MODIFIED,
                content_type=manifest.content_type,
                etag=etag,
            )

        try:
            payloads = self._fetch_chunks(asset_id, manifest.chunk_count)
        except _MissingChunk as exc:
            logger.warning("[%s] Avatar incomplete: %s", asset_id, exc)
            return AvatarResult.not_found()
        except BackendUnavailableError as exc:
            logger.error("[%s] Avatar chunk read failed: %s", asset_id, exc)
            return AvatarResult.unavailable(str(exc))

        return AvatarResult(
            status=AvatarStatus.OK,
            body=b"".join(payloads),
            content_type=manifest.content_type,
            etag=etag,
        )

    def _fetch_chunks(self, asset_id: str, count: int) -> list[bytes]:
        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=min(self.max_workers, count)
        )
        try:
            futures = [
                executor.submit(self.db.get_avatar_chunk, asset_id, chunk_id(index))
                for index in range(count)
            ]
            _, pending = concurrent.futures.wait(futures, timeout=self.fetch_timeout)
            if pending:
                for future in pending:
                    future.cancel()
                raise BackendUnavailableError(
                    f"Timed out after {self.fetch_timeout}s waiting for "
                    f"{len(pending)} of {count} chunks"
                )

            payloads: list[Optional[bytes]] = []
            backend_error: Optional[BackendUnavailableError] = None
            for future in futures:
                try:
                    document = future.result()
                except BackendUnavailableError as exc:
                    backend_error = backend_error or exc
                    payloads.append(None)
                    continue
                data = document.get("data") if isinstance(document, Mapping) else None
                payloads.append(_coerce_bytes(data))
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        # An outage takes precedence: a chunk we could not read may exist.
        if backend_error is not None:
            raise backend_error
        for index, payload in enumerate(payloads):
            if payload is None:
                raise _MissingChunk(f"{chunk_id(index)} missing or unreadable")
        return payloads


def store_avatar(
    db: DbClient,
    asset_id: str,
    payload: bytes,
    content_type: Optional[str] = None,
    *,
    chunk_size: int = AVATAR_CHUNK_SIZE,
) -> AvatarManifest:
    """Split ``payload`` into chunks and write them with their manifest."""
    asset_id = (asset_id or "").strip()
    if not asset_id:
        raise ValueError("asset_id is required")
    if not payload:
        raise ValueError("Avatar payload is empty")
    if len(payload) > MAX_AVATAR_BYTES:
        raise ValueError(f"Avatar payload exceeds {MAX_AVATAR_BYTES} bytes")

    sha256 = hashlib.sha256(payload).hexdigest()
    chunk_count = max(1, math.ceil(len(payload) / chunk_size))
    chunks = [
        payload[index * chunk_size : (index + 1) * chunk_size]
        for index in range(chunk_count)
    ]
    manifest = AvatarManifest(
        content_type=(content_type or "").strip() or DEFAULT_CONTENT_TYPE,
        chunk_count=chunk_count,
        sha256=sha256,
    )
    db.save_avatar(
        asset_id,
        {
            "contentType": manifest.content_type,
            "size": len(payload),
            "sha256": sha256,
            "chunkCount": chunk_count,
        },
        chunks,
    )
    logger.info(
        "[%s] Stored avatar (%d bytes, %d chunks)", asset_id, len(payload), chunk_count
    )
    return manifest
