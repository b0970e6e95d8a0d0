"""
Import an avatar image into the configured database as chunked documents.

Writes the avatar manifest and its chunks for one persona, the same layout
served by GET /api/ai/avatar/{persona_id}.
"""

from __future__ import annotations

import argparse
import hashlib
import logging
import math
import mimetypes
import sys
from pathlib import Path
from typing import Optional

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.avatars import AVATAR_CHUNK_SIZE, DEFAULT_CONTENT_TYPE, store_avatar
from backend.config import get_settings
from backend.db import DbClient
from backend.dependencies import build_db_client
from backend.errors import BackendUnavailableError

logger = logging.getLogger(__name__)


def guess_content_type(path: Path, override: Optional[str] = None) -> str:
    if override:
        return override
    guessed, _ = mimetypes.guess_type(path.name)
    if guessed and guessed.startswith("image/"):
        return guessed
    return DEFAULT_CONTENT_TYPE


def import_avatar(
    db: Optional[DbClient],
    *,
    persona_id: str,
    image_path: Path,
    content_type: Optional[str],
    dry_run: bool,
) -> int:
    payload = image_path.read_bytes()
    resolved_type = guess_content_type(image_path, content_type)
    if dry_run:
        chunk_count = max(1, math.ceil(len(payload) / AVATAR_CHUNK_SIZE))
        logger.info(
            "Would store %s for %s: %d bytes, %d chunks, sha256=%s",
            resolved_type,
            persona_id,
            len(payload),
            chunk_count,
            hashlib.sha256(payload).hexdigest(),
        )
        return chunk_count

    manifest = store_avatar(db, persona_id, payload, resolved_type)
    logger.info(
        "Stored avatar for %s (etag %s, %d chunks)",
        persona_id,
        manifest.etag,
        manifest.chunk_count,
    )
    return manifest.chunk_count


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Import an avatar image as chunked documents"
    )
    parser.add_argument("persona_id", help="Persona (iaProfiles) document id")
    parser.add_argument("image", type=Path, help="Path to the image file")
    parser.add_argument(
        "--content-type",
        default=None,
        help="MIME type to store (guessed from the file name by default)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report the chunk layout without writing anything",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")
    if not args.image.is_file():
        logger.error("Image not found: %s", args.image)
        return 1

    db = None if args.dry_run else build_db_client(get_settings())
    try:
        import_avatar(
            db,
            persona_id=args.persona_id,
            image_path=args.image,
            content_type=args.content_type,
            dry_run=args.dry_run,
        )
    except (ValueError, BackendUnavailableError) as e:
        logger.error("Avatar import failed: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
