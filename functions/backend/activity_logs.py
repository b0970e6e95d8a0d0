"""
Activity log writer and request metadata helpers.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional

from backend.db import ActivityLogRecord, DbClient
from backend.errors import BackendUnavailableError

logger = logging.getLogger(__name__)

MAX_DETAILS_LENGTH = 8_000
PLATFORM_WEB = "web"
PLATFORM_IOS = "ios"
DEFAULT_ROLE = "client"


def normalize_optional(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def normalize_required(value: Any, label: str) -> str:
    normalized = normalize_optional(value)
    if not normalized:
        raise ValueError(f"{label} is required")
    return normalized


def normalize_role(value: Any) -> Optional[str]:
    role = normalize_optional(value)
    # Legacy accounts were created with the provider role name.
    if role == "prestataire":
        return "client"
    return role


def sanitize_details(details: Any) -> Optional[dict]:
    if not isinstance(details, dict):
        return None
    try:
        raw = json.dumps(details, default=str)
    except (TypeError, ValueError):
        return None
    if len(raw) > MAX_DETAILS_LENGTH:
        return {"_truncated": True, "_originalLength": len(raw)}
    return details


def platform_from_headers(headers: Mapping[str, str]) -> str:
    header = headers.get("x-pecm2-platform") or headers.get("x-platform") or ""
    return PLATFORM_IOS if header.strip().lower() == PLATFORM_IOS else PLATFORM_WEB


def ip_from_headers(headers: Mapping[str, str]) -> Optional[str]:
    forwarded = normalize_optional(headers.get("x-forwarded-for"))
    if forwarded:
        return normalize_optional(forwarded.split(",")[0])
    return normalize_optional(headers.get("x-real-ip"))


def user_agent_from_headers(headers: Mapping[str, str]) -> Optional[str]:
    return normalize_optional(headers.get("user-agent"))


def write_activity_log(
    db: DbClient,
    *,
    action: str,
    actor_id: str,
    target_type: str,
    platform: str = PLATFORM_WEB,
    actor_mail: Optional[str] = None,
    actor_role: Optional[str] = None,
    target_id: Optional[str] = None,
    details: Any = None,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
    school_id: Optional[str] = None,
) -> ActivityLogRecord:
    """
    Normalize and persist one activity log entry.

    Missing role, mail or school are filled from the actor's user document
    when it can be read; a failed lookup only costs those fields.

    Raises:
        ValueError: If ``action``, ``actor_id`` or ``target_type`` is blank.
        BackendUnavailableError: If the entry cannot be written.
    """
    actor_id = normalize_required(actor_id, "actorId")
    action = normalize_required(action, "action")
    target_type = normalize_required(target_type, "targetType")

    role = normalize_role(actor_role)
    mail = normalize_optional(actor_mail)
    school = normalize_optional(school_id)

    if not (role and mail and school):
        try:
            user = db.get_user(actor_id)
        except BackendUnavailableError as exc:
            logger.warning("Could not resolve user %s for activity log: %s", actor_id, exc)
            user = None
        if user:
            role = role or normalize_role(user.get("role")) or DEFAULT_ROLE
            mail = mail or normalize_optional(user.get("mail"))
            school = school or normalize_optional(user.get("schoolId"))

    record = ActivityLogRecord(
        action=action,
        actor_id=actor_id,
        actor_role=role or DEFAULT_ROLE,
        target_type=target_type,
        platform=platform,
        actor_mail=mail,
        target_id=normalize_optional(target_id),
        details=sanitize_details(details),
        ip=normalize_optional(ip),
        user_agent=normalize_optional(user_agent),
        school_id=school,
    )
    db.save_activity_log(record)
    return record
