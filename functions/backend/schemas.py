"""
Pydantic schemas for the persona backend.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class TtsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: Optional[str] = Field(default=None, max_length=4096)
    ai_id: Optional[str] = Field(default=None, alias="aiId", max_length=128)
    # Unusable overrides are ignored by voice resolution, not rejected.
    voice: Any = None


class ActivityLogRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: Optional[str] = Field(default=None, max_length=128)
    target_type: Optional[str] = Field(default=None, alias="targetType", max_length=128)
    target_id: Optional[str] = Field(default=None, alias="targetId", max_length=256)
    details: Optional[Any] = None


class ActivityLogResponse(BaseModel):
    ok: Literal[True] = True


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    status: Literal["ok"] = "ok"
