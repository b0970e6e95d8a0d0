"""
Database abstraction for Postgres and an in-memory test implementation.

The Firestore-backed client lives in ``backend.firestore_db``; all three
expose the same document-shaped records (camelCase keys as stored by the
web and mobile clients).
"""

from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional, Protocol

from sqlalchemy import (
    JSON,
    Column,
    Float,
    Integer,
    LargeBinary,
    String,
    create_engine,
    delete,
    select,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from backend.errors import BackendUnavailableError


class DbClient(Protocol):
    """Interface for database access."""

    def get_persona(self, persona_id: str) -> Optional[dict]:
        ...

    def get_user(self, user_id: str) -> Optional[dict]:
        ...

    def get_avatar_manifest(self, asset_id: str) -> Optional[dict]:
        ...

    def get_avatar_chunk(self, asset_id: str, chunk_id: str) -> Optional[dict]:
        ...

    def save_avatar(
        self, asset_id: str, manifest: dict, chunks: list[bytes]
    ) -> None:
        ...

    def save_activity_log(self, entry: "ActivityLogRecord") -> None:
        ...


@dataclass
class ActivityLogRecord:
    action: str
    actor_id: str
    actor_role: str
    target_type: str
    platform: str
    actor_mail: Optional[str] = None
    target_id: Optional[str] = None
    details: Optional[dict] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    school_id: Optional[str] = None
    created_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        payload = {
            "action": self.action,
            "actorId": self.actor_id,
            "actorMail": self.actor_mail,
            "actorRole": self.actor_role,
            "targetType": self.target_type,
            "targetId": self.target_id,
            "details": self.details,
            "ip": self.ip,
            "userAgent": self.user_agent,
            "platform": self.platform,
            "schoolId": self.school_id,
            "createdAt": self.created_at,
        }
        return {key: value for key, value in payload.items() if value is not None}


def _chunk_document(index: int, data: bytes) -> dict:
    return {"index": index, "data": data}


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.personas: Dict[str, dict] = {}
        self.users: Dict[str, dict] = {}
        self.avatars: Dict[str, dict] = {}
        self.avatar_chunks: Dict[tuple[str, str], dict] = {}
        self.activity_logs: list[ActivityLogRecord] = []

    def save_persona(self, persona_id: str, profile: dict) -> None:
        self.personas[persona_id] = dict(profile)

    def get_persona(self, persona_id: str) -> Optional[dict]:
        profile = self.personas.get(persona_id)
        if profile is None:
            return None
        return {**profile, "id": persona_id}

    def save_user(self, user_id: str, data: dict) -> None:
        self.users[user_id] = dict(data)

    def get_user(self, user_id: str) -> Optional[dict]:
        return self.users.get(user_id)

    def get_avatar_manifest(self, asset_id: str) -> Optional[dict]:
        return self.avatars.get(asset_id)

    def get_avatar_chunk(self, asset_id: str, chunk_id: str) -> Optional[dict]:
        return self.avatar_chunks.get((asset_id, chunk_id))

    def save_avatar(
        self, asset_id: str, manifest: dict, chunks: list[bytes]
    ) -> None:
        stale = [key for key in self.avatar_chunks if key[0] == asset_id]
        for key in stale:
            del self.avatar_chunks[key]
        self.avatars[asset_id] = {**manifest, "updatedAt": time.time()}
        for index, data in enumerate(chunks):
            self.avatar_chunks[(asset_id, f"chunk_{index:04d}")] = _chunk_document(
                index, data
            )

    def save_activity_log(self, entry: ActivityLogRecord) -> None:
        self.activity_logs.append(entry)

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.personas.clear()
        self.users.clear()
        self.avatars.clear()
        self.avatar_chunks.clear()
        self.activity_logs.clear()


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self.Session() as session:
                yield session
        except SQLAlchemyError as exc:
            raise BackendUnavailableError(f"Database error: {exc}") from exc

    def save_persona(self, persona_id: str, profile: dict) -> None:
        with self._session() as session:
            row = session.get(PersonaRow, persona_id)
            if row:
                row.data = dict(profile)
                row.updated_at = time.time()
            else:
                session.add(
                    PersonaRow(
                        persona_id=persona_id,
                        data=dict(profile),
                        updated_at=time.time(),
                    )
                )
            session.commit()

    def get_persona(self, persona_id: str) -> Optional[dict]:
        with self._session() as session:
            row = session.get(PersonaRow, persona_id)
            if not row:
                return None
            return {**(row.data or {}), "id": row.persona_id}

    def save_user(self, user_id: str, data: dict) -> None:
        with self._session() as session:
            row = session.get(UserRow, user_id)
            if row:
                row.data = dict(data)
            else:
                session.add(UserRow(user_id=user_id, data=dict(data)))
            session.commit()

    def get_user(self, user_id: str) -> Optional[dict]:
        with self._session() as session:
            row = session.get(UserRow, user_id)
            return dict(row.data or {}) if row else None

    def get_avatar_manifest(self, asset_id: str) -> Optional[dict]:
        with self._session() as session:
            row = session.get(AvatarAssetRow, asset_id)
            if not row:
                return None
            manifest: Dict[str, Any] = {
                "contentType": row.content_type,
                "chunkCount": row.chunk_count,
                "size": row.size,
                "updatedAt": row.updated_at,
            }
            if row.sha256:
                manifest["sha256"] = row.sha256
            return manifest

    def get_avatar_chunk(self, asset_id: str, chunk_id: str) -> Optional[dict]:
        with self._session() as session:
            row = session.get(AvatarChunkRow, (asset_id, chunk_id))
            if not row:
                return None
            return _chunk_document(row.chunk_index, row.data)

    def save_avatar(
        self, asset_id: str, manifest: dict, chunks: list[bytes]
    ) -> None:
        now = time.time()
        with self._session() as session:
            session.execute(
                delete(AvatarChunkRow).where(AvatarChunkRow.asset_id == asset_id)
            )
            row = session.get(AvatarAssetRow, asset_id)
            if not row:
                row = AvatarAssetRow(asset_id=asset_id)
                session.add(row)
            row.content_type = manifest.get("contentType")
            row.chunk_count = int(manifest.get("chunkCount") or 0)
            row.size = manifest.get("size")
            row.sha256 = manifest.get("sha256")
            row.updated_at = now
            for index, data in enumerate(chunks):
                session.add(
                    AvatarChunkRow(
                        asset_id=asset_id,
                        chunk_id=f"chunk_{index:04d}",
                        chunk_index=index,
                        data=data,
                    )
                )
            session.commit()

    def save_activity_log(self, entry: ActivityLogRecord) -> None:
        with self._session() as session:
            session.add(
                ActivityLogRow(
                    id=uuid.uuid4().hex,
                    action=entry.action,
                    actor_id=entry.actor_id,
                    actor_mail=entry.actor_mail,
                    actor_role=entry.actor_role,
                    target_type=entry.target_type,
                    target_id=entry.target_id,
                    details=entry.details,
                    ip=entry.ip,
                    user_agent=entry.user_agent,
                    platform=entry.platform,
                    school_id=entry.school_id,
                    created_at=entry.created_at,
                )
            )
            session.commit()

    def list_activity_logs(
        self, actor_id: Optional[str] = None, limit: int = 100
    ) -> list[ActivityLogRecord]:
        with self._session() as session:
            stmt = select(ActivityLogRow).order_by(ActivityLogRow.created_at.desc())
            if actor_id:
                stmt = stmt.where(ActivityLogRow.actor_id == actor_id)
            rows = session.execute(stmt.limit(limit)).scalars().all()
            return [
                ActivityLogRecord(
                    action=row.action,
                    actor_id=row.actor_id,
                    actor_role=row.actor_role,
                    target_type=row.target_type,
                    platform=row.platform,
                    actor_mail=row.actor_mail,
                    target_id=row.target_id,
                    details=row.details,
                    ip=row.ip,
                    user_agent=row.user_agent,
                    school_id=row.school_id,
                    created_at=row.created_at,
                )
                for row in rows
            ]


Base = declarative_base()


class PersonaRow(Base):
    __tablename__ = "personas"

    persona_id = Column(String, primary_key=True)
    data = Column(JSON, nullable=False)
    updated_at = Column(Float, nullable=False)


class UserRow(Base):
    __tablename__ = "users"

    user_id = Column(String, primary_key=True)
    data = Column(JSON, nullable=False)


class AvatarAssetRow(Base):
    __tablename__ = "avatar_assets"

    asset_id = Column(String, primary_key=True)
    content_type = Column(String, nullable=True)
    chunk_count = Column(Integer, nullable=False, default=0)
    size = Column(Integer, nullable=True)
    sha256 = Column(String, nullable=True)
    updated_at = Column(Float, nullable=False)


class AvatarChunkRow(Base):
    __tablename__ = "avatar_chunks"

    asset_id = Column(String, primary_key=True)
    chunk_id = Column(String, primary_key=True)
    chunk_index = Column(Integer, nullable=False)
    data = Column(LargeBinary, nullable=False)


class ActivityLogRow(Base):
    __tablename__ = "activity_logs"

    id = Column(String, primary_key=True)
    action = Column(String, nullable=False, index=True)
    actor_id = Column(String, nullable=False, index=True)
    actor_mail = Column(String, nullable=True)
    actor_role = Column(String, nullable=False)
    target_type = Column(String, nullable=False)
    target_id = Column(String, nullable=True)
    details = Column(JSON, nullable=True)
    ip = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    platform = Column(String, nullable=False)
    school_id = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)
