from __future__ import annotations

from datetime import datetime

from fastapi import Depends
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from forgechat.dbutils import get_session_factory
from forgechat.errors import ArtifactNotFound, PersistenceError
from forgechat.orm import Artifact


class ArtifactRecord(BaseModel):
    artifact_id: str
    conversation_id: str | None = None
    name: str
    type: str
    content: str
    description: str | None = None
    tags: list[str] = Field(default_factory=list)
    path: str | None = None
    version: int = 1
    created_at: datetime
    updated_at: datetime


def get_artifact_store(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> SqlArtifactStore:
    return SqlArtifactStore(session_factory)


class SqlArtifactStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    @staticmethod
    def _to_record(a: Artifact) -> ArtifactRecord:
        return ArtifactRecord(
            artifact_id=a.artifact_id,
            conversation_id=a.conversation_id,
            name=a.name,
            type=a.type,
            content=a.content,
            description=a.description,
            tags=a.tags or [],
            path=a.path,
            version=a.version,
            created_at=a.created_at,
            updated_at=a.updated_at,
        )

    async def create(
        self,
        *,
        name: str,
        type: str,
        content: str,
        description: str | None = None,
        tags: list[str] | None = None,
        path: str | None = None,
        conversation_id: str | None = None,
    ) -> ArtifactRecord:
        try:
            async with self.session_factory() as session:
                artifact = Artifact(
                    name=name,
                    type=type,
                    content=content,
                    description=description,
                    tags=tags or [],
                    path=path,
                    conversation_id=conversation_id,
                )
                session.add(artifact)
                await session.commit()
                return self._to_record(artifact)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to create artifact {name!r}: {e}") from e

    async def update(self, artifact_id: str, *, content: str, description: str | None = None) -> ArtifactRecord:
        try:
            async with self.session_factory() as session:
                artifact = await session.get(Artifact, artifact_id)
                if artifact is None or not artifact.is_active:
                    raise ArtifactNotFound(f"Artifact {artifact_id} not found")

                artifact.content = content
                if description is not None:
                    artifact.description = description
                artifact.version = artifact.version + 1
                await session.commit()
                return self._to_record(artifact)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update artifact {artifact_id}: {e}") from e

    async def get(self, artifact_id: str) -> ArtifactRecord | None:
        try:
            async with self.session_factory() as session:
                artifact = await session.get(Artifact, artifact_id)
                if artifact is None or not artifact.is_active:
                    return None
                return self._to_record(artifact)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to get artifact {artifact_id}: {e}") from e

    async def list_artifacts(self, *, conversation_id: str | None = None, limit: int = 20) -> list[ArtifactRecord]:
        statement = select(Artifact).where(Artifact.is_active.is_(True))
        if conversation_id:
            statement = statement.where(Artifact.conversation_id == conversation_id)
        statement = statement.order_by(Artifact.updated_at.desc()).limit(limit)
        try:
            async with self.session_factory() as session:
                result = await session.execute(statement)
                return [self._to_record(a) for a in result.scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list artifacts: {e}") from e
