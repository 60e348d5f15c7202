"""Artifacts checkpoint service: durable, append-only stage handoff.

Provides:
- CheckpointStore.append(): Add fields written by a completed stage
- CheckpointStore.load(): Read the session's Artifacts document
- require(): Fetch a field a stage depends on, failing fast when absent

A field, once written, is never overwritten or deleted within a pipeline
run. An attempt to do so means two writers disagree about the session and
raises CorruptSessionError.
"""

import logging
from typing import Any

from pydantic import BaseModel
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scenechain.db.models import ArtifactCheckpoint
from scenechain.orchestrator.errors import CorruptSessionError
from scenechain.schemas.generation import Artifacts

logger = logging.getLogger(__name__)

ARTIFACT_FIELDS = frozenset(Artifacts.model_fields) - {"session_id"}


def _to_json(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (list, tuple)):
        return [_to_json(v) for v in value]
    if hasattr(value, "__fspath__"):
        return str(value)
    return value


class CheckpointStore:
    """Per-session artifacts document stored in the artifact_checkpoints table.

    Args:
        session_factory: async_sessionmaker bound to the checkpoint database
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append(self, session_id: str, **fields: Any) -> Artifacts:
        """Add stage output fields to the session's document.

        Returns:
            The updated Artifacts

        Raises:
            CorruptSessionError: If a field is unknown or already written
        """
        unknown = set(fields) - ARTIFACT_FIELDS
        if unknown:
            raise CorruptSessionError(
                f"Unknown artifact fields: {sorted(unknown)}", context={"session_id": session_id}
            )

        async with self._session_factory() as session:
            row = await session.get(ArtifactCheckpoint, session_id)
            if row is None:
                row = ArtifactCheckpoint(session_id=session_id, document={})
                session.add(row)

            document = dict(row.document or {})
            for name, value in fields.items():
                if document.get(name) is not None:
                    raise CorruptSessionError(
                        f"Artifact field '{name}' already written for session {session_id}",
                        context={"session_id": session_id, "field": name},
                    )
                document[name] = _to_json(value)

            # Reassign so SQLAlchemy sees the JSON change
            row.document = document
            await session.commit()

        logger.debug(f"Checkpoint {session_id}: appended {sorted(fields)}")
        return Artifacts(session_id=session_id, **document)

    async def load(self, session_id: str) -> Artifacts:
        """Load the session's artifacts (empty when nothing was written yet)."""
        async with self._session_factory() as session:
            row = await session.get(ArtifactCheckpoint, session_id)
            document = dict(row.document or {}) if row is not None else {}
        return Artifacts(session_id=session_id, **document)

    async def discard(self, session_id: str) -> None:
        """Drop the session's document (restart from the first stage, or reaped)."""
        async with self._session_factory() as session:
            await session.execute(
                delete(ArtifactCheckpoint).where(ArtifactCheckpoint.session_id == session_id)
            )
            await session.commit()
        logger.info(f"Checkpoint {session_id}: discarded")


def require(artifacts: Artifacts, field: str) -> Any:
    """Return a required upstream field or raise CorruptSessionError."""
    value = getattr(artifacts, field, None)
    if value is None or (isinstance(value, list) and not value):
        raise CorruptSessionError(
            f"Session {artifacts.session_id} is missing required artifact '{field}'",
            context={"session_id": artifacts.session_id, "field": field},
        )
    return value
