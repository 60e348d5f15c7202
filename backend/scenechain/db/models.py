"""SQLAlchemy 2.0 ORM models for scenechain."""

from datetime import datetime

from sqlalchemy import JSON, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class ArtifactCheckpoint(Base):
    """Append-only record of each stage's output for one session.

    The document holds the Artifacts fields (prompts, image_paths,
    video_paths, audio_paths, final_video_path) as they are produced.
    """
    __tablename__ = "artifact_checkpoints"

    session_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    document: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now()
    )
