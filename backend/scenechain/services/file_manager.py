"""
File management service for scenechain.

Handles session-scoped artifact storage with path traversal protection.
Creates per-session directories with subdirectories for images, videos,
audio, and output.
"""
import logging
import shutil
import time
from pathlib import Path

logger = logging.getLogger(__name__)

SESSION_SUBDIRS = ("images", "videos", "audio", "output")


class FileManager:
    """
    Manage filesystem artifacts for generation sessions.

    Creates structured directories:
    - {base_dir}/{session_id}/images/ - Scene images (rolling reference chain)
    - {base_dir}/{session_id}/videos/ - Individual scene video clips
    - {base_dir}/{session_id}/audio/ - Voiceover and music tracks
    - {base_dir}/{session_id}/output/ - Concatenated and final video

    Implements path traversal protection to prevent directory escape attacks.
    """

    def __init__(self, base_dir: str | Path, uploads_dir: str | Path | None = None):
        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.uploads_dir = Path(uploads_dir).resolve() if uploads_dir else self.base_dir / "uploads"

    def get_session_dir(self, session_id: str) -> Path:
        """
        Get or create session directory with subdirectories.

        Raises:
            ValueError: If session_id creates path outside base_dir (traversal attack)
        """
        session_dir = (self.base_dir / str(session_id)).resolve()

        if not session_dir.is_relative_to(self.base_dir) or session_dir == self.base_dir:
            raise ValueError("Invalid session path")

        session_dir.mkdir(exist_ok=True)
        for sub in SESSION_SUBDIRS:
            (session_dir / sub).mkdir(exist_ok=True)

        return session_dir

    def image_path(self, session_id: str, scene_number: int, ext: str = "png") -> Path:
        return self.get_session_dir(session_id) / "images" / f"scene-{scene_number}.{ext}"

    def video_path(self, session_id: str, scene_number: int) -> Path:
        return self.get_session_dir(session_id) / "videos" / f"scene-{scene_number}.mp4"

    def audio_path(self, session_id: str, name: str) -> Path:
        return self.get_session_dir(session_id) / "audio" / f"{name}.mp3"

    def output_dir(self, session_id: str) -> Path:
        return self.get_session_dir(session_id) / "output"

    def stitch_dir(self, session_id: str, crossfade_seconds: float) -> Path:
        """Separate output directory for a re-stitch, leaving final.mp4 untouched."""
        path = self.output_dir(session_id) / f"stitch-{crossfade_seconds:g}"
        path.mkdir(parents=True, exist_ok=True)
        return path

    def save_image(self, session_id: str, scene_number: int, data: bytes, ext: str = "png") -> Path:
        filepath = self.image_path(session_id, scene_number, ext)
        filepath.write_bytes(data)
        return filepath

    def save_video(self, session_id: str, scene_number: int, data: bytes) -> Path:
        filepath = self.video_path(session_id, scene_number)
        filepath.write_bytes(data)
        return filepath

    def save_audio(self, session_id: str, name: str, data: bytes) -> Path:
        filepath = self.audio_path(session_id, name)
        filepath.write_bytes(data)
        return filepath

    def save_upload(self, filename: str, data: bytes) -> Path:
        """Store an uploaded reference image under uploads_dir."""
        uploads = self.uploads_dir
        uploads.mkdir(parents=True, exist_ok=True)
        filepath = (uploads / Path(filename).name).resolve()
        if not filepath.is_relative_to(uploads):
            raise ValueError("Invalid upload filename")
        filepath.write_bytes(data)
        return filepath

    def remove_intermediates(self, session_id: str) -> int:
        """Delete intermediate merge files, keeping final outputs.

        Returns:
            Bytes freed
        """
        freed = 0
        output = self.output_dir(session_id)
        for path in output.glob("*.mp4"):
            if path.name == "final.mp4":
                continue
            freed += path.stat().st_size
            path.unlink()
        return freed

    def cleanup_old_sessions(self, max_age_days: float, keep: frozenset = frozenset()) -> int:
        """Delete session directories last modified more than max_age_days ago.

        Args:
            max_age_days: Age threshold
            keep: Session ids that must never be removed

        Returns:
            Number of directories removed
        """
        cutoff = time.time() - max_age_days * 86400
        removed = 0
        for entry in self.base_dir.iterdir():
            if not entry.is_dir() or entry == self.uploads_dir or entry.name in keep:
                continue
            if entry.stat().st_mtime < cutoff:
                shutil.rmtree(entry, ignore_errors=True)
                removed += 1
        if removed:
            logger.info(f"Removed {removed} session directories older than {max_age_days} days")
        return removed

    def prune_uploads(self, keep: frozenset = frozenset()) -> int:
        """Delete uploaded reference images that no live session references.

        Args:
            keep: Resolved upload paths still in use

        Returns:
            Number of files removed
        """
        if not self.uploads_dir.is_dir():
            return 0
        removed = 0
        for entry in self.uploads_dir.iterdir():
            if entry.is_file() and entry.resolve() not in keep:
                entry.unlink(missing_ok=True)
                removed += 1
        if removed:
            logger.info(f"Removed {removed} unreferenced uploads")
        return removed
