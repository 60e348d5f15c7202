"""Thin async wrapper around the ffmpeg and ffprobe binaries.

Commands run in a worker thread via asyncio.to_thread so a long encode
never blocks the event loop. Failures surface as
subprocess.CalledProcessError and are classified by the caller.
"""

import asyncio
import json
import logging
import re
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MediaInfo:
    """Subset of ffprobe output the assembler relies on."""

    has_audio: bool
    duration_seconds: Optional[float]
    streams: list = field(default_factory=list)

    @property
    def has_video(self) -> bool:
        return any(s.get("codec_type") == "video" for s in self.streams)


class MediaEngine:
    """Execute ffmpeg/ffprobe commands.

    Args:
        ffmpeg_bin: ffmpeg executable name or path
        ffprobe_bin: ffprobe executable name or path
    """

    def __init__(self, ffmpeg_bin: str = "ffmpeg", ffprobe_bin: str = "ffprobe") -> None:
        self.ffmpeg_bin = ffmpeg_bin
        self.ffprobe_bin = ffprobe_bin

    def _run_sync(self, args: list[str]) -> None:
        cmd = [self.ffmpeg_bin, "-y", "-hide_banner", "-loglevel", "error", *args]
        logger.debug(f"ffmpeg: {' '.join(cmd)}")
        start = time.monotonic()
        subprocess.run(cmd, check=True, capture_output=True)
        logger.debug(f"ffmpeg finished in {time.monotonic() - start:.1f}s")

    async def run(self, args: list[str]) -> None:
        """Run ffmpeg with the given arguments (input/output flags only)."""
        await asyncio.to_thread(self._run_sync, args)

    def _probe_sync(self, path: Path) -> MediaInfo:
        result = subprocess.run(
            [
                self.ffprobe_bin,
                "-v", "error",
                "-print_format", "json",
                "-show_format",
                "-show_streams",
                str(path),
            ],
            check=True,
            capture_output=True,
            text=True,
        )
        data = json.loads(result.stdout or "{}")
        streams = data.get("streams", [])
        duration = data.get("format", {}).get("duration")
        return MediaInfo(
            has_audio=any(s.get("codec_type") == "audio" for s in streams),
            duration_seconds=float(duration) if duration is not None else None,
            streams=streams,
        )

    async def probe(self, path: Path) -> MediaInfo:
        """Inspect a media file's streams and duration."""
        return await asyncio.to_thread(self._probe_sync, Path(path))

    async def copy(self, source: Path, destination: Path) -> None:
        await asyncio.to_thread(shutil.copyfile, source, destination)

    def check_ffmpeg(self) -> str:
        """Return the installed ffmpeg version string.

        Raises:
            RuntimeError: If ffmpeg or ffprobe is missing or broken
        """
        for binary in (self.ffmpeg_bin, self.ffprobe_bin):
            if shutil.which(binary) is None:
                raise RuntimeError(f"{binary} not found on PATH")
        try:
            result = subprocess.run(
                [self.ffmpeg_bin, "-version"],
                check=True,
                capture_output=True,
                text=True,
            )
        except subprocess.CalledProcessError as e:
            raise RuntimeError(f"{self.ffmpeg_bin} -version failed: {e.stderr}") from e

        match = re.search(r"ffmpeg version (\S+)", result.stdout)
        return match.group(1) if match else "unknown"

    def available(self) -> bool:
        try:
            self.check_ffmpeg()
        except RuntimeError:
            return False
        return True
