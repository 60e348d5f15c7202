"""Shared fixtures and fake collaborators for the scenechain test suite."""

import asyncio
import shutil
import subprocess
from pathlib import Path
from typing import Optional

import numpy as np
import pytest

from scenechain.config import (
    PipelineConfig,
    RetryConfig,
    RetryPolicyConfig,
    Settings,
    StorageConfig,
)
from scenechain.db import build_engine, build_sessionmaker, init_database
from scenechain.orchestrator.limiter import RateLimiterRegistry
from scenechain.orchestrator.pipeline import PipelineOrchestrator
from scenechain.pipeline.assembler import MediaAssembler
from scenechain.schemas.generation import GeneratedPrompts, ScenePrompt, VoiceParams
from scenechain.services.checkpoint_service import CheckpointStore
from scenechain.services.file_manager import FileManager
from scenechain.services.generators import (
    Collaborators,
    ImageGenerator,
    MusicSynthesizer,
    PromptGenerator,
    SpeechSynthesizer,
    VideoGenerator,
)
from scenechain.services.media_engine import MediaEngine, MediaInfo

HAS_FFMPEG = shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None

requires_ffmpeg = pytest.mark.skipif(not HAS_FFMPEG, reason="ffmpeg/ffprobe not installed")


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------

class FakePromptGenerator(PromptGenerator):
    """Returns numbered prompts; scene_count_override simulates a bad planner."""

    def __init__(self, scene_count_override: Optional[int] = None, errors=None):
        self.scene_count_override = scene_count_override
        self.errors = list(errors or [])
        self.calls = []

    async def generate(self, scene_count, description, want_voiceover, want_music):
        self.calls.append((scene_count, description, want_voiceover, want_music))
        if self.errors:
            raise self.errors.pop(0)
        n = self.scene_count_override or scene_count
        return GeneratedPrompts(
            scene_prompts=[
                ScenePrompt(scene_number=k, image_prompt=f"image {k}", video_prompt=f"motion {k}")
                for k in range(1, n + 1)
            ],
            voiceover_script="A quiet morning unfolds." if want_voiceover else None,
            music_prompt="soft piano, slow tempo" if want_music else None,
        )


class FakeImageGenerator(ImageGenerator):
    """Records (prompt, reference_images); failures maps prompt -> errors to raise first."""

    def __init__(self, failures: Optional[dict] = None):
        self.calls = []
        self.failures = {k: list(v) for k, v in (failures or {}).items()}

    async def generate(self, prompt, reference_images):
        self.calls.append((prompt, list(reference_images)))
        queued = self.failures.get(prompt)
        if queued:
            raise queued.pop(0)
        return f"png:{prompt}".encode()

    def calls_for(self, prompt):
        return [c for c in self.calls if c[0] == prompt]


class FakeVideoGenerator(VideoGenerator):
    """Returns payload bytes; errors are raised by the first calls in order."""

    def __init__(self, payload: bytes = b"mp4", errors=None, delay: float = 0.0):
        self.payload = payload
        self.errors = list(errors or [])
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def generate(self, image, motion_prompt, duration_seconds):
        self.calls.append((Path(image), motion_prompt, duration_seconds))
        if self.errors:
            raise self.errors.pop(0)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        return self.payload


class GatedVideoGenerator(VideoGenerator):
    """Blocks every call until release is set."""

    def __init__(self, payload: bytes = b"mp4"):
        self.payload = payload
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def generate(self, image, motion_prompt, duration_seconds):
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return self.payload


class FakeSpeechSynthesizer(SpeechSynthesizer):
    def __init__(self):
        self.calls = []

    async def synthesize(self, text: str, voice: VoiceParams) -> bytes:
        self.calls.append((text, voice))
        return b"voice-mp3"


class FakeMusicSynthesizer(MusicSynthesizer):
    def __init__(self):
        self.calls = []

    async def compose(self, prompt: str, duration_ms: int) -> bytes:
        self.calls.append((prompt, duration_ms))
        return b"music-mp3"


class FakeMediaEngine(MediaEngine):
    """Records ffmpeg argument lists and writes a stub file to the output path."""

    def __init__(self, has_audio: bool = False, duration: float = 5.0):
        super().__init__()
        self.runs = []
        self.has_audio = has_audio
        self.duration = duration

    async def run(self, args):
        self.runs.append(list(args))
        Path(args[-1]).write_bytes(b"media")

    async def probe(self, path):
        return MediaInfo(has_audio=self.has_audio, duration_seconds=self.duration)

    def available(self) -> bool:
        return True


async def no_sleep(seconds: float) -> None:
    return None


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def fast_policy(max_attempts: int = 3) -> RetryPolicyConfig:
    return RetryPolicyConfig(max_attempts=max_attempts, base_delay=0.0, max_delay=0.0, jitter=0.0)


def make_settings(tmp_path: Path, **pipeline) -> Settings:
    pipeline.setdefault("max_concurrent_jobs", 4)
    return Settings(
        pipeline=PipelineConfig(**pipeline),
        retry=RetryConfig(
            default=fast_policy(),
            prompts=fast_policy(),
            images=fast_policy(),
            videos=fast_policy(),
            speech=fast_policy(),
            music=fast_policy(),
            merge=fast_policy(2),
        ),
        storage=StorageConfig(
            database_url=f"sqlite+aiosqlite:///{tmp_path / 'scenechain-test.db'}",
            data_dir=tmp_path / "data",
            uploads_dir=tmp_path / "data" / "uploads",
        ),
    )


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def reference_image(tmp_path) -> Path:
    path = tmp_path / "reference.png"
    path.write_bytes(b"\x89PNG\r\n\x1a\nreference")
    return path


@pytest.fixture
def files(settings) -> FileManager:
    return FileManager(settings.storage.data_dir, settings.storage.uploads_dir)


@pytest.fixture
def engine() -> FakeMediaEngine:
    return FakeMediaEngine()


@pytest.fixture
def prompt_generator():
    return FakePromptGenerator()


@pytest.fixture
def image_generator():
    return FakeImageGenerator()


@pytest.fixture
def video_generator():
    return FakeVideoGenerator()


@pytest.fixture
def speech():
    return FakeSpeechSynthesizer()


@pytest.fixture
def music():
    return FakeMusicSynthesizer()


@pytest.fixture
def collaborators(prompt_generator, image_generator, video_generator, speech, music) -> Collaborators:
    return Collaborators(
        prompts=prompt_generator,
        images={"nano-banana": image_generator},
        videos=video_generator,
        speech=speech,
        music=music,
    )


@pytest.fixture
async def checkpoints(tmp_path):
    db_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'checkpoints.db'}")
    await init_database(db_engine)
    yield CheckpointStore(build_sessionmaker(db_engine))
    await db_engine.dispose()


@pytest.fixture
def make_orchestrator(settings, collaborators, checkpoints, engine):
    """Factory for orchestrators wired to fakes; keyword arguments override."""

    def factory(settings_override: Optional[Settings] = None, collaborators_override=None, **kwargs):
        cfg = settings_override or settings
        kwargs.setdefault("files", FileManager(cfg.storage.data_dir, cfg.storage.uploads_dir))
        kwargs.setdefault("assembler", MediaAssembler.from_config(cfg.pipeline, engine))
        kwargs.setdefault("limiters", RateLimiterRegistry())
        kwargs.setdefault("sleep", no_sleep)
        return PipelineOrchestrator(cfg, collaborators_override or collaborators, checkpoints, **kwargs)

    return factory


# ---------------------------------------------------------------------------
# ffmpeg fixture helpers
# ---------------------------------------------------------------------------

def ffmpeg(*args: str) -> None:
    subprocess.run(["ffmpeg", "-y", "-hide_banner", "-loglevel", "error", *args], check=True)


def make_clip(path: Path, duration: float, with_audio: bool = False) -> Path:
    """Synthetic testsrc clip, optionally with a 440 Hz audio track."""
    args = ["-f", "lavfi", "-i", f"testsrc=size=320x240:rate=30:duration={duration}"]
    if with_audio:
        args += ["-f", "lavfi", "-i", f"sine=frequency=440:sample_rate=44100:duration={duration}"]
        args += ["-c:a", "aac", "-shortest"]
    args += ["-c:v", "libx264", "-pix_fmt", "yuv420p", str(path)]
    ffmpeg(*args)
    return path


def make_tone(path: Path, frequency: int, duration: float) -> Path:
    ffmpeg(
        "-f", "lavfi",
        "-i", f"sine=frequency={frequency}:sample_rate=44100:duration={duration}",
        "-c:a", "pcm_s16le",
        str(path),
    )
    return path


def decode_audio(path: Path) -> np.ndarray:
    """Decode the first audio stream to mono float samples at 44.1 kHz."""
    result = subprocess.run(
        [
            "ffmpeg", "-hide_banner", "-loglevel", "error",
            "-i", str(path),
            "-map", "0:a:0",
            "-f", "s16le", "-ac", "1", "-ar", "44100", "-",
        ],
        check=True,
        capture_output=True,
    )
    return np.frombuffer(result.stdout, dtype=np.int16).astype(np.float64) / 32768.0


def rms(samples: np.ndarray, trim: float = 0.2) -> float:
    """RMS of the middle of the signal, ignoring encoder edges."""
    cut = int(len(samples) * trim)
    middle = samples[cut:len(samples) - cut] if cut else samples
    return float(np.sqrt(np.mean(middle ** 2)))
