"""Abstract collaborator contracts for the generation pipeline.

The orchestrator depends only on these interfaces. Vendor clients
(Gemini, Veo, ElevenLabs) implement them and raise their native errors;
classification and retries happen in the orchestrator.
"""

from abc import ABC, abstractmethod
from pathlib import Path

from scenechain.schemas.generation import GeneratedPrompts, VoiceParams


class PromptGenerator(ABC):
    """Text model that turns a description into per-scene prompts."""

    @abstractmethod
    async def generate(
        self,
        scene_count: int,
        description: str,
        want_voiceover: bool,
        want_music: bool,
    ) -> GeneratedPrompts:
        """Return scene_count image/video prompt pairs.

        Args:
            scene_count: Number of scenes to plan
            description: User's description of the video
            want_voiceover: Also write a narration script
            want_music: Also write a background-music prompt
        """
        ...


class ImageGenerator(ABC):
    """Image model conditioned on one or more reference images."""

    @abstractmethod
    async def generate(self, prompt: str, reference_images: list[Path]) -> bytes:
        """Return encoded image bytes for prompt.

        reference_images[0] is the primary reference (the previous scene,
        or the upload for scene 1); any further entries are anchors.
        """
        ...


class VideoGenerator(ABC):
    """Image-to-video model."""

    @abstractmethod
    async def generate(self, image: Path, motion_prompt: str, duration_seconds: int) -> bytes:
        """Return MP4 bytes animating image according to motion_prompt."""
        ...


class SpeechSynthesizer(ABC):
    @abstractmethod
    async def synthesize(self, text: str, voice: VoiceParams) -> bytes:
        """Return MP3 bytes of text spoken with the given voice."""
        ...


class MusicSynthesizer(ABC):
    @abstractmethod
    async def compose(self, prompt: str, duration_ms: int) -> bytes:
        """Return MP3 bytes of a background track of roughly duration_ms."""
        ...
