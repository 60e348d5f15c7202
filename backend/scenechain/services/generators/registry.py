"""Collaborator registry.

Builds the set of vendor clients the orchestrator talks to from Settings,
and routes image requests to a provider by name.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from scenechain.config import Settings
from scenechain.orchestrator.errors import ErrorKind, PipelineError
from scenechain.services.generators.base import (
    ImageGenerator,
    MusicSynthesizer,
    PromptGenerator,
    SpeechSynthesizer,
    VideoGenerator,
)

logger = logging.getLogger(__name__)


@dataclass
class Collaborators:
    """External generation services used by one orchestrator.

    Attributes:
        prompts: Scene prompt planner
        images: Image generators keyed by provider name
        videos: Primary image-to-video generator
        speech: Voiceover synthesizer
        music: Background music composer
        video_fallback: Alternate video generator used after recovery
    """

    prompts: PromptGenerator
    images: dict[str, ImageGenerator]
    videos: VideoGenerator
    speech: SpeechSynthesizer
    music: MusicSynthesizer
    video_fallback: Optional[VideoGenerator] = None

    def image_generator(self, provider: str) -> ImageGenerator:
        try:
            return self.images[provider]
        except KeyError:
            raise PipelineError(
                ErrorKind.VALIDATION,
                f"Unknown image provider '{provider}' (available: {sorted(self.images)})",
                context={"provider": provider},
            ) from None


def build_collaborators(settings: Settings) -> Collaborators:
    """Construct the shipped vendor clients from configuration."""
    from scenechain.services.generators.elevenlabs import ElevenLabsClient
    from scenechain.services.generators.gemini import GeminiImageGenerator, GeminiPromptGenerator
    from scenechain.services.generators.veo import VeoVideoGenerator

    cloud = settings.google_cloud
    pipeline = settings.pipeline

    def veo(model_id: str) -> VeoVideoGenerator:
        return VeoVideoGenerator(
            model_id,
            cloud,
            aspect_ratio=pipeline.aspect_ratio,
            poll_interval=pipeline.video_poll_interval,
            poll_max=pipeline.video_poll_max,
        )

    elevenlabs = ElevenLabsClient(settings.elevenlabs)
    fallback = settings.models.video_gen_fallback

    logger.debug(
        f"Collaborators: prompts={settings.models.prompt_llm} images={settings.models.image_gen} "
        f"videos={settings.models.video_gen} fallback={fallback}"
    )
    return Collaborators(
        prompts=GeminiPromptGenerator(
            settings.models.prompt_llm, cloud, scene_duration=pipeline.scene_duration_seconds
        ),
        images={
            "nano-banana": GeminiImageGenerator(
                settings.models.image_gen, cloud, aspect_ratio=pipeline.aspect_ratio
            ),
        },
        videos=veo(settings.models.video_gen),
        speech=elevenlabs,
        music=elevenlabs,
        video_fallback=veo(fallback) if fallback else None,
    )
