"""Gemini collaborators: scene prompt planning and reference-conditioned images.

Both use the google-genai SDK in Vertex AI mode through the cached
location-aware client from vertex_client.py. Retries are not handled
here; SDK errors propagate to the orchestrator's RetryExecutor.
"""

import logging
import mimetypes
from pathlib import Path

from google.genai import types

from scenechain.config import GoogleCloudConfig
from scenechain.schemas.generation import GeneratedPrompts
from scenechain.services.generators.base import ImageGenerator, PromptGenerator
from scenechain.services.vertex_client import get_vertex_client, location_for_model

logger = logging.getLogger(__name__)

PROMPT_SYSTEM_INSTRUCTION = """You are an expert at creating visual and cinematic prompts for AI video generation.
You help create character-consistent multi-scene videos from a user's description.

Rules:
1. Create exactly the requested number of scenes that flow together narratively
2. Every scene keeps the same character appearance (face, hair, clothing, colors)
3. Image prompts describe a detailed still frame: subject, setting, lighting, camera framing
4. Video prompts describe the motion within that frame: action, camera movement, pacing
5. Scenes connect logically and tell a cohesive story
6. Each scene is {scene_duration} seconds of action

Number scenes from 1. Always respond with valid JSON only."""


class GeminiPromptGenerator(PromptGenerator):
    """Plan scene prompts with a Gemini text model using structured JSON output."""

    def __init__(
        self,
        model_id: str,
        cloud: GoogleCloudConfig,
        scene_duration: int = 5,
        temperature: float = 0.7,
    ) -> None:
        self._model_id = model_id
        self._cloud = cloud
        self._scene_duration = scene_duration
        self._temperature = temperature

    def _user_prompt(
        self, scene_count: int, description: str, want_voiceover: bool, want_music: bool
    ) -> str:
        lines = [f'Create a {scene_count}-scene video based on this description: "{description}"']
        if want_voiceover:
            lines.append("Also write a voiceover_script that narrates all scenes in order.")
        if want_music:
            lines.append("Also write a music_prompt describing background music that fits the mood and tone.")
        return "\n".join(lines)

    async def generate(
        self,
        scene_count: int,
        description: str,
        want_voiceover: bool,
        want_music: bool,
    ) -> GeneratedPrompts:
        client = get_vertex_client(self._cloud, location=location_for_model(self._model_id, self._cloud))
        config = types.GenerateContentConfig(
            temperature=self._temperature,
            response_mime_type="application/json",
            response_schema=GeneratedPrompts,
            system_instruction=PROMPT_SYSTEM_INSTRUCTION.format(scene_duration=self._scene_duration),
        )
        response = await client.aio.models.generate_content(
            model=self._model_id,
            contents=self._user_prompt(scene_count, description, want_voiceover, want_music),
            config=config,
        )
        prompts = GeneratedPrompts.model_validate_json(response.text)
        logger.info(
            f"Generated {len(prompts.scene_prompts)} scene prompts with {self._model_id} "
            f"(voiceover={prompts.voiceover_script is not None}, music={prompts.music_prompt is not None})"
        )
        return prompts


def _mime_type(path: Path) -> str:
    guessed, _ = mimetypes.guess_type(str(path))
    return guessed or "image/png"


class GeminiImageGenerator(ImageGenerator):
    """Gemini image model ("nano-banana") conditioned on reference images.

    Contents order: [primary_reference, anchors..., text_prompt]. The
    primary reference comes first (strongest weight for visual continuity).
    """

    def __init__(self, model_id: str, cloud: GoogleCloudConfig, aspect_ratio: str = "16:9") -> None:
        self._model_id = model_id
        self._cloud = cloud
        self._aspect_ratio = aspect_ratio

    async def generate(self, prompt: str, reference_images: list[Path]) -> bytes:
        contents: list = []
        for i, ref in enumerate(reference_images):
            if i == 1:
                contents.append(types.Part.from_text(text=(
                    "The following reference photo shows the original character. "
                    "Match their face, hair, and clothing exactly."
                )))
            contents.append(
                types.Part.from_bytes(data=Path(ref).read_bytes(), mime_type=_mime_type(Path(ref)))
            )
        contents.append(types.Part.from_text(text=(
            f"{prompt}\n\nKeep the character identical to the first reference image. "
            f"Aspect ratio {self._aspect_ratio}."
        )))

        client = get_vertex_client(self._cloud, location=location_for_model(self._model_id, self._cloud))
        response = await client.aio.models.generate_content(
            model=self._model_id,
            contents=contents,
            config=types.GenerateContentConfig(
                response_modalities=["IMAGE"],
            ),
        )

        for part in response.candidates[0].content.parts:
            if part.inline_data:
                return part.inline_data.data

        raise ValueError("No image generated in response")
