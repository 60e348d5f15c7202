"""Prompts stage: plan per-scene image and motion prompts.

Makes a single call to the prompt generator and validates the result
against the request. Validation failures are fatal and never retried.
"""

import logging
import time

from scenechain.orchestrator.errors import ErrorKind, PipelineError
from scenechain.pipeline.context import StageContext
from scenechain.schemas.generation import GeneratedPrompts

logger = logging.getLogger(__name__)


def validate_prompts(
    prompts: GeneratedPrompts,
    scene_count: int,
    want_voiceover: bool,
    want_music: bool,
) -> GeneratedPrompts:
    """Check the generated prompts and return them ordered by scene number.

    Raises:
        PipelineError: Validation, on a count mismatch, an empty prompt,
            numbering other than 1..N, or a missing requested script/prompt
    """
    scenes = prompts.scene_prompts
    if len(scenes) != scene_count:
        raise PipelineError(
            ErrorKind.VALIDATION,
            f"Expected {scene_count} scenes, got {len(scenes)}",
            context={"reason": "scene_count_mismatch", "expected": scene_count, "actual": len(scenes)},
        )

    for scene in scenes:
        if not scene.image_prompt.strip() or not scene.video_prompt.strip():
            raise PipelineError(
                ErrorKind.VALIDATION,
                f"Invalid scene prompt structure for scene {scene.scene_number}",
                context={"reason": "empty_prompt", "scene": scene.scene_number},
            )

    numbers = sorted(s.scene_number for s in scenes)
    if numbers != list(range(1, scene_count + 1)):
        raise PipelineError(
            ErrorKind.VALIDATION,
            f"Scenes must be numbered 1..{scene_count}, got {numbers}",
            context={"reason": "scene_numbering"},
        )

    if want_voiceover and not (prompts.voiceover_script or "").strip():
        raise PipelineError(
            ErrorKind.VALIDATION,
            "Voiceover requested but no voiceover script was generated",
            context={"reason": "missing_voiceover_script"},
        )
    if want_music and not (prompts.music_prompt or "").strip():
        raise PipelineError(
            ErrorKind.VALIDATION,
            "Music requested but no music prompt was generated",
            context={"reason": "missing_music_prompt"},
        )

    return prompts.model_copy(
        update={"scene_prompts": sorted(scenes, key=lambda s: s.scene_number)}
    )


async def generate_prompts(ctx: StageContext) -> GeneratedPrompts:
    """Run the prompts stage for ctx's session."""
    request = ctx.request
    want_voiceover = ctx.voiceover_enabled
    want_music = request.include_music
    start = time.monotonic()

    ctx.report("Generating scene prompts", 0.0)
    prompts = await ctx.call(
        "prompts",
        lambda: ctx.collaborators.prompts.generate(
            request.scene_count, request.description, want_voiceover, want_music
        ),
        stage="prompts",
    )
    prompts = validate_prompts(prompts, request.scene_count, want_voiceover, want_music)

    logger.info(
        f"Session {ctx.session_id}: {len(prompts.scene_prompts)} scene prompts "
        f"in {time.monotonic() - start:.2f}s"
    )
    return prompts
