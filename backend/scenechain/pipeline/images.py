"""Images stage: rolling-reference scene image generation.

Scene 1 is conditioned on the uploaded image. Scene k>1 is conditioned on
scene k-1's output, optionally anchored to the upload as a second
reference. Scenes therefore run strictly in order, and a failure on any
scene aborts the stage.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Optional

from scenechain.pipeline.context import StageContext
from scenechain.schemas.generation import GeneratedPrompts

logger = logging.getLogger(__name__)


def reference_chain(original: Path, previous: Optional[Path], include_anchor: bool) -> list[Path]:
    """Reference images for the next scene.

    Examples:
        >>> reference_chain(Path("up.png"), None, True)
        [PosixPath('up.png')]
        >>> reference_chain(Path("up.png"), Path("scene-1.png"), True)
        [PosixPath('scene-1.png'), PosixPath('up.png')]
    """
    if previous is None:
        return [original]
    if include_anchor:
        return [previous, original]
    return [previous]


async def generate_images(ctx: StageContext, prompts: GeneratedPrompts) -> list[Path]:
    """Generate one image per scene, in scene order.

    Returns:
        Image paths ordered by scene number
    """
    options = ctx.request.image_options
    generator = ctx.collaborators.image_generator(options.provider)
    include_anchor = options.include_original_anchor and ctx.pipeline.include_original_anchor
    total = len(prompts.scene_prompts)

    paths: list[Path] = []
    previous: Optional[Path] = None
    for scene in prompts.scene_prompts:
        ctx.token.raise_if_cancelled({"session_id": ctx.session_id, "stage": "images"})
        k = scene.scene_number
        refs = reference_chain(ctx.reference_image, previous, include_anchor)
        step_start = time.monotonic()

        data = await ctx.call(
            "images",
            lambda: generator.generate(scene.image_prompt, refs),
            stage="images",
            scene=k,
        )
        path = await asyncio.to_thread(
            ctx.files.save_image, ctx.session_id, k, data, options.output_format
        )

        logger.info(
            f"Session {ctx.session_id}: scene {k}/{total} image in "
            f"{time.monotonic() - step_start:.2f}s (refs={[p.name for p in refs]})"
        )
        ctx.report(f"Generated image {k}/{total}", round(k / total * 100, 1))
        paths.append(path)
        previous = path

    return paths
