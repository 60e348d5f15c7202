"""Videos stage: animate each scene image into a fixed-duration clip.

Scenes have no data dependency on each other here, so up to
video_concurrency clips are generated at once (default 1, sequential),
always behind the videos rate limiter. Output keeps scene order.
"""

import asyncio
import logging
import time
from pathlib import Path

from scenechain.orchestrator.errors import CorruptSessionError
from scenechain.pipeline.context import StageContext
from scenechain.schemas.generation import GeneratedPrompts, ScenePrompt

logger = logging.getLogger(__name__)


async def generate_videos(
    ctx: StageContext,
    prompts: GeneratedPrompts,
    image_paths: list[Path],
) -> list[Path]:
    """Generate one clip per scene image.

    Returns:
        Clip paths ordered by scene number

    Raises:
        CorruptSessionError: If images and prompts disagree on scene count
    """
    scenes = prompts.scene_prompts
    if len(image_paths) != len(scenes):
        raise CorruptSessionError(
            f"Session {ctx.session_id}: {len(image_paths)} images for {len(scenes)} scenes",
            context={"session_id": ctx.session_id, "stage": "videos"},
        )

    total = len(scenes)
    duration = ctx.pipeline.scene_duration_seconds
    semaphore = asyncio.Semaphore(max(1, ctx.video_concurrency))
    completed = 0

    async def one(scene: ScenePrompt, image: Path) -> Path:
        nonlocal completed
        async with semaphore:
            ctx.token.raise_if_cancelled({"session_id": ctx.session_id, "stage": "videos"})
            k = scene.scene_number
            step_start = time.monotonic()
            data = await ctx.call(
                "videos",
                lambda: ctx.video_generator.generate(Path(image), scene.video_prompt, duration),
                stage="videos",
                scene=k,
            )
            path = await asyncio.to_thread(ctx.files.save_video, ctx.session_id, k, data)
            completed += 1
            logger.info(
                f"Session {ctx.session_id}: scene {k}/{total} clip in "
                f"{time.monotonic() - step_start:.2f}s"
            )
            ctx.report(f"Generated video {completed}/{total}", round(completed / total * 100, 1))
            return path

    tasks = [
        asyncio.create_task(one(scene, Path(image)))
        for scene, image in zip(scenes, image_paths)
    ]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        # One scene failed: stop the rest before surfacing the error
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
