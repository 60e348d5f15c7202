"""Audio stage: background music and (optionally) voiceover."""

import asyncio
import logging
import time

from scenechain.orchestrator.errors import CorruptSessionError
from scenechain.pipeline.context import StageContext
from scenechain.schemas.generation import AudioPaths, GeneratedPrompts, VoiceParams

logger = logging.getLogger(__name__)


def music_duration_ms(scene_count: int, scene_duration_seconds: float) -> int:
    return int(scene_count * scene_duration_seconds * 1000)


async def generate_audio(ctx: StageContext, prompts: GeneratedPrompts) -> AudioPaths:
    """Synthesize the requested audio tracks.

    Music is sized to scene_count x scene_duration. Voiceover runs only
    when enabled in the pipeline settings and requested.
    """
    context = {"session_id": ctx.session_id, "stage": "audio"}
    music_path = None
    voice_path = None
    start = time.monotonic()

    if ctx.request.include_music:
        if not prompts.music_prompt:
            raise CorruptSessionError("Music requested but no music prompt recorded", context=context)
        duration_ms = music_duration_ms(ctx.request.scene_count, ctx.pipeline.scene_duration_seconds)
        ctx.report("Composing background music", 0.0)
        data = await ctx.call(
            "music",
            lambda: ctx.collaborators.music.compose(prompts.music_prompt, duration_ms),
            stage="audio",
        )
        music_path = str(await asyncio.to_thread(ctx.files.save_audio, ctx.session_id, "music", data))

    ctx.token.raise_if_cancelled(context)

    if ctx.voiceover_enabled:
        if not prompts.voiceover_script:
            raise CorruptSessionError("Voiceover requested but no script recorded", context=context)
        ctx.report("Synthesizing voiceover", 50.0 if music_path else 0.0)
        data = await ctx.call(
            "speech",
            lambda: ctx.collaborators.speech.synthesize(prompts.voiceover_script, VoiceParams()),
            stage="audio",
        )
        voice_path = str(await asyncio.to_thread(ctx.files.save_audio, ctx.session_id, "voiceover", data))
    elif ctx.request.include_voiceover:
        logger.info(f"Session {ctx.session_id}: voiceover requested but disabled in pipeline settings")

    logger.info(
        f"Session {ctx.session_id}: audio stage in {time.monotonic() - start:.2f}s "
        f"(music={music_path is not None}, voiceover={voice_path is not None})"
    )
    return AudioPaths(voiceover_path=voice_path, music_path=music_path)
