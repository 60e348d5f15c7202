"""Scene clip concatenation and audio mixing.

Concatenates completed scene clips into one video-only stream using either:
- concat filter for hard cuts (crossfade_seconds=0.0)
- chained xfade filter for crossfade transitions (crossfade_seconds>0.0)

then mixes up to three audio sources (original clip audio, voiceover,
music) into the concatenated video in a second pass. Every ffmpeg graph is
built with the typed FilterGraph builder and validated before execution.
"""

import logging
import time
from pathlib import Path
from typing import Optional, Sequence

from scenechain.config import PipelineConfig
from scenechain.orchestrator.errors import ErrorKind, PipelineError
from scenechain.pipeline.context import StageContext
from scenechain.pipeline.filtergraph import Filter, FilterGraph
from scenechain.schemas.generation import AudioPaths, MergeResult
from scenechain.services.media_engine import MediaEngine

logger = logging.getLogger(__name__)

_ENCODE_ARGS = ["-c:v", "libx264", "-pix_fmt", "yuv420p", "-preset", "fast", "-crf", "23"]


def _require_files(paths: Sequence[Path]) -> None:
    missing = [str(p) for p in paths if not Path(p).exists()]
    if missing:
        raise PipelineError(
            ErrorKind.RESOURCE_NOT_FOUND,
            f"Media file not found: {missing[0]}",
            retryable=False,
            context={"missing": missing},
        )


def crossfade_offsets(clip_count: int, scene_duration: float, crossfade: float) -> list[float]:
    """xfade offsets for transitions 1..clip_count-1.

    Each transition starts where the overlapped timeline reaches the end
    of the previous clip minus the fade: o_i = i * (scene_duration - crossfade).
    Assumes every clip has the same duration.
    """
    return [i * (scene_duration - crossfade) for i in range(1, clip_count)]


class MediaAssembler:
    """Build and run the concatenation and audio-mix graphs.

    Args:
        engine: ffmpeg executor
        frame_rate: Common frame rate every clip is normalized to
        sample_rate: Common audio sample rate for the mix
        output_height: Output height in pixels (width keeps aspect ratio)
        original_volume: Gain applied to the clips' own audio
        voice_volume: Gain applied to the voiceover track
        music_volume: Gain applied to the music track
    """

    def __init__(
        self,
        engine: MediaEngine,
        frame_rate: int = 30,
        sample_rate: int = 44100,
        output_height: int = 720,
        original_volume: float = 0.5,
        voice_volume: float = 1.0,
        music_volume: float = 0.5,
    ) -> None:
        self.engine = engine
        self.frame_rate = frame_rate
        self.sample_rate = sample_rate
        self.output_height = output_height
        self.gains = {
            "original": original_volume,
            "voice": voice_volume,
            "music": music_volume,
        }

    @classmethod
    def from_config(cls, cfg: PipelineConfig, engine: MediaEngine) -> "MediaAssembler":
        return cls(
            engine,
            frame_rate=cfg.frame_rate,
            sample_rate=cfg.audio_sample_rate,
            output_height=cfg.output_height,
            original_volume=cfg.original_volume,
            voice_volume=cfg.voice_volume,
            music_volume=cfg.music_volume,
        )

    # ------------------------------------------------------------------
    # Graph construction (pure)
    # ------------------------------------------------------------------

    def _normalize_filters(self, output_height: int) -> list[Filter]:
        return [
            Filter.of("fps", self.frame_rate),
            Filter.of("scale", -2, output_height),
            Filter.of("setsar", 1),
            Filter.of("setpts", "PTS-STARTPTS"),
        ]

    def build_concat_graph(
        self,
        clip_count: int,
        crossfade_seconds: float = 0.0,
        scene_duration: float = 5.0,
        output_height: Optional[int] = None,
    ) -> FilterGraph:
        """Graph that joins clip_count video inputs into [outv].

        Raises:
            PipelineError: Validation, when there are no clips or the
                crossfade is not shorter than a scene
        """
        if clip_count < 1:
            raise PipelineError(ErrorKind.VALIDATION, "At least one video clip is required")
        height = output_height or self.output_height
        graph = FilterGraph()

        if crossfade_seconds <= 0:
            # Hard cut: normalize each clip, then concat in scene order
            labels = []
            for i in range(clip_count):
                graph.add([f"{i}:v"], self._normalize_filters(height), [f"s{i}"])
                labels.append(f"s{i}")
            graph.add(labels, [Filter.of("concat", n=clip_count, v=1, a=0)], ["outv"])
            return graph.mark_output("outv")

        if crossfade_seconds >= scene_duration:
            raise PipelineError(
                ErrorKind.VALIDATION,
                f"Crossfade ({crossfade_seconds}s) must be shorter than a scene ({scene_duration}s)",
            )

        for i in range(clip_count):
            graph.add([f"{i}:v"], self._normalize_filters(height), [f"s{i}"])

        if clip_count == 1:
            graph.add(["s0"], [Filter.of("null")], ["outv"])
            return graph.mark_output("outv")

        prev = "s0"
        offsets = crossfade_offsets(clip_count, scene_duration, crossfade_seconds)
        for i, offset in enumerate(offsets, start=1):
            out = "outv" if i == clip_count - 1 else f"x{i}"
            graph.add(
                [prev, f"s{i}"],
                [Filter.of("xfade", transition="fade", duration=float(crossfade_seconds), offset=float(offset))],
                [out],
            )
            prev = out
        return graph.mark_output("outv")

    def build_mix_graph(
        self,
        has_original: bool,
        has_voice: bool,
        has_music: bool,
    ) -> tuple[Optional[FilterGraph], list[str], dict[str, float]]:
        """Graph that mixes available audio sources into [outa].

        Input 0 is the video; voice and music follow in that order when present.

        Returns:
            (graph or None when there is nothing to mix, source names, gains used)
        """
        sources: list[tuple[str, str]] = []
        next_input = 1
        if has_original:
            sources.append(("original", "0:a"))
        if has_voice:
            sources.append(("voice", f"{next_input}:a"))
            next_input += 1
        if has_music:
            sources.append(("music", f"{next_input}:a"))
            next_input += 1

        if not sources:
            return None, [], {}

        graph = FilterGraph()
        gains = {}
        for name, pad in sources:
            gain = self.gains[name]
            gains[name] = gain
            graph.add(
                [pad],
                [Filter.of("aresample", self.sample_rate), Filter.of("volume", float(gain))],
                [name],
            )

        names = [name for name, _ in sources]
        if len(names) == 1:
            # A lone source bypasses amix
            graph.add(names, [Filter.of("anull")], ["outa"])
        else:
            graph.add(
                names,
                [Filter.of("amix", inputs=len(names), normalize=0, duration="longest")],
                ["outa"],
            )
        return graph.mark_output("outa"), names, gains

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def concatenate(
        self,
        video_paths: Sequence[Path],
        output_path: Path,
        crossfade_seconds: float = 0.0,
        scene_duration: float = 5.0,
        output_height: Optional[int] = None,
    ) -> Path:
        """Join scene clips in order into a video-only file."""
        paths = [Path(p) for p in video_paths]
        _require_files(paths)
        graph = self.build_concat_graph(len(paths), crossfade_seconds, scene_duration, output_height)

        mode = "crossfade" if crossfade_seconds > 0 else "hard cut"
        logger.info(f"Concatenating {len(paths)} clips ({mode}) -> {output_path}")

        args: list[str] = []
        for p in paths:
            args.extend(["-i", str(p)])
        args.extend(["-filter_complex", graph.render(), *graph.map_args()])
        args.extend([*_ENCODE_ARGS, "-r", str(self.frame_rate), "-an", "-movflags", "+faststart"])
        args.append(str(output_path))
        await self.engine.run(args)
        return Path(output_path)

    async def mix_audio(
        self,
        video_path: Path,
        output_path: Path,
        voice_path: Optional[Path] = None,
        music_path: Optional[Path] = None,
    ) -> tuple[list[str], dict[str, float]]:
        """Mix available audio into video_path, writing output_path.

        Output duration is the shortest of the streams: a short audio track
        truncates, it never pads the video with silence.

        Returns:
            (mixed source names, gains used)
        """
        inputs = [Path(video_path)]
        if voice_path is not None:
            inputs.append(Path(voice_path))
        if music_path is not None:
            inputs.append(Path(music_path))
        _require_files(inputs)

        info = await self.engine.probe(Path(video_path))
        graph, sources, gains = self.build_mix_graph(
            has_original=info.has_audio,
            has_voice=voice_path is not None,
            has_music=music_path is not None,
        )

        if graph is None:
            logger.info(f"No audio sources, copying {video_path} -> {output_path}")
            await self.engine.copy(Path(video_path), Path(output_path))
            return [], {}

        logger.info(f"Mixing audio sources {sources} into {output_path}")
        args: list[str] = []
        for p in inputs:
            args.extend(["-i", str(p)])
        args.extend([
            "-filter_complex", graph.render(),
            "-map", "0:v",
            *graph.map_args(),
            "-c:v", "copy",
            "-c:a", "aac",
            "-shortest",
            "-movflags", "+faststart",
            str(output_path),
        ])
        await self.engine.run(args)
        return sources, gains

    async def merge(
        self,
        video_paths: Sequence[Path],
        output_dir: Path,
        voice_path: Optional[Path] = None,
        music_path: Optional[Path] = None,
        crossfade_seconds: float = 0.0,
        scene_duration: float = 5.0,
        output_height: Optional[int] = None,
    ) -> MergeResult:
        """Concatenate clips then mix audio into output_dir/final.mp4."""
        start = time.monotonic()
        output_dir = Path(output_dir)
        concatenated = output_dir / "concatenated.mp4"
        final = output_dir / "final.mp4"

        await self.concatenate(
            video_paths, concatenated, crossfade_seconds, scene_duration, output_height
        )
        sources, gains = await self.mix_audio(concatenated, final, voice_path, music_path)
        info = await self.engine.probe(final)

        logger.info(
            f"Merge complete in {time.monotonic() - start:.1f}s: {final} "
            f"(duration={info.duration_seconds}, audio={sources or 'none'})"
        )
        return MergeResult(
            output_path=str(final),
            concatenated_path=str(concatenated),
            mode="crossfade" if crossfade_seconds > 0 else "hard_cut",
            audio_sources=sources,
            gains=gains,
            duration_seconds=info.duration_seconds,
        )


async def merge_scenes(
    ctx: StageContext,
    assembler: MediaAssembler,
    video_paths: Sequence[str],
    audio_paths: Optional[AudioPaths] = None,
) -> MergeResult:
    """Merge stage: assemble the final video under the merge retry policy.

    Raises:
        PipelineError: Validation when there are no clips to merge
    """
    if not video_paths:
        raise PipelineError(
            ErrorKind.VALIDATION,
            "No video clips available for merging",
            context={"session_id": ctx.session_id, "stage": "merge"},
        )
    audio_paths = audio_paths or AudioPaths()
    voice = Path(audio_paths.voiceover_path) if audio_paths.voiceover_path else None
    music = Path(audio_paths.music_path) if audio_paths.music_path else None
    output_dir = ctx.files.output_dir(ctx.session_id)

    ctx.report(f"Merging {len(video_paths)} scene clips", 0.0)
    return await ctx.call(
        "merge",
        lambda: assembler.merge(
            [Path(p) for p in video_paths],
            output_dir,
            voice_path=voice,
            music_path=music,
            crossfade_seconds=ctx.pipeline.crossfade_seconds,
            scene_duration=ctx.pipeline.scene_duration_seconds,
            output_height=ctx.output_height,
        ),
        stage="merge",
    )
