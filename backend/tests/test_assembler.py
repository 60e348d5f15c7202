"""MediaAssembler: concat/crossfade graphs, audio mixing, and real ffmpeg output."""

from pathlib import Path

import pytest

from conftest import FakeMediaEngine, decode_audio, make_clip, make_tone, requires_ffmpeg, rms
from scenechain.orchestrator.errors import ErrorKind, PipelineError
from scenechain.pipeline.assembler import MediaAssembler, crossfade_offsets
from scenechain.services.media_engine import MediaEngine

NORMALIZE = "fps=30,scale=-2:720,setsar=1,setpts=PTS-STARTPTS"


@pytest.fixture
def assembler():
    return MediaAssembler(FakeMediaEngine())


def _clips(tmp_path: Path, count: int) -> list[Path]:
    paths = []
    for k in range(1, count + 1):
        path = tmp_path / f"scene-{k}.mp4"
        path.write_bytes(b"clip")
        paths.append(path)
    return paths


# ---------------------------------------------------------------------------
# Graph construction
# ---------------------------------------------------------------------------

def test_hard_cut_graph(assembler):
    graph = assembler.build_concat_graph(3)
    assert graph.render() == (
        f"[0:v]{NORMALIZE}[s0];[1:v]{NORMALIZE}[s1];[2:v]{NORMALIZE}[s2];"
        "[s0][s1][s2]concat=n=3:v=1:a=0[outv]"
    )
    assert graph.map_args() == ["-map", "[outv]"]


def test_crossfade_graph_chains_transitions(assembler):
    graph = assembler.build_concat_graph(3, crossfade_seconds=1.0, scene_duration=5.0)
    chains = graph.render().split(";")
    assert chains[3] == "[s0][s1]xfade=transition=fade:duration=1:offset=4[x1]"
    assert chains[4] == "[x1][s2]xfade=transition=fade:duration=1:offset=8[outv]"


def test_crossfade_offsets_assume_uniform_scenes():
    assert crossfade_offsets(4, 5.0, 0.5) == [4.5, 9.0, 13.5]
    assert crossfade_offsets(1, 5.0, 0.5) == []


def test_single_clip_crossfade_passes_through(assembler):
    graph = assembler.build_concat_graph(1, crossfade_seconds=0.5, scene_duration=5.0)
    assert graph.render().endswith("[s0]null[outv]")


def test_degraded_height_is_applied(assembler):
    assert "scale=-2:480" in assembler.build_concat_graph(2, output_height=480).render()


def test_invalid_concat_requests(assembler):
    with pytest.raises(PipelineError) as exc_info:
        assembler.build_concat_graph(0)
    assert exc_info.value.kind is ErrorKind.VALIDATION

    with pytest.raises(PipelineError):
        assembler.build_concat_graph(2, crossfade_seconds=5.0, scene_duration=5.0)


def test_mix_graph_without_sources(assembler):
    assert assembler.build_mix_graph(False, False, False) == (None, [], {})


def test_single_source_bypasses_amix(assembler):
    graph, names, gains = assembler.build_mix_graph(False, False, True)
    assert graph.render() == "[1:a]aresample=44100,volume=0.5[music];[music]anull[outa]"
    assert names == ["music"]
    assert gains == {"music": 0.5}


def test_voice_and_music_mix(assembler):
    graph, names, gains = assembler.build_mix_graph(False, True, True)
    assert graph.render() == (
        "[1:a]aresample=44100,volume=1[voice];"
        "[2:a]aresample=44100,volume=0.5[music];"
        "[voice][music]amix=inputs=2:normalize=0:duration=longest[outa]"
    )
    assert names == ["voice", "music"]
    assert gains == {"voice": 1.0, "music": 0.5}


def test_three_source_mix_uses_original_audio(assembler):
    graph, names, gains = assembler.build_mix_graph(True, True, True)
    rendered = graph.render()
    assert rendered.startswith("[0:a]aresample=44100,volume=0.5[original];")
    assert "amix=inputs=3" in rendered
    assert names == ["original", "voice", "music"]
    assert gains == {"original": 0.5, "voice": 1.0, "music": 0.5}


# ---------------------------------------------------------------------------
# Execution against a recording engine
# ---------------------------------------------------------------------------

async def test_concatenate_command(tmp_path, assembler):
    clips = _clips(tmp_path, 2)
    out = tmp_path / "concatenated.mp4"

    await assembler.concatenate(clips, out)

    args = assembler.engine.runs[0]
    assert args[:4] == ["-i", str(clips[0]), "-i", str(clips[1])]
    assert "-an" in args and "+faststart" in args
    assert args[args.index("-map") + 1] == "[outv]"
    assert args[args.index("-r") + 1] == "30"
    assert args[-1] == str(out)


async def test_missing_clip_is_fatal(tmp_path, assembler):
    with pytest.raises(PipelineError) as exc_info:
        await assembler.concatenate([tmp_path / "nope.mp4"], tmp_path / "out.mp4")
    assert exc_info.value.kind is ErrorKind.RESOURCE_NOT_FOUND
    assert not exc_info.value.retryable
    assert assembler.engine.runs == []


async def test_mix_without_audio_copies_video(tmp_path, assembler):
    video = tmp_path / "concatenated.mp4"
    video.write_bytes(b"video-only")
    out = tmp_path / "final.mp4"

    sources, gains = await assembler.mix_audio(video, out)

    assert (sources, gains) == ([], {})
    assert out.read_bytes() == b"video-only"
    assert assembler.engine.runs == []


async def test_mix_with_music_truncates_to_shortest(tmp_path, assembler):
    video = tmp_path / "concatenated.mp4"
    video.write_bytes(b"video-only")
    music = tmp_path / "music.mp3"
    music.write_bytes(b"music")

    sources, _ = await assembler.mix_audio(video, tmp_path / "final.mp4", music_path=music)

    args = assembler.engine.runs[0]
    assert sources == ["music"]
    assert "-shortest" in args
    assert args[args.index("-c:v") + 1] == "copy"
    assert ["-map", "0:v", "-map", "[outa]"] == args[args.index("-map"):args.index("-map") + 4]


async def test_merge_result(tmp_path, assembler):
    clips = _clips(tmp_path, 2)
    music = tmp_path / "music.mp3"
    music.write_bytes(b"music")
    output_dir = tmp_path / "output"
    output_dir.mkdir()

    result = await assembler.merge(clips, output_dir, music_path=music, crossfade_seconds=0.5)

    assert result.mode == "crossfade"
    assert result.output_path == str(output_dir / "final.mp4")
    assert result.concatenated_path == str(output_dir / "concatenated.mp4")
    assert result.audio_sources == ["music"]
    assert result.duration_seconds == 5.0


# ---------------------------------------------------------------------------
# Real ffmpeg
# ---------------------------------------------------------------------------

@pytest.fixture
def real_assembler():
    return MediaAssembler(MediaEngine(), output_height=240)


@requires_ffmpeg
async def test_hard_cut_duration_and_no_audio(tmp_path, real_assembler):
    clips = [make_clip(tmp_path / f"c{i}.mp4", 2, with_audio=True) for i in range(2)]
    out = await real_assembler.concatenate(clips, tmp_path / "joined.mp4", scene_duration=2.0)

    info = await real_assembler.engine.probe(out)
    assert info.has_video
    assert not info.has_audio
    assert info.duration_seconds == pytest.approx(4.0, abs=0.3)


@requires_ffmpeg
async def test_crossfade_shortens_by_overlap(tmp_path, real_assembler):
    clips = [make_clip(tmp_path / f"c{i}.mp4", 2) for i in range(3)]
    out = await real_assembler.concatenate(
        clips, tmp_path / "joined.mp4", crossfade_seconds=0.5, scene_duration=2.0
    )
    info = await real_assembler.engine.probe(out)
    assert info.duration_seconds == pytest.approx(5.0, abs=0.3)


@requires_ffmpeg
async def test_zero_sources_has_no_audio_track(tmp_path, real_assembler):
    video = make_clip(tmp_path / "video.mp4", 2)
    out = tmp_path / "final.mp4"
    await real_assembler.mix_audio(video, out)
    assert not (await real_assembler.engine.probe(out)).has_audio


@requires_ffmpeg
async def test_single_source_is_scaled_by_its_gain(tmp_path, real_assembler):
    video = make_clip(tmp_path / "video.mp4", 3)
    music = make_tone(tmp_path / "music.wav", 440, 3)
    out = tmp_path / "final.mp4"

    await real_assembler.mix_audio(video, out, music_path=music)

    ratio = rms(decode_audio(out)) / rms(decode_audio(music))
    assert ratio == pytest.approx(0.5, rel=0.1)


@requires_ffmpeg
async def test_two_sources_reflect_both_gains(tmp_path, real_assembler):
    video = make_clip(tmp_path / "video.mp4", 3)
    voice = make_tone(tmp_path / "voice.wav", 440, 3)
    music = make_tone(tmp_path / "music.wav", 1000, 3)
    out = tmp_path / "final.mp4"

    await real_assembler.mix_audio(video, out, voice_path=voice, music_path=music)

    voice_rms = rms(decode_audio(voice))
    music_rms = rms(decode_audio(music))
    # Uncorrelated tones add in power
    expected = ((1.0 * voice_rms) ** 2 + (0.5 * music_rms) ** 2) ** 0.5
    assert rms(decode_audio(out)) == pytest.approx(expected, rel=0.15)


@requires_ffmpeg
async def test_short_track_truncates_output(tmp_path, real_assembler):
    video = make_clip(tmp_path / "video.mp4", 4)
    music = make_tone(tmp_path / "music.wav", 440, 2)
    out = tmp_path / "final.mp4"

    await real_assembler.mix_audio(video, out, music_path=music)

    info = await real_assembler.engine.probe(out)
    assert info.duration_seconds < 3.0
