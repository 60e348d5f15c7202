"""Typer commands that do not need vendor credentials."""

from pathlib import Path

from typer.testing import CliRunner

from scenechain.cli import commands
from scenechain.pipeline.assembler import MediaAssembler
from scenechain.schemas.generation import Artifacts

runner = CliRunner()


def test_check_reports_configuration(monkeypatch):
    monkeypatch.setattr(commands, "validate_dependencies", lambda: None)
    result = runner.invoke(commands.app, ["check"])
    assert result.exit_code == 0
    assert "ffmpeg and ffprobe found" in result.output
    assert "Video model" in result.output


def test_missing_ffmpeg_exits_nonzero(monkeypatch):
    def missing():
        raise RuntimeError("ffmpeg not found on PATH")

    monkeypatch.setattr(commands, "validate_dependencies", missing)
    result = runner.invoke(commands.app, ["check"])
    assert result.exit_code == 1
    assert "ffmpeg not found" in result.output


def test_generate_rejects_invalid_request(monkeypatch, tmp_path):
    monkeypatch.setattr(commands, "validate_dependencies", lambda: None)
    image = tmp_path / "ref.png"
    image.write_bytes(b"png")

    result = runner.invoke(commands.app, ["generate", str(image), "a fox", "--scenes", "9"])

    assert result.exit_code == 1
    assert "Invalid request" in result.output


def test_with_pipeline_overrides(settings):
    assert commands._with_pipeline_overrides(settings) is settings
    updated = commands._with_pipeline_overrides(settings, crossfade_seconds=0.5, enable_voiceover=None)
    assert updated.pipeline.crossfade_seconds == 0.5
    assert updated.pipeline.enable_voiceover is settings.pipeline.enable_voiceover


async def test_restitch_keeps_original_final_video(settings, files, engine):
    session_id = "stitched-session"
    output = files.output_dir(session_id)
    original = output / "final.mp4"
    original.write_bytes(b"original-final")
    clips = [files.save_video(session_id, n, b"mp4") for n in (1, 2)]
    artifacts = Artifacts(
        session_id=session_id,
        video_paths=[str(p) for p in clips],
        final_video_path=str(original),
    )
    assembler = MediaAssembler.from_config(settings.pipeline, engine)

    result = await commands._restitch(artifacts, assembler, files, 0.5, scene_duration=5.0)

    assert original.read_bytes() == b"original-final"
    assert Path(result.output_path) == output / "stitch-0.5" / "final.mp4"
    assert Path(result.output_path).read_bytes() == b"media"
    assert result.mode == "crossfade"
