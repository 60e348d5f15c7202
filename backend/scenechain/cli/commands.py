"""CLI commands for scenechain using Typer and Rich.

Commands:
- generate: Run a full generation session in-process
- status: Show a session's checkpointed artifacts
- stitch: Re-merge a session's clips with a different crossfade
- check: Validate ffmpeg and configuration
- serve: Run the HTTP API
"""

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from scenechain import configure_logging, validate_dependencies
from scenechain.config import Settings, settings
from scenechain.orchestrator.errors import PipelineError
from scenechain.schemas.generation import GenerationRequest, ImageOptions

app = typer.Typer(name="scenechain", help="Reference image plus description to multi-scene video")
console = Console()


def _require_ffmpeg() -> None:
    try:
        validate_dependencies()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)


def _with_pipeline_overrides(base: Settings, **overrides) -> Settings:
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if not overrides:
        return base
    return base.model_copy(update={"pipeline": base.pipeline.model_copy(update=overrides)})


@app.command()
def generate(
    image: Path = typer.Argument(..., exists=True, dir_okay=False, help="Reference image (PNG/JPEG)"),
    description: str = typer.Argument(..., help="What the video should show"),
    scenes: int = typer.Option(settings.pipeline.default_scenes, "--scenes", "-n", help="Number of scenes (1-5)"),
    music: bool = typer.Option(False, "--music/--no-music", help="Generate a background music track"),
    voiceover: bool = typer.Option(False, "--voiceover/--no-voiceover", help="Generate a narration track"),
    crossfade: Optional[float] = typer.Option(None, "--crossfade", "-c", help="Crossfade duration in seconds"),
    anchor: bool = typer.Option(True, "--anchor/--no-anchor", help="Send the original image with every scene"),
):
    """Generate a multi-scene video from a reference image.

    Runs prompts, images, videos, optional audio, and merge in this process.
    """
    configure_logging(settings.server.log_level)
    _require_ffmpeg()

    try:
        request = GenerationRequest(
            scene_count=scenes,
            description=description,
            include_voiceover=voiceover,
            include_music=music,
            image_options=ImageOptions(include_original_anchor=anchor),
        )
    except ValueError as e:
        console.print(f"[red]Error:[/red] Invalid request: {e}")
        raise typer.Exit(code=1)

    run_settings = _with_pipeline_overrides(
        settings,
        crossfade_seconds=crossfade,
        enable_voiceover=True if voiceover else None,
    )
    asyncio.run(_generate_async(run_settings, request, image))


async def _generate_async(run_settings: Settings, request: GenerationRequest, image: Path):
    """Async implementation of generate command."""
    from scenechain.db import async_session, init_database, shutdown
    from scenechain.orchestrator.pipeline import PipelineOrchestrator
    from scenechain.services.checkpoint_service import CheckpointStore
    from scenechain.services.generators import build_collaborators

    await init_database()
    orchestrator = PipelineOrchestrator(
        run_settings,
        build_collaborators(run_settings),
        CheckpointStore(async_session),
    )

    try:
        session_id = await orchestrator.start_generation(request, image)
        console.print(f"[green]Created session:[/green] {session_id}")
        console.print()

        waiter = asyncio.create_task(orchestrator.wait(session_id))
        with console.status("[bold green]Starting pipeline...") as status:
            while not waiter.done():
                progress = orchestrator.get_progress(session_id)
                session = orchestrator.get_session(session_id)
                stage = session.stage(progress.current_stage) if progress.current_stage else None
                message = stage.message if stage and stage.message else session.status
                status.update(f"[bold green]{progress.percent:3d}%[/bold green] {message}")
                await asyncio.wait({waiter}, timeout=0.5)

        session = waiter.result()
        console.print(f"[green]✓[/green] Video generation complete!")
        console.print(f"[green]Output:[/green] {session.final_output_path}")

    except KeyboardInterrupt:
        console.print()
        console.print("[yellow]Generation interrupted.[/yellow]")
        raise typer.Exit(code=130)

    except PipelineError as e:
        console.print()
        console.print(f"[red]✗ Generation failed[/red] ({e.kind.value}): {e.message}")
        raise typer.Exit(code=1)

    finally:
        await orchestrator.shutdown()
        await shutdown()


@app.command()
def status(
    session_id: str = typer.Argument(..., help="Session id"),
):
    """Show the checkpointed artifacts of a session."""
    asyncio.run(_status_async(session_id))


async def _status_async(session_id: str):
    """Async implementation of status command."""
    from scenechain.db import async_session, init_database, shutdown
    from scenechain.services.checkpoint_service import CheckpointStore

    await init_database()
    try:
        artifacts = await CheckpointStore(async_session).load(session_id)
    finally:
        await shutdown()

    if artifacts.prompts is None:
        console.print(f"[red]Error:[/red] No checkpoint found for session {session_id}")
        raise typer.Exit(code=1)

    info_lines = [f"[bold]ID:[/bold] {session_id}"]
    if artifacts.final_video_path:
        info_lines.append(f"[bold]Output:[/bold] [green]{artifacts.final_video_path}[/green]")
    if artifacts.audio_paths:
        if artifacts.audio_paths.voiceover_path:
            info_lines.append(f"[bold]Voiceover:[/bold] {artifacts.audio_paths.voiceover_path}")
        if artifacts.audio_paths.music_path:
            info_lines.append(f"[bold]Music:[/bold] {artifacts.audio_paths.music_path}")
    console.print(Panel("\n".join(info_lines), title="[bold]Session Artifacts[/bold]", border_style="blue"))

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Scene", style="dim")
    table.add_column("Image prompt")
    table.add_column("Image")
    table.add_column("Video")

    images = artifacts.image_paths or []
    videos = artifacts.video_paths or []
    for i, prompt in enumerate(artifacts.prompts.scene_prompts):
        text = prompt.image_prompt if len(prompt.image_prompt) <= 50 else prompt.image_prompt[:47] + "..."
        table.add_row(
            str(prompt.scene_number),
            text,
            images[i] if i < len(images) else "[dim]-[/dim]",
            videos[i] if i < len(videos) else "[dim]-[/dim]",
        )
    console.print(table)


@app.command()
def stitch(
    session_id: str = typer.Argument(..., help="Session id to re-stitch"),
    crossfade: float = typer.Option(0.0, "--crossfade", "-c", help="Crossfade duration in seconds"),
):
    """Re-merge a session's clips and audio with a different crossfade.

    Useful for trying transitions without regenerating any clips. The result
    is written under output/stitch-<crossfade>/ so the original final.mp4 is kept.
    """
    _require_ffmpeg()
    asyncio.run(_stitch_async(session_id, crossfade))


async def _stitch_async(session_id: str, crossfade: float):
    """Async implementation of stitch command."""
    from scenechain.db import async_session, init_database, shutdown
    from scenechain.pipeline.assembler import MediaAssembler
    from scenechain.services.checkpoint_service import CheckpointStore
    from scenechain.services.file_manager import FileManager
    from scenechain.services.media_engine import MediaEngine

    await init_database()
    try:
        artifacts = await CheckpointStore(async_session).load(session_id)
    finally:
        await shutdown()

    if not artifacts.video_paths:
        console.print(f"[red]Error:[/red] No completed video clips found for session {session_id}")
        raise typer.Exit(code=1)

    console.print(f"[yellow]Re-stitching session:[/yellow] {session_id}")
    console.print(f"[yellow]Clips:[/yellow] {len(artifacts.video_paths)}")
    console.print(f"[yellow]Crossfade:[/yellow] {crossfade}s")
    console.print()

    assembler = MediaAssembler.from_config(settings.pipeline, MediaEngine())
    files = FileManager(settings.storage.data_dir, settings.storage.uploads_dir)
    try:
        with console.status("[bold green]Stitching video..."):
            result = await _restitch(artifacts, assembler, files, crossfade)
    except PipelineError as e:
        console.print(f"[red]✗ Stitching failed:[/red] {e.message}")
        raise typer.Exit(code=1)

    console.print(f"[green]✓[/green] Stitching complete!")
    console.print(f"[green]Output:[/green] {result.output_path}")


async def _restitch(artifacts, assembler, files, crossfade: float, scene_duration: Optional[float] = None):
    """Merge checkpointed clips into output/stitch-<crossfade>/, leaving final.mp4 in place."""
    audio = artifacts.audio_paths
    return await assembler.merge(
        [Path(p) for p in artifacts.video_paths],
        files.stitch_dir(artifacts.session_id, crossfade),
        voice_path=Path(audio.voiceover_path) if audio and audio.voiceover_path else None,
        music_path=Path(audio.music_path) if audio and audio.music_path else None,
        crossfade_seconds=crossfade,
        scene_duration=scene_duration or settings.pipeline.scene_duration_seconds,
    )


@app.command()
def check():
    """Validate ffmpeg and print the effective configuration."""
    _require_ffmpeg()
    console.print("[green]✓[/green] ffmpeg and ffprobe found")

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Setting")
    table.add_column("Value")
    table.add_row("Google Cloud project", settings.google_cloud.project_id or "[red]not set[/red]")
    table.add_row("Prompt model", settings.models.prompt_llm)
    table.add_row("Image model", settings.models.image_gen)
    table.add_row("Video model", settings.models.video_gen)
    table.add_row("Video fallback", settings.models.video_gen_fallback or "[dim]none[/dim]")
    table.add_row("ElevenLabs key", "set" if settings.elevenlabs.api_key else "[yellow]not set[/yellow]")
    table.add_row("Max concurrent jobs", str(settings.pipeline.max_concurrent_jobs))
    table.add_row("Crossfade", f"{settings.pipeline.crossfade_seconds}s")
    table.add_row("Data dir", str(settings.storage.data_dir))
    console.print(table)


@app.command()
def serve(
    host: str = typer.Option(settings.server.host, "--host", help="Bind address"),
    port: int = typer.Option(settings.server.port, "--port", "-p", help="Bind port"),
):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    configure_logging(settings.server.log_level)
    uvicorn.run("scenechain.api.app:app", host=host, port=port, reload=False)
