"""Main pipeline orchestrator with per-stage state tracking and bounded recovery.

Coordinates the full generation pipeline with:
- Stage state machine transitions recorded in the SessionStore
- Per-call retries under per-collaborator policies
- Append-only artifact checkpoints for cross-stage handoff
- Per-step timing and logging
- One pass of recovery strategies, restarting from the first stage
- Admission control, cooperative cancellation and a session reaper
"""

import asyncio
import logging
import time
from datetime import timedelta
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional, Sequence, TypeVar

from scenechain.config import Settings
from scenechain.orchestrator.errors import (
    ErrorKind,
    PipelineCancelled,
    PipelineError,
    classify_error,
    error_summary,
)
from scenechain.orchestrator.limiter import RateLimiterRegistry
from scenechain.orchestrator.recovery import (
    DEFAULT_STRATEGIES,
    RecoveryContext,
    RecoveryStrategy,
    RunProfile,
    attempt_recovery,
)
from scenechain.orchestrator.retry import AttemptOutcome, CancellationToken, RetryExecutor, RetryPolicy
from scenechain.orchestrator.session_store import SessionStore
from scenechain.orchestrator.state import PIPELINE_STAGES, TERMINAL_SESSION_STATES
from scenechain.pipeline.assembler import MediaAssembler, merge_scenes
from scenechain.pipeline.audio import generate_audio
from scenechain.pipeline.context import StageContext
from scenechain.pipeline.images import generate_images
from scenechain.pipeline.prompts import generate_prompts
from scenechain.pipeline.videos import generate_videos
from scenechain.schemas.generation import GenerationRequest, ProgressInfo, Session
from scenechain.services.checkpoint_service import CheckpointStore, require
from scenechain.services.file_manager import FileManager
from scenechain.services.generators.registry import Collaborators
from scenechain.services.media_engine import MediaEngine

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRY_CAPABILITIES = ("default", "prompts", "images", "videos", "speech", "music", "merge")


class PipelineOrchestrator:
    """Drive generation sessions through prompts -> images -> videos -> [audio] -> merge.

    Args:
        settings: Application settings
        collaborators: External generation services
        checkpoints: Artifact checkpoint store
        store: Session store (a new one when omitted)
        files: Session-scoped file layout (storage.data_dir when omitted)
        assembler: Media assembler (ffmpeg on PATH when omitted)
        limiters: Per-capability rate limiters (from settings when omitted)
        strategies: Recovery strategies tried after a failure
        sleep: Async sleep used between retries (injectable for tests)
    """

    def __init__(
        self,
        settings: Settings,
        collaborators: Collaborators,
        checkpoints: CheckpointStore,
        store: Optional[SessionStore] = None,
        files: Optional[FileManager] = None,
        assembler: Optional[MediaAssembler] = None,
        limiters: Optional[RateLimiterRegistry] = None,
        strategies: Sequence[RecoveryStrategy] = DEFAULT_STRATEGIES,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.collaborators = collaborators
        self.checkpoints = checkpoints
        self.store = store or SessionStore()
        self.files = files or FileManager(settings.storage.data_dir, settings.storage.uploads_dir)
        self.assembler = assembler or MediaAssembler.from_config(settings.pipeline, MediaEngine())
        self.limiters = limiters or RateLimiterRegistry.from_config(settings.rate_limits)
        self.strategies = tuple(strategies)
        self.executor = RetryExecutor(on_attempt=self._on_attempt, sleep=sleep)
        self.policies: Dict[str, RetryPolicy] = {
            name: RetryPolicy.from_config(getattr(settings.retry, name))
            for name in RETRY_CAPABILITIES
        }

        self._tasks: Dict[str, asyncio.Task] = {}
        self._tokens: Dict[str, CancellationToken] = {}
        self._retry_counts: Dict[tuple, int] = {}
        self._reaper: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Upward surface
    # ------------------------------------------------------------------

    async def start_generation(self, request: GenerationRequest, image_path: Path) -> str:
        """Create a session and schedule its pipeline in the background.

        Returns:
            The new session id

        Raises:
            PipelineError: validation for a bad request, rate_limited when
                max_concurrent_jobs sessions are already running
        """
        self._validate_request(request, Path(image_path))
        self._admit()

        session = self.store.create(request, str(image_path))
        session_id = session.session_id
        token = CancellationToken()
        self._tokens[session_id] = token
        task = asyncio.create_task(self._run_session(session_id, token), name=f"scenechain-{session_id}")
        task.add_done_callback(self._on_task_done)
        self._tasks[session_id] = task
        return session_id

    async def generate(self, request: GenerationRequest, image_path: Path) -> Session:
        """Run a session to completion.

        Raises:
            PipelineError: The session's terminal error, verbatim
        """
        session_id = await self.start_generation(request, image_path)
        return await self.wait(session_id)

    async def wait(self, session_id: str) -> Optional[Session]:
        """Wait for a session's pipeline task and return the final session."""
        task = self._tasks.get(session_id)
        if task is not None:
            await task
        return self.store.get(session_id)

    def get_session(self, session_id: str) -> Optional[Session]:
        return self.store.get(session_id)

    def get_progress(self, session_id: str) -> ProgressInfo:
        return self.store.progress(session_id)

    def cancel(self, session_id: str) -> bool:
        """Request cancellation; honored at the next stage or attempt boundary."""
        session = self.store.get(session_id)
        token = self._tokens.get(session_id)
        if session is None or token is None or session.status in TERMINAL_SESSION_STATES:
            return False
        token.cancel()
        logger.info(f"Session {session_id}: cancellation requested")
        return True

    @property
    def running_count(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    # ------------------------------------------------------------------
    # Reaper
    # ------------------------------------------------------------------

    async def reap_now(self) -> int:
        """Remove expired sessions along with their checkpoints and uploads.

        Returns:
            Number of sessions removed from the store
        """
        removed = self.store.reap(timedelta(hours=self.settings.storage.session_max_age_hours))
        for session_id in list(self._tasks):
            if self._tasks[session_id].done() and self.store.get(session_id) is None:
                self._tasks.pop(session_id, None)
                self._tokens.pop(session_id, None)
                await self.checkpoints.discard(session_id)
        keep = frozenset(Path(p).resolve() for p in self.store.reference_images())
        self.files.prune_uploads(keep)
        return removed

    async def _reap_loop(self) -> None:
        interval = self.settings.storage.reaper_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                await self.reap_now()
            except Exception as e:
                logger.error(f"Session reaper failed: {e}")

    def start_reaper(self) -> None:
        if self._reaper is None or self._reaper.done():
            self._reaper = asyncio.create_task(self._reap_loop(), name="scenechain-reaper")
            logger.info(
                f"Session reaper started (every {self.settings.storage.reaper_interval_seconds:.0f}s, "
                f"max age {self.settings.storage.session_max_age_hours}h)"
            )

    async def stop_reaper(self) -> None:
        if self._reaper is None:
            return
        self._reaper.cancel()
        try:
            await self._reaper
        except asyncio.CancelledError:
            pass
        self._reaper = None

    async def shutdown(self) -> None:
        """Stop the reaper and cancel running sessions."""
        await self.stop_reaper()
        for token in self._tokens.values():
            token.cancel()
        running = [t for t in self._tasks.values() if not t.done()]
        if running:
            await asyncio.gather(*running, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _validate_request(self, request: GenerationRequest, image_path: Path) -> None:
        max_scenes = self.settings.pipeline.max_scenes
        if request.scene_count > max_scenes:
            raise PipelineError(
                ErrorKind.VALIDATION,
                f"scene_count must be between 1 and {max_scenes}",
                context={"scene_count": request.scene_count},
            )
        provider = request.image_options.provider
        if provider not in self.collaborators.images:
            raise PipelineError(
                ErrorKind.VALIDATION,
                f"Unknown image provider '{provider}' (available: {sorted(self.collaborators.images)})",
                context={"provider": provider},
            )
        if not image_path.is_file():
            raise PipelineError(
                ErrorKind.VALIDATION,
                f"Reference image not found: {image_path}",
                context={"path": str(image_path)},
            )

    def _admit(self) -> None:
        limit = self.settings.pipeline.max_concurrent_jobs
        if self.running_count >= limit:
            raise PipelineError(
                ErrorKind.RATE_LIMITED,
                f"Maximum concurrent generations reached ({limit}); try again later",
                context={"max_concurrent_jobs": limit},
            )

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        # Mark the exception retrieved; it is already recorded on the session
        error = task.exception()
        if error is not None:
            logger.debug(f"{task.get_name()} ended with {error!r}")

    def _on_attempt(self, outcome: AttemptOutcome) -> None:
        if outcome.succeeded or not outcome.will_retry:
            return
        key = (outcome.context.get("session_id"), outcome.context.get("stage"))
        self._retry_counts[key] = self._retry_counts.get(key, 0) + 1

    def _report(self, session_id: str, stage: str, message: str, progress: Optional[float]) -> None:
        self.store.set_stage(session_id, stage, "processing", message=message, progress=progress)

    def _build_context(
        self,
        session: Session,
        profile: RunProfile,
        token: CancellationToken,
    ) -> StageContext:
        fallback = self.collaborators.video_fallback
        video_generator = (
            fallback if profile.use_fallback_video and fallback is not None
            else self.collaborators.videos
        )
        return StageContext(
            session_id=session.session_id,
            request=session.request,
            reference_image=Path(session.reference_image_path),
            collaborators=self.collaborators,
            executor=self.executor,
            policies=self.policies,
            limiters=self.limiters,
            files=self.files,
            pipeline=self.settings.pipeline,
            token=token,
            video_generator=video_generator,
            video_concurrency=profile.video_concurrency,
            output_height=profile.output_height,
        )

    async def _run_session(self, session_id: str, token: CancellationToken) -> None:
        try:
            await self._drive_session(session_id, token)
        finally:
            self._clear_retry_counts(session_id)

    async def _drive_session(self, session_id: str, token: CancellationToken) -> None:
        session = self.store.get(session_id)
        profile = RunProfile.from_config(self.settings.pipeline)
        max_restarts = self.settings.pipeline.max_recovery_restarts
        restarts = 0
        pipeline_start = time.monotonic()

        self.store.set_status(session_id, "processing")
        logger.info(
            f"Starting pipeline for session {session_id}: {session.request.scene_count} scenes, "
            f"stages={[s.stage for s in session.stages]}"
        )

        while True:
            try:
                step_log = await self._run_stages(session, profile, token)
                self.store.set_status(session_id, "completed")
                logger.info(
                    f"Pipeline for session {session_id} completed in "
                    f"{time.monotonic() - pipeline_start:.2f}s, steps: "
                    + ", ".join(f"{k}={v:.2f}s" for k, v in step_log.items())
                )
                return
            except Exception as exc:
                error = classify_error(exc, {"session_id": session_id})
                self._mark_failed(session_id, error)

                if isinstance(error, PipelineCancelled):
                    logger.info(f"Session {session_id}: generation cancelled")
                elif restarts < max_restarts and await self._recover(session_id, error, profile):
                    restarts += 1
                    self.store.restart(session_id)
                    await self.checkpoints.discard(session_id)
                    self._clear_retry_counts(session_id)
                    session = self.store.get(session_id)
                    continue

                if error is exc:
                    raise
                raise error from exc

    def _mark_failed(self, session_id: str, error: PipelineError) -> None:
        current = self.store.get(session_id)
        if current is not None and current.status != "failed":
            self.store.set_status(
                session_id, "failed", error=error.message, error_details=error_summary(error)
            )

    async def _recover(self, session_id: str, error: PipelineError, profile: RunProfile) -> bool:
        ctx = RecoveryContext(
            session_id=session_id,
            error=error,
            profile=profile,
            files=self.files,
            pipeline=self.settings.pipeline,
            storage=self.settings.storage,
            has_video_fallback=self.collaborators.video_fallback is not None,
            active_session_ids=frozenset(s.session_id for s in self.store.active_sessions()),
        )
        strategy = await attempt_recovery(ctx, self.strategies)
        if strategy is None:
            return False
        logger.info(f"Session {session_id}: recovered via '{strategy}', restarting from first stage")
        return True

    def _clear_retry_counts(self, session_id: str) -> None:
        for key in [k for k in self._retry_counts if k[0] == session_id]:
            del self._retry_counts[key]

    async def _run_stages(
        self,
        session: Session,
        profile: RunProfile,
        token: CancellationToken,
    ) -> Dict[str, float]:
        ctx = self._build_context(session, profile, token)
        stage_names = [s.stage for s in session.stages]
        runners = {
            "prompts": self._prompts_step,
            "images": self._images_step,
            "videos": self._videos_step,
            "audio": self._audio_step,
            "merge": self._merge_step,
        }

        step_log: Dict[str, float] = {}
        for stage in stage_names:
            token.raise_if_cancelled({"session_id": session.session_id, "stage": stage})
            step_start = time.monotonic()
            await self._run_stage(ctx, stage, runners[stage])
            step_log[stage] = time.monotonic() - step_start
            logger.info(f"Session {session.session_id}: {stage} step completed in {step_log[stage]:.2f}s")
        return step_log

    async def _run_stage(
        self,
        ctx: StageContext,
        stage: str,
        work: Callable[[StageContext], Awaitable[T]],
    ) -> T:
        session_id = ctx.session_id
        self.store.set_stage(session_id, stage, "processing", message=PIPELINE_STAGES[stage], progress=0.0)
        ctx.report = lambda message, progress: self._report(session_id, stage, message, progress)

        try:
            result = await work(ctx)
        except Exception as exc:
            error = classify_error(exc, {"session_id": session_id, "stage": stage})
            error.context.setdefault("stage", stage)
            self.store.set_stage(
                session_id,
                stage,
                "error",
                message=f"{stage} failed",
                error=error.message,
                retry_count=self._retry_counts.get((session_id, stage), 0),
            )
            self._mark_failed(session_id, error)
            logger.error(f"Session {session_id}: {stage} failed ({error.kind.value}): {error.message}")
            if error is exc:
                raise
            raise error from exc

        self.store.set_stage(
            session_id,
            stage,
            "completed",
            message=f"{stage} complete",
            retry_count=self._retry_counts.get((session_id, stage), 0),
        )
        return result

    # Stage runners: read upstream artifacts, do the work, append own output

    async def _prompts_step(self, ctx: StageContext) -> None:
        prompts = await generate_prompts(ctx)
        await self.checkpoints.append(ctx.session_id, prompts=prompts)

    async def _images_step(self, ctx: StageContext) -> None:
        artifacts = await self.checkpoints.load(ctx.session_id)
        prompts = require(artifacts, "prompts")
        paths = await generate_images(ctx, prompts)
        await self.checkpoints.append(ctx.session_id, image_paths=[str(p) for p in paths])

    async def _videos_step(self, ctx: StageContext) -> None:
        artifacts = await self.checkpoints.load(ctx.session_id)
        prompts = require(artifacts, "prompts")
        image_paths = [Path(p) for p in require(artifacts, "image_paths")]
        paths = await generate_videos(ctx, prompts, image_paths)
        await self.checkpoints.append(ctx.session_id, video_paths=[str(p) for p in paths])

    async def _audio_step(self, ctx: StageContext) -> None:
        artifacts = await self.checkpoints.load(ctx.session_id)
        prompts = require(artifacts, "prompts")
        audio = await generate_audio(ctx, prompts)
        await self.checkpoints.append(ctx.session_id, audio_paths=audio)

    async def _merge_step(self, ctx: StageContext) -> None:
        artifacts = await self.checkpoints.load(ctx.session_id)
        video_paths = require(artifacts, "video_paths")
        result = await merge_scenes(ctx, self.assembler, video_paths, artifacts.audio_paths)
        await self.checkpoints.append(ctx.session_id, final_video_path=result.output_path)
        self.store.set_final_output(ctx.session_id, result.output_path)
