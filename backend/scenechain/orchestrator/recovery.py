"""Recovery strategies run once after a session fails.

Each strategy is keyed by error kind. The first strategy that applies and
claims success triggers a restart of the pipeline from the first stage
with an adjusted RunProfile. If none applies, or a strategy fails, the
session stays failed.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Sequence

from scenechain.config import PipelineConfig, StorageConfig
from scenechain.orchestrator.errors import ErrorKind, PipelineError
from scenechain.services.file_manager import FileManager

logger = logging.getLogger(__name__)


@dataclass
class RunProfile:
    """Quality and routing knobs for one pipeline run of a session."""

    output_height: int
    video_concurrency: int
    use_fallback_video: bool = False
    degraded: bool = False

    @classmethod
    def from_config(cls, cfg: PipelineConfig) -> "RunProfile":
        return cls(output_height=cfg.output_height, video_concurrency=cfg.video_concurrency)


@dataclass
class RecoveryContext:
    """Inputs available to a recovery strategy."""

    session_id: str
    error: PipelineError
    profile: RunProfile
    files: FileManager
    pipeline: PipelineConfig
    storage: StorageConfig
    has_video_fallback: bool = False
    active_session_ids: frozenset = field(default_factory=frozenset)

    @property
    def stage(self) -> Optional[str]:
        return self.error.context.get("stage")


class RecoveryStrategy(ABC):
    name: str = ""

    @abstractmethod
    def applies(self, ctx: RecoveryContext) -> bool:
        ...

    @abstractmethod
    async def attempt(self, ctx: RecoveryContext) -> bool:
        """Try to fix the cause of ctx.error. Return True to request a restart."""
        ...


class CleanupTempFiles(RecoveryStrategy):
    """Free disk space: drop intermediate merge files and stale sessions."""

    name = "cleanup-temp-files"

    def applies(self, ctx: RecoveryContext) -> bool:
        return ctx.error.kind is ErrorKind.DISK_FULL

    async def attempt(self, ctx: RecoveryContext) -> bool:
        freed = await asyncio.to_thread(ctx.files.remove_intermediates, ctx.session_id)
        removed = await asyncio.to_thread(
            ctx.files.cleanup_old_sessions,
            ctx.storage.cleanup_days,
            ctx.active_session_ids | {ctx.session_id},
        )
        logger.info(
            f"Session {ctx.session_id}: cleanup freed {freed} bytes of intermediates, "
            f"removed {removed} stale session directories"
        )
        return freed > 0 or removed > 0


class ReduceQuality(RecoveryStrategy):
    """Switch to the degraded profile after a timeout."""

    name = "reduce-quality"

    def applies(self, ctx: RecoveryContext) -> bool:
        return ctx.error.kind is ErrorKind.TIMEOUT and not ctx.profile.degraded

    async def attempt(self, ctx: RecoveryContext) -> bool:
        ctx.profile.output_height = min(ctx.profile.output_height, ctx.pipeline.degraded_output_height)
        ctx.profile.video_concurrency = 1
        ctx.profile.degraded = True
        logger.info(
            f"Session {ctx.session_id}: degraded profile "
            f"(height={ctx.profile.output_height}, video_concurrency=1)"
        )
        return True


class FallbackGeneration(RecoveryStrategy):
    """Route video generation to the configured fallback model."""

    name = "fallback-generation"

    def applies(self, ctx: RecoveryContext) -> bool:
        return (
            ctx.error.kind is ErrorKind.SERVICE_UNAVAILABLE
            and ctx.stage == "videos"
            and ctx.has_video_fallback
            and not ctx.profile.use_fallback_video
        )

    async def attempt(self, ctx: RecoveryContext) -> bool:
        ctx.profile.use_fallback_video = True
        logger.info(f"Session {ctx.session_id}: switching to fallback video model")
        return True


DEFAULT_STRATEGIES: tuple = (CleanupTempFiles(), ReduceQuality(), FallbackGeneration())


async def attempt_recovery(
    ctx: RecoveryContext,
    strategies: Sequence[RecoveryStrategy] = DEFAULT_STRATEGIES,
) -> Optional[str]:
    """Run one pass of recovery strategies.

    Returns:
        Name of the strategy that succeeded, or None
    """
    for strategy in strategies:
        if not strategy.applies(ctx):
            continue
        logger.info(f"Session {ctx.session_id}: attempting recovery '{strategy.name}' for {ctx.error.kind.value}")
        try:
            recovered = await strategy.attempt(ctx)
        except Exception as e:
            logger.error(f"Session {ctx.session_id}: recovery '{strategy.name}' failed: {e}")
            continue
        if recovered:
            return strategy.name
        logger.info(f"Session {ctx.session_id}: recovery '{strategy.name}' did not help")

    return None
