"""Recovery strategies keyed by error kind."""

import os
import time

import pytest

from scenechain.config import PipelineConfig, StorageConfig
from scenechain.orchestrator.errors import ErrorKind, PipelineError
from scenechain.orchestrator.recovery import (
    CleanupTempFiles,
    FallbackGeneration,
    RecoveryContext,
    RecoveryStrategy,
    ReduceQuality,
    RunProfile,
    attempt_recovery,
)


def _ctx(files, kind, stage=None, has_fallback=False, profile=None, session_id="s1"):
    pipeline = PipelineConfig()
    return RecoveryContext(
        session_id=session_id,
        error=PipelineError(kind, "boom", context={"stage": stage} if stage else None),
        profile=profile or RunProfile.from_config(pipeline),
        files=files,
        pipeline=pipeline,
        storage=StorageConfig(cleanup_days=7),
        has_video_fallback=has_fallback,
    )


async def test_cleanup_removes_intermediates_only(files):
    output = files.output_dir("s1")
    (output / "concatenated.mp4").write_bytes(b"x" * 1024)
    (output / "final.mp4").write_bytes(b"final")
    ctx = _ctx(files, ErrorKind.DISK_FULL)

    strategy = CleanupTempFiles()
    assert strategy.applies(ctx)
    assert await strategy.attempt(ctx)
    assert not (output / "concatenated.mp4").exists()
    assert (output / "final.mp4").exists()


async def test_cleanup_removes_stale_sessions_but_keeps_active(files):
    stale = files.get_session_dir("stale")
    active = files.get_session_dir("active")
    old = time.time() - 30 * 86400
    os.utime(stale, (old, old))
    os.utime(active, (old, old))

    ctx = _ctx(files, ErrorKind.DISK_FULL)
    ctx.active_session_ids = frozenset({"active"})

    assert await CleanupTempFiles().attempt(ctx)
    assert not stale.exists()
    assert active.exists()


async def test_cleanup_with_nothing_to_free_does_not_claim_success(files):
    assert not await CleanupTempFiles().attempt(_ctx(files, ErrorKind.DISK_FULL))


async def test_reduce_quality_applies_once(files):
    ctx = _ctx(files, ErrorKind.TIMEOUT)
    strategy = ReduceQuality()

    assert strategy.applies(ctx)
    assert await strategy.attempt(ctx)
    assert ctx.profile.output_height == 480
    assert ctx.profile.video_concurrency == 1
    assert ctx.profile.degraded
    assert not strategy.applies(ctx)


@pytest.mark.parametrize(
    "kind,stage,has_fallback,applies",
    [
        (ErrorKind.SERVICE_UNAVAILABLE, "videos", True, True),
        (ErrorKind.SERVICE_UNAVAILABLE, "videos", False, False),
        (ErrorKind.SERVICE_UNAVAILABLE, "images", True, False),
        (ErrorKind.TIMEOUT, "videos", True, False),
    ],
)
def test_fallback_generation_applies(files, kind, stage, has_fallback, applies):
    ctx = _ctx(files, kind, stage=stage, has_fallback=has_fallback)
    assert FallbackGeneration().applies(ctx) is applies


async def test_first_successful_strategy_wins(files):
    ctx = _ctx(files, ErrorKind.TIMEOUT)
    assert await attempt_recovery(ctx) == "reduce-quality"


async def test_no_strategy_for_authentication(files):
    assert await attempt_recovery(_ctx(files, ErrorKind.AUTHENTICATION)) is None


async def test_failing_strategy_falls_through(files):
    class Broken(RecoveryStrategy):
        name = "broken"

        def applies(self, ctx):
            return True

        async def attempt(self, ctx):
            raise OSError("cannot free space")

    ctx = _ctx(files, ErrorKind.TIMEOUT)
    assert await attempt_recovery(ctx, [Broken(), ReduceQuality()]) == "reduce-quality"
    assert await attempt_recovery(_ctx(files, ErrorKind.TIMEOUT), [Broken()]) is None
