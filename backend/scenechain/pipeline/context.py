"""Per-run context handed to every stage work function."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

from scenechain.config import PipelineConfig
from scenechain.orchestrator.limiter import RateLimiterRegistry
from scenechain.orchestrator.retry import CancellationToken, RetryExecutor, RetryPolicy
from scenechain.schemas.generation import GenerationRequest
from scenechain.services.file_manager import FileManager
from scenechain.services.generators.base import VideoGenerator
from scenechain.services.generators.registry import Collaborators

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _no_report(message: str, progress: Optional[float]) -> None:
    pass


@dataclass
class StageContext:
    """Everything a stage needs for one pipeline run of one session.

    Attributes:
        session_id: Owning session
        request: Immutable generation request
        reference_image: Uploaded reference image
        collaborators: External generation services
        executor: Retry executor shared by the orchestrator
        policies: Retry policy per capability; "default" covers the rest
        limiters: Sliding-window limiters per capability
        files: Session-scoped file layout
        pipeline: Pipeline settings
        token: Cancellation token for this session
        video_generator: Video generator selected for this run
        video_concurrency: Parallel scene clips in the videos stage
        output_height: Output resolution for the merge stage
        report: Callback receiving (message, progress percent) updates
    """

    session_id: str
    request: GenerationRequest
    reference_image: Path
    collaborators: Collaborators
    executor: RetryExecutor
    policies: dict[str, RetryPolicy]
    limiters: RateLimiterRegistry
    files: FileManager
    pipeline: PipelineConfig
    token: CancellationToken
    video_generator: VideoGenerator
    video_concurrency: int = 1
    output_height: int = 720
    report: Callable[[str, Optional[float]], None] = field(default=_no_report)

    @property
    def voiceover_enabled(self) -> bool:
        return self.pipeline.enable_voiceover and self.request.include_voiceover

    async def call(
        self,
        capability: str,
        operation: Callable[[], Awaitable[T]],
        stage: str,
        **context,
    ) -> T:
        """Run one collaborator call under its rate limiter and retry policy."""

        async def limited() -> T:
            await self.limiters.acquire(capability)
            return await operation()

        return await self.executor.run(
            limited,
            self.policies.get(capability, self.policies.get("default")),
            context={"session_id": self.session_id, "stage": stage, "service": capability, **context},
            token=self.token,
        )
