"""Veo image-to-video collaborator.

Submits a generate_videos job for one scene image and polls the returned
long-running operation until it completes or the poll budget runs out.
"""

import asyncio
import logging
import mimetypes
from pathlib import Path

from google.genai import types

from scenechain.config import GoogleCloudConfig
from scenechain.services.generators.base import VideoGenerator
from scenechain.services.vertex_client import get_vertex_client, location_for_model

logger = logging.getLogger(__name__)

NEGATIVE_PROMPT = "text overlay, watermark, logo, blurry, deformed, identity change"


class VeoVideoGenerator(VideoGenerator):
    """Animate a still image with a Veo model.

    Args:
        model_id: Veo model identifier
        cloud: Google Cloud project/location
        aspect_ratio: Output aspect ratio
        poll_interval: Seconds between operation polls
        poll_max: Maximum number of polls before timing out
    """

    def __init__(
        self,
        model_id: str,
        cloud: GoogleCloudConfig,
        aspect_ratio: str = "16:9",
        poll_interval: float = 10,
        poll_max: int = 60,
    ) -> None:
        self.model_id = model_id
        self._cloud = cloud
        self._aspect_ratio = aspect_ratio
        self._poll_interval = poll_interval
        self._poll_max = poll_max

    async def generate(self, image: Path, motion_prompt: str, duration_seconds: int) -> bytes:
        client = get_vertex_client(self._cloud, location=location_for_model(self.model_id, self._cloud))
        mime_type = mimetypes.guess_type(str(image))[0] or "image/png"
        config = types.GenerateVideosConfig(
            aspect_ratio=self._aspect_ratio,
            duration_seconds=duration_seconds,
            number_of_videos=1,
            negative_prompt=NEGATIVE_PROMPT,
        )
        # Audio comes from the mix step, not the video model
        if self.model_id != "veo-2.0-generate-001":
            config.generate_audio = False

        operation = await client.aio.models.generate_videos(
            model=self.model_id,
            prompt=motion_prompt,
            image=types.Image(image_bytes=Path(image).read_bytes(), mime_type=mime_type),
            config=config,
        )
        logger.info(f"Submitted Veo job {operation.name} for {Path(image).name}")

        for _ in range(self._poll_max):
            if operation.done:
                break
            await asyncio.sleep(self._poll_interval)
            operation = await client.aio.operations.get(operation=operation)
        else:
            if not operation.done:
                raise TimeoutError(
                    f"Veo operation did not complete after {self._poll_max * self._poll_interval:.0f} seconds"
                )

        if getattr(operation, "error", None):
            raise RuntimeError(f"Video prediction failed: {operation.error}")

        response = operation.response
        if not response or not response.generated_videos:
            raise RuntimeError("Video prediction failed: no video in response (content filtered?)")

        video = response.generated_videos[0].video
        if video is None or not video.video_bytes:
            raise RuntimeError("Video prediction failed: no inline video bytes returned")
        return video.video_bytes
