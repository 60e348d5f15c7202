"""Pydantic models for generation requests, sessions, and stage artifacts."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SessionState = Literal["pending", "processing", "completed", "failed"]
StageState = Literal["pending", "processing", "completed", "error"]
StageName = Literal["prompts", "images", "videos", "audio", "merge"]


class ImageOptions(BaseModel):
    """Image-provider options for the images stage."""

    model_config = ConfigDict(frozen=True)

    provider: str = "nano-banana"
    output_format: Literal["png", "jpg"] = "png"
    include_original_anchor: bool = True


class GenerationRequest(BaseModel):
    """Caller request. Immutable once a session starts."""

    model_config = ConfigDict(frozen=True)

    scene_count: int = Field(ge=1, le=5)
    description: str = Field(min_length=1)
    include_voiceover: bool = False
    include_music: bool = False
    image_options: ImageOptions = Field(default_factory=ImageOptions)

    @field_validator("description")
    @classmethod
    def strip_description(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("description must not be blank")
        return v


class StageStatus(BaseModel):
    """Status record for one pipeline stage."""

    stage: StageName
    status: StageState = "pending"
    message: Optional[str] = None
    progress: Optional[float] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    error: Optional[str] = None
    retry_count: Optional[int] = None


class Session(BaseModel):
    """One end-to-end generation request and its evolving state."""

    session_id: str
    request: GenerationRequest
    reference_image_path: str
    status: SessionState = "pending"
    stages: list[StageStatus]
    current_stage: Optional[StageName] = None
    created_at: datetime
    updated_at: datetime
    error: Optional[str] = None
    error_details: Optional[dict] = None
    final_output_path: Optional[str] = None
    restart_count: int = 0

    def stage(self, name: str) -> Optional[StageStatus]:
        for stage_status in self.stages:
            if stage_status.stage == name:
                return stage_status
        return None


class ProgressInfo(BaseModel):
    """Progress snapshot exposed to callers."""

    percent: int = 0
    current_stage: Optional[StageName] = None


class ScenePrompt(BaseModel):
    """Image-generation and video-motion prompt pair for one scene."""

    model_config = ConfigDict(frozen=True)

    scene_number: int = Field(ge=1)
    image_prompt: str
    video_prompt: str


class GeneratedPrompts(BaseModel):
    """Output of the prompts stage."""

    model_config = ConfigDict(frozen=True)

    scene_prompts: list[ScenePrompt]
    voiceover_script: Optional[str] = None
    music_prompt: Optional[str] = None


class SceneAssets(BaseModel):
    """Generated artifacts for one scene."""

    scene_number: int
    image_path: str
    video_path: str


class AudioPaths(BaseModel):
    """Audio tracks produced by the audio stage."""

    voiceover_path: Optional[str] = None
    music_path: Optional[str] = None


class VoiceParams(BaseModel):
    """Voice settings passed to the speech synthesizer."""

    voice_id: Optional[str] = None
    model: Optional[str] = None
    stability: float = 0.5
    similarity_boost: float = 0.75
    style: float = 0.0
    use_speaker_boost: bool = True


class Artifacts(BaseModel):
    """Append-only per-session record of each stage's output."""

    session_id: str
    prompts: Optional[GeneratedPrompts] = None
    image_paths: Optional[list[str]] = None
    video_paths: Optional[list[str]] = None
    audio_paths: Optional[AudioPaths] = None
    final_video_path: Optional[str] = None

    def scene_assets(self) -> list[SceneAssets]:
        return [
            SceneAssets(scene_number=i + 1, image_path=image, video_path=video)
            for i, (image, video) in enumerate(
                zip(self.image_paths or [], self.video_paths or [])
            )
        ]


class MergeResult(BaseModel):
    """Output of the media assembler."""

    model_config = ConfigDict(frozen=True)

    output_path: str
    concatenated_path: str
    mode: Literal["hard_cut", "crossfade"]
    audio_sources: list[Literal["original", "voice", "music"]] = Field(default_factory=list)
    gains: dict[str, float] = Field(default_factory=dict)
    duration_seconds: Optional[float] = None
