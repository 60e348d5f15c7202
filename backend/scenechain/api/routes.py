"""API route handlers and Pydantic response schemas."""

import logging
import uuid
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse
from pydantic import BaseModel, ValidationError

from scenechain import __version__
from scenechain.orchestrator.errors import ErrorKind, PipelineError
from scenechain.orchestrator.pipeline import PipelineOrchestrator
from scenechain.schemas.generation import GenerationRequest, ImageOptions, Session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

ERROR_STATUS = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.AUTHENTICATION: 401,
    ErrorKind.PERMISSION_DENIED: 403,
    ErrorKind.RESOURCE_NOT_FOUND: 404,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.SERVICE_UNAVAILABLE: 503,
    ErrorKind.TIMEOUT: 504,
}

ALLOWED_IMAGE_TYPES = {"image/png", "image/jpeg", "image/jpg", "image/webp"}


def http_status_for(kind: ErrorKind) -> int:
    return ERROR_STATUS.get(kind, 500)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class GenerateResponse(BaseModel):
    session_id: str
    status: str
    status_url: str


class ProgressResponse(BaseModel):
    session_id: str
    status: str
    percent: int
    current_stage: Optional[str] = None
    error: Optional[str] = None


class CancelResponse(BaseModel):
    session_id: str
    cancelled: bool


class HealthResponse(BaseModel):
    status: str
    version: str
    ffmpeg: bool
    active_sessions: int


def _orchestrator(request: Request) -> PipelineOrchestrator:
    return request.app.state.orchestrator


def _get_session_or_404(orchestrator: PipelineOrchestrator, session_id: str) -> Session:
    session = orchestrator.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/generate", status_code=202, response_model=GenerateResponse)
async def generate(
    request: Request,
    image: UploadFile = File(...),
    description: str = Form(...),
    scene_count: Optional[int] = Form(None),
    include_voiceover: bool = Form(False),
    include_music: bool = Form(False),
    image_provider: str = Form("nano-banana"),
    output_format: str = Form("png"),
    include_original_anchor: bool = Form(True),
):
    """Upload a reference image and start a generation session."""
    orchestrator = _orchestrator(request)

    if image.content_type not in ALLOWED_IMAGE_TYPES:
        raise HTTPException(
            status_code=422,
            detail=f"Unsupported image type {image.content_type}; expected one of {sorted(ALLOWED_IMAGE_TYPES)}",
        )

    try:
        generation_request = GenerationRequest(
            scene_count=(
                orchestrator.settings.pipeline.default_scenes if scene_count is None else scene_count
            ),
            description=description,
            include_voiceover=include_voiceover,
            include_music=include_music,
            image_options=ImageOptions(
                provider=image_provider,
                output_format=output_format,
                include_original_anchor=include_original_anchor,
            ),
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))

    data = await image.read()
    if not data:
        raise HTTPException(status_code=422, detail="Uploaded image is empty")
    suffix = Path(image.filename or "upload.png").suffix or ".png"
    upload_path = orchestrator.files.save_upload(f"{uuid.uuid4().hex}{suffix}", data)

    try:
        session_id = await orchestrator.start_generation(generation_request, upload_path)
    except PipelineError:
        # Rejected before a session exists; nothing else references the upload
        upload_path.unlink(missing_ok=True)
        raise
    logger.info(f"Accepted generation {session_id} ({generation_request.scene_count} scenes)")
    return GenerateResponse(
        session_id=session_id,
        status="pending",
        status_url=f"/api/sessions/{session_id}/progress",
    )


@router.get("/sessions/{session_id}", response_model=Session)
async def get_session(session_id: str, request: Request):
    return _get_session_or_404(_orchestrator(request), session_id)


@router.get("/sessions/{session_id}/progress", response_model=ProgressResponse)
async def get_progress(session_id: str, request: Request):
    orchestrator = _orchestrator(request)
    session = _get_session_or_404(orchestrator, session_id)
    progress = orchestrator.get_progress(session_id)
    return ProgressResponse(
        session_id=session_id,
        status=session.status,
        percent=progress.percent,
        current_stage=progress.current_stage,
        error=session.error,
    )


@router.get("/sessions/{session_id}/download")
async def download_video(session_id: str, request: Request):
    """Download the final MP4.

    Returns 409 if the session is not completed.
    Returns 404 if the output file does not exist.
    """
    session = _get_session_or_404(_orchestrator(request), session_id)

    if session.status != "completed":
        raise HTTPException(
            status_code=409,
            detail=f"Session not ready for download (status: {session.status})",
        )
    if not session.final_output_path:
        raise HTTPException(status_code=404, detail="Output file path not set")

    output_path = Path(session.final_output_path)
    if not output_path.exists():
        raise HTTPException(status_code=404, detail="Output file not found on disk")

    return FileResponse(
        path=str(output_path),
        media_type="video/mp4",
        filename=f"video_{session_id}.mp4",
    )


@router.post("/sessions/{session_id}/cancel", response_model=CancelResponse)
async def cancel_session(session_id: str, request: Request):
    orchestrator = _orchestrator(request)
    session = _get_session_or_404(orchestrator, session_id)
    if not orchestrator.cancel(session_id):
        raise HTTPException(
            status_code=409,
            detail=f"Session cannot be cancelled (status: {session.status})",
        )
    return CancelResponse(session_id=session_id, cancelled=True)


@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    orchestrator = _orchestrator(request)
    ffmpeg_ok = orchestrator.assembler.engine.available()
    return HealthResponse(
        status="ok" if ffmpeg_ok else "degraded",
        version=__version__,
        ffmpeg=ffmpeg_ok,
        active_sessions=orchestrator.running_count,
    )


def pipeline_error_payload(error: PipelineError) -> dict:
    return {
        "error": error.message,
        "kind": error.kind.value,
        "retryable": error.retryable,
    }
