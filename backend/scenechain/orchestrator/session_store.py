"""In-memory registry of generation sessions and their stage statuses.

The store is the single source of truth for progress queries. It is not
durable: stage artifacts are persisted separately by the checkpoint
service. Readers always receive deep copies, so no observer can see a
half-applied update (e.g. a stage in processing without a start_time).
"""

import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from scenechain.orchestrator.errors import StageTransitionError
from scenechain.orchestrator.state import (
    can_transition_session,
    can_transition_stage,
    stages_for_request,
)
from scenechain.schemas.generation import (
    GenerationRequest,
    ProgressInfo,
    Session,
    StageStatus,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    """Thread-safe in-memory session table keyed by session id.

    Args:
        clock: Callable returning the current UTC time (injectable for tests)
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.RLock()
        self._clock = clock

    def create(self, request: GenerationRequest, reference_image_path: str) -> Session:
        """Create a session with its fixed stage list."""
        now = self._clock()
        session = Session(
            session_id=uuid.uuid4().hex,
            request=request,
            reference_image_path=str(reference_image_path),
            stages=[
                StageStatus(stage=name)
                for name in stages_for_request(request.include_voiceover, request.include_music)
            ],
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._sessions[session.session_id] = session

        logger.info(
            f"Created session {session.session_id}: scenes={request.scene_count} "
            f"voiceover={request.include_voiceover} music={request.include_music}"
        )
        return session.model_copy(deep=True)

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.model_copy(deep=True) if session else None

    def set_status(
        self,
        session_id: str,
        status: str,
        error: Optional[str] = None,
        error_details: Optional[dict] = None,
    ) -> None:
        """Move the session to a new overall status.

        Raises:
            StageTransitionError: If the transition regresses the session
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                logger.warning(f"Attempted to update non-existent session {session_id}")
                return
            if not can_transition_session(session.status, status):
                raise StageTransitionError(
                    f"Session {session_id}: illegal transition {session.status} -> {status}"
                )
            session.status = status
            if error is not None:
                session.error = error
                session.error_details = error_details
            session.updated_at = self._clock()

        logger.info(f"Session {session_id} status: {status}" + (f" ({error})" if error else ""))

    def set_stage(
        self,
        session_id: str,
        stage: str,
        status: str,
        message: Optional[str] = None,
        progress: Optional[float] = None,
        error: Optional[str] = None,
        retry_count: Optional[int] = None,
    ) -> None:
        """Update one stage's status record.

        Re-setting the current status is idempotent with respect to
        timestamps: start_time is only set when absent, end_time likewise.

        Raises:
            StageTransitionError: On a regression or a second processing stage
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                logger.warning(f"Attempted to update stage {stage} for non-existent session {session_id}")
                return
            record = session.stage(stage)
            if record is None:
                logger.warning(f"Session {session_id} has no stage {stage}")
                return
            if not can_transition_stage(record.status, status):
                raise StageTransitionError(
                    f"Session {session_id}: stage {stage} cannot go {record.status} -> {status}"
                )
            if status == "processing":
                busy = [
                    s.stage for s in session.stages
                    if s.status == "processing" and s.stage != stage
                ]
                if busy:
                    raise StageTransitionError(
                        f"Session {session_id}: stage {busy[0]} is already processing"
                    )

            now = self._clock()
            record.status = status
            if message is not None:
                record.message = message
            if progress is not None:
                record.progress = progress
            if error is not None:
                record.error = error
            if retry_count is not None:
                record.retry_count = retry_count

            if status == "processing":
                if record.start_time is None:
                    record.start_time = now
                session.current_stage = stage
            elif status in ("completed", "error"):
                if record.end_time is None:
                    record.end_time = now
                if status == "completed" and record.progress is not None:
                    record.progress = 100.0
                if session.current_stage == stage:
                    session.current_stage = None
            session.updated_at = now

        logger.info(
            f"Session {session_id} stage {stage}: {status}"
            + (f" - {message}" if message else "")
            + (f" [error: {error}]" if error else "")
        )

    def set_final_output(self, session_id: str, path: str) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                logger.warning(f"Attempted to set final output for non-existent session {session_id}")
                return
            session.final_output_path = str(path)
            session.updated_at = self._clock()
        logger.info(f"Session {session_id} final output: {path}")

    def restart(self, session_id: str) -> None:
        """Explicit failure -> retry restart: reset every stage to pending.

        Raises:
            StageTransitionError: If the session is not failed
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                logger.warning(f"Attempted to restart non-existent session {session_id}")
                return
            if session.status != "failed":
                raise StageTransitionError(
                    f"Session {session_id}: only failed sessions can restart (status={session.status})"
                )
            session.stages = [StageStatus(stage=s.stage) for s in session.stages]
            session.current_stage = None
            session.status = "processing"
            session.error = None
            session.error_details = None
            session.final_output_path = None
            session.restart_count += 1
            session.updated_at = self._clock()
        logger.info(f"Session {session_id} restarted (restart #{session.restart_count})")

    def progress(self, session_id: str) -> ProgressInfo:
        """Percent of completed stages and the current stage pointer."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return ProgressInfo()
            total = len(session.stages)
            completed = sum(1 for s in session.stages if s.status == "completed")
            return ProgressInfo(
                percent=round(completed / total * 100),
                current_stage=session.current_stage,
            )

    def reap(self, max_age: timedelta) -> int:
        """Delete sessions created more than max_age ago.

        Returns:
            Number of sessions removed
        """
        cutoff = self._clock() - max_age
        with self._lock:
            expired = [sid for sid, s in self._sessions.items() if s.created_at < cutoff]
            for sid in expired:
                del self._sessions[sid]
            remaining = len(self._sessions)

        if expired:
            logger.info(f"Session cleanup removed {len(expired)} sessions, {remaining} remaining")
        return len(expired)

    def active_sessions(self) -> List[Session]:
        with self._lock:
            return [
                s.model_copy(deep=True)
                for s in self._sessions.values()
                if s.status in ("pending", "processing")
            ]

    def reference_images(self) -> List[str]:
        with self._lock:
            return [s.reference_image_path for s in self._sessions.values()]

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)
