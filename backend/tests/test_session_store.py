"""SessionStore: fixed stage lists, monotonic transitions, idempotent writes."""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from scenechain.orchestrator.errors import StageTransitionError
from scenechain.orchestrator.session_store import SessionStore
from scenechain.schemas.generation import GenerationRequest


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def _request(**kwargs) -> GenerationRequest:
    kwargs.setdefault("scene_count", 3)
    kwargs.setdefault("description", "a calm morning")
    return GenerationRequest(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return SessionStore(clock=clock)


@pytest.mark.parametrize(
    "voiceover,music,stages",
    [
        (False, False, ["prompts", "images", "videos", "merge"]),
        (False, True, ["prompts", "images", "videos", "audio", "merge"]),
        (True, False, ["prompts", "images", "videos", "audio", "merge"]),
        (True, True, ["prompts", "images", "videos", "audio", "merge"]),
    ],
)
def test_stage_list_fixed_at_creation(store, voiceover, music, stages):
    session = store.create(_request(include_voiceover=voiceover, include_music=music), "ref.png")
    assert [s.stage for s in session.stages] == stages
    assert session.status == "pending"
    assert all(s.status == "pending" for s in session.stages)


def test_repeated_processing_keeps_start_time(store, clock):
    session = store.create(_request(), "ref.png")
    store.set_stage(session.session_id, "prompts", "processing", message="start")
    first = store.get(session.session_id).stage("prompts").start_time

    clock.advance(seconds=30)
    store.set_stage(session.session_id, "prompts", "processing", message="still going", progress=50.0)
    record = store.get(session.session_id).stage("prompts")

    assert record.start_time == first
    assert record.message == "still going"
    assert record.progress == 50.0


def test_completed_sets_end_time_once(store, clock):
    sid = store.create(_request(), "ref.png").session_id
    store.set_stage(sid, "prompts", "processing")
    store.set_stage(sid, "prompts", "completed")
    end = store.get(sid).stage("prompts").end_time
    clock.advance(seconds=5)
    store.set_stage(sid, "prompts", "completed")
    assert store.get(sid).stage("prompts").end_time == end


def test_only_one_stage_processing(store):
    sid = store.create(_request(), "ref.png").session_id
    store.set_stage(sid, "prompts", "processing")
    with pytest.raises(StageTransitionError):
        store.set_stage(sid, "images", "processing")


@pytest.mark.parametrize("regression", ["pending", "processing"])
def test_completed_stage_never_regresses(store, regression):
    sid = store.create(_request(), "ref.png").session_id
    store.set_stage(sid, "prompts", "processing")
    store.set_stage(sid, "prompts", "completed")
    with pytest.raises(StageTransitionError):
        store.set_stage(sid, "prompts", regression)


def test_pending_cannot_jump_to_completed(store):
    sid = store.create(_request(), "ref.png").session_id
    with pytest.raises(StageTransitionError):
        store.set_stage(sid, "prompts", "completed")


def test_terminal_session_status(store):
    sid = store.create(_request(), "ref.png").session_id
    store.set_status(sid, "processing")
    store.set_status(sid, "completed")
    with pytest.raises(StageTransitionError):
        store.set_status(sid, "processing")


def test_current_stage_pointer(store):
    sid = store.create(_request(), "ref.png").session_id
    store.set_stage(sid, "prompts", "processing")
    assert store.get(sid).current_stage == "prompts"
    store.set_stage(sid, "prompts", "completed")
    assert store.get(sid).current_stage is None


def test_progress_is_completed_over_total(store):
    sid = store.create(_request(include_music=True), "ref.png").session_id
    for stage in ("prompts", "images"):
        store.set_stage(sid, stage, "processing")
        store.set_stage(sid, stage, "completed")
    store.set_stage(sid, "videos", "processing")

    progress = store.progress(sid)
    assert progress.percent == 40
    assert progress.current_stage == "videos"


def test_unknown_session_is_a_noop(store):
    store.set_status("missing", "processing")
    store.set_stage("missing", "prompts", "processing")
    assert store.get("missing") is None
    assert store.progress("missing").percent == 0


def test_readers_get_copies(store):
    sid = store.create(_request(), "ref.png").session_id
    snapshot = store.get(sid)
    snapshot.stages[0].status = "completed"
    assert store.get(sid).stages[0].status == "pending"


def test_restart_only_from_failed(store):
    sid = store.create(_request(), "ref.png").session_id
    store.set_status(sid, "processing")
    store.set_stage(sid, "prompts", "processing")
    store.set_stage(sid, "prompts", "error", error="boom")
    with pytest.raises(StageTransitionError):
        store.restart(sid)

    store.set_status(sid, "failed", error="boom", error_details={"kind": "timeout"})
    store.restart(sid)
    session = store.get(sid)
    assert session.status == "processing"
    assert session.restart_count == 1
    assert session.error is None and session.error_details is None
    assert all(s.status == "pending" and s.start_time is None for s in session.stages)


def test_reap_removes_expired_sessions(store, clock):
    old = store.create(_request(), "ref.png").session_id
    clock.advance(hours=23)
    fresh = store.create(_request(), "ref.png").session_id
    clock.advance(hours=2)

    assert store.reap(timedelta(hours=24)) == 1
    assert store.get(old) is None
    assert store.get(fresh) is not None
    assert store.count() == 1


def test_concurrent_sessions_are_independent(store):
    ids = [store.create(_request(), "ref.png").session_id for _ in range(20)]

    def run(sid):
        store.set_status(sid, "processing")
        for stage in ("prompts", "images", "videos", "merge"):
            store.set_stage(sid, stage, "processing")
            store.set_stage(sid, stage, "completed")
        store.set_status(sid, "completed")

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(run, ids))

    assert all(store.progress(sid).percent == 100 for sid in ids)
    assert store.active_sessions() == []
