"""State machine constants and transition logic for the pipeline orchestrator.

Defines the ordered stage list and the legal status transitions for both
sessions and individual stages.
"""

from typing import Dict, FrozenSet, List

# Pipeline stages in execution order
PIPELINE_STAGES = {
    "prompts": "Generating scene prompts",
    "images": "Generating scene images with rolling reference",
    "videos": "Generating scene video clips",
    "audio": "Generating background audio",
    "merge": "Merging scene clips and audio",
}

# Session status transitions; failed -> processing only via explicit restart
SESSION_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"processing", "failed"}),
    "processing": frozenset({"completed", "failed"}),
    "completed": frozenset(),
    "failed": frozenset(),
}

# Stage status transitions
STAGE_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"processing"}),
    "processing": frozenset({"completed", "error"}),
    "completed": frozenset(),
    "error": frozenset(),
}

TERMINAL_SESSION_STATES = frozenset({"completed", "failed"})


def stages_for_request(include_voiceover: bool, include_music: bool) -> List[str]:
    """Return the fixed stage list for a session.

    The audio stage is present only when voiceover or music is requested;
    merge is always last.
    """
    stages = ["prompts", "images", "videos"]
    if include_voiceover or include_music:
        stages.append("audio")
    stages.append("merge")
    return stages


def can_transition_session(current: str, new: str) -> bool:
    """Check if a session may move from current to new status.

    Re-setting the same status is always allowed (idempotent writes).
    """
    return current == new or new in SESSION_TRANSITIONS.get(current, frozenset())


def can_transition_stage(current: str, new: str) -> bool:
    """Check if a stage may move from current to new status.

    Examples:
        >>> can_transition_stage("pending", "processing")
        True
        >>> can_transition_stage("completed", "pending")
        False
    """
    return current == new or new in STAGE_TRANSITIONS.get(current, frozenset())
