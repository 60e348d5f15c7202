"""Collaborator contracts and shipped vendor clients."""

from scenechain.services.generators.base import (
    ImageGenerator,
    MusicSynthesizer,
    PromptGenerator,
    SpeechSynthesizer,
    VideoGenerator,
)
from scenechain.services.generators.registry import Collaborators, build_collaborators

__all__ = [
    "Collaborators",
    "ImageGenerator",
    "MusicSynthesizer",
    "PromptGenerator",
    "SpeechSynthesizer",
    "VideoGenerator",
    "build_collaborators",
]
