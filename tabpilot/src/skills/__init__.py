"""Skill / recipe persistence, interaction recording and Chrome Recorder conversion."""
from tabpilot.src.skills.puppeteer import (
    PuppeteerRecording,
    actions_to_puppeteer,
    merge_recordings,
    puppeteer_to_actions,
    validate_recording,
)
from tabpilot.src.skills.store import SkillNotFoundError, SkillStore
from tabpilot.src.skills.recorder import RecordingManager, RecordingSession

__all__ = [
    "PuppeteerRecording",
    "RecordingManager",
    "RecordingSession",
    "SkillNotFoundError",
    "SkillStore",
    "actions_to_puppeteer",
    "merge_recordings",
    "puppeteer_to_actions",
    "validate_recording",
]
