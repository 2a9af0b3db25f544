"""Chrome DevTools Recorder (Puppeteer Replay) <-> agent action conversion."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from tabpilot.src.agent.actions import normalize_selector
from tabpilot.src.agent.models import (
    ActionType,
    AgentAction,
    ClickAction,
    ClickParams,
    HoverAction,
    NavigateAction,
    NavigateParams,
    ScrollAction,
    ScrollParams,
    SelectorParams,
    TypeAction,
    TypeParams,
    WaitForElementAction,
    WaitForElementParams,
)

_SPECIAL_PREFIXES = ("aria/", "xpath/", "text/", "pierce/")


class PuppeteerStep(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: str = ""
    url: Optional[str] = None
    selectors: Optional[List[List[str]]] = None
    offset_x: Optional[float] = Field(default=None, alias="offsetX")
    offset_y: Optional[float] = Field(default=None, alias="offsetY")
    value: Optional[Any] = None
    key: Optional[str] = None
    x: Optional[float] = None
    y: Optional[float] = None
    timeout: Optional[int] = None
    target: Optional[str] = None


class PuppeteerRecording(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    title: str = ""
    steps: List[PuppeteerStep] = Field(default_factory=list)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def primary_selector(selectors: Optional[Sequence[Sequence[str]]]) -> Optional[str]:
    """
    Pick one representative selector from a recorder locator list:
    an ``#id`` first, then any plain CSS, then the first candidate normalized.
    """
    firsts = [group[0] for group in (selectors or []) if group]
    if not firsts:
        return None
    for selector in firsts:
        if selector.startswith("#"):
            return selector
    for selector in firsts:
        if not selector.startswith(_SPECIAL_PREFIXES):
            return selector
    return normalize_selector(firsts[0])


def _step_to_action(step: PuppeteerStep) -> Optional[AgentAction]:
    kind = step.type
    if kind == "navigate":
        if not step.url:
            return None
        return NavigateAction(parameters=NavigateParams(url=step.url))

    if kind == "scroll":
        delta = int(step.y or 300)
        direction = "up" if delta < 0 else "down"
        return ScrollAction(parameters=ScrollParams(direction=direction, amount=abs(delta)))

    selector = primary_selector(step.selectors)
    if kind == "click":
        if not selector:
            return None
        return ClickAction(
            parameters=ClickParams(
                selector=selector,
                selectors=step.selectors,
                offset_x=step.offset_x,
                offset_y=step.offset_y,
            )
        )
    if kind == "change":
        if not selector or step.value in (None, ""):
            return None
        return TypeAction(
            parameters=TypeParams(selector=selector, selectors=step.selectors, text=str(step.value), clear=True)
        )
    if kind in ("keyDown", "keyUp"):
        if not step.key or not selector:
            return None
        return TypeAction(
            parameters=TypeParams(selector=selector, selectors=step.selectors, text=step.key, clear=False)
        )
    if kind == "hover":
        if not selector:
            return None
        return HoverAction(parameters=SelectorParams(selector=selector))
    if kind == "waitForElement":
        if not selector:
            return None
        return WaitForElementAction(
            parameters=WaitForElementParams(selector=selector, timeout=step.timeout or 30000)
        )
    return None


def puppeteer_to_actions(recording: PuppeteerRecording | Dict[str, Any]) -> List[AgentAction]:
    """``setViewport`` and unknown step types are skipped."""
    if not isinstance(recording, PuppeteerRecording):
        recording = PuppeteerRecording.model_validate(recording)
    actions: List[AgentAction] = []
    for step in recording.steps:
        action = _step_to_action(step)
        if action is not None:
            actions.append(action)
    return actions


def _action_to_step(action: AgentAction) -> Optional[Dict[str, Any]]:
    params = action.parameters
    if action.type is ActionType.NAVIGATE:
        return {"type": "navigate", "url": params.url, "assertedEvents": [{"type": "navigation", "url": params.url}]}
    if action.type is ActionType.CLICK:
        step: Dict[str, Any] = {
            "type": "click",
            "target": "main",
            "selectors": params.selectors or [[params.selector]],
        }
        if params.offset_x is not None:
            step["offsetX"] = params.offset_x
        if params.offset_y is not None:
            step["offsetY"] = params.offset_y
        return step
    if action.type is ActionType.TYPE:
        return {"type": "change", "selectors": params.selectors or [[params.selector]], "value": params.text or ""}
    if action.type is ActionType.SCROLL:
        amount = params.amount or 300
        return {"type": "scroll", "y": -amount if params.direction == "up" else amount}
    if action.type is ActionType.HOVER:
        return {"type": "hover", "selectors": [[params.selector]]}
    if action.type is ActionType.WAIT_FOR_ELEMENT:
        return {"type": "waitForElement", "selectors": [[params.selector]], "timeout": params.timeout}
    return None


def actions_to_puppeteer(actions: Sequence[AgentAction], title: Optional[str] = None) -> PuppeteerRecording:
    """Actions with no recorder equivalent (wait, extract, tab management...) are dropped."""
    steps: List[Dict[str, Any]] = [
        {
            "type": "setViewport",
            "width": 1280,
            "height": 720,
            "deviceScaleFactor": 1,
            "isMobile": False,
            "hasTouch": False,
            "isLandscape": True,
        }
    ]
    for action in actions:
        step = _action_to_step(action)
        if step is not None:
            steps.append(step)
    return PuppeteerRecording.model_validate(
        {"title": title or f"Recording {datetime.now(timezone.utc).isoformat()}", "steps": steps}
    )


def validate_recording(recording: Dict[str, Any]) -> Tuple[bool, List[str]]:
    errors: List[str] = []
    if not recording.get("title"):
        errors.append("Recording must have a title")
    steps = recording.get("steps")
    if not isinstance(steps, list):
        errors.append("Recording must have a steps array")
        return False, errors
    for index, step in enumerate(steps):
        if not isinstance(step, dict) or not step.get("type"):
            errors.append(f"Step {index} is missing type")
            continue
        kind = step["type"]
        if kind == "navigate" and not step.get("url"):
            errors.append(f"Navigate step {index} is missing url")
        if kind in ("click", "change", "hover") and not step.get("selectors"):
            errors.append(f"{kind} step {index} is missing selectors")
    return not errors, errors


def merge_recordings(recordings: Sequence[PuppeteerRecording]) -> PuppeteerRecording:
    if not recordings:
        raise ValueError("Cannot merge empty recordings list")
    merged: List[PuppeteerStep] = []
    viewport = next((s for s in recordings[0].steps if s.type == "setViewport"), None)
    if viewport is not None:
        merged.append(viewport)
    for recording in recordings:
        merged.extend(s for s in recording.steps if s.type != "setViewport")
    return PuppeteerRecording(
        title=f"Merged Recording {datetime.now(timezone.utc).isoformat()}",
        steps=merged,
    )
