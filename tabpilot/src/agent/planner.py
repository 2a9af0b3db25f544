"""
Agent planner

현재 페이지 상태를 보고 다음 액션을 결정합니다.
The oracle is external; this module owns prompt construction, tolerant
response parsing, the no-oracle exploration fallback and the give-up
heuristics consumed by the agent loop.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import ValidationError

from tabpilot.src.agent.actions import get_action_descriptions
from tabpilot.src.agent.errors import OracleContractError
from tabpilot.src.agent.models import (
    ActionType,
    ExecutionResult,
    ExtractAction,
    ExtractField,
    ExtractParams,
    PlanningRequest,
    PlanningResponse,
    ScrollAction,
    ScrollParams,
    parse_action,
)
from tabpilot.src.llm.base import PlanningOracle

DOM_PREVIEW_CHARS = 3000
TEXT_PREVIEW_CHARS = 2000
HISTORY_PREVIEW = 5

_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class GiveUpCheck:
    should_give_up: bool
    reason: str = ""


def should_give_up(
    history: Sequence[ExecutionResult],
    max_consecutive_failures: int = 5,
    loop_window: int = 3,
) -> GiveUpCheck:
    """
    최근 N개 모두 실패 또는 같은 액션 반복이면 포기합니다.

    Synthetic results (failed planning passes) count as failures but are
    left out of loop detection, since no action was actually repeated.
    """
    recent = list(history[-max_consecutive_failures:]) if max_consecutive_failures > 0 else []
    if recent and len(recent) >= max_consecutive_failures and all(not r.success for r in recent):
        return GiveUpCheck(
            True, f"Last {max_consecutive_failures} actions failed - unable to make progress"
        )

    executed = [r for r in history if not r.synthetic]
    if loop_window > 0 and len(executed) >= loop_window:
        window = executed[-loop_window:]
        first = window[0].action
        first_params = first.parameters_json()
        if all(
            r.action.type == first.type and r.action.parameters_json() == first_params
            for r in window
        ):
            return GiveUpCheck(True, "Stuck in a loop - repeating the same action")

    return GiveUpCheck(False)


def get_recovery_hints(history: Sequence[ExecutionResult]) -> str:
    """Advisory text derived from the last three failures; empty when there are none."""
    failures = [r for r in history[-3:] if not r.success]
    if not failures:
        return ""

    hints: List[str] = []
    for failure in failures:
        error = (failure.error or "").lower()
        if "not found" in error or "selector strategies failed" in error:
            hints.append(
                "- Previous element not found. Try scrolling or using a different selector (text-based, ID, or class)"
            )
        if "timeout" in error or "timed out" in error:
            hints.append(
                "- Previous action timed out. The element might be dynamically loaded. Try waiting longer or scrolling."
            )
        if failure.action.type is ActionType.CLICK:
            hints.append(
                "- Previous click failed. Ensure the element is visible and clickable. Try scrolling to it first."
            )
        if failure.action.type is ActionType.TYPE:
            hints.append("- Previous typing failed. Make sure the input field is focused and not disabled.")

    unique = list(dict.fromkeys(hints))
    if not unique:
        return ""
    return "\n\nRECOVERY HINTS:\n" + "\n".join(unique)


def _extract_json_object(raw: str) -> Dict[str, Any]:
    """Strip code fences and leading/trailing noise, then decode the outermost object."""
    cleaned = _FENCE_RE.sub("", raw or "").strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start < 0 or end <= start:
            raise OracleContractError("Response does not contain a JSON object")
        try:
            parsed = json.loads(cleaned[start:end + 1])
        except json.JSONDecodeError as exc:
            raise OracleContractError(f"Invalid JSON: {exc.msg}") from exc
    if not isinstance(parsed, dict):
        raise OracleContractError("Response JSON must be an object")
    return parsed


def _pick(payload: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return None


def parse_planning_response(raw: str) -> PlanningResponse:
    """
    Decode raw oracle text into a PlanningResponse.

    Raises:
        OracleContractError: unparseable text or a contract violation
    """
    payload = _extract_json_object(raw)

    reasoning = payload.get("reasoning")
    if not isinstance(reasoning, str):
        raise OracleContractError("Missing or invalid 'reasoning' field")

    goal_achieved = _pick(payload, "goalAchieved", "goal_achieved")
    if not isinstance(goal_achieved, bool):
        raise OracleContractError("Missing or invalid 'goalAchieved' field")

    confidence = payload.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise OracleContractError("Missing or invalid 'confidence' field")
    confidence = min(1.0, max(0.0, float(confidence)))

    if goal_achieved:
        return PlanningResponse(reasoning=reasoning, goal_achieved=True, confidence=confidence)

    raw_action = payload.get("action")
    if not isinstance(raw_action, dict):
        raise OracleContractError("Missing or invalid 'action' field")
    if not isinstance(raw_action.get("type"), str) or not raw_action["type"]:
        raise OracleContractError("Action must have a 'type' field")
    if not isinstance(raw_action.get("parameters"), dict):
        raise OracleContractError("Action must have a 'parameters' object")

    try:
        action = parse_action(
            {
                "type": raw_action["type"],
                "parameters": raw_action["parameters"],
                "reasoning": raw_action.get("reasoning") or "",
            }
        )
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        detail = first.get("msg", str(exc))
        raise OracleContractError(f"Invalid action '{raw_action['type']}': {detail}") from exc

    return PlanningResponse(
        reasoning=reasoning,
        goal_achieved=False,
        confidence=confidence,
        action=action,
    )


class AgentPlanner:
    """LLM 기반 다음 액션 결정기"""

    def __init__(
        self,
        oracle: Optional[PlanningOracle] = None,
        log_callback: Optional[Callable[[str], None]] = None,
    ):
        self.oracle = oracle
        self._log_callback = log_callback

    def _log(self, message: str):
        print(f"[AgentPlanner] {message}")
        if self._log_callback:
            self._log_callback(message)

    async def plan_next_action(self, request: PlanningRequest) -> PlanningResponse:
        """
        다음 액션 결정

        Never raises: transport failures and contract violations come back
        as a zero-confidence response with ``error`` set.
        """
        if self.oracle is None:
            return self.plan_without_llm(request)

        system_prompt = self.build_system_prompt()
        user_prompt = self.build_user_prompt(request)
        try:
            raw = await self.oracle.complete(system_prompt, user_prompt, request.context.screenshot or None)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            self._log(f"❌ Oracle call failed: {message}")
            return PlanningResponse(reasoning=f"Planning failed: {message}", error=message)

        self._log(f"🤖 Raw response ({len(raw or '')} chars): {(raw or '')[:500]}")
        response = self.parse_response(raw)
        if response.action is not None:
            self._log(
                f"📋 {response.action.type.value} {json.dumps(response.action.parameters_json(), ensure_ascii=False)} "
                f"(confidence {response.confidence:.2f})"
            )
        elif response.goal_achieved:
            self._log(f"📋 Goal achieved (confidence {response.confidence:.2f})")
        return response

    def parse_response(self, raw: str) -> PlanningResponse:
        try:
            return parse_planning_response(raw)
        except OracleContractError as exc:
            self._log(f"❌ Error parsing response: {exc}")
            return PlanningResponse(
                reasoning=f"Failed to parse LLM response: {exc}",
                goal_achieved=False,
                confidence=0.0,
                action=None,
                error=str(exc),
            )

    def plan_without_llm(self, request: PlanningRequest) -> PlanningResponse:
        """오라클 없이: 스크롤 3회 후 body 텍스트 추출"""
        scrolls = sum(1 for r in request.action_history if r.action.type is ActionType.SCROLL)
        if scrolls >= 3:
            return PlanningResponse(
                reasoning="Attempting basic data extraction after exploration",
                confidence=0.3,
                action=ExtractAction(
                    parameters=ExtractParams(fields={"text": ExtractField(selector="body", type="text")})
                ),
            )
        return PlanningResponse(
            reasoning="Exploring page by scrolling (LLM not available)",
            confidence=0.5,
            action=ScrollAction(parameters=ScrollParams(direction="down", amount=500)),
        )

    @staticmethod
    def build_system_prompt() -> str:
        return f"""You are an autonomous web browsing agent. Your job is to achieve user goals by interacting with web pages.

CAPABILITIES:
{get_action_descriptions()}

RESPONSE FORMAT:
You must respond with a JSON object in the following format:
{{
  "reasoning": "Explain your thought process and why you chose this action",
  "goalAchieved": false,
  "confidence": 0.85,
  "action": {{
    "type": "action_type",
    "parameters": {{}},
    "reasoning": "Why this specific action"
  }}
}}

If the goal is achieved, set "goalAchieved" to true and "action" to null.

IMPORTANT RULES:
1. You can see a screenshot of the current page - use it to understand the visual layout
2. You also get a list of interactive elements and the page text - use them to find exact selectors
3. For selectors, prefer IDs and classes, but you can also use text content (e.g., "Sign In")
4. Do NOT use jQuery-style selectors like :contains() - they are not valid CSS
   - Use standard CSS selectors: #id, .class, tag.class, [attribute="value"]
   - For text-based selection, use the text directly or prefix it with "text:"
5. Take small, deliberate steps
6. If you can't find an element, try scrolling first
7. If something fails repeatedly, try a different approach
8. Your confidence score (0 to 1) should reflect how certain you are the action will succeed

EXAMPLES:
{{"reasoning": "I can see a 'Search' button.", "goalAchieved": false, "confidence": 0.9,
  "action": {{"type": "click", "parameters": {{"selector": "button.search-btn"}}, "reasoning": "Submit the search"}}}}

{{"reasoning": "I need to enter the search term first.", "goalAchieved": false, "confidence": 0.95,
  "action": {{"type": "type", "parameters": {{"selector": "input[name='q']", "text": "machine learning", "clear": true}},
  "reasoning": "Entering the search query"}}}}

{{"reasoning": "All product data is visible.", "goalAchieved": false, "confidence": 0.85,
  "action": {{"type": "extract", "parameters": {{"schema": {{"names": {{"selector": ".product-name", "type": "text", "multiple": true}}}}}},
  "reasoning": "Extracting product names"}}}}

{{"reasoning": "I have extracted everything. The goal is complete.", "goalAchieved": true, "confidence": 1.0, "action": null}}

RESPOND ONLY WITH THE JSON OBJECT. DO NOT include any markdown formatting, code blocks, or additional text."""

    @staticmethod
    def build_user_prompt(request: PlanningRequest) -> str:
        context = request.context
        parts: List[str] = [
            f"GOAL: {request.goal}",
            "",
            "CURRENT PAGE:",
            f"URL: {context.url}",
            f"Title: {context.title}",
            "",
        ]

        if context.simplified_dom:
            parts.append("INTERACTIVE ELEMENTS:")
            parts.append(context.simplified_dom[:DOM_PREVIEW_CHARS])
            if len(context.simplified_dom) > DOM_PREVIEW_CHARS:
                parts.append("... (truncated)")
            parts.append("")

        if context.page_text:
            parts.append("PAGE TEXT:")
            parts.append(context.page_text[:TEXT_PREVIEW_CHARS])
            if len(context.page_text) > TEXT_PREVIEW_CHARS:
                parts.append("... (truncated)")
            parts.append("")

        if request.action_history:
            parts.append("PREVIOUS ACTIONS:")
            for result in request.action_history[-HISTORY_PREVIEW:]:
                status = "✓" if result.success else "✗"
                params = json.dumps(result.action.parameters_json(), ensure_ascii=False)
                parts.append(f"{status} {result.action.type.value}: {params}")
                if not result.success and result.error:
                    parts.append(f"  Error: {result.error}")
            parts.append("")

        parts.append(f"ITERATION: {request.iteration}/{request.max_iterations}")
        if request.recovery_hints:
            parts.append(request.recovery_hints.strip("\n"))
        parts.append("")
        parts.append(
            "Based on the screenshot, interactive elements and context above, "
            "what should be the next action to achieve the goal?"
        )
        parts.append("")
        parts.append("Remember: Respond ONLY with a JSON object, no markdown or code blocks.")
        return "\n".join(parts)
