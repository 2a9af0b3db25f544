"""In-memory page host and scripted oracle used across the test suite."""
from __future__ import annotations

import asyncio
import json
import re
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest

from tabpilot.src.agent.helpers_js import HELPER_CHECK_SCRIPT, HELPER_SCRIPT, PAGE_LOAD_SCRIPT
from tabpilot.src.skills.recorder import RECORDER_DRAIN_SCRIPT, RECORDER_SCRIPT
from tabpilot.src.utils.config import AgentConfig

_CALL_RE = re.compile(r"window\.__tabpilotHelpers\.(\w+)\((.*)\)$", re.S)


class FakeTab:
    """Answers helper calls from Python; selectors in ``failing_selectors`` never resolve."""

    def __init__(self, tab_id: str = "tab-1", url: str = "about:blank", title: str = "Fake page"):
        self.id = tab_id
        self.url = url
        self.title = title
        self.text = "Welcome to the fake page"
        self.screenshot_bytes = b"\x89PNG fake"
        self.extract_data: Any = {}
        self.failing_selectors: Set[str] = set()
        self.failing_methods: Dict[str, Exception] = {}
        self.navigate_error: Optional[Exception] = None
        self.page_load_hangs = False
        self.helpers_injected = False
        self.injections = 0
        self.recorder_installed = False
        self.recorded_steps: List[Dict[str, Any]] = []
        self.navigations: List[str] = []
        self.calls: List[Tuple[str, list]] = []

    def method_calls(self, method: str) -> List[list]:
        return [args for name, args in self.calls if name == method]

    async def navigate(self, url: str) -> None:
        if self.navigate_error is not None:
            raise self.navigate_error
        self.navigations.append(url)
        self.url = url
        self.helpers_injected = False
        self.recorder_installed = False

    async def go_back(self) -> None:
        self.navigations.append("back")

    async def go_forward(self) -> None:
        self.navigations.append("forward")

    async def reload(self) -> None:
        self.navigations.append("reload")
        self.helpers_injected = False

    async def screenshot(self) -> bytes:
        return self.screenshot_bytes

    async def get_text(self) -> str:
        return self.text

    async def run_script(self, code: str) -> Any:
        if code == HELPER_CHECK_SCRIPT:
            return self.helpers_injected
        if code == HELPER_SCRIPT:
            self.helpers_injected = True
            self.injections += 1
            return True
        if code == PAGE_LOAD_SCRIPT:
            if self.page_load_hangs:
                await asyncio.sleep(3600)
            return True
        if code == RECORDER_SCRIPT:
            self.recorder_installed = True
            return True
        if code == RECORDER_DRAIN_SCRIPT:
            if not self.recorder_installed:
                return None
            steps, self.recorded_steps = self.recorded_steps, []
            return steps

        match = _CALL_RE.match(code)
        if match is None:
            raise AssertionError(f"Unexpected script: {code[:80]}")
        method = match.group(1)
        args = json.loads(f"[{match.group(2)}]")
        self.calls.append((method, args))
        if method in self.failing_methods:
            raise self.failing_methods[method]
        return self._respond(method, args)

    def _respond(self, method: str, args: list) -> Any:
        if method == "interactiveElements":
            return [{"tag": "button", "selector": "#submit", "text": "Submit"}]
        if method == "extractData":
            return {"success": True, "data": self.extract_data}
        if method == "scroll":
            target = args[2] if len(args) > 2 else None
            if target and target in self.failing_selectors:
                return {"success": False, "error": f"Element not found: {target}"}
            return {"success": True}

        selector = args[0]
        if method == "exists":
            return {"success": True, "found": selector not in self.failing_selectors}
        if selector in self.failing_selectors:
            return {"success": False, "error": f"Element not found: {selector}"}
        if method == "getText":
            return {"success": True, "text": f"text of {selector}"}
        if method == "getAttribute":
            return {"success": True, "value": f"{args[1]} of {selector}"}
        return {"success": True}


class FakeHost:
    def __init__(self) -> None:
        self.tabs: Dict[str, FakeTab] = {}
        self.active_tab_id: Optional[str] = None
        self._counter = 0

    def add_tab(self, url: str = "about:blank") -> FakeTab:
        self._counter += 1
        tab = FakeTab(f"tab-{self._counter}", url)
        self.tabs[tab.id] = tab
        self.active_tab_id = tab.id
        return tab

    def get_tab(self, tab_id: str) -> Optional[FakeTab]:
        return self.tabs.get(tab_id)

    def get_active_tab(self) -> Optional[FakeTab]:
        return self.tabs.get(self.active_tab_id) if self.active_tab_id else None

    async def create_tab(self, url: Optional[str] = None) -> FakeTab:
        tab = self.add_tab(url or "about:blank")
        if url:
            tab.navigations.append(url)
        return tab

    async def switch_active_tab(self, tab_id: str) -> bool:
        if tab_id not in self.tabs:
            return False
        self.active_tab_id = tab_id
        return True

    async def close_tab(self, tab_id: str) -> bool:
        if self.tabs.pop(tab_id, None) is None:
            return False
        if self.active_tab_id == tab_id:
            self.active_tab_id = next(iter(self.tabs), None)
        return True


class ScriptedOracle:
    """Returns queued raw responses in order; the last one repeats forever."""

    def __init__(self, responses: List[Any]):
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []

    async def complete(self, system_prompt: str, user_prompt: str, screenshot_base64: Optional[str] = None) -> str:
        self.calls.append({"system": system_prompt, "user": user_prompt, "screenshot": screenshot_base64})
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item

    @staticmethod
    def action(action_type: str, confidence: float = 0.9, **parameters: Any) -> str:
        return json.dumps(
            {
                "reasoning": f"next: {action_type}",
                "goalAchieved": False,
                "confidence": confidence,
                "action": {"type": action_type, "parameters": parameters, "reasoning": "scripted"},
            }
        )

    @staticmethod
    def achieved(reasoning: str = "Goal reached", confidence: float = 1.0) -> str:
        return json.dumps({"reasoning": reasoning, "goalAchieved": True, "confidence": confidence, "action": None})


@pytest.fixture
def config() -> AgentConfig:
    return AgentConfig.fast()


@pytest.fixture
def host() -> FakeHost:
    fake = FakeHost()
    fake.add_tab("https://example.com")
    return fake


@pytest.fixture
def tab(host: FakeHost) -> FakeTab:
    return host.tabs["tab-1"]


@pytest.fixture
def oracle_factory():
    return ScriptedOracle
