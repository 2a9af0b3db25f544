"""
Action executor

검증된 액션을 탭에서 실행하고 ExecutionResult 를 반환합니다.
``execute_action`` never raises: validation failures, unresolved selectors,
timeouts and host exceptions all come back as ``success=False`` results.
"""

from __future__ import annotations

import asyncio
import base64
import json
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from tabpilot.src.agent.actions import normalize_selector, normalize_url, validate_action
from tabpilot.src.agent.errors import (
    ActionTimeoutError,
    AgentError,
    HostError,
    ResolutionError,
)
from tabpilot.src.agent.helpers_js import (
    ensure_helper_script,
    helper_call,
    run_script,
    wait_for_page_load,
)
from tabpilot.src.agent.models import (
    MUTATING_ACTIONS,
    ActionType,
    AgentAction,
    ExecutionResult,
)
from tabpilot.src.host.base import PageHost, PageTab
from tabpilot.src.utils.config import AgentConfig

Handler = Callable[[Any, PageTab], Awaitable[Any]]


class ActionExecutor:
    """액션 종류별 핸들러 테이블 + 재시도 루프"""

    def __init__(
        self,
        host: PageHost,
        config: Optional[AgentConfig] = None,
        log_callback: Optional[Callable[[str], None]] = None,
    ):
        self.host = host
        self.config = config or AgentConfig()
        self._log_callback = log_callback
        self._handlers: Dict[ActionType, Handler] = {
            ActionType.NAVIGATE: self._execute_navigate,
            ActionType.GO_BACK: self._execute_go_back,
            ActionType.GO_FORWARD: self._execute_go_forward,
            ActionType.RELOAD: self._execute_reload,
            ActionType.CLICK: self._execute_click,
            ActionType.TYPE: self._execute_type,
            ActionType.SELECT: self._execute_select,
            ActionType.SCROLL: self._execute_scroll,
            ActionType.HOVER: self._execute_hover,
            ActionType.EXTRACT: self._execute_extract,
            ActionType.GET_TEXT: self._execute_get_text,
            ActionType.GET_ATTRIBUTE: self._execute_get_attribute,
            ActionType.CREATE_TAB: self._execute_create_tab,
            ActionType.SWITCH_TAB: self._execute_switch_tab,
            ActionType.CLOSE_TAB: self._execute_close_tab,
            ActionType.WAIT: self._execute_wait,
            ActionType.WAIT_FOR_ELEMENT: self._execute_wait_for_element,
            ActionType.COMPLETE: self._execute_complete,
        }
        missing = set(ActionType) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No executor handler for: {sorted(m.value for m in missing)}")

    @property
    def handled_types(self) -> frozenset:
        return frozenset(self._handlers)

    def _log(self, message: str):
        print(f"[AgentExecutor] {message}")
        if self._log_callback:
            self._log_callback(message)

    async def execute_action(
        self,
        action: AgentAction,
        tab: PageTab,
        retry_count: int = 0,
    ) -> ExecutionResult:
        """
        액션 1개 실행 (bounded retry)

        Args:
            action: 실행할 액션
            tab: 대상 탭
            retry_count: 이미 소진한 재시도 횟수

        Returns:
            마지막 시도의 ExecutionResult
        """
        started = time.monotonic()
        self._log(f"🔨 {action.type.value} {json.dumps(action.parameters_json(), ensure_ascii=False)}")
        if action.reasoning:
            self._log(f"   Reasoning: {action.reasoning}")

        validation_error = validate_action(action)
        if validation_error:
            self._log(f"   ❌ Validation Error: {validation_error}")
            return self._error_result(action, validation_error, started)

        handler = self._handlers[action.type]
        attempt = retry_count
        while True:
            try:
                data = await handler(action, tab)
            except AgentError as exc:
                error = str(exc) or exc.__class__.__name__
                retryable = exc.retryable
            except Exception as exc:
                error = str(exc) or exc.__class__.__name__
                retryable = True
            else:
                screenshot = None
                if action.type in MUTATING_ACTIONS:
                    screenshot = await self._capture_screenshot(tab)
                duration_ms = self._elapsed_ms(started)
                self._log(f"   ✅ Action succeeded ({duration_ms}ms)")
                return ExecutionResult(
                    success=True,
                    action=action,
                    data=data,
                    screenshot=screenshot,
                    duration_ms=duration_ms,
                )

            if action.type is ActionType.COMPLETE or not retryable or attempt >= self.config.max_retries:
                self._log(f"   ❌ Action failed after {attempt - retry_count + 1} attempt(s): {error}")
                return self._error_result(action, error, started)

            attempt += 1
            self._log(f"   ⚠️  Action failed, retrying (attempt {attempt}/{self.config.max_retries}): {error}")
            await self._sleep_ms(self.config.retry_delay_ms)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------
    async def _after_navigation(self, tab: PageTab) -> None:
        await wait_for_page_load(tab, self.config.page_load_timeout_ms, self.config.page_settle_ms)
        await ensure_helper_script(tab, self.config.script_timeout_ms)

    async def _execute_navigate(self, action, tab: PageTab) -> Any:
        url = normalize_url(action.parameters.url)
        try:
            await tab.navigate(url)
        except AgentError:
            raise
        except Exception as exc:
            raise HostError(f"Navigation failed: {exc}") from exc
        await self._after_navigation(tab)
        return {"url": url}

    async def _execute_go_back(self, action, tab: PageTab) -> Any:
        await tab.go_back()
        await self._after_navigation(tab)
        return {"url": tab.url}

    async def _execute_go_forward(self, action, tab: PageTab) -> Any:
        await tab.go_forward()
        await self._after_navigation(tab)
        return {"url": tab.url}

    async def _execute_reload(self, action, tab: PageTab) -> Any:
        await tab.reload()
        await self._after_navigation(tab)
        return {"url": tab.url}

    # ------------------------------------------------------------------
    # DOM interactions
    # ------------------------------------------------------------------
    async def _helper(self, tab: PageTab, method: str, *args: Any) -> Dict[str, Any]:
        result = await run_script(tab, helper_call(method, *args), self.config.script_timeout_ms)
        if not isinstance(result, dict):
            return {"success": False, "error": f"Unexpected helper result: {result!r}"}
        return result

    async def _with_locators(
        self,
        tab: PageTab,
        selector: str,
        groups: Optional[List[List[str]]],
        run: Callable[[str], Awaitable[Dict[str, Any]]],
    ) -> Dict[str, Any]:
        """
        Run ``run`` against locator candidates, group by group, stopping at the first success.
        Without groups the single ``selector`` is used.
        """
        await ensure_helper_script(tab, self.config.script_timeout_ms)

        candidate_groups = [group for group in (groups or []) if group]
        if not candidate_groups:
            resolved = normalize_selector(selector)
            result = await run(resolved)
            if not result.get("success"):
                raise ResolutionError(result.get("error") or f"Element not found: {selector}")
            return result

        self._log(f"   Trying {len(candidate_groups)} selector group(s)")
        for group in candidate_groups:
            for candidate in group:
                resolved = normalize_selector(candidate)
                try:
                    result = await run(resolved)
                except AgentError as exc:
                    self._log(f"   ⚠️  Selector errored: {candidate!r} ({exc})")
                    continue
                if result.get("success"):
                    self._log(f"   Selector matched: {candidate!r}")
                    return result
                self._log(f"   Selector failed: {candidate!r}")
        raise ResolutionError("All selector strategies failed")

    async def _execute_click(self, action, tab: PageTab) -> Any:
        params = action.parameters

        async def click(selector: str) -> Dict[str, Any]:
            return await self._helper(
                tab, "click", selector, self.config.click_settle_ms, params.offset_x, params.offset_y
            )

        result = await self._with_locators(tab, params.selector, params.selectors, click)
        if params.wait_for:
            await self._sleep_ms(params.wait_for)
        return result

    async def _execute_type(self, action, tab: PageTab) -> Any:
        params = action.parameters
        if params.delay is not None:
            min_delay = max_delay = params.delay
        else:
            min_delay = self.config.typing_delay_min_ms
            max_delay = self.config.typing_delay_max_ms

        async def type_text(selector: str) -> Dict[str, Any]:
            return await self._helper(tab, "type", selector, params.text, params.clear, min_delay, max_delay)

        return await self._with_locators(tab, params.selector, params.selectors, type_text)

    async def _execute_select(self, action, tab: PageTab) -> Any:
        params = action.parameters

        async def select(selector: str) -> Dict[str, Any]:
            return await self._helper(tab, "select", selector, params.value)

        return await self._with_locators(tab, params.selector, None, select)

    async def _execute_scroll(self, action, tab: PageTab) -> Any:
        params = action.parameters
        await ensure_helper_script(tab, self.config.script_timeout_ms)
        if params.amount is not None:
            amount = params.amount
        else:
            amount = 0 if params.direction == "to" else self.config.scroll_amount_px
        to_selector = normalize_selector(params.to_selector) if params.to_selector else None
        result = await self._helper(tab, "scroll", params.direction, amount, to_selector)
        if not result.get("success"):
            error = result.get("error") or "Scroll failed"
            if "not found" in error.lower():
                raise ResolutionError(error)
            raise AgentError(error)
        await self._sleep_ms(self.config.scroll_settle_ms)
        return result

    async def _execute_hover(self, action, tab: PageTab) -> Any:
        async def hover(selector: str) -> Dict[str, Any]:
            return await self._helper(tab, "hover", selector)

        result = await self._with_locators(tab, action.parameters.selector, None, hover)
        await self._sleep_ms(self.config.hover_settle_ms)
        return result

    # ------------------------------------------------------------------
    # Data extraction
    # ------------------------------------------------------------------
    async def _execute_extract(self, action, tab: PageTab) -> Any:
        await ensure_helper_script(tab, self.config.script_timeout_ms)
        schema = {
            key: field.model_dump(mode="json", exclude_none=True)
            for key, field in action.parameters.fields.items()
        }
        result = await self._helper(tab, "extractData", schema)
        if not result.get("success"):
            raise AgentError(result.get("error") or "Extract failed")
        return result.get("data")

    async def _execute_get_text(self, action, tab: PageTab) -> Any:
        async def get_text(selector: str) -> Dict[str, Any]:
            return await self._helper(tab, "getText", selector)

        result = await self._with_locators(tab, action.parameters.selector, None, get_text)
        return {"text": result.get("text")}

    async def _execute_get_attribute(self, action, tab: PageTab) -> Any:
        attribute = action.parameters.attribute

        async def get_attribute(selector: str) -> Dict[str, Any]:
            return await self._helper(tab, "getAttribute", selector, attribute)

        result = await self._with_locators(tab, action.parameters.selector, None, get_attribute)
        return {"value": result.get("value")}

    # ------------------------------------------------------------------
    # Tab management
    # ------------------------------------------------------------------
    async def _execute_create_tab(self, action, tab: PageTab) -> Any:
        url = normalize_url(action.parameters.url) if action.parameters.url else None
        new_tab = await self.host.create_tab(url)
        await self._sleep_ms(self.config.tab_settle_ms)
        if url:
            await self._after_navigation(new_tab)
        return {"tabId": new_tab.id}

    async def _execute_switch_tab(self, action, tab: PageTab) -> Any:
        tab_id = action.parameters.tab_id
        if not await self.host.switch_active_tab(tab_id):
            raise HostError(f"Tab not found: {tab_id}")
        await self._sleep_ms(self.config.tab_settle_ms)
        return {"tabId": tab_id}

    async def _execute_close_tab(self, action, tab: PageTab) -> Any:
        tab_id = action.parameters.tab_id
        if not await self.host.close_tab(tab_id):
            raise HostError(f"Tab not found: {tab_id}")
        return {"tabId": tab_id}

    # ------------------------------------------------------------------
    # Utility / meta
    # ------------------------------------------------------------------
    async def _execute_wait(self, action, tab: PageTab) -> Any:
        await self._sleep_ms(action.parameters.ms)
        return {"waited_ms": action.parameters.ms}

    async def _execute_wait_for_element(self, action, tab: PageTab) -> Any:
        """Poll from Python until the selector resolves or the timeout elapses."""
        params = action.parameters
        selector = normalize_selector(params.selector)
        await ensure_helper_script(tab, self.config.script_timeout_ms)
        started = time.monotonic()
        deadline = started + params.timeout / 1000
        while True:
            result = await self._helper(tab, "exists", selector)
            if result.get("found"):
                return {"found": True, "elapsed_ms": self._elapsed_ms(started)}
            if time.monotonic() >= deadline:
                raise ActionTimeoutError(f"Timeout waiting for element: {params.selector}")
            await self._sleep_ms(self.config.wait_poll_interval_ms)

    async def _execute_complete(self, action, tab: PageTab) -> Any:
        return {"reason": action.parameters.reason, "data": action.parameters.data}

    # ------------------------------------------------------------------
    async def _capture_screenshot(self, tab: PageTab) -> Optional[str]:
        if not self.config.capture_screenshots:
            return None
        try:
            raw = await asyncio.wait_for(tab.screenshot(), self.config.script_timeout_ms / 1000)
        except Exception as exc:
            self._log(f"   스크린샷 실패: {exc}")
            return None
        if not raw:
            return None
        return base64.b64encode(raw).decode("ascii")

    @staticmethod
    async def _sleep_ms(ms: int) -> None:
        if ms and ms > 0:
            await asyncio.sleep(ms / 1000)

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)

    def _error_result(self, action: AgentAction, error: str, started: float) -> ExecutionResult:
        return ExecutionResult(
            success=False,
            action=action,
            error=error,
            duration_ms=self._elapsed_ms(started),
        )
