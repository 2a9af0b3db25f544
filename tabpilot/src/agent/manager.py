"""
Agent manager

에이전트 생성/시작/일시정지/재개/중지와 observe → decide → act 루프를 담당합니다.
Each agent's loop is one asyncio task; iterations are strictly sequential.
Pause and stop are cooperative: they are observed at the top of the next
iteration and never interrupt an in-flight host call. An action planned
while a pause lands is dropped and replanned from a fresh observation on
resume; a complete action that finishes under a pause is honoured on resume.
"""

from __future__ import annotations

import asyncio
import base64
import json
import random
import string
import time
from typing import Any, Callable, Dict, List, Optional

from tabpilot.src.agent.errors import AgentError, InvalidStateTransition
from tabpilot.src.agent.executor import ActionExecutor
from tabpilot.src.agent.helpers_js import ensure_helper_script, extract_interactive_elements
from tabpilot.src.agent.models import (
    RUNNING_STATUSES,
    TERMINAL_STATUSES,
    ActionType,
    AgentGoal,
    AgentState,
    AgentStatus,
    ContextSnapshot,
    ExecutionResult,
    PlanningRequest,
    WaitAction,
    WaitParams,
    dump_action,
    utc_now,
)
from tabpilot.src.agent.planner import AgentPlanner, get_recovery_hints, should_give_up
from tabpilot.src.agent.registry import AgentRegistry
from tabpilot.src.host.base import PageHost, PageTab
from tabpilot.src.utils.config import AgentConfig

EventCallback = Callable[[str, Dict[str, Any]], None]

EVENT_STATUS_UPDATE = "agent-status-update"
EVENT_ACTION_EXECUTED = "agent-action-executed"
EVENT_COMPLETED = "agent-completed"
EVENT_ERROR = "agent-error"

ACTIVE_STATUSES = frozenset({AgentStatus.PLANNING, AgentStatus.EXECUTING, AgentStatus.PAUSED})
_USER_HALTED = frozenset({AgentStatus.PAUSED, AgentStatus.STOPPED})


def generate_agent_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=7))
    return f"agent_{int(time.time() * 1000)}_{suffix}"


def _planning_placeholder(reason: str) -> WaitAction:
    """Synthetic action that failed planning passes are attributed to."""
    return WaitAction(parameters=WaitParams(ms=0), reasoning=reason)


class AgentManager:
    """에이전트 오케스트레이터"""

    def __init__(
        self,
        host: PageHost,
        planner: Optional[AgentPlanner] = None,
        executor: Optional[ActionExecutor] = None,
        config: Optional[AgentConfig] = None,
        registry: Optional[AgentRegistry] = None,
        on_event: Optional[EventCallback] = None,
        log_callback: Optional[Callable[[str], None]] = None,
    ):
        self.host = host
        self.config = config or AgentConfig()
        self.planner = planner or AgentPlanner(log_callback=log_callback)
        self.executor = executor or ActionExecutor(host, self.config, log_callback=log_callback)
        self.registry = registry or AgentRegistry()
        self._on_event = on_event
        self._log_callback = log_callback

    def _log(self, message: str):
        print(f"[AgentManager] {message}")
        if self._log_callback:
            self._log_callback(message)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def create_agent(self, goal: str, tab_id: str, max_iterations: Optional[int] = None) -> str:
        agent_id = generate_agent_id()
        state = AgentState(
            goal=AgentGoal(id=agent_id, goal=goal, tab_id=tab_id),
            max_iterations=max_iterations if max_iterations is not None else self.config.max_iterations,
        )
        self.registry.add(state)
        self._log(f"✨ Created agent {agent_id} with goal: {goal}")
        self._notify_status(state)
        return agent_id

    async def start_agent(self, agent_id: str) -> None:
        state = self.registry.get(agent_id)
        if state.status not in (AgentStatus.CREATED, AgentStatus.PAUSED):
            raise InvalidStateTransition(agent_id, "start", state.status.value)
        await self._launch(state, "start", "🚀 Starting")

    async def resume_agent(self, agent_id: str) -> None:
        state = self.registry.get(agent_id)
        if state.status is not AgentStatus.PAUSED:
            raise InvalidStateTransition(agent_id, "resume", state.status.value)
        await self._launch(state, "resume", "▶️  Resuming")

    async def _launch(self, state: AgentState, operation: str, verb: str) -> None:
        agent_id = state.goal.id
        previous = self.registry.get_task(agent_id)
        if previous is not None and not previous.done():
            # Let the paused iteration wind down before a second loop exists.
            await asyncio.wait({previous})
            if state.status is not AgentStatus.PAUSED and state.status is not AgentStatus.CREATED:
                raise InvalidStateTransition(agent_id, operation, state.status.value)

        self.registry.claim_tab(state.goal.tab_id, agent_id)
        state.status = AgentStatus.PLANNING
        if state.started_at is None:
            state.started_at = utc_now()
        self._log(f"{verb} agent {agent_id}")
        self._notify_status(state)
        task = asyncio.create_task(self._run_loop(agent_id), name=f"tabpilot-{agent_id}")
        self.registry.set_task(agent_id, task)

    def pause_agent(self, agent_id: str) -> None:
        state = self.registry.get(agent_id)
        if state.status not in RUNNING_STATUSES:
            raise InvalidStateTransition(agent_id, "pause", state.status.value)
        state.status = AgentStatus.PAUSED
        self._log(f"⏸️  Paused agent {agent_id}")
        self._notify_status(state)

    def stop_agent(self, agent_id: str) -> None:
        state = self.registry.get(agent_id)
        if state.status in TERMINAL_STATUSES:
            raise InvalidStateTransition(agent_id, "stop", state.status.value)
        state.status = AgentStatus.STOPPED
        state.completed_at = utc_now()
        self._log(f"🛑 Stopped agent {agent_id}")
        self._notify_status(state)

    async def wait_for_agent(self, agent_id: str, timeout: Optional[float] = None) -> AgentState:
        """Wait for the current loop task to exit (terminal, paused or stopped)."""
        state = self.registry.get(agent_id)
        task = self.registry.get_task(agent_id)
        if task is not None and not task.done():
            await asyncio.wait_for(asyncio.shield(task), timeout)
        return state

    async def cleanup(self) -> None:
        self._log("🧹 Cleaning up AgentManager...")
        for state in self.registry.states():
            if state.status in RUNNING_STATUSES or state.status is AgentStatus.PAUSED:
                self.stop_agent(state.goal.id)
        pending = [task for task in self.registry.tasks() if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_agent_status(self, agent_id: str) -> AgentState:
        return self.registry.get(agent_id)

    def list_all_agents(self) -> List[AgentState]:
        return self.registry.states()

    def list_active_agents(self) -> List[AgentState]:
        return [state for state in self.registry.states() if state.status in ACTIVE_STATUSES]

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------
    def _transition(self, state: AgentState, status: AgentStatus) -> bool:
        """Loop-driven status change; a user pause/stop or a terminal status wins."""
        if state.status in _USER_HALTED or state.status in TERMINAL_STATUSES:
            return False
        state.status = status
        self._notify_status(state)
        return True

    def _complete(self, state: AgentState, result: Any) -> None:
        if state.status in _USER_HALTED or state.status in TERMINAL_STATUSES:
            return
        state.status = AgentStatus.COMPLETED
        state.completed_at = utc_now()
        state.result = result
        self._log(f"✅ Completed agent {state.goal.id}")
        self._notify_status(state)
        self._emit(EVENT_COMPLETED, {"agentId": state.goal.id, "result": result})

    def _fail(self, state: AgentState, error: str) -> None:
        if state.status in TERMINAL_STATUSES or state.status is AgentStatus.STOPPED:
            return
        state.status = AgentStatus.FAILED
        state.completed_at = utc_now()
        state.error = error
        self._log(f"❌ Failed agent {state.goal.id}: {error}")
        self._notify_status(state)
        self._emit(EVENT_ERROR, {"agentId": state.goal.id, "error": error})

    async def _run_loop(self, agent_id: str) -> None:
        state = self.registry.get(agent_id)
        tab_id = state.goal.tab_id
        try:
            tab = self.host.get_tab(tab_id)
            if tab is None:
                self._fail(state, f"Tab {tab_id} not found")
                return
            await self.host.switch_active_tab(tab_id)

            # A complete action that finished while the agent was paused.
            last = state.action_history[-1] if state.action_history else None
            if last is not None and last.success and last.action.type is ActionType.COMPLETE:
                self._complete(state, last.data)
                return

            while state.status in RUNNING_STATUSES:
                if state.iteration >= state.max_iterations:
                    self._fail(state, f"Maximum iterations ({state.max_iterations}) reached")
                    break
                try:
                    await self._run_iteration(state, tab)
                except Exception as exc:
                    error = str(exc) or exc.__class__.__name__
                    self._log(f"Error in iteration {state.iteration}: {error}")
                    action = state.current_action
                    self._record(
                        state,
                        ExecutionResult(
                            success=False,
                            action=action or _planning_placeholder("iteration error"),
                            error=error,
                            synthetic=action is None,
                        ),
                    )
                    await self._sleep_ms(self.config.error_cooldown_ms)
                    continue
                if state.status in RUNNING_STATUSES:
                    await self._sleep_ms(self.config.action_delay_ms)

            if state.status is AgentStatus.STOPPED:
                self._log(f"Agent {agent_id} was stopped by user")
            elif state.status is AgentStatus.PAUSED:
                self._log(f"Agent {agent_id} paused at iteration {state.iteration}")
        except Exception as exc:
            self._fail(state, str(exc) or exc.__class__.__name__)
        finally:
            self.registry.release_tab(tab_id, agent_id)

    async def _run_iteration(self, state: AgentState, tab: PageTab) -> None:
        state.iteration += 1
        self._log(f"🔄 Agent {state.goal.id} - Iteration {state.iteration}/{state.max_iterations}")

        check = should_give_up(
            state.action_history,
            self.config.max_consecutive_failures,
            self.config.loop_detection_window,
        )
        if check.should_give_up:
            self._fail(state, check.reason)
            return

        if not self._transition(state, AgentStatus.PLANNING):
            return
        context = await self.capture_context(tab)
        state.current_context = context

        response = await self.planner.plan_next_action(
            PlanningRequest(
                goal=state.goal.goal,
                context=context,
                action_history=list(state.action_history),
                iteration=state.iteration,
                max_iterations=state.max_iterations,
                recovery_hints=get_recovery_hints(state.action_history),
            )
        )
        self._log(f"💭 Reasoning: {response.reasoning}")

        if response.goal_achieved:
            self._complete(
                state,
                {
                    "reasoning": response.reasoning,
                    "confidence": response.confidence,
                    "url": context.url,
                    "title": context.title,
                },
            )
            return
        if response.error is not None:
            self._record(
                state,
                ExecutionResult(
                    success=False,
                    action=_planning_placeholder("planning failed"),
                    error=f"Planning failed: {response.error}",
                    synthetic=True,
                ),
            )
            return
        if response.action is None:
            self._complete(state, {"reasoning": response.reasoning, "url": context.url, "title": context.title})
            return

        action = response.action
        state.current_action = action
        if not self._transition(state, AgentStatus.EXECUTING):
            state.current_action = None
            return
        self._emit(EVENT_ACTION_EXECUTED, {"agentId": state.goal.id, "action": dump_action(action)})

        result = await self.executor.execute_action(action, tab)
        self._record(state, result)
        if result.success:
            if result.data is not None:
                self._log(f"📊 Data: {json.dumps(result.data, ensure_ascii=False, default=str)[:500]}")
            if action.type is ActionType.COMPLETE:
                self._complete(state, result.data)
        else:
            self._log(f"✗ Action failed: {result.error}")

    def _record(self, state: AgentState, result: ExecutionResult) -> None:
        state.action_history.append(result)
        state.current_action = None
        self._notify_status(state)

    async def capture_context(self, tab: PageTab) -> ContextSnapshot:
        """Fresh page observation; DOM listing and page text are best effort."""
        await ensure_helper_script(tab, self.config.script_timeout_ms)

        screenshot = ""
        if self.config.capture_screenshots:
            raw = await tab.screenshot()
            screenshot = base64.b64encode(raw).decode("ascii") if raw else ""

        page_text = ""
        try:
            page_text = await tab.get_text()
        except Exception as exc:
            self._log(f"Failed to get page text: {exc}")

        simplified_dom = ""
        try:
            simplified_dom = await extract_interactive_elements(tab, timeout_ms=self.config.script_timeout_ms) or ""
        except AgentError as exc:
            self._log(f"Failed to get interactive elements: {exc}")

        return ContextSnapshot(
            url=tab.url,
            title=tab.title,
            screenshot=screenshot,
            simplified_dom=simplified_dom,
            page_text=page_text,
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def _emit(self, event: str, payload: Dict[str, Any]) -> None:
        if not self._on_event:
            return
        try:
            self._on_event(event, payload)
        except Exception as exc:
            self._log(f"Event callback failed for {event}: {exc}")

    def _notify_status(self, state: AgentState) -> None:
        if self._on_event:
            self._emit(EVENT_STATUS_UPDATE, {"agentId": state.goal.id, "state": state.to_public_dict()})

    @staticmethod
    async def _sleep_ms(ms: int) -> None:
        if ms and ms > 0:
            await asyncio.sleep(ms / 1000)


def format_agent_state(state: AgentState) -> str:
    lines = [
        f"Agent: {state.goal.id}",
        f"Goal: {state.goal.goal}",
        f"Status: {state.status.value}",
        f"Iteration: {state.iteration}/{state.max_iterations}",
        f"Actions: {len(state.action_history)}",
    ]
    if state.error:
        lines.append(f"Error: {state.error}")
    if state.result is not None:
        lines.append(f"Result: {json.dumps(state.result, ensure_ascii=False, default=str)}")
    return "\n".join(lines)


def get_agent_stats(state: AgentState) -> Dict[str, Any]:
    total = len(state.action_history)
    successful = sum(1 for r in state.action_history if r.success)
    duration_ms = 0
    if state.started_at and state.completed_at:
        duration_ms = int((state.completed_at - state.started_at).total_seconds() * 1000)
    return {
        "total_actions": total,
        "successful_actions": successful,
        "failed_actions": total - successful,
        "success_rate": successful / total if total else 0.0,
        "duration_ms": duration_ms,
    }
