"""
Replay engine

저장된 액션 시퀀스(skill / recipe)를 LLM 없이 순서대로 재실행합니다.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import TYPE_CHECKING, Callable, List, Optional, Sequence

from tabpilot.src.agent.actions import normalize_url
from tabpilot.src.agent.executor import ActionExecutor
from tabpilot.src.agent.models import AgentAction, ExecutionResult, ReplayResult, Skill
from tabpilot.src.agent.registry import AgentRegistry
from tabpilot.src.host.base import PageTab
from tabpilot.src.utils.config import AgentConfig

if TYPE_CHECKING:
    from tabpilot.src.skills.store import SkillStore


class ReplayEngine:
    def __init__(
        self,
        executor: ActionExecutor,
        config: Optional[AgentConfig] = None,
        registry: Optional[AgentRegistry] = None,
        log_callback: Optional[Callable[[str], None]] = None,
    ):
        self.executor = executor
        self.config = config or executor.config
        self.registry = registry
        self._log_callback = log_callback

    def _log(self, message: str):
        print(f"[ReplayEngine] {message}")
        if self._log_callback:
            self._log_callback(message)

    async def replay(
        self,
        actions: Sequence[AgentAction],
        tab: PageTab,
        *,
        continue_on_error: bool = False,
        start_url: Optional[str] = None,
    ) -> ReplayResult:
        """
        액션 리스트 재실행

        Stops at the first failed result unless ``continue_on_error``; in that
        case overall success is True while the last error is still reported.

        Raises:
            TabInUseError: another agent loop or replay owns ``tab``
        """
        owner = f"replay_{uuid.uuid4().hex[:8]}"
        if self.registry is None:
            return await self._replay(actions, tab, continue_on_error, start_url)
        with self.registry.tab_claim(tab.id, owner):
            return await self._replay(actions, tab, continue_on_error, start_url)

    async def _replay(
        self,
        actions: Sequence[AgentAction],
        tab: PageTab,
        continue_on_error: bool,
        start_url: Optional[str],
    ) -> ReplayResult:
        started = time.monotonic()
        executed: List[ExecutionResult] = []
        last_error: Optional[str] = None

        if start_url:
            url = normalize_url(start_url)
            self._log(f"🔗 Navigating to: {url}")
            try:
                await tab.navigate(url)
            except Exception as exc:
                return ReplayResult(
                    success=False,
                    executed_results=executed,
                    error=f"Navigation to start URL failed: {exc}",
                    duration_ms=self._elapsed_ms(started),
                )
            await self._sleep_ms(self.config.start_url_settle_ms)

        total = len(actions)
        for index, action in enumerate(actions, start=1):
            self._log(f"⚡ Executing action {index}/{total}: {action.type.value}")
            result = await self.executor.execute_action(action, tab)
            executed.append(result)
            if not result.success:
                last_error = result.error or "Action failed"
                if not continue_on_error:
                    self._log(f"❌ Action failed: {last_error}")
                    break
                self._log(f"⚠️  Action failed but continuing: {last_error}")
            if index < total:
                await self._sleep_ms(self.config.action_delay_ms)

        return ReplayResult(
            success=last_error is None or continue_on_error,
            executed_results=executed,
            error=last_error,
            duration_ms=self._elapsed_ms(started),
        )

    async def replay_skill(
        self,
        skill: Skill,
        tab: PageTab,
        *,
        continue_on_error: bool = False,
        store: Optional["SkillStore"] = None,
    ) -> ReplayResult:
        """Replay a skill from its declared start URL, then record usage in ``store``."""
        start_url = skill.context.start_url if skill.context else None
        self._log(f"🎬 Replaying skill '{skill.name}' ({len(skill.actions)} actions)")
        result = await self.replay(
            skill.actions,
            tab,
            continue_on_error=continue_on_error,
            start_url=start_url,
        )
        if store is not None:
            store.record_usage(skill.id)
        return result.model_copy(update={"skill_id": skill.id})

    @staticmethod
    async def _sleep_ms(ms: int) -> None:
        if ms and ms > 0:
            await asyncio.sleep(ms / 1000)

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
