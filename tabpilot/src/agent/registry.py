"""Agent registry: states, loop tasks and single-owner tab claims."""
from __future__ import annotations

import asyncio
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from tabpilot.src.agent.errors import AgentNotFoundError, TabInUseError
from tabpilot.src.agent.models import AgentState


class AgentRegistry:
    """
    Owned by one AgentManager and passed by reference to anything that needs
    lookups (e.g. a ReplayEngine sharing the same tabs).
    """

    def __init__(self) -> None:
        self._agents: Dict[str, AgentState] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._tab_owners: Dict[str, str] = {}

    def add(self, state: AgentState) -> None:
        self._agents[state.goal.id] = state

    def get(self, agent_id: str) -> AgentState:
        state = self._agents.get(agent_id)
        if state is None:
            raise AgentNotFoundError(agent_id)
        return state

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def __len__(self) -> int:
        return len(self._agents)

    def states(self) -> List[AgentState]:
        return list(self._agents.values())

    # Loop tasks
    def set_task(self, agent_id: str, task: asyncio.Task) -> None:
        self._tasks[agent_id] = task

    def get_task(self, agent_id: str) -> Optional[asyncio.Task]:
        return self._tasks.get(agent_id)

    def tasks(self) -> List[asyncio.Task]:
        return list(self._tasks.values())

    # Tab ownership
    def tab_owner(self, tab_id: str) -> Optional[str]:
        return self._tab_owners.get(tab_id)

    def claim_tab(self, tab_id: str, owner: str) -> None:
        current = self._tab_owners.get(tab_id)
        if current is not None and current != owner:
            raise TabInUseError(tab_id, current)
        self._tab_owners[tab_id] = owner

    def release_tab(self, tab_id: str, owner: str) -> None:
        if self._tab_owners.get(tab_id) == owner:
            del self._tab_owners[tab_id]

    @contextmanager
    def tab_claim(self, tab_id: str, owner: str) -> Iterator[None]:
        self.claim_tab(tab_id, owner)
        try:
            yield
        finally:
            self.release_tab(tab_id, owner)
