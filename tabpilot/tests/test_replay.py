import asyncio

import pytest

from tabpilot.src.agent.errors import TabInUseError
from tabpilot.src.agent.executor import ActionExecutor
from tabpilot.src.agent.models import Skill, SkillContext, parse_action
from tabpilot.src.agent.registry import AgentRegistry
from tabpilot.src.agent.replay import ReplayEngine
from tabpilot.src.skills.store import SkillStore
from tabpilot.src.utils.config import AgentConfig

ACTIONS = [
    {"type": "click", "parameters": {"selector": "#first"}},
    {"type": "click", "parameters": {"selector": "#broken"}},
    {"type": "type", "parameters": {"selector": "#q", "text": "tabs"}},
]


def _engine(host, registry=None):
    config = AgentConfig.fast(max_retries=0)
    return ReplayEngine(ActionExecutor(host, config), config, registry=registry)


def _actions():
    return [parse_action(raw) for raw in ACTIONS]


def test_replay_runs_in_order(host, tab):
    result = asyncio.run(_engine(host).replay(_actions(), tab))

    assert result.success is True
    assert result.error is None
    assert [r.action.type.value for r in result.executed_results] == ["click", "click", "type"]
    assert [args[0] for args in tab.method_calls("click")] == ["#first", "#broken"]


def test_replay_stops_at_first_failure(host, tab):
    tab.failing_selectors.add("#broken")

    result = asyncio.run(_engine(host).replay(_actions(), tab))

    assert result.success is False
    assert len(result.executed_results) == 2
    assert "not found" in result.error
    assert tab.method_calls("type") == []


def test_replay_continue_on_error(host, tab):
    tab.failing_selectors.add("#broken")

    result = asyncio.run(_engine(host).replay(_actions(), tab, continue_on_error=True))

    assert result.success is True
    assert len(result.executed_results) == 3
    assert "not found" in result.error
    assert len(tab.method_calls("type")) == 1


def test_replay_navigates_to_start_url(host, tab):
    result = asyncio.run(_engine(host).replay(_actions()[:1], tab, start_url="example.org"))

    assert result.success is True
    assert tab.navigations == ["https://example.org"]


def test_replay_start_url_failure(host, tab):
    tab.navigate_error = RuntimeError("offline")

    result = asyncio.run(_engine(host).replay(_actions(), tab, start_url="https://example.org"))

    assert result.success is False
    assert result.executed_results == []
    assert "offline" in result.error


def test_replay_claims_the_tab(host, tab):
    registry = AgentRegistry()
    registry.claim_tab(tab.id, "agent_busy")

    with pytest.raises(TabInUseError):
        asyncio.run(_engine(host, registry).replay(_actions(), tab))

    registry.release_tab(tab.id, "agent_busy")
    asyncio.run(_engine(host, registry).replay(_actions(), tab))
    assert registry.tab_owner(tab.id) is None


def test_replay_skill_records_usage(host, tab, tmp_path):
    store = SkillStore(tmp_path)
    skill = store.create_skill(
        "Search tabs",
        "types a query",
        _actions()[2:],
        context=SkillContext(start_url="https://example.org/search"),
    )
    store.save(skill)

    result = asyncio.run(_engine(host).replay_skill(skill, tab, store=store))

    assert result.success is True
    assert result.skill_id == skill.id
    assert tab.navigations == ["https://example.org/search"]
    assert store.get(skill.id).metadata.use_count == 1
    assert store.get(skill.id).metadata.last_used_at is not None


def test_replay_skill_without_store(host, tab):
    skill = Skill(id="inline", name="Inline", actions=_actions()[:1])

    result = asyncio.run(_engine(host).replay_skill(skill, tab))

    assert result.success is True
    assert tab.navigations == []


def test_replaying_twice_gives_the_same_results(host, tab):
    engine = _engine(host)
    actions = _actions()

    first = asyncio.run(engine.replay(actions, tab, continue_on_error=True))
    second = asyncio.run(engine.replay(actions, tab, continue_on_error=True))

    assert len(first.executed_results) == len(second.executed_results) == 3
    assert all(r.success for r in first.executed_results + second.executed_results)
    assert [r.action for r in first.executed_results] == [r.action for r in second.executed_results]


def test_no_delay_after_the_last_action(host, tab):
    config = AgentConfig.fast(action_delay_ms=1000)
    engine = ReplayEngine(ActionExecutor(host, AgentConfig.fast()), config)
    sleeps = []

    async def record_sleep(ms):
        sleeps.append(ms)

    engine._sleep_ms = record_sleep

    result = asyncio.run(engine.replay(_actions(), tab))

    assert result.success is True
    assert sleeps == [1000, 1000]
