import asyncio
import json

import pytest

from tabpilot.src.agent.errors import OracleContractError
from tabpilot.src.agent.models import (
    ActionType,
    ClickAction,
    ClickParams,
    ContextSnapshot,
    ExecutionResult,
    PlanningRequest,
    ScrollAction,
    ScrollParams,
    TypeAction,
    TypeParams,
    WaitAction,
    WaitParams,
)
from tabpilot.src.agent.planner import (
    AgentPlanner,
    get_recovery_hints,
    parse_planning_response,
    should_give_up,
)


def _result(action, success=True, error=None):
    return ExecutionResult(success=success, action=action, error=error)


def _click(selector):
    return ClickAction(parameters=ClickParams(selector=selector))


def _request(history=(), **context):
    return PlanningRequest(
        goal="find the pricing page",
        context=ContextSnapshot(url="https://example.com", title="Example", **context),
        action_history=list(history),
        iteration=2,
        max_iterations=10,
    )


class TestParsePlanningResponse:
    def test_action_response(self):
        raw = json.dumps(
            {
                "reasoning": "Click submit",
                "goalAchieved": False,
                "confidence": 0.8,
                "action": {"type": "click", "parameters": {"selector": "#submit"}},
            }
        )
        response = parse_planning_response(raw)
        assert response.action.type is ActionType.CLICK
        assert response.confidence == 0.8
        assert response.error is None

    def test_goal_achieved_carries_no_action(self):
        raw = '{"reasoning": "done", "goal_achieved": true, "confidence": 1, "action": {"type": "wait"}}'
        response = parse_planning_response(raw)
        assert response.goal_achieved is True
        assert response.action is None

    def test_code_fences_and_noise_are_tolerated(self):
        raw = 'Sure!\n```json\n{"reasoning": "r", "goalAchieved": true, "confidence": 0.9, "action": null}\n```'
        assert parse_planning_response(raw).goal_achieved is True

    def test_confidence_is_clamped(self):
        raw = '{"reasoning": "r", "goalAchieved": true, "confidence": 7}'
        assert parse_planning_response(raw).confidence == 1.0

    @pytest.mark.parametrize(
        "raw",
        [
            "no json here",
            "[1, 2, 3]",
            '{"goalAchieved": false, "confidence": 0.5, "action": {"type": "wait", "parameters": {}}}',
            '{"reasoning": "r", "confidence": 0.5}',
            '{"reasoning": "r", "goalAchieved": false, "confidence": true, "action": null}',
            '{"reasoning": "r", "goalAchieved": false, "confidence": 0.5, "action": null}',
            '{"reasoning": "r", "goalAchieved": false, "confidence": 0.5, "action": {"parameters": {}}}',
            '{"reasoning": "r", "goalAchieved": false, "confidence": 0.5, "action": {"type": "click"}}',
            '{"reasoning": "r", "goalAchieved": false, "confidence": 0.5, "action": {"type": "fly", "parameters": {}}}',
        ],
    )
    def test_contract_violations(self, raw):
        with pytest.raises(OracleContractError):
            parse_planning_response(raw)


class TestAgentPlanner:
    def test_parse_failure_is_reported_not_raised(self, oracle_factory):
        planner = AgentPlanner(oracle_factory(["garbage"]))

        response = asyncio.run(planner.plan_next_action(_request()))

        assert response.goal_achieved is False
        assert response.confidence == 0.0
        assert response.action is None
        assert response.error
        assert response.reasoning.startswith("Failed to parse LLM response")

    def test_transport_failure_is_reported(self, oracle_factory):
        planner = AgentPlanner(oracle_factory([RuntimeError("rate limited")]))

        response = asyncio.run(planner.plan_next_action(_request()))

        assert response.error == "rate limited"
        assert response.action is None

    def test_prompts_include_context_and_screenshot(self, oracle_factory):
        oracle = oracle_factory([oracle_factory.achieved()])
        planner = AgentPlanner(oracle)
        history = [_result(_click("#a"), success=False, error="Element not found: #a")]

        asyncio.run(planner.plan_next_action(_request(history, screenshot="aGVsbG8=", page_text="Plans")))

        call = oracle.calls[0]
        assert call["screenshot"] == "aGVsbG8="
        assert "GOAL: find the pricing page" in call["user"]
        assert "https://example.com" in call["user"]
        assert "Plans" in call["user"]
        assert "ITERATION: 2/10" in call["user"]
        assert '"goalAchieved"' in call["system"]

    def test_without_oracle_scrolls_then_extracts(self):
        planner = AgentPlanner()
        scroll = ScrollAction(parameters=ScrollParams(direction="down", amount=500))

        first = asyncio.run(planner.plan_next_action(_request()))
        later = asyncio.run(planner.plan_next_action(_request([_result(scroll)] * 3)))

        assert first.action.type is ActionType.SCROLL
        assert first.confidence == 0.5
        assert later.action.type is ActionType.EXTRACT
        assert later.confidence == 0.3


class TestGiveUp:
    def test_five_consecutive_failures(self):
        history = [_result(_click(f"#b{i}"), success=False, error="boom") for i in range(5)]
        check = should_give_up(history)
        assert check.should_give_up is True
        assert check.reason == "Last 5 actions failed - unable to make progress"

    def test_four_failures_is_not_enough(self):
        history = [_result(_click(f"#b{i}"), success=False, error="boom") for i in range(4)]
        assert should_give_up(history).should_give_up is False

    def test_repeated_action_is_a_loop(self):
        history = [_result(_click("#same")) for _ in range(3)]
        check = should_give_up(history)
        assert check.should_give_up is True
        assert check.reason == "Stuck in a loop - repeating the same action"

    def test_failed_planning_passes_are_not_a_loop(self):
        stand_in = WaitAction(parameters=WaitParams(ms=0), reasoning="planning failed")
        history = [
            ExecutionResult(success=False, action=stand_in, error="Planning failed: 429", synthetic=True)
            for _ in range(4)
        ]
        assert should_give_up(history).should_give_up is False

        history.append(history[0])
        check = should_give_up(history)
        assert check.should_give_up is True
        assert check.reason.startswith("Last 5 actions failed")

    def test_same_type_different_parameters_is_not_a_loop(self):
        history = [_result(_click("#a")), _result(_click("#b")), _result(_click("#a"))]
        assert should_give_up(history).should_give_up is False

    def test_thresholds_are_configurable(self):
        history = [_result(_click(f"#b{i}"), success=False) for i in range(2)]
        assert should_give_up(history, max_consecutive_failures=2).should_give_up is True


class TestRecoveryHints:
    def test_no_failures_no_hints(self):
        assert get_recovery_hints([_result(_click("#a"))]) == ""

    def test_not_found_click(self):
        hints = get_recovery_hints([_result(_click("#a"), success=False, error="Element not found: #a")])
        assert hints.startswith("\n\nRECOVERY HINTS:\n")
        assert "Try scrolling or using a different selector" in hints
        assert "Previous click failed" in hints

    def test_timeout_on_typing(self):
        action = TypeAction(parameters=TypeParams(selector="#q", text="x"))
        hints = get_recovery_hints([_result(action, success=False, error="Script execution timed out after 10ms")])
        assert "dynamically loaded" in hints
        assert "Previous typing failed" in hints

    def test_hints_are_not_repeated(self):
        failure = _result(_click("#a"), success=False, error="Element not found: #a")
        hints = get_recovery_hints([failure, failure, failure])
        assert hints.count("Previous click failed") == 1
