"""Agent loop, action executor, planner and replay engine."""
from tabpilot.src.agent.errors import (
    ActionTimeoutError,
    ActionValidationError,
    AgentError,
    AgentNotFoundError,
    HostError,
    InvalidStateTransition,
    OracleContractError,
    ResolutionError,
    TabInUseError,
)
from tabpilot.src.agent.executor import ActionExecutor
from tabpilot.src.agent.manager import AgentManager
from tabpilot.src.agent.models import (
    ActionType,
    AgentAction,
    AgentGoal,
    AgentState,
    AgentStatus,
    ExecutionResult,
    PlanningResponse,
    ReplayResult,
    Skill,
    parse_action,
)
from tabpilot.src.agent.planner import AgentPlanner
from tabpilot.src.agent.registry import AgentRegistry
from tabpilot.src.agent.replay import ReplayEngine

__all__ = [
    "ActionExecutor",
    "ActionTimeoutError",
    "ActionType",
    "ActionValidationError",
    "AgentAction",
    "AgentError",
    "AgentGoal",
    "AgentManager",
    "AgentNotFoundError",
    "AgentPlanner",
    "AgentRegistry",
    "AgentState",
    "AgentStatus",
    "ExecutionResult",
    "HostError",
    "InvalidStateTransition",
    "OracleContractError",
    "PlanningResponse",
    "ReplayEngine",
    "ReplayResult",
    "ResolutionError",
    "Skill",
    "TabInUseError",
    "parse_action",
]
