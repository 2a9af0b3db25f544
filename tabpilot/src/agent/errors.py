"""Error taxonomy for the agent loop, executor and planner."""
from __future__ import annotations


class AgentError(Exception):
    """Base class; ``retryable`` tells the executor whether another attempt may help."""

    retryable = True


class ActionValidationError(AgentError):
    """Malformed action parameters. Terminal for that single action."""

    retryable = False


class ResolutionError(AgentError):
    """No element matched after every locator candidate was tried."""


class ActionTimeoutError(AgentError, TimeoutError):
    """Page-load, wait-for-element or script-execution timeout."""


class InvalidStateTransition(AgentError):
    """Illegal lifecycle call, e.g. pausing a completed agent."""

    retryable = False

    def __init__(self, agent_id: str, operation: str, status: str):
        self.agent_id = agent_id
        self.operation = operation
        self.status = status
        super().__init__(f"Agent {agent_id} cannot {operation} from status {status}")


class OracleContractError(AgentError):
    """The planning oracle returned text that is not a valid planning response."""


class HostError(AgentError):
    """The page host raised, e.g. the tab was destroyed."""


class AgentNotFoundError(AgentError, KeyError):
    retryable = False

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Agent {agent_id} not found")

    def __str__(self) -> str:
        return f"Agent {self.agent_id} not found"


class TabInUseError(AgentError):
    """A second loop or replay was started against a tab that already has a running owner."""

    retryable = False

    def __init__(self, tab_id: str, owner: str):
        self.tab_id = tab_id
        self.owner = owner
        super().__init__(f"Tab {tab_id} is already driven by {owner}")


class RecordingNotFoundError(AgentError, KeyError):
    retryable = False

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Recording session not found: {session_id}")

    def __str__(self) -> str:
        return f"Recording session not found: {self.session_id}"
