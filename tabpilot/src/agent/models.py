"""
Agent models

목표(goal), 액션(action), 실행 결과, 에이전트 상태, 스킬을 정의합니다.
Actions form a closed union discriminated on ``type``; every variant carries a
typed ``parameters`` model. Wire names are camelCase, attributes snake_case.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ActionType(str, Enum):
    """가능한 액션 타입"""

    # Navigation
    NAVIGATE = "navigate"
    GO_BACK = "go_back"
    GO_FORWARD = "go_forward"
    RELOAD = "reload"

    # DOM interactions
    CLICK = "click"
    TYPE = "type"
    SELECT = "select"
    SCROLL = "scroll"
    HOVER = "hover"

    # Data extraction
    EXTRACT = "extract"
    GET_TEXT = "get_text"
    GET_ATTRIBUTE = "get_attribute"

    # Tab management
    CREATE_TAB = "create_tab"
    SWITCH_TAB = "switch_tab"
    CLOSE_TAB = "close_tab"

    # Utility
    WAIT = "wait"
    WAIT_FOR_ELEMENT = "wait_for_element"

    # Meta
    COMPLETE = "complete"


MUTATING_ACTIONS = frozenset(
    {
        ActionType.NAVIGATE,
        ActionType.GO_BACK,
        ActionType.GO_FORWARD,
        ActionType.RELOAD,
        ActionType.CLICK,
        ActionType.TYPE,
        ActionType.SELECT,
        ActionType.SCROLL,
        ActionType.HOVER,
    }
)


class _Params(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")


class EmptyParams(_Params):
    pass


class NavigateParams(_Params):
    url: str = ""


class ClickParams(_Params):
    selector: str = ""
    selectors: Optional[List[List[str]]] = None
    offset_x: Optional[float] = Field(default=None, alias="offsetX")
    offset_y: Optional[float] = Field(default=None, alias="offsetY")
    wait_for: Optional[int] = Field(default=None, alias="waitFor")


class TypeParams(_Params):
    selector: str = ""
    selectors: Optional[List[List[str]]] = None
    text: Optional[str] = None
    clear: bool = False
    delay: Optional[int] = None


class SelectParams(_Params):
    selector: str = ""
    value: str = ""


class ScrollParams(_Params):
    direction: str = "down"
    amount: Optional[int] = None
    to_selector: Optional[str] = Field(default=None, alias="toSelector")


class SelectorParams(_Params):
    selector: str = ""


class GetAttributeParams(_Params):
    selector: str = ""
    attribute: str = ""


class ExtractField(_Params):
    selector: Optional[str] = None
    type: Literal["text", "number", "url", "image", "array"] = "text"
    multiple: bool = False


class ExtractParams(_Params):
    fields: Dict[str, ExtractField] = Field(default_factory=dict, alias="schema")


class CreateTabParams(_Params):
    url: Optional[str] = None


class TabParams(_Params):
    tab_id: str = Field(default="", alias="tabId")


class WaitParams(_Params):
    ms: int = 1000


class WaitForElementParams(_Params):
    selector: str = ""
    timeout: int = 30000


class CompleteParams(_Params):
    reason: str = ""
    data: Any = None


class BaseAction(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    reasoning: str = ""
    timestamp: datetime = Field(default_factory=utc_now)

    def parameters_json(self) -> Dict[str, Any]:
        """Parameters as JSON-equal primitives (used for loop detection and prompts)."""
        return self.parameters.model_dump(mode="json", by_alias=True, exclude_none=True)  # type: ignore[attr-defined]


class NavigateAction(BaseAction):
    type: Literal[ActionType.NAVIGATE] = ActionType.NAVIGATE
    parameters: NavigateParams = Field(default_factory=NavigateParams)


class GoBackAction(BaseAction):
    type: Literal[ActionType.GO_BACK] = ActionType.GO_BACK
    parameters: EmptyParams = Field(default_factory=EmptyParams)


class GoForwardAction(BaseAction):
    type: Literal[ActionType.GO_FORWARD] = ActionType.GO_FORWARD
    parameters: EmptyParams = Field(default_factory=EmptyParams)


class ReloadAction(BaseAction):
    type: Literal[ActionType.RELOAD] = ActionType.RELOAD
    parameters: EmptyParams = Field(default_factory=EmptyParams)


class ClickAction(BaseAction):
    type: Literal[ActionType.CLICK] = ActionType.CLICK
    parameters: ClickParams = Field(default_factory=ClickParams)


class TypeAction(BaseAction):
    type: Literal[ActionType.TYPE] = ActionType.TYPE
    parameters: TypeParams = Field(default_factory=TypeParams)


class SelectAction(BaseAction):
    type: Literal[ActionType.SELECT] = ActionType.SELECT
    parameters: SelectParams = Field(default_factory=SelectParams)


class ScrollAction(BaseAction):
    type: Literal[ActionType.SCROLL] = ActionType.SCROLL
    parameters: ScrollParams = Field(default_factory=ScrollParams)


class HoverAction(BaseAction):
    type: Literal[ActionType.HOVER] = ActionType.HOVER
    parameters: SelectorParams = Field(default_factory=SelectorParams)


class ExtractAction(BaseAction):
    type: Literal[ActionType.EXTRACT] = ActionType.EXTRACT
    parameters: ExtractParams = Field(default_factory=ExtractParams)


class GetTextAction(BaseAction):
    type: Literal[ActionType.GET_TEXT] = ActionType.GET_TEXT
    parameters: SelectorParams = Field(default_factory=SelectorParams)


class GetAttributeAction(BaseAction):
    type: Literal[ActionType.GET_ATTRIBUTE] = ActionType.GET_ATTRIBUTE
    parameters: GetAttributeParams = Field(default_factory=GetAttributeParams)


class CreateTabAction(BaseAction):
    type: Literal[ActionType.CREATE_TAB] = ActionType.CREATE_TAB
    parameters: CreateTabParams = Field(default_factory=CreateTabParams)


class SwitchTabAction(BaseAction):
    type: Literal[ActionType.SWITCH_TAB] = ActionType.SWITCH_TAB
    parameters: TabParams = Field(default_factory=TabParams)


class CloseTabAction(BaseAction):
    type: Literal[ActionType.CLOSE_TAB] = ActionType.CLOSE_TAB
    parameters: TabParams = Field(default_factory=TabParams)


class WaitAction(BaseAction):
    type: Literal[ActionType.WAIT] = ActionType.WAIT
    parameters: WaitParams = Field(default_factory=WaitParams)


class WaitForElementAction(BaseAction):
    type: Literal[ActionType.WAIT_FOR_ELEMENT] = ActionType.WAIT_FOR_ELEMENT
    parameters: WaitForElementParams = Field(default_factory=WaitForElementParams)


class CompleteAction(BaseAction):
    type: Literal[ActionType.COMPLETE] = ActionType.COMPLETE
    parameters: CompleteParams = Field(default_factory=CompleteParams)


AgentAction = Annotated[
    Union[
        NavigateAction,
        GoBackAction,
        GoForwardAction,
        ReloadAction,
        ClickAction,
        TypeAction,
        SelectAction,
        ScrollAction,
        HoverAction,
        ExtractAction,
        GetTextAction,
        GetAttributeAction,
        CreateTabAction,
        SwitchTabAction,
        CloseTabAction,
        WaitAction,
        WaitForElementAction,
        CompleteAction,
    ],
    Field(discriminator="type"),
]

_ACTION_ADAPTER: TypeAdapter = TypeAdapter(AgentAction)


def parse_action(raw: Dict[str, Any]) -> AgentAction:
    """dict -> 액션 (pydantic.ValidationError on unknown type or bad parameter types)"""
    payload = dict(raw)
    if payload.get("parameters") is None:
        payload.pop("parameters", None)
    return _ACTION_ADAPTER.validate_python(payload)


def dump_action(action: AgentAction) -> Dict[str, Any]:
    """Serializable form without the timestamp, as stored in skills and prompts."""
    return {
        "type": action.type.value,
        "parameters": action.parameters_json(),
        "reasoning": action.reasoning,
    }


class ExecutionResult(BaseModel):
    """단일 액션 실행 결과 (불변)"""

    model_config = ConfigDict(frozen=True)

    success: bool
    action: AgentAction
    error: Optional[str] = None
    data: Any = None
    screenshot: Optional[str] = None
    duration_ms: int = 0
    timestamp: datetime = Field(default_factory=utc_now)
    # stand-in result for a pass that produced no action
    synthetic: bool = False


class ContextSnapshot(BaseModel):
    """Page observation captured once per iteration."""

    url: str = ""
    title: str = ""
    screenshot: str = ""
    simplified_dom: str = ""
    page_text: str = ""
    timestamp: datetime = Field(default_factory=utc_now)


class AgentGoal(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    goal: str
    tab_id: str
    created_at: datetime = Field(default_factory=utc_now)


class AgentStatus(str, Enum):
    CREATED = "created"
    PLANNING = "planning"
    EXECUTING = "executing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"


TERMINAL_STATUSES = frozenset({AgentStatus.COMPLETED, AgentStatus.FAILED, AgentStatus.STOPPED})
RUNNING_STATUSES = frozenset({AgentStatus.PLANNING, AgentStatus.EXECUTING})


class AgentState(BaseModel):
    """
    에이전트 1개의 상태

    Owned by the manager; mutated only by the agent's own loop task and the
    lifecycle methods running on the same event loop.
    """

    goal: AgentGoal
    status: AgentStatus = AgentStatus.CREATED
    current_context: Optional[ContextSnapshot] = None
    action_history: List[ExecutionResult] = Field(default_factory=list)
    current_action: Optional[AgentAction] = None
    iteration: int = 0
    max_iterations: int = 50
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Any = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def successful_actions(self) -> List[AgentAction]:
        return [r.action for r in self.action_history if r.success]

    def to_public_dict(self) -> Dict[str, Any]:
        """Serializable view for status events; drops screenshots."""
        data = self.model_dump(
            mode="json",
            by_alias=True,
            exclude={"current_context": {"screenshot"}},
        )
        for entry in data.get("action_history", []):
            entry.pop("screenshot", None)
        return data


class PlanningRequest(BaseModel):
    goal: str
    context: ContextSnapshot
    action_history: List[ExecutionResult] = Field(default_factory=list)
    iteration: int = 0
    max_iterations: int = 50
    recovery_hints: str = ""


class PlanningResponse(BaseModel):
    """
    오라클이 결정한 다음 액션

    ``error`` is set when the raw response failed to parse or broke the
    contract; such a response never carries an action.
    """

    reasoning: str = ""
    goal_achieved: bool = False
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    action: Optional[AgentAction] = None
    error: Optional[str] = None


class SkillMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    tags: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    last_used_at: Optional[datetime] = None
    use_count: int = 0
    version: str = "1.0.0"
    author: Optional[str] = None
    category: Optional[str] = None


class SkillContext(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    start_url: Optional[str] = None
    required_elements: List[str] = Field(default_factory=list)
    expected_domain: Optional[str] = None


class Skill(BaseModel):
    """저장된 액션 시퀀스 (skill / recipe)"""

    id: str
    name: str
    description: str = ""
    goal: Optional[str] = None
    actions: List[AgentAction] = Field(default_factory=list)
    metadata: SkillMetadata = Field(default_factory=SkillMetadata)
    context: Optional[SkillContext] = None


class ReplayResult(BaseModel):
    success: bool
    executed_results: List[ExecutionResult] = Field(default_factory=list)
    error: Optional[str] = None
    duration_ms: int = 0
    timestamp: datetime = Field(default_factory=utc_now)
    skill_id: Optional[str] = None
