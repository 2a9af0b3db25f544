"""Pre-flight validation and display helpers for agent actions."""

from __future__ import annotations

from typing import Callable, Dict, Optional
from urllib.parse import urlparse

from tabpilot.src.agent.models import (
    ActionType,
    AgentAction,
    ClickAction,
    CloseTabAction,
    ExtractAction,
    GetAttributeAction,
    GetTextAction,
    HoverAction,
    NavigateAction,
    ScrollAction,
    SelectAction,
    SwitchTabAction,
    TypeAction,
    WaitAction,
    WaitForElementAction,
)

SCROLL_DIRECTIONS = ("up", "down", "to")
MAX_WAIT_MS = 30000
MAX_WAIT_FOR_ELEMENT_MS = 60000


def normalize_url(url: str) -> str:
    """스킴이 없으면 https:// 를 붙입니다."""
    if not url:
        return url
    if url.startswith("http://") or url.startswith("https://"):
        return url
    if "://" in url or url.startswith(("about:", "data:", "file:")):
        return url
    return "https://" + url


def _is_parseable_url(url: str) -> bool:
    parsed = urlparse(url)
    if not parsed.scheme:
        return False
    if parsed.scheme in ("http", "https"):
        return bool(parsed.netloc) and " " not in parsed.netloc
    return True


def normalize_selector(selector: str) -> str:
    """Map recorder-style locator prefixes to the forms the in-page resolver understands."""
    if selector.startswith("xpath/"):
        return "xpath:" + selector[len("xpath/"):]
    if selector.startswith("aria/"):
        label = selector[len("aria/"):].replace('"', '\\"')
        return f'[aria-label="{label}"]'
    if selector.startswith("text/"):
        return "text:" + selector[len("text/"):]
    if selector.startswith("pierce/"):
        return selector[len("pierce/"):]
    return selector


def _validate_navigate(action: NavigateAction) -> Optional[str]:
    url = action.parameters.url
    if not url:
        return "URL is required for navigate action"
    if _is_parseable_url(url) or _is_parseable_url("https://" + url):
        return None
    return "Invalid URL format"


def _validate_click(action: ClickAction) -> Optional[str]:
    if not action.parameters.selector and not action.parameters.selectors:
        return "Selector is required for click action"
    return None


def _validate_type(action: TypeAction) -> Optional[str]:
    if not action.parameters.selector and not action.parameters.selectors:
        return "Selector is required for type action"
    if action.parameters.text is None:
        return "Text is required for type action"
    return None


def _validate_select(action: SelectAction) -> Optional[str]:
    if not action.parameters.selector:
        return "Selector is required for select action"
    if not action.parameters.value:
        return "Value is required for select action"
    return None


def _validate_scroll(action: ScrollAction) -> Optional[str]:
    if action.parameters.direction not in SCROLL_DIRECTIONS:
        return f"Invalid scroll direction. Must be one of: {', '.join(SCROLL_DIRECTIONS)}"
    return None


def _validate_hover(action: HoverAction) -> Optional[str]:
    if not action.parameters.selector:
        return "Selector is required for hover action"
    return None


def _validate_extract(action: ExtractAction) -> Optional[str]:
    if not action.parameters.fields:
        return "Schema is required for extract action"
    return None


def _validate_get_text(action: GetTextAction) -> Optional[str]:
    if not action.parameters.selector:
        return "Selector is required for get_text action"
    return None


def _validate_get_attribute(action: GetAttributeAction) -> Optional[str]:
    if not action.parameters.selector:
        return "Selector is required for get_attribute action"
    if not action.parameters.attribute:
        return "Attribute is required for get_attribute action"
    return None


def _validate_wait(action: WaitAction) -> Optional[str]:
    if action.parameters.ms < 0:
        return "Wait duration must be positive"
    if action.parameters.ms > MAX_WAIT_MS:
        return "Wait duration cannot exceed 30 seconds"
    return None


def _validate_wait_for_element(action: WaitForElementAction) -> Optional[str]:
    if not action.parameters.selector:
        return "Selector is required for wait_for_element action"
    if action.parameters.timeout < 0:
        return "Timeout must be positive"
    if action.parameters.timeout > MAX_WAIT_FOR_ELEMENT_MS:
        return "Timeout cannot exceed 60 seconds"
    return None


def _validate_tab_id(action: SwitchTabAction | CloseTabAction) -> Optional[str]:
    if not action.parameters.tab_id:
        return f"tabId is required for {action.type.value} action"
    return None


_VALIDATORS: Dict[ActionType, Callable] = {
    ActionType.NAVIGATE: _validate_navigate,
    ActionType.CLICK: _validate_click,
    ActionType.TYPE: _validate_type,
    ActionType.SELECT: _validate_select,
    ActionType.SCROLL: _validate_scroll,
    ActionType.HOVER: _validate_hover,
    ActionType.EXTRACT: _validate_extract,
    ActionType.GET_TEXT: _validate_get_text,
    ActionType.GET_ATTRIBUTE: _validate_get_attribute,
    ActionType.WAIT: _validate_wait,
    ActionType.WAIT_FOR_ELEMENT: _validate_wait_for_element,
    ActionType.SWITCH_TAB: _validate_tab_id,
    ActionType.CLOSE_TAB: _validate_tab_id,
}


def validate_action(action: AgentAction) -> Optional[str]:
    """Return a human-readable error, or None when the action may run."""
    validator = _VALIDATORS.get(action.type)
    if validator is None:
        return None
    return validator(action)


def format_action_for_display(action: AgentAction) -> str:
    params = action.parameters
    kind = action.type
    if kind is ActionType.NAVIGATE:
        return f"Navigate to: {params.url}"
    if kind is ActionType.CLICK:
        return f"Click: {params.selector}"
    if kind is ActionType.TYPE:
        return f'Type "{params.text}" into {params.selector}'
    if kind is ActionType.SELECT:
        return f'Select "{params.value}" from {params.selector}'
    if kind is ActionType.SCROLL:
        return f"Scroll {params.direction}"
    if kind is ActionType.HOVER:
        return f"Hover: {params.selector}"
    if kind is ActionType.EXTRACT:
        return "Extract data"
    if kind is ActionType.GET_TEXT:
        return f"Get text from: {params.selector}"
    if kind is ActionType.GET_ATTRIBUTE:
        return f"Get {params.attribute} from: {params.selector}"
    if kind is ActionType.WAIT:
        return f"Wait {params.ms}ms"
    if kind is ActionType.WAIT_FOR_ELEMENT:
        return f"Wait for: {params.selector}"
    if kind is ActionType.GO_BACK:
        return "Go back"
    if kind is ActionType.GO_FORWARD:
        return "Go forward"
    if kind is ActionType.RELOAD:
        return "Reload page"
    if kind is ActionType.CREATE_TAB:
        return "Create new tab"
    if kind is ActionType.SWITCH_TAB:
        return f"Switch to tab: {params.tab_id}"
    if kind is ActionType.CLOSE_TAB:
        return f"Close tab: {params.tab_id}"
    return f"Complete: {params.reason}"


def get_action_descriptions() -> str:
    """Action catalogue embedded in the planning system prompt."""
    return """
Available Actions:

NAVIGATION:
- navigate(url): Navigate to a URL
- go_back(): Go back in browser history
- go_forward(): Go forward in browser history
- reload(): Reload the current page

DOM INTERACTIONS:
- click(selector): Click an element (CSS selector, ID, class, or text)
- type(selector, text, clear?): Type text into an input field
- select(selector, value): Select an option from a dropdown
- scroll(direction, amount?): Scroll the page (up/down/to)
- hover(selector): Hover over an element

DATA EXTRACTION:
- extract(schema): Extract structured data using a schema
  Example schema: { "title": { "selector": "h1", "type": "text" } }
- get_text(selector): Get text content from an element
- get_attribute(selector, attribute): Get an attribute value from an element

TAB MANAGEMENT:
- create_tab(url?): Create a new tab
- switch_tab(tabId): Switch to a different tab
- close_tab(tabId): Close a tab

UTILITY:
- wait(ms): Wait for a specific duration
- wait_for_element(selector, timeout): Wait for an element to appear

META:
- complete(reason, data?): Mark the goal as completed

Each action should include a "reasoning" field explaining why you chose it.
""".strip()
