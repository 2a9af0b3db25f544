import pytest

from tabpilot.src.agent.models import ActionType, parse_action
from tabpilot.src.skills.puppeteer import (
    PuppeteerRecording,
    actions_to_puppeteer,
    merge_recordings,
    primary_selector,
    puppeteer_to_actions,
    validate_recording,
)

RECORDING = {
    "title": "Search docs",
    "steps": [
        {"type": "setViewport", "width": 1280, "height": 720},
        {"type": "navigate", "url": "https://example.com/", "assertedEvents": [{"type": "navigation"}]},
        {
            "type": "click",
            "target": "main",
            "selectors": [["aria/Search"], ["#search-input"], ["xpath///*[@id=\"search-input\"]"]],
            "offsetX": 12,
            "offsetY": 8,
        },
        {"type": "change", "selectors": [["#search-input"]], "value": "tab agents"},
        {"type": "keyDown", "selectors": [["#search-input"]], "key": "Enter"},
        {"type": "scroll", "x": 0, "y": 640},
        {"type": "hover", "selectors": [["text/Results"]]},
        {"type": "waitForElement", "selectors": [[".result"]]},
        {"type": "doubleClick", "selectors": [["#x"]]},
    ],
}


def test_recording_converts_to_actions():
    actions = puppeteer_to_actions(RECORDING)

    assert [a.type for a in actions] == [
        ActionType.NAVIGATE,
        ActionType.CLICK,
        ActionType.TYPE,
        ActionType.TYPE,
        ActionType.SCROLL,
        ActionType.HOVER,
        ActionType.WAIT_FOR_ELEMENT,
    ]
    click = actions[1].parameters
    assert click.selector == "#search-input"
    assert click.selectors == RECORDING["steps"][2]["selectors"]
    assert (click.offset_x, click.offset_y) == (12, 8)

    change, key = actions[2].parameters, actions[3].parameters
    assert (change.text, change.clear) == ("tab agents", True)
    assert (key.text, key.clear) == ("Enter", False)
    assert actions[4].parameters.amount == 640
    assert actions[5].parameters.selector == "text:Results"
    assert actions[6].parameters.timeout == 30000


@pytest.mark.parametrize(
    "selectors, expected",
    [
        ([["aria/Go"], ["#go"]], "#go"),
        ([["aria/Go"], ["button.go"], ["#go"]], "#go"),
        ([["aria/Go"], ["button.go"]], "button.go"),
        ([["aria/Go"]], '[aria-label="Go"]'),
        ([], None),
    ],
)
def test_primary_selector(selectors, expected):
    assert primary_selector(selectors) == expected


def test_empty_change_is_skipped():
    recording = {"title": "t", "steps": [{"type": "change", "selectors": [["#q"]], "value": ""}]}
    assert puppeteer_to_actions(recording) == []


def test_actions_export_to_recording():
    actions = [
        parse_action({"type": "navigate", "parameters": {"url": "https://example.com"}}),
        parse_action({"type": "click", "parameters": {"selector": "#go", "offsetX": 3}}),
        parse_action({"type": "type", "parameters": {"selector": "#q", "text": "hi"}}),
        parse_action({"type": "extract", "parameters": {"schema": {"t": {"selector": "h1"}}}}),
        parse_action({"type": "wait", "parameters": {"ms": 10}}),
    ]

    recording = actions_to_puppeteer(actions, title="Exported").to_json_dict()

    assert recording["title"] == "Exported"
    kinds = [step["type"] for step in recording["steps"]]
    assert kinds == ["setViewport", "navigate", "click", "change"]
    assert recording["steps"][0]["width"] == 1280
    assert recording["steps"][2]["selectors"] == [["#go"]]
    assert recording["steps"][2]["offsetX"] == 3
    assert recording["steps"][3]["value"] == "hi"


def test_recorded_locators_survive_a_round_trip():
    actions = puppeteer_to_actions(RECORDING)
    exported = actions_to_puppeteer(actions).to_json_dict()
    click = next(step for step in exported["steps"] if step["type"] == "click")
    assert click["selectors"] == RECORDING["steps"][2]["selectors"]
    assert exported["title"].startswith("Recording ")


def test_validate_recording():
    assert validate_recording(RECORDING) == (True, [])

    ok, errors = validate_recording({"steps": [{"type": "navigate"}, {"type": "click"}, {}]})
    assert ok is False
    assert "Recording must have a title" in errors
    assert "Navigate step 0 is missing url" in errors
    assert "click step 1 is missing selectors" in errors
    assert "Step 2 is missing type" in errors

    assert validate_recording({"title": "x"}) == (False, ["Recording must have a steps array"])


def test_merge_recordings_keeps_one_viewport():
    first = PuppeteerRecording.model_validate(RECORDING)
    second = PuppeteerRecording.model_validate(
        {"title": "b", "steps": [{"type": "setViewport", "width": 800}, {"type": "scroll", "y": 10}]}
    )

    merged = merge_recordings([first, second])

    kinds = [step.type for step in merged.steps]
    assert kinds.count("setViewport") == 1
    assert kinds[0] == "setViewport"
    assert kinds[-1] == "scroll"
    assert merged.title.startswith("Merged Recording")

    with pytest.raises(ValueError):
        merge_recordings([])
