import asyncio

import pytest

from tabpilot.src.agent.errors import HostError, RecordingNotFoundError
from tabpilot.src.agent.models import ActionType
from tabpilot.src.skills.recorder import RecordingManager
from tabpilot.src.skills.store import SkillStore

CLICK = {
    "type": "click",
    "target": "main",
    "selectors": [["aria/Search"], ["#search"]],
    "offsetX": 4,
    "offsetY": 6,
}
CHANGE = {"type": "change", "selectors": [["#q"]], "value": "tab agents"}


def _start(manager, tab_id=None):
    return asyncio.run(manager.start_recording(tab_id))


def test_start_records_viewport_and_current_page(host, tab):
    manager = RecordingManager(host)

    session_id = _start(manager, tab.id)

    session = manager.get_session(session_id)
    assert session.is_recording is True
    assert tab.recorder_installed is True
    assert [step.type for step in session.recording.steps] == ["setViewport", "navigate"]
    assert session.recording.steps[1].url == "https://example.com"
    assert manager.get_active_session() is session


def test_blank_tab_has_no_initial_navigate(host):
    blank = host.add_tab()
    manager = RecordingManager(host)

    session_id = _start(manager)

    assert manager.get_session(session_id).tab_id == blank.id
    assert [step.type for step in manager.get_session(session_id).recording.steps] == ["setViewport"]


def test_poll_drains_page_buffer(host, tab):
    manager = RecordingManager(host)
    session_id = _start(manager, tab.id)
    tab.recorded_steps.extend([CLICK, CHANGE, "noise"])

    added = asyncio.run(manager.poll(session_id))

    assert added == 2
    assert tab.recorded_steps == []
    assert asyncio.run(manager.poll(session_id)) == 0
    click = manager.get_session(session_id).recording.steps[2]
    assert click.selectors == CLICK["selectors"]
    assert click.offset_x == 4


def test_navigation_reinstalls_listeners_and_adds_navigate(host, tab):
    manager = RecordingManager(host)
    session_id = _start(manager, tab.id)
    tab.recorded_steps.append(CLICK)
    asyncio.run(tab.navigate("https://example.com/results"))

    asyncio.run(manager.poll(session_id))

    assert tab.recorder_installed is True
    kinds = [step.type for step in manager.get_session(session_id).recording.steps]
    assert kinds == ["setViewport", "navigate", "click", "navigate"]
    assert manager.get_session(session_id).recording.steps[-1].url == "https://example.com/results"


def test_paused_session_ignores_page_steps(host, tab):
    manager = RecordingManager(host)
    session_id = _start(manager, tab.id)

    manager.pause_recording(session_id)
    tab.recorded_steps.append(CLICK)
    assert asyncio.run(manager.poll(session_id)) == 0

    asyncio.run(manager.resume_recording(session_id))
    tab.recorded_steps.append(CHANGE)
    asyncio.run(manager.poll(session_id))

    kinds = [step.type for step in manager.get_session(session_id).recording.steps]
    assert kinds == ["setViewport", "navigate", "change"]


def test_stop_drains_remaining_steps(host, tab):
    manager = RecordingManager(host)
    session_id = _start(manager, tab.id)
    tab.recorded_steps.append(CLICK)

    recording = asyncio.run(manager.stop_recording(session_id))

    assert [step.type for step in recording.steps][-1] == "click"
    assert manager.get_session(session_id).is_recording is False
    assert manager.get_active_session() is None


def test_record_until_stops_on_event(host, tab):
    manager = RecordingManager(host, poll_interval_ms=1)

    async def scenario():
        session_id = await manager.start_recording(tab.id)
        stop = asyncio.Event()
        task = asyncio.create_task(manager.record_until(session_id, stop))
        tab.recorded_steps.append(CLICK)
        await asyncio.sleep(0.02)
        stop.set()
        return await asyncio.wait_for(task, 5)

    recording = asyncio.run(scenario())

    assert [step.type for step in recording.steps].count("click") == 1


def test_recording_becomes_a_replayable_skill(host, tab, tmp_path):
    manager = RecordingManager(host)
    session_id = _start(manager, tab.id)
    tab.recorded_steps.extend([CLICK, CHANGE, {"type": "scroll", "x": 0, "y": -200}])
    asyncio.run(manager.stop_recording(session_id))
    store = SkillStore(tmp_path)

    skill = manager.save_as_skill(session_id, store, "Search", tags=["recorded"])

    assert [a.type for a in skill.actions] == [
        ActionType.NAVIGATE,
        ActionType.CLICK,
        ActionType.TYPE,
        ActionType.SCROLL,
    ]
    assert skill.actions[3].parameters.direction == "up"
    assert skill.actions[3].parameters.amount == 200
    assert skill.context.start_url == "https://example.com"
    assert store.get(skill.id).metadata.tags == ["recorded"]


def test_empty_recording_cannot_be_saved(host, tmp_path):
    blank = host.add_tab()
    manager = RecordingManager(host)
    session_id = _start(manager, blank.id)

    with pytest.raises(ValueError):
        manager.save_as_skill(session_id, SkillStore(tmp_path), "Nothing")


def test_unknown_session_and_missing_tab(host, tab):
    manager = RecordingManager(host)
    with pytest.raises(RecordingNotFoundError):
        manager.get_session("recording_missing")
    with pytest.raises(HostError):
        _start(manager, "tab-99")

    session_id = _start(manager, tab.id)
    asyncio.run(host.close_tab(tab.id))
    with pytest.raises(HostError):
        asyncio.run(manager.poll(session_id))

    assert manager.delete_session(session_id) is True
    assert manager.delete_session(session_id) is False
