"""
Interaction recorder

사용자가 직접 조작한 내용을 Chrome Recorder(Puppeteer Replay) 형식의 스텝으로 기록합니다.
A listener script is injected into the page and buffers steps in
``window.__tabpilotRecorder``; the manager drains that buffer on every poll.
Pending steps are parked in ``sessionStorage`` on ``pagehide`` so a click that
triggers a same-origin navigation survives the page swap.
"""

from __future__ import annotations

import asyncio
import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError

from tabpilot.src.agent.errors import HostError, RecordingNotFoundError
from tabpilot.src.agent.models import AgentAction, Skill, SkillContext, utc_now
from tabpilot.src.host.base import PageHost, PageTab
from tabpilot.src.skills.puppeteer import PuppeteerRecording, PuppeteerStep, puppeteer_to_actions
from tabpilot.src.skills.store import SkillStore

RECORDER_NAMESPACE = "__tabpilotRecorder"
DEFAULT_POLL_INTERVAL_MS = 500

RECORDER_SCRIPT = """
(() => {
  if (window.__tabpilotRecorder) {
    return true;
  }
  const STORAGE_KEY = '__tabpilotRecorderPending';

  const selectorsFor = (el) => {
    const groups = [];
    const aria = el.getAttribute('aria-label');
    if (aria) groups.push(['aria/' + aria]);
    if (el.id) groups.push(['#' + el.id]);

    const path = [];
    let current = el;
    while (current && current.nodeType === Node.ELEMENT_NODE && path.length < 4) {
      let part = current.nodeName.toLowerCase();
      if (current.id) {
        path.unshift('#' + current.id);
        break;
      }
      if (typeof current.className === 'string' && current.className.trim()) {
        part += '.' + current.className.trim().split(/\\s+/).join('.');
      }
      path.unshift(part);
      current = current.parentElement;
    }
    if (path.length && !(path.length === 1 && el.id)) groups.push([path.join(' > ')]);

    const text = (el.textContent || '').trim();
    if (text && text.length < 50) groups.push(['text/' + text]);
    return groups.length ? groups : [['body']];
  };

  let pending = [];
  try {
    pending = JSON.parse(sessionStorage.getItem(STORAGE_KEY) || '[]');
    sessionStorage.removeItem(STORAGE_KEY);
  } catch (e) {
    pending = [];
  }

  const recorder = { steps: pending };
  window.__tabpilotRecorder = recorder;

  document.addEventListener('click', (e) => {
    const el = e.target;
    if (!el || el.nodeType !== Node.ELEMENT_NODE) return;
    const rect = el.getBoundingClientRect();
    recorder.steps.push({
      type: 'click',
      target: 'main',
      selectors: selectorsFor(el),
      offsetX: Math.round(e.clientX - rect.left),
      offsetY: Math.round(e.clientY - rect.top),
    });
  }, true);

  let inputTimer = null;
  document.addEventListener('input', (e) => {
    const el = e.target;
    if (!el || (el.tagName !== 'INPUT' && el.tagName !== 'TEXTAREA')) return;
    clearTimeout(inputTimer);
    inputTimer = setTimeout(() => {
      recorder.steps.push({ type: 'change', selectors: selectorsFor(el), value: el.value });
    }, 500);
  }, true);

  document.addEventListener('change', (e) => {
    const el = e.target;
    if (!el || el.tagName !== 'SELECT') return;
    recorder.steps.push({ type: 'change', selectors: selectorsFor(el), value: el.value });
  }, true);

  let scrollTimer = null;
  let lastScrollY = window.scrollY;
  window.addEventListener('scroll', () => {
    clearTimeout(scrollTimer);
    scrollTimer = setTimeout(() => {
      const delta = Math.round(window.scrollY - lastScrollY);
      if (Math.abs(delta) > 50) {
        recorder.steps.push({ type: 'scroll', x: 0, y: delta });
      }
      lastScrollY = window.scrollY;
    }, 300);
  });

  window.addEventListener('pagehide', () => {
    try {
      sessionStorage.setItem(STORAGE_KEY, JSON.stringify(recorder.steps));
    } catch (e) {}
  });

  return true;
})()
""".strip()

RECORDER_DRAIN_SCRIPT = """
(() => {
  const recorder = window.__tabpilotRecorder;
  if (!recorder) return null;
  const steps = recorder.steps;
  recorder.steps = [];
  return steps;
})()
""".strip()

_BLANK_URLS = ("", "about:blank")


def generate_session_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=7))
    return f"recording_{int(time.time() * 1000)}_{suffix}"


@dataclass(slots=True)
class RecordingSession:
    """One recording on one tab; ``recording`` grows as the page is polled."""

    id: str
    tab_id: str
    recording: PuppeteerRecording
    started_at: datetime = field(default_factory=utc_now)
    is_recording: bool = True
    last_url: str = ""

    @property
    def step_count(self) -> int:
        return len(self.recording.steps)


class RecordingManager:
    """
    녹화 세션 레지스트리

    Sessions are keyed by id and owned by this object; nothing else holds them.
    """

    def __init__(
        self,
        host: PageHost,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        viewport: Optional[Dict[str, int]] = None,
        log_callback: Optional[Callable[[str], None]] = None,
    ):
        self.host = host
        self.poll_interval_ms = poll_interval_ms
        self.viewport = viewport or {"width": 1280, "height": 720}
        self._sessions: Dict[str, RecordingSession] = {}
        self._log_callback = log_callback

    def _log(self, message: str):
        print(f"[RecordingManager] {message}")
        if self._log_callback:
            self._log_callback(message)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------
    async def start_recording(self, tab_id: Optional[str] = None, title: Optional[str] = None) -> str:
        tab = self.host.get_tab(tab_id) if tab_id else self.host.get_active_tab()
        if tab is None:
            raise HostError(f"Tab {tab_id} not found" if tab_id else "No active tab to record")

        session = RecordingSession(
            id=generate_session_id(),
            tab_id=tab.id,
            recording=PuppeteerRecording(title=title or f"Recording {utc_now().isoformat()}"),
            last_url=tab.url,
        )
        session.recording.steps.append(
            PuppeteerStep(
                type="setViewport",
                width=self.viewport["width"],
                height=self.viewport["height"],
                deviceScaleFactor=1,
                isMobile=False,
                hasTouch=False,
                isLandscape=False,
            )
        )
        if tab.url not in _BLANK_URLS:
            session.recording.steps.append(self._navigate_step(tab.url))

        await self._install(tab)
        self._sessions[session.id] = session
        self._log(f"🔴 Started recording session {session.id} on tab {tab.id}")
        return session.id

    def pause_recording(self, session_id: str) -> None:
        session = self.get_session(session_id)
        session.is_recording = False
        self._log(f"⏸️  Paused recording session {session_id}")

    async def resume_recording(self, session_id: str) -> None:
        session = self.get_session(session_id)
        tab = self._tab_for(session)
        # steps buffered while paused are discarded
        await tab.run_script(RECORDER_DRAIN_SCRIPT)
        await self._install(tab)
        session.last_url = tab.url
        session.is_recording = True
        self._log(f"▶️  Resumed recording session {session_id}")

    async def stop_recording(self, session_id: str) -> PuppeteerRecording:
        """Drain whatever is still buffered in the page, then freeze the session."""
        session = self.get_session(session_id)
        if session.is_recording:
            await self.poll(session_id)
        session.is_recording = False
        self._log(f"⏹️  Stopped recording session {session_id} ({session.step_count} steps)")
        return session.recording

    def delete_session(self, session_id: str) -> bool:
        removed = self._sessions.pop(session_id, None) is not None
        if removed:
            self._log(f"🗑️  Deleted recording session {session_id}")
        return removed

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------
    async def poll(self, session_id: str) -> int:
        """Pull buffered steps from the page; returns how many were appended."""
        session = self.get_session(session_id)
        if not session.is_recording:
            return 0
        tab = self._tab_for(session)

        raw = await tab.run_script(RECORDER_DRAIN_SCRIPT)
        if raw is None:
            # a full navigation dropped the listeners
            await self._install(tab)
            raw = await tab.run_script(RECORDER_DRAIN_SCRIPT) or []

        added: List[PuppeteerStep] = []
        for entry in raw:
            if not isinstance(entry, dict):
                continue
            try:
                added.append(PuppeteerStep.model_validate(entry))
            except ValidationError as exc:
                self._log(f"Skipping malformed step: {exc.errors()[0].get('msg')}")

        if tab.url != session.last_url and tab.url not in _BLANK_URLS:
            added.append(self._navigate_step(tab.url))
        session.last_url = tab.url

        session.recording.steps.extend(added)
        if added:
            self._log(f"📝 Recorded {len(added)} step(s): {', '.join(step.type for step in added)}")
        return len(added)

    async def record_until(self, session_id: str, stop: asyncio.Event) -> PuppeteerRecording:
        """Poll every ``poll_interval_ms`` until ``stop`` is set, then stop the session."""
        while not stop.is_set():
            try:
                await self.poll(session_id)
            except HostError:
                raise
            except Exception as exc:
                self._log(f"Error polling session {session_id}: {exc}")
            try:
                await asyncio.wait_for(stop.wait(), self.poll_interval_ms / 1000)
            except asyncio.TimeoutError:
                pass
        return await self.stop_recording(session_id)

    # ------------------------------------------------------------------
    # Queries and conversion
    # ------------------------------------------------------------------
    def get_session(self, session_id: str) -> RecordingSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise RecordingNotFoundError(session_id)
        return session

    def list_sessions(self) -> List[RecordingSession]:
        return list(self._sessions.values())

    def get_active_session(self) -> Optional[RecordingSession]:
        return next((s for s in self._sessions.values() if s.is_recording), None)

    def to_actions(self, session_id: str) -> List[AgentAction]:
        return puppeteer_to_actions(self.get_session(session_id).recording)

    def save_as_skill(
        self,
        session_id: str,
        store: SkillStore,
        name: str,
        description: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> Skill:
        session = self.get_session(session_id)
        actions = self.to_actions(session_id)
        if not actions:
            raise ValueError("Recording contains no convertible steps")
        start_url = next((step.url for step in session.recording.steps if step.type == "navigate"), None)
        skill = store.create_skill(
            name=name,
            description=description or session.recording.title,
            actions=actions,
            tags=tags or [],
            context=SkillContext(start_url=start_url) if start_url else None,
        )
        store.save(skill)
        self._log(f"💾 Saved recording {session_id} as skill {skill.id} ({len(actions)} actions)")
        return skill

    def cleanup(self) -> None:
        self._log("🧹 Cleaning up RecordingManager...")
        self._sessions.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _tab_for(self, session: RecordingSession) -> PageTab:
        tab = self.host.get_tab(session.tab_id)
        if tab is None:
            raise HostError(f"Tab {session.tab_id} not found")
        return tab

    async def _install(self, tab: PageTab) -> None:
        try:
            await tab.run_script(RECORDER_SCRIPT)
        except Exception as exc:
            raise HostError(f"Failed to inject recorder: {exc}") from exc

    @staticmethod
    def _navigate_step(url: str) -> PuppeteerStep:
        return PuppeteerStep(type="navigate", url=url, assertedEvents=[{"type": "navigation", "url": url}])
