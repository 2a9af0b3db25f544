"""JSON-file persistence for skills and recipes (one file per id)."""
from __future__ import annotations

import json
import os
import re
import time
from collections import Counter
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError

from tabpilot.src.agent.models import (
    AgentAction,
    AgentState,
    Skill,
    SkillContext,
    SkillMetadata,
    dump_action,
    utc_now,
)

SKILL_FILE_EXTENSION = ".json"
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


class SkillNotFoundError(KeyError):
    def __init__(self, skill_id: str):
        self.skill_id = skill_id
        super().__init__(skill_id)

    def __str__(self) -> str:
        return f"Skill not found: {self.skill_id}"


def default_data_dir() -> Path:
    return Path(os.getenv("TABPILOT_HOME") or (Path.home() / ".tabpilot"))


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def skill_to_dict(skill: Skill) -> Dict[str, Any]:
    """Serializable form; actions drop their timestamps."""
    data = skill.model_dump(mode="json", by_alias=True, exclude={"actions"}, exclude_none=True)
    data["actions"] = [dump_action(action) for action in skill.actions]
    return data


class SkillStore:
    """
    스킬/레시피 저장소

    Files live under ``<root>/<kind>/<id>.json``; ``kind`` is ``skills`` or
    ``recipes``. An in-memory index mirrors the directory.
    """

    def __init__(
        self,
        root: Path | str | None = None,
        kind: str = "skills",
        log_callback: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.kind = kind
        self.directory = (Path(root) if root else default_data_dir()) / kind
        self.directory.mkdir(parents=True, exist_ok=True)
        self._log_callback = log_callback
        self._skills: Dict[str, Skill] = {}
        self.load_all()

    def _log(self, message: str):
        print(f"[SkillStore] {message}")
        if self._log_callback:
            self._log_callback(message)

    # ------------------------------------------------------------------
    def generate_id(self, name: str) -> str:
        base = f"{slugify(name) or self.kind.rstrip('s')}-{_base36(int(time.time() * 1000))}"
        candidate = base
        suffix = 1
        while candidate in self._skills or self._path(candidate).exists():
            suffix += 1
            candidate = f"{base}-{suffix}"
        return candidate

    def create_skill_from_agent(
        self,
        state: AgentState,
        name: str,
        description: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        category: Optional[str] = None,
        start_url: Optional[str] = None,
    ) -> Skill:
        """Successful actions only; without ``start_url`` the agent's last observed page is used."""
        if start_url is None and state.current_context is not None:
            start_url = state.current_context.url
        return Skill(
            id=self.generate_id(name),
            name=name,
            description=description or state.goal.goal,
            goal=state.goal.goal,
            actions=state.successful_actions(),
            metadata=SkillMetadata(tags=list(tags or []), category=category),
            context=SkillContext(start_url=start_url),
        )

    def create_skill(
        self,
        name: str,
        description: str,
        actions: List[AgentAction],
        tags: Optional[Iterable[str]] = None,
        context: Optional[SkillContext] = None,
        category: Optional[str] = None,
    ) -> Skill:
        return Skill(
            id=self.generate_id(name),
            name=name,
            description=description,
            actions=list(actions),
            metadata=SkillMetadata(tags=list(tags or []), category=category),
            context=context,
        )

    # ------------------------------------------------------------------
    def _path(self, skill_id: str) -> Path:
        if not skill_id or Path(skill_id).name != skill_id:
            raise ValueError(f"Invalid skill id: {skill_id!r}")
        return self.directory / f"{skill_id}{SKILL_FILE_EXTENSION}"

    def save(self, skill: Skill) -> Path:
        path = self._path(skill.id)
        path.write_text(json.dumps(skill_to_dict(skill), ensure_ascii=False, indent=2), encoding="utf-8")
        self._skills[skill.id] = skill
        self._log(f"💾 Saved {self.kind[:-1]}: {skill.name} ({path.name})")
        return path

    def load(self, skill_id: str) -> Optional[Skill]:
        path = self._path(skill_id)
        if not path.exists():
            return None
        try:
            skill = Skill.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, ValidationError) as exc:
            self._log(f"Failed to load {path.name}: {exc}")
            return None
        self._skills[skill.id] = skill
        return skill

    def load_all(self) -> List[Skill]:
        self._skills.clear()
        for path in sorted(self.directory.glob(f"*{SKILL_FILE_EXTENSION}")):
            self.load(path.stem)
        return self.list()

    def delete(self, skill_id: str) -> bool:
        path = self._path(skill_id)
        existed = self._skills.pop(skill_id, None) is not None or path.exists()
        if path.exists():
            path.unlink()
        if existed:
            self._log(f"🗑️  Deleted {self.kind[:-1]}: {skill_id}")
        return existed

    # ------------------------------------------------------------------
    def get(self, skill_id: str) -> Optional[Skill]:
        return self._skills.get(skill_id)

    def require(self, skill_id: str) -> Skill:
        skill = self._skills.get(skill_id)
        if skill is None:
            raise SkillNotFoundError(skill_id)
        return skill

    def list(self) -> List[Skill]:
        return sorted(self._skills.values(), key=lambda s: s.metadata.created_at)

    def find_by_name(self, name: str) -> Optional[Skill]:
        needle = name.strip().lower()
        for skill in self._skills.values():
            if skill.name.lower() == needle:
                return skill
        return None

    def resolve(self, id_or_name: str) -> Skill:
        """Look a skill up by id, falling back to a case-insensitive name match."""
        skill = self._skills.get(id_or_name) or self.find_by_name(id_or_name)
        if skill is None:
            raise SkillNotFoundError(id_or_name)
        return skill

    def search_by_tags(self, tags: Iterable[str]) -> List[Skill]:
        wanted = set(tags)
        return [s for s in self.list() if wanted.intersection(s.metadata.tags)]

    def search_by_category(self, category: str) -> List[Skill]:
        return [s for s in self.list() if s.metadata.category == category]

    def most_used(self, limit: int = 5) -> List[Skill]:
        return sorted(self._skills.values(), key=lambda s: s.metadata.use_count, reverse=True)[:limit]

    def record_usage(self, skill_id: str) -> Skill:
        skill = self.require(skill_id)
        metadata = skill.metadata.model_copy(
            update={"use_count": skill.metadata.use_count + 1, "last_used_at": utc_now()}
        )
        updated = skill.model_copy(update={"metadata": metadata})
        self.save(updated)
        return updated

    # ------------------------------------------------------------------
    def export_json(self, skill_id: str) -> str:
        return json.dumps(skill_to_dict(self.require(skill_id)), ensure_ascii=False, indent=2)

    def import_json(self, content: str) -> Skill:
        data = json.loads(content)
        if not isinstance(data, dict):
            raise ValueError("Skill JSON must be an object")
        if not data.get("id"):
            data["id"] = self.generate_id(str(data.get("name") or self.kind))
        skill = Skill.model_validate(data)
        self.save(skill)
        return skill

    def stats(self) -> Dict[str, Any]:
        skills = list(self._skills.values())
        categories = Counter(s.metadata.category for s in skills if s.metadata.category)
        tags = Counter(tag for s in skills for tag in s.metadata.tags)
        return {
            "total": len(skills),
            "total_uses": sum(s.metadata.use_count for s in skills),
            "total_actions": sum(len(s.actions) for s in skills),
            "categories": dict(categories),
            "tags": dict(tags),
        }
