# persistence.py
# Completed-step storage keyed by (content key, section id).
#
# The store is opaque to the engine: get, set, clear. Restoring filters the
# stored ids to those still present in the current content.

import json
import os
from pathlib import Path
from typing import Protocol

from guide_engine.models import Section


class CompletionStore(Protocol):
    def get_completed(self, content_key: str, section_id: str) -> set[str]: ...

    def set_completed(self, content_key: str, section_id: str, step_ids: set[str]) -> None: ...

    def clear(self, content_key: str, section_id: str) -> None: ...


class InMemoryCompletionStore:
    def __init__(self):
        self._data: dict[tuple[str, str], set[str]] = {}

    def get_completed(self, content_key: str, section_id: str) -> set[str]:
        return set(self._data.get((content_key, section_id), set()))

    def set_completed(self, content_key: str, section_id: str, step_ids: set[str]) -> None:
        self._data[(content_key, section_id)] = set(step_ids)

    def clear(self, content_key: str, section_id: str) -> None:
        self._data.pop((content_key, section_id), None)


class JsonFileCompletionStore:
    """One JSON document: {content_key: {section_id: [step ids]}}."""

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path)

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        with open(self.path, encoding="utf-8") as fh:
            return json.load(fh)

    def _save(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2, sort_keys=True)

    def get_completed(self, content_key: str, section_id: str) -> set[str]:
        return set(self._load().get(content_key, {}).get(section_id, []))

    def set_completed(self, content_key: str, section_id: str, step_ids: set[str]) -> None:
        data = self._load()
        data.setdefault(content_key, {})[section_id] = sorted(step_ids)
        self._save(data)

    def clear(self, content_key: str, section_id: str) -> None:
        data = self._load()
        sections = data.get(content_key, {})
        if section_id in sections:
            del sections[section_id]
            if not sections:
                del data[content_key]
            self._save(data)


def restore_progress(store: CompletionStore, content_key: str, section: Section) -> tuple[set[str], int]:
    """(completed ids still in content, index of the first incomplete step)."""
    valid = set(section.step_ids)
    completed = store.get_completed(content_key, section.id) & valid
    return completed, resume_index(section, completed)


def resume_index(section: Section, completed: set[str]) -> int:
    for i, step_id in enumerate(section.step_ids):
        if step_id not in completed:
            return i
    return len(section.steps)
