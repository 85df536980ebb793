# guide.py
# Guide documents: a content key, a title and an ordered list of sections.
#
# On disk a guide is one JSON document:
#
#   {
#     "id": "first-dashboard",
#     "title": "Build your first dashboard",
#     "sections": [
#       {"id": "setup", "title": "Setup", "requirements": "is-admin",
#        "steps": [
#          {"id": "open", "action": {"kind": "button", "target": "New"}},
#          {"id": "fill", "kind": "composite", "internal_actions": [...]}
#        ]}
#     ]
#   }

import json
import os
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, model_validator

from guide_engine.errors import GuideParseError
from guide_engine.models import Section


class Guide(BaseModel):
    id: str = Field(description="Content key. Progress is stored under it")
    title: str = ""
    sections: list[Section] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_ids(self) -> "Guide":
        seen: set[str] = set()
        for section in self.sections:
            if section.id in seen:
                raise ValueError(f"Duplicate section id: {section.id}")
            seen.add(section.id)
            for step_id in section.step_ids:
                if step_id in seen:
                    raise ValueError(f"Duplicate step id: {step_id}")
                seen.add(step_id)
        return self

    @property
    def content_key(self) -> str:
        return self.id

    @property
    def step_count(self) -> int:
        return sum(len(s.steps) for s in self.sections)

    def section(self, section_id: str) -> Section:
        for section in self.sections:
            if section.id == section_id:
                return section
        raise KeyError(f"Unknown section: {section_id}")


def parse_guide(text: str) -> Guide:
    try:
        return Guide.model_validate_json(text)
    except ValidationError as e:
        raise GuideParseError(f"Invalid guide document: {e.error_count()} error(s)\n{e}") from e


def load_guide(path: str | os.PathLike) -> Guide:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise GuideParseError(f"Cannot read guide {path}: {e}") from e
    try:
        json.loads(text)
    except json.JSONDecodeError as e:
        raise GuideParseError(f"{path} is not valid JSON: {e}") from e
    return parse_guide(text)
