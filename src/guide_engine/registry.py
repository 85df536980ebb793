# registry.py
# Document-order step numbering across all sections of one content item.

from guide_engine.models import Section


class StepRegistry:
    def __init__(self):
        self.content_key: str | None = None
        self._offsets: dict[str, int] = {}
        self._section_offsets: dict[str, int] = {}

    def register(self, content_key: str, sections: list[Section]) -> int:
        """Number every step in document order. Returns the total step count."""
        self.reset()
        self.content_key = content_key
        position = 0
        for section in sections:
            self._section_offsets[section.id] = position
            for step in section.steps:
                if step.id in self._offsets:
                    raise ValueError(f"Step id '{step.id}' appears in more than one section")
                self._offsets[step.id] = position
                position += 1
        return position

    @property
    def total(self) -> int:
        return len(self._offsets)

    def offset(self, step_id: str) -> int:
        return self._offsets[step_id]

    def section_offset(self, section_id: str) -> int:
        return self._section_offsets[section_id]

    def completion_percentage(self, completed: set[str]) -> float:
        if not self._offsets:
            return 0.0
        done = len(completed & set(self._offsets))
        return round(100.0 * done / len(self._offsets), 1)

    def reset(self) -> None:
        self.content_key = None
        self._offsets.clear()
        self._section_offsets.clear()
