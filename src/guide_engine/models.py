# models.py
# Data contracts for the guide engine.
# No business logic lives here. Pure schema and validation.

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ActionKind(str, Enum):
    BUTTON = "button"
    HIGHLIGHT = "highlight"
    FORMFILL = "formfill"
    NAVIGATE = "navigate"
    HOVER = "hover"
    SEQUENCE = "sequence"


class Mode(str, Enum):
    """Show previews an action without touching page state. Do commits it."""

    SHOW = "show"
    DO = "do"


class StepKind(str, Enum):
    SIMPLE = "simple"
    COMPOSITE = "composite"
    GUIDED = "guided"


class CompletionReason(str, Enum):
    NONE = "none"
    OBJECTIVES = "objectives"
    MANUAL = "manual"
    SKIPPED = "skipped"


class FixType(str, Enum):
    NAVIGATION = "navigation"
    EXPAND_PARENT_NAVIGATION = "expand-parent-navigation"
    LOCATION = "location"


# ---------------------------------------------------------------------------
# Action descriptors (closed tagged union on `kind`)
# ---------------------------------------------------------------------------


class _ActionBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    target: str = Field(..., description="Selector, button text or path depending on kind.")
    value: str | None = Field(default=None, description="Value for formfill actions.")
    comment: str | None = Field(default=None, description="Text shown next to the highlight.")
    requirements: str | None = Field(
        default=None, description="Per-action requirements inside composite/guided steps."
    )


class ButtonAction(_ActionBase):
    """Click a button found by case-insensitive substring of its full text."""

    kind: Literal[ActionKind.BUTTON] = ActionKind.BUTTON


class HighlightAction(_ActionBase):
    """Outline (show) or click (do) the single element matching a CSS selector."""

    kind: Literal[ActionKind.HIGHLIGHT] = ActionKind.HIGHLIGHT


class FormFillAction(_ActionBase):
    kind: Literal[ActionKind.FORMFILL] = ActionKind.FORMFILL


class NavigateAction(_ActionBase):
    """Route push for app paths, new tab for absolute http(s) URLs."""

    kind: Literal[ActionKind.NAVIGATE] = ActionKind.NAVIGATE


class HoverAction(_ActionBase):
    kind: Literal[ActionKind.HOVER] = ActionKind.HOVER


class SequenceAction(_ActionBase):
    """Runs nested actions in order. `target` names the sequence for recursion guarding."""

    kind: Literal[ActionKind.SEQUENCE] = ActionKind.SEQUENCE
    actions: tuple["Action", ...] = Field(..., min_length=1)


Action = Annotated[
    Union[
        ButtonAction,
        HighlightAction,
        FormFillAction,
        NavigateAction,
        HoverAction,
        SequenceAction,
    ],
    Field(discriminator="kind"),
]

SequenceAction.model_rebuild()


# ---------------------------------------------------------------------------
# Steps and sections
# ---------------------------------------------------------------------------


class Step(BaseModel):
    """A single unit of guided action with optional gating predicates."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    kind: StepKind = StepKind.SIMPLE
    action: Action | None = Field(default=None, description="Descriptor for simple steps.")
    internal_actions: tuple[Action, ...] = Field(
        default=(), description="Ordered descriptors for composite and guided steps."
    )
    requirements: str | None = None
    objectives: str | None = None
    verify: str | None = Field(default=None, description="Post-conditions checked after do.")
    hint: str | None = Field(default=None, description="Overrides mapped requirement messages.")
    skippable: bool = False
    show_enabled: bool = Field(default=True, description="False skips the show phase.")

    @model_validator(mode="after")
    def _check_shape(self) -> "Step":
        if self.kind is StepKind.SIMPLE and self.action is None:
            raise ValueError(f"Simple step '{self.id}' needs an action.")
        if self.kind is not StepKind.SIMPLE and not self.internal_actions:
            raise ValueError(f"{self.kind.value.title()} step '{self.id}' needs internal_actions.")
        return self

    @property
    def actions(self) -> tuple[Action, ...]:
        """Every descriptor this step declares, in execution order."""
        if self.kind is StepKind.SIMPLE:
            return (self.action,)
        return self.internal_actions

    @property
    def leaf_actions(self) -> list[Action]:
        """`actions` with sequences expanded in place."""
        leaves: list = []

        def walk(items) -> None:
            for action in items:
                if action.kind is ActionKind.SEQUENCE:
                    walk(action.actions)
                else:
                    leaves.append(action)

        walk(self.actions)
        return leaves


class Section(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    title: str = ""
    steps: tuple[Step, ...] = Field(default=())
    requirements: str | None = None
    objectives: str | None = None
    sequential: bool = Field(default=True, description="False makes every step independently eligible.")

    @model_validator(mode="after")
    def _unique_step_ids(self) -> "Section":
        ids = [s.id for s in self.steps]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Section '{self.id}' has duplicate step ids.")
        return self

    @property
    def step_ids(self) -> list[str]:
        return [s.id for s in self.steps]


# ---------------------------------------------------------------------------
# Runtime state
# ---------------------------------------------------------------------------


class StepState(BaseModel):
    """Per-step state held by the coordinator. Replaced, never mutated in place."""

    model_config = ConfigDict(frozen=True)

    is_enabled: bool = False
    is_completed: bool = False
    is_checking: bool = False
    is_skipped: bool = False
    completion_reason: CompletionReason = CompletionReason.NONE
    retry_count: int = 0
    max_retries: int = 3
    is_retrying: bool = False
    explanation: str | None = None
    error: str | None = None
    can_fix_requirement: bool = False
    can_skip: bool = False
    fix_type: FixType | None = None
    target_href: str | None = None

    @property
    def is_blocked(self) -> bool:
        return not (self.is_enabled or self.is_completed or self.is_checking)


class CheckResult(BaseModel):
    """Outcome of a single requirement token."""

    requirement: str
    passed: bool
    error: str | None = None
    can_fix: bool = False
    fix_type: FixType | None = None
    target_href: str | None = None
    context: Any = None


class RequirementsResult(BaseModel):
    requirements: str
    passed: bool
    results: list[CheckResult] = Field(default_factory=list)

    @property
    def failed(self) -> list[CheckResult]:
        return [r for r in self.results if not r.passed]

    @property
    def fixable(self) -> CheckResult | None:
        return next((r for r in self.failed if r.can_fix), None)

    @property
    def error_message(self) -> str | None:
        if self.passed:
            return None
        return ", ".join(r.error or r.requirement for r in self.failed) or None


class DetectedAction(str, Enum):
    BUTTON = "button"
    HIGHLIGHT = "highlight"
    FORMFILL = "formfill"
    NAVIGATE = "navigate"
    HOVER = "hover"


class DetectedActionEvent(BaseModel):
    """A classified user interaction. Transient, consumed once by the matcher."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    action_type: DetectedAction
    element: Any = Field(..., description="ElementRef the interaction landed on.")
    value: str | None = None
    timestamp: float
