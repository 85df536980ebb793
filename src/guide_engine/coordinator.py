# coordinator.py
# Step/section state coordinator.
#
# The single source of truth for per-step state. It stores and broadcasts;
# it never decides pass/fail. State changes only through update_step() and
# reset_step(). Reactive re-checks go through a single-flight scheduler and
# never re-enter a completed or in-flight step.
#
# Constructed explicitly and passed to collaborators. There is no global.

import asyncio
from typing import Awaitable, Callable

from pydantic import BaseModel

from guide_engine import display
from guide_engine.config import EngineConfig
from guide_engine.models import CompletionReason, StepState
from guide_engine.observers import ChangeSource
from guide_engine.scheduler import ReevaluationScheduler

Listener = Callable[[str, StepState], None]
CheckerFn = Callable[[], Awaitable[object]]


class StepRegistration(BaseModel):
    step_id: str
    section_id: str
    index: int
    sequential: bool = True


class StepCoordinator:
    def __init__(self, config: EngineConfig | None = None):
        self.config = config or EngineConfig()
        self._states: dict[str, StepState] = {}
        self._registrations: dict[str, StepRegistration] = {}
        self._listeners: list[Listener] = []
        self._checkers: dict[str, CheckerFn] = {}
        self._completed_sections: set[str] = set()
        self._sources: list[ChangeSource] = []
        self._observing = False
        self.scheduler = ReevaluationScheduler(self._drain, self.config.reactive_window)

    # -----------------------------------------------------------------------
    # Registration
    # -----------------------------------------------------------------------

    def register_step(self, step_id: str, section_id: str, index: int, sequential: bool = True) -> StepState:
        self._registrations[step_id] = StepRegistration(
            step_id=step_id, section_id=section_id, index=index, sequential=sequential
        )
        if step_id not in self._states:
            self._states[step_id] = StepState(max_retries=self.config.max_retries)
        return self._states[step_id]

    def unregister_section(self, section_id: str) -> None:
        for step_id in self.section_steps(section_id):
            self._registrations.pop(step_id, None)
            self._states.pop(step_id, None)
            self._checkers.pop(step_id, None)
        self._completed_sections.discard(section_id)

    def is_registered(self, step_id: str) -> bool:
        return step_id in self._registrations

    def section_steps(self, section_id: str) -> list[str]:
        regs = [r for r in self._registrations.values() if r.section_id == section_id]
        return [r.step_id for r in sorted(regs, key=lambda r: r.index)]

    # -----------------------------------------------------------------------
    # State
    # -----------------------------------------------------------------------

    def get_state(self, step_id: str) -> StepState | None:
        return self._states.get(step_id)

    def snapshot(self) -> dict[str, StepState]:
        return dict(self._states)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def update_step(self, step_id: str, **changes) -> StepState:
        """Merge `changes` into the step's state and broadcast it.

        Objectives completion is sticky: once set, nothing but reset_step()
        can un-complete the step or change its reason. A completed step is
        never enabled, and an ineligible step is never enabled.
        """
        current = self._states.get(step_id)
        if current is None:
            raise KeyError(f"Step '{step_id}' is not registered")

        if current.completion_reason is CompletionReason.OBJECTIVES:
            for key in ("is_completed", "completion_reason", "is_skipped", "is_enabled"):
                changes.pop(key, None)

        new = current.model_copy(update=changes)
        if new.is_completed:
            reason = new.completion_reason
            if reason is CompletionReason.NONE:
                reason = CompletionReason.SKIPPED if new.is_skipped else CompletionReason.MANUAL
            new = new.model_copy(update={"is_enabled": False, "completion_reason": reason})
        elif new.is_enabled and not self.is_eligible(step_id):
            new = new.model_copy(update={"is_enabled": False})

        self._states[step_id] = new
        self._notify(step_id, new)

        if current.is_completed and not new.is_completed:
            self._lock_later_siblings(step_id)
        if new.is_completed and not current.is_completed:
            self.trigger_reactive_check()
        return new

    def reset_step(self, step_id: str) -> StepState:
        if step_id not in self._states:
            raise KeyError(f"Step '{step_id}' is not registered")
        was_completed = self._states[step_id].is_completed
        fresh = StepState(max_retries=self.config.max_retries)
        self._states[step_id] = fresh
        self._notify(step_id, fresh)
        if was_completed:
            self._lock_later_siblings(step_id)
        return fresh

    def _lock_later_siblings(self, step_id: str) -> None:
        reg = self._registrations.get(step_id)
        if reg is None or not reg.sequential:
            return
        for later in self.section_steps(reg.section_id):
            if self._registrations[later].index <= reg.index:
                continue
            state = self._states[later]
            if state.is_enabled and not state.is_completed:
                self._states[later] = state.model_copy(update={"is_enabled": False})
                self._notify(later, self._states[later])
        self._completed_sections.discard(reg.section_id)

    def _notify(self, step_id: str, state: StepState) -> None:
        for listener in list(self._listeners):
            listener(step_id, state)

    # -----------------------------------------------------------------------
    # Eligibility and sections
    # -----------------------------------------------------------------------

    def is_eligible(self, step_id: str) -> bool:
        """First step, non-sequential section, or every prior sibling completed."""
        reg = self._registrations.get(step_id)
        if reg is None:
            return False
        if not reg.sequential:
            return True
        for prior in self.section_steps(reg.section_id):
            if prior == step_id:
                return True
            state = self._states.get(prior)
            if state is None or not state.is_completed:
                return False
        return True

    def mark_section_completed(self, section_id: str, completed: bool = True) -> None:
        if completed:
            self._completed_sections.add(section_id)
        else:
            self._completed_sections.discard(section_id)

    def is_section_completed(self, section_id: str) -> bool:
        return section_id in self._completed_sections

    # -----------------------------------------------------------------------
    # Reactive checks
    # -----------------------------------------------------------------------

    def register_checker(self, step_id: str, checker: CheckerFn) -> Callable[[], None]:
        self._checkers[step_id] = checker

        def _unregister() -> None:
            if self._checkers.get(step_id) is checker:
                del self._checkers[step_id]

        return _unregister

    def trigger_reactive_check(self) -> None:
        self.scheduler.request()

    async def _drain(self) -> None:
        targets = []
        for step_id, checker in list(self._checkers.items()):
            state = self._states.get(step_id)
            if state is None or state.is_completed or state.is_checking:
                continue
            targets.append((step_id, checker))
        if not targets:
            return

        display.reactive_check(len(targets))
        results = await asyncio.gather(*(checker() for _, checker in targets), return_exceptions=True)
        for (step_id, _), result in zip(targets, results):
            if isinstance(result, Exception):
                display.check_exception(step_id, str(result))

    # -----------------------------------------------------------------------
    # Observation
    # -----------------------------------------------------------------------

    @property
    def is_observing(self) -> bool:
        return self._observing

    def start_observing(self, sources: list[ChangeSource]) -> None:
        if self._observing:
            return
        self._sources = list(sources)
        for source in self._sources:
            source.start(self.trigger_reactive_check)
        self._observing = True
        display.observation_started([s.name for s in self._sources])

    def stop_observing(self) -> None:
        if not self._observing:
            return
        for source in self._sources:
            source.stop()
        self._sources = []
        self._observing = False
        self.scheduler.cancel()
        display.observation_stopped()
