# guided.py
# Guided steps: the engine highlights, the user acts.
#
# For each internal action the target is highlighted and the runner waits
# for a matching detected action, bounded by a per-action timeout. An action
# with an empty target is an instruction only and waits for confirm().

import asyncio
from enum import Enum

from guide_engine import display, signals
from guide_engine.config import EngineConfig
from guide_engine.detector import ActionMonitor
from guide_engine.errors import GuideEngineError
from guide_engine.executor import ActionExecutor
from guide_engine.matcher import matches
from guide_engine.models import ActionKind, DetectedActionEvent, Mode, Step, StepKind
from guide_engine.runner import CancellationToken


class GuidedOutcome(str, Enum):
    COMPLETED = "completed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


class GuidedStepRunner:
    def __init__(
        self,
        step: Step,
        executor: ActionExecutor,
        monitor: ActionMonitor,
        config: EngineConfig | None = None,
    ):
        if step.kind is not StepKind.GUIDED:
            raise ValueError(f"Step '{step.id}' is not a guided step")
        self.step = step
        self.executor = executor
        self.monitor = monitor
        self.config = config or EngineConfig()
        self.current_index = 0
        self._waiting: asyncio.Future | None = None

    # -----------------------------------------------------------------------
    # External controls
    # -----------------------------------------------------------------------

    @property
    def is_waiting(self) -> bool:
        return self._waiting is not None and not self._waiting.done()

    def _resolve(self, outcome: GuidedOutcome) -> bool:
        if self._waiting is None or self._waiting.done():
            return False
        self._waiting.set_result(outcome)
        return True

    def confirm(self) -> bool:
        """Mark the current action done by hand."""
        return self._resolve(GuidedOutcome.COMPLETED)

    def skip(self) -> bool:
        return self._resolve(GuidedOutcome.SKIPPED)

    def cancel(self) -> bool:
        return self._resolve(GuidedOutcome.CANCELLED)

    # -----------------------------------------------------------------------
    # Run
    # -----------------------------------------------------------------------

    async def run(self, cancel: CancellationToken | None = None) -> GuidedOutcome:
        actions = self.step.leaf_actions
        hovers = [a.target for a in actions if a.kind is ActionKind.HOVER and a.target]
        self.monitor.enable()
        for target in hovers:
            self.monitor.add_hover_target(target)
        try:
            for index, action in enumerate(actions):
                if cancel is not None and cancel.cancelled:
                    outcome = GuidedOutcome.CANCELLED
                else:
                    self.current_index = index
                    display.guided_waiting(self.step.id, index, len(actions), action.target)
                    outcome = await self._wait_for(action, cancel)
                if outcome is not GuidedOutcome.COMPLETED:
                    display.guided_outcome(self.step.id, outcome.value)
                    return outcome
            display.guided_outcome(self.step.id, GuidedOutcome.COMPLETED.value)
            return GuidedOutcome.COMPLETED
        finally:
            for target in hovers:
                self.monitor.remove_hover_target(target)
            self.monitor.disable()

    async def _wait_for(self, action, cancel: CancellationToken | None) -> GuidedOutcome:
        loop = asyncio.get_running_loop()
        waiting = loop.create_future()
        self._waiting = waiting

        async def on_action(event: DetectedActionEvent) -> None:
            if action.target and not waiting.done() and await matches(self.monitor.page, event, action):
                if not waiting.done():
                    waiting.set_result(GuidedOutcome.COMPLETED)

        undo = [self.monitor.bus.on(signals.USER_ACTION_DETECTED, on_action)]
        if cancel is not None:
            undo.append(cancel.on_cancel(self.cancel))
        try:
            if action.target and action.kind is not ActionKind.NAVIGATE:
                try:
                    await self.executor.execute(action, Mode.SHOW)
                except GuideEngineError as e:
                    # The target may only appear once the user gets there.
                    display.action_failed(self.step.id, str(e))
            return await asyncio.wait_for(asyncio.shield(waiting), timeout=self.config.guided_action_timeout)
        except asyncio.TimeoutError:
            return GuidedOutcome.TIMEOUT
        finally:
            for fn in undo:
                fn()
            self._waiting = None
