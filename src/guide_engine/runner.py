# runner.py
# Section runner: executes a section's steps in order with show-then-do
# choreography, one automatic fix per failing requirement, skip-or-halt on
# failure, and cooperative cancellation.
#
# Failures inside a step never escape the loop. They become skip or halt
# decisions at the step boundary. Guided steps pause the run entirely.

import asyncio
from enum import Enum
from typing import Callable

from pydantic import BaseModel

from guide_engine import analytics, display, signals
from guide_engine.checker import SKIPPED_EXPLANATION, primary_action, resolve_fix
from guide_engine.errors import ActionExecutionFailure, GuideEngineError
from guide_engine.explanations import get_requirement_explanation
from guide_engine.models import CompletionReason, Mode, RequirementsResult, Step, StepKind


class CancellationToken:
    """Advisory cancellation. Checked at every await boundary of a run."""

    def __init__(self):
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        for callback in list(self._callbacks):
            callback()

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        self._callbacks.append(callback)

        def _remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _remove

    async def sleep_ticks(self, ticks: int, interval: float) -> bool:
        """Sleep `ticks` x `interval`. False as soon as cancellation is seen."""
        for _ in range(ticks):
            if self._cancelled:
                return False
            await asyncio.sleep(interval)
        return not self._cancelled


class RunStatus(str, Enum):
    COMPLETED = "completed"
    HALTED = "halted"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class SectionRunResult(BaseModel):
    section_id: str
    status: RunStatus
    start_index: int
    stopped_at: int | None = None
    completed_count: int = 0
    total: int = 0
    error: str | None = None


# ---------------------------------------------------------------------------
# Step execution
# ---------------------------------------------------------------------------


async def perform_step(step: Step, modes, executor, evaluator, config, cancel: CancellationToken) -> bool:
    """Run a step's actions through `modes` in order, then verify after a do pass.

    Shared by section runs and manual per-step execution. Composite steps
    check each internal action's requirements before it runs. Raises
    ActionExecutionFailure when those or the step's `verify` fail. Returns
    False when cancellation interrupted a wait.
    """
    modes = tuple(Mode(m) for m in modes)
    actions = step.actions
    settle_ticks = config.show_phase_ticks if step.kind is StepKind.SIMPLE else config.show_to_do_ticks

    for n, action in enumerate(actions):
        if n:
            await asyncio.sleep(config.composite_action_delay)
        if cancel.cancelled:
            return False
        if step.kind is not StepKind.SIMPLE and action.requirements:
            check = await evaluator.evaluate(action.requirements, action)
            if not check.passed:
                raise ActionExecutionFailure(f"Internal action {n + 1} requirements not met: {check.error_message}")
        for k, mode in enumerate(modes):
            if k and modes[k - 1] is Mode.SHOW:
                if not await cancel.sleep_ticks(settle_ticks, config.tick_interval):
                    return False
            phase = display.show_phase if mode is Mode.SHOW else display.do_phase
            phase(step.id, f"{action.kind.value} {action.target}")
            await executor.execute(action, mode)

    if Mode.DO in modes and step.verify:
        verified = await evaluator.evaluate(step.verify, primary_action(step))
        if not verified.passed:
            display.verify_failed(step.id, verified.error_message or step.verify)
            raise ActionExecutionFailure(f"Verification failed: {verified.error_message}")
    return True


class SectionRunner:
    """Runs one SectionController's steps from a start index."""

    def __init__(self, controller):
        self.controller = controller
        c = controller
        self.section = c.section
        self.coordinator = c.coordinator
        self.evaluator = c.evaluator
        self.executor = c.executor
        self.navigation = c.navigation
        self.monitor = c.monitor
        self.bus = c.bus
        self.config = c.config

    async def run(self, start_index: int | None = None, cancel: CancellationToken | None = None) -> SectionRunResult:
        cancel = cancel or CancellationToken()
        start = self.controller.resume_index if start_index is None else start_index
        total = len(self.section.steps)
        display.section_start(self.section.id, self.section.title, start, total)

        self.monitor.force_disable()
        result = None
        try:
            result = await self._run(start, cancel)
            return result
        finally:
            self.monitor.force_enable()
            analytics.report(
                self.controller.analytics,
                "section_run",
                sectionId=self.section.id,
                totalSectionSteps=total,
                completedStepsCount=len(self.controller.completed_steps),
                startIndex=start,
                wasCanceled=cancel.cancelled,
                status=result.status.value if result is not None else "error",
            )

    def _result(self, status: RunStatus, start: int, stopped_at: int | None = None, error: str | None = None):
        return SectionRunResult(
            section_id=self.section.id,
            status=status,
            start_index=start,
            stopped_at=stopped_at,
            completed_count=len(self.controller.completed_steps),
            total=len(self.section.steps),
            error=error,
        )

    async def _run(self, start: int, cancel: CancellationToken) -> SectionRunResult:
        steps = self.section.steps

        if self.section.objectives:
            objectives = await self.evaluator.evaluate(self.section.objectives, None)
            if objectives.passed:
                self._complete_all(CompletionReason.OBJECTIVES)
                display.section_complete(self.section.id, len(self.controller.completed_steps), len(steps))
                return self._result(RunStatus.COMPLETED, start)

        if self.section.requirements:
            check = await self._satisfy(self.section.requirements, None)
            if not check.passed:
                reason = get_requirement_explanation(
                    ", ".join(r.requirement for r in check.failed), None, check.error_message
                )
                display.section_halted(self.section.id, start, self.section.id, reason)
                return self._result(RunStatus.HALTED, start, start, reason)

        for i in range(start, len(steps)):
            if cancel.cancelled:
                display.section_cancelled(self.section.id, i)
                return self._result(RunStatus.CANCELLED, start, i)

            step = steps[i]
            self.controller.current_step_index = i
            state = self.coordinator.get_state(step.id)
            if state is not None and state.is_completed:
                continue

            if step.kind is StepKind.GUIDED:
                self.monitor.force_enable()
                display.section_paused(self.section.id, step.id)
                return self._result(RunStatus.PAUSED, start, i)

            display.step_start(i, len(steps), step.id, step.kind.value)
            analytics.report(self.controller.analytics, "step_start", sectionId=self.section.id, stepId=step.id)

            if step.requirements:
                check = await self._satisfy(step.requirements, step)
                if not check.passed:
                    reason = get_requirement_explanation(
                        ", ".join(r.requirement for r in check.failed), step.hint, check.error_message
                    )
                    display.requirement_failed(step.id, step.requirements, reason)
                    if step.skippable:
                        await self._skip(step, reason)
                        continue
                    self.coordinator.update_step(
                        step.id, is_enabled=False, explanation=reason, error=check.error_message
                    )
                    display.section_halted(self.section.id, i, step.id, reason)
                    return self._result(RunStatus.HALTED, start, i, reason)

            try:
                if not await self._perform(step, cancel):
                    display.section_cancelled(self.section.id, i)
                    return self._result(RunStatus.CANCELLED, start, i)
            except GuideEngineError as e:
                display.action_failed(step.id, str(e))
                if step.skippable:
                    await self._skip(step, str(e))
                    continue
                self.coordinator.update_step(step.id, error=str(e))
                self.coordinator.trigger_reactive_check()
                display.section_halted(self.section.id, i, step.id, str(e))
                return self._result(RunStatus.HALTED, start, i, str(e))

            if cancel.cancelled:
                # The in-flight action finished but its completion stays unresolved.
                display.section_cancelled(self.section.id, i)
                return self._result(RunStatus.CANCELLED, start, i)

            await self.controller.complete_step(step.id)
            analytics.report(self.controller.analytics, "step_complete", sectionId=self.section.id, stepId=step.id)

            if i < len(steps) - 1:
                if not await cancel.sleep_ticks(self.config.between_steps_ticks, self.config.tick_interval):
                    display.section_cancelled(self.section.id, i + 1)
                    return self._result(RunStatus.CANCELLED, start, i + 1)

        self._complete_all()
        display.section_complete(self.section.id, len(self.controller.completed_steps), len(steps))
        return self._result(RunStatus.COMPLETED, start)

    # -----------------------------------------------------------------------
    # Step pieces
    # -----------------------------------------------------------------------

    async def _satisfy(self, requirements: str, step: Step | None) -> RequirementsResult:
        """Evaluate, attempt one automatic fix if offered, evaluate again."""
        action = primary_action(step) if step is not None else None
        result = await self.evaluator.evaluate(requirements, action)
        if result.passed or self.navigation is None:
            return result

        fix_type, target_href = resolve_fix(requirements, result)
        if fix_type is None:
            return result

        step_id = step.id if step is not None else self.section.id
        display.fix_attempt(step_id, fix_type.value, target_href)
        try:
            await self.navigation.apply(fix_type, target_href)
        except Exception as e:
            display.fix_failed(step_id, str(e))
            return result
        await asyncio.sleep(self.config.fix_settle)
        return await self.evaluator.evaluate(requirements, action)

    async def _perform(self, step: Step, cancel: CancellationToken) -> bool:
        modes = (Mode.SHOW, Mode.DO) if step.show_enabled else (Mode.DO,)
        return await perform_step(step, modes, self.executor, self.evaluator, self.config, cancel)

    async def _skip(self, step: Step, reason: str) -> None:
        self.coordinator.update_step(
            step.id,
            is_completed=True,
            is_skipped=True,
            completion_reason=CompletionReason.SKIPPED,
            explanation=SKIPPED_EXPLANATION,
            error=reason,
        )
        display.step_skipped(step.id, reason)
        await self.bus.emit(signals.STEP_AUTO_SKIPPED, step.id)
        analytics.report(self.controller.analytics, "step_skip", sectionId=self.section.id, stepId=step.id)

    def _complete_all(self, reason: CompletionReason = CompletionReason.MANUAL) -> None:
        for step in self.section.steps:
            state = self.coordinator.get_state(step.id)
            if state is not None and not state.is_completed:
                self.coordinator.update_step(step.id, is_completed=True, completion_reason=reason)
