# checker.py
# Per-step controller: objectives, then eligibility, then requirements.
#
# Every check walks the same priority order:
#   1. objectives met      -> completed (objectives), permanently
#   2. not eligible        -> blocked, skip disallowed
#   3. requirements failed -> disabled with explanation, fix/skip flags
#   4. otherwise           -> enabled
#
# All state goes through the coordinator. A step never overlaps its own checks.

import asyncio

from guide_engine import display, signals
from guide_engine.config import EngineConfig
from guide_engine.coordinator import StepCoordinator
from guide_engine.explanations import get_requirement_explanation
from guide_engine.models import CompletionReason, FixType, RequirementsResult, Step, StepState
from guide_engine.navigation import NavigationFixer
from guide_engine.requirements import RequirementEvaluator, split_requirements

ALREADY_DONE = "Already done!"
BLOCKED_EXPLANATION = "Complete previous step"
BLOCKED_ERROR = "Sequential dependency not met"
SKIPPED_EXPLANATION = "Skipped due to requirements"
COMPLETED_EXPLANATION = "Completed"


def primary_action(step: Step):
    """The descriptor requirement checks such as exists-reftarget look at."""
    leaves = step.leaf_actions
    return leaves[0] if leaves else None


def resolve_fix(requirements: str | None, result: RequirementsResult) -> tuple[FixType | None, str | None]:
    fixable = result.fixable
    if fixable is not None:
        return fixable.fix_type, fixable.target_href
    if "navmenu-open" in split_requirements(requirements):
        return FixType.NAVIGATION, None
    return None, None


class StepChecker:
    def __init__(
        self,
        step: Step,
        coordinator: StepCoordinator,
        evaluator: RequirementEvaluator,
        navigation: NavigationFixer | None = None,
        bus: signals.SignalBus | None = None,
        config: EngineConfig | None = None,
    ):
        self.step = step
        self.coordinator = coordinator
        self.evaluator = evaluator
        self.navigation = navigation
        self.bus = bus
        self.config = config or coordinator.config
        self._checking = False
        self._detach: list = []

    @property
    def state(self) -> StepState:
        state = self.coordinator.get_state(self.step.id)
        if state is None:
            raise KeyError(f"Step '{self.step.id}' is not registered")
        return state

    def _update(self, **changes) -> StepState:
        return self.coordinator.update_step(self.step.id, **changes)

    # -----------------------------------------------------------------------
    # Check
    # -----------------------------------------------------------------------

    async def check(self) -> StepState:
        if self._checking or self.state.is_completed:
            return self.state

        self._checking = True
        self._update(is_checking=True)
        try:
            if self.step.objectives:
                objectives = await self.evaluator.evaluate(self.step.objectives, primary_action(self.step))
                if objectives.passed:
                    return self._update(
                        is_completed=True,
                        is_checking=False,
                        completion_reason=CompletionReason.OBJECTIVES,
                        explanation=ALREADY_DONE,
                        error=None,
                        can_fix_requirement=False,
                        can_skip=False,
                        fix_type=None,
                        target_href=None,
                    )

            if not self.coordinator.is_eligible(self.step.id):
                return self._update(
                    is_enabled=False,
                    is_checking=False,
                    explanation=BLOCKED_EXPLANATION,
                    error=BLOCKED_ERROR,
                    can_fix_requirement=False,
                    can_skip=False,
                    fix_type=None,
                    target_href=None,
                )

            if self.step.requirements:
                result = await self._evaluate_with_retry()
                if not result.passed:
                    fix_type, target_href = resolve_fix(self.step.requirements, result)
                    explanation = get_requirement_explanation(
                        ", ".join(r.requirement for r in result.failed),
                        self.step.hint,
                        result.error_message,
                    )
                    display.requirement_failed(self.step.id, self.step.requirements, explanation)
                    return self._update(
                        is_enabled=False,
                        is_checking=False,
                        is_retrying=False,
                        explanation=explanation,
                        error=result.error_message,
                        can_fix_requirement=fix_type is not None,
                        can_skip=self.step.skippable,
                        fix_type=fix_type,
                        target_href=target_href,
                    )

            return self._update(
                is_enabled=True,
                is_checking=False,
                is_retrying=False,
                retry_count=0,
                explanation=None,
                error=None,
                can_fix_requirement=False,
                can_skip=False,
                fix_type=None,
                target_href=None,
            )
        except Exception as e:
            return self._update(
                is_enabled=False,
                is_checking=False,
                is_retrying=False,
                error=str(e),
                explanation=get_requirement_explanation(None, self.step.hint, str(e)),
                can_skip=self.step.skippable,
            )
        except asyncio.CancelledError:
            # A cancelled check must not leave the step looking busy to later drains.
            if self.coordinator.get_state(self.step.id) is not None:
                self._update(is_checking=False, is_retrying=False)
            raise
        finally:
            self._checking = False

    async def _evaluate_with_retry(self) -> RequirementsResult:
        attempt = 0
        while True:
            result = await self.evaluator.evaluate(self.step.requirements, primary_action(self.step))
            if result.passed or attempt >= self.config.max_retries:
                return result
            attempt += 1
            self._update(retry_count=attempt, is_retrying=True)
            display.requirement_retry(self.step.id, attempt, self.config.max_retries)
            await asyncio.sleep(self.config.retry_delay)

    # -----------------------------------------------------------------------
    # Fix / skip / complete / reset
    # -----------------------------------------------------------------------

    async def fix_requirement(self) -> bool:
        """Run the fix the last failed check asked for, then re-check once."""
        state = self.state
        if not state.can_fix_requirement or self.navigation is None:
            return False

        fix_type = state.fix_type or FixType.NAVIGATION
        display.fix_attempt(self.step.id, fix_type.value, state.target_href)
        try:
            await self.navigation.apply(fix_type, state.target_href)
        except Exception as e:
            display.fix_failed(self.step.id, str(e))
            return False

        await asyncio.sleep(self.config.fix_settle)
        return (await self.check()).is_enabled

    async def resolve_blocked(self) -> StepState:
        """Fix if possible, otherwise skip if allowed."""
        state = self.state
        if state.is_enabled or state.is_completed:
            return state
        if state.can_fix_requirement and await self.fix_requirement():
            return self.state
        if self.state.can_skip:
            return await self.mark_skipped()
        return self.state

    async def mark_completed(self) -> StepState:
        if self.state.is_completed:
            return self.state
        display.step_completed(self.step.id, "manual")
        return self._update(
            is_completed=True,
            completion_reason=CompletionReason.MANUAL,
            explanation=COMPLETED_EXPLANATION,
            error=None,
            can_fix_requirement=False,
            can_skip=False,
        )

    async def mark_skipped(self) -> StepState:
        if self.state.is_completed:
            return self.state
        display.step_skipped(self.step.id, self.state.explanation or SKIPPED_EXPLANATION)
        state = self._update(
            is_completed=True,
            is_skipped=True,
            completion_reason=CompletionReason.SKIPPED,
            explanation=SKIPPED_EXPLANATION,
            can_fix_requirement=False,
        )
        self.coordinator.trigger_reactive_check()
        return state

    async def reset(self) -> StepState:
        self.coordinator.reset_step(self.step.id)
        return await self.check()

    # -----------------------------------------------------------------------
    # Wiring
    # -----------------------------------------------------------------------

    def attach(self) -> None:
        if self._detach:
            return
        self._detach.append(self.coordinator.register_checker(self.step.id, self.check))
        if self.bus is not None:
            self._detach.append(self.bus.on(signals.SECTION_COMPLETED, self._on_section_completed))
            self._detach.append(self.bus.on(signals.STEP_AUTO_SKIPPED, self._on_auto_skipped))

    def detach(self) -> None:
        for undo in self._detach:
            undo()
        self._detach = []

    async def _on_section_completed(self, section_id) -> None:
        if f"section-completed:{section_id}" in split_requirements(self.step.requirements):
            await self.check()

    async def _on_auto_skipped(self, step_id) -> None:
        if step_id == self.step.id:
            await self.mark_skipped()
