# section.py
# One mounted section: its checkers, auto-detection, completed set,
# persistence and the entry points a panel would call (run, execute a
# single step, reset).

import asyncio

from guide_engine import analytics, display, signals
from guide_engine.analytics import AnalyticsSink
from guide_engine.checker import StepChecker
from guide_engine.config import EngineConfig
from guide_engine.coordinator import StepCoordinator
from guide_engine.detector import ActionMonitor, StepAutoDetection
from guide_engine.errors import GuideEngineError
from guide_engine.executor import ActionExecutor
from guide_engine.guided import GuidedOutcome, GuidedStepRunner
from guide_engine.models import CompletionReason, Mode, Section, StepKind, StepState
from guide_engine.navigation import NavigationFixer
from guide_engine.persistence import CompletionStore, InMemoryCompletionStore, restore_progress, resume_index
from guide_engine.requirements import RequirementEvaluator
from guide_engine.runner import CancellationToken, SectionRunner, SectionRunResult, perform_step


class SectionController:
    def __init__(
        self,
        section: Section,
        content_key: str,
        coordinator: StepCoordinator,
        evaluator: RequirementEvaluator,
        executor: ActionExecutor,
        monitor: ActionMonitor,
        bus: signals.SignalBus,
        navigation: NavigationFixer | None = None,
        store: CompletionStore | None = None,
        analytics_sink: AnalyticsSink | None = None,
        config: EngineConfig | None = None,
    ):
        self.section = section
        self.content_key = content_key
        self.coordinator = coordinator
        self.evaluator = evaluator
        self.executor = executor
        self.monitor = monitor
        self.bus = bus
        self.navigation = navigation
        self.store = store or InMemoryCompletionStore()
        self.analytics = analytics_sink
        self.config = config or coordinator.config

        self.checkers: dict[str, StepChecker] = {}
        self.detections: dict[str, StepAutoDetection] = {}
        self.guided: dict[str, GuidedStepRunner] = {}
        self.completed_steps: set[str] = set()
        self.current_step_index = 0
        self._unsubscribe = None
        self._announced = False
        self._tasks: set[asyncio.Task] = set()

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def mount(self) -> None:
        if self._unsubscribe is not None:
            return
        for index, step in enumerate(self.section.steps):
            self.coordinator.register_step(step.id, self.section.id, index, self.section.sequential)

        restored, self.current_step_index = restore_progress(self.store, self.content_key, self.section)
        for step_id in restored:
            self.coordinator.update_step(
                step_id,
                is_completed=True,
                completion_reason=CompletionReason.MANUAL,
                explanation="Completed",
            )
        self.completed_steps = set(restored)
        self._announced = self.is_completed
        if self._announced:
            self.coordinator.mark_section_completed(self.section.id)

        self._unsubscribe = self.coordinator.subscribe(self._on_state)
        for step in self.section.steps:
            checker = StepChecker(step, self.coordinator, self.evaluator, self.navigation, self.bus, self.config)
            checker.attach()
            self.checkers[step.id] = checker
            if step.kind is StepKind.GUIDED:
                self.guided[step.id] = GuidedStepRunner(step, self.executor, self.monitor, self.config)
            else:
                detection = StepAutoDetection(step, checker, self.monitor)
                detection.attach()
                self.detections[step.id] = detection

    def unmount(self) -> None:
        for detection in self.detections.values():
            detection.detach()
        for checker in self.checkers.values():
            checker.detach()
        for runner in self.guided.values():
            runner.cancel()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        for task in self._tasks:
            task.cancel()
        self.checkers.clear()
        self.detections.clear()
        self.guided.clear()
        self.coordinator.unregister_section(self.section.id)

    async def check_all(self) -> list[StepState]:
        return list(await asyncio.gather(*(c.check() for c in self.checkers.values())))

    # -----------------------------------------------------------------------
    # Completion tracking
    # -----------------------------------------------------------------------

    @property
    def is_completed(self) -> bool:
        return bool(self.section.steps) and len(self.completed_steps) == len(self.section.steps)

    @property
    def resume_index(self) -> int:
        return resume_index(self.section, self.completed_steps)

    def _on_state(self, step_id: str, state: StepState) -> None:
        if step_id not in self.checkers:
            return
        before = set(self.completed_steps)
        if state.is_completed:
            self.completed_steps.add(step_id)
        else:
            self.completed_steps.discard(step_id)
        if self.completed_steps == before:
            return

        self.persist()
        if self.is_completed and not self._announced:
            self._announced = True
            self.coordinator.mark_section_completed(self.section.id)
            self._spawn(self.bus.emit(signals.SECTION_COMPLETED, self.section.id))
        elif not self.is_completed and self._announced:
            self._announced = False
            self.coordinator.mark_section_completed(self.section.id, False)

    def persist(self) -> None:
        self.store.set_completed(self.content_key, self.section.id, self.completed_steps)
        self._spawn(self.bus.emit(signals.PROGRESS_SAVED, (self.section.id, sorted(self.completed_steps))))

    def _spawn(self, coro) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def settle(self) -> None:
        """Wait for pending signal deliveries spawned by state changes."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -----------------------------------------------------------------------
    # Actions
    # -----------------------------------------------------------------------

    async def complete_step(self, step_id: str) -> StepState:
        return await self.checkers[step_id].mark_completed()

    async def run(self, start_index: int | None = None, cancel: CancellationToken | None = None) -> SectionRunResult:
        return await SectionRunner(self).run(start_index, cancel)

    async def execute_step(self, step_id: str, mode: Mode = Mode.DO) -> StepState:
        """Manual per-step execution: show previews, do commits and completes.

        Guided steps wait for the user instead and ignore `mode`.
        """
        checker = self.checkers[step_id]
        step = checker.step
        state = await checker.check()
        if not state.is_enabled:
            return state

        if step.kind is StepKind.GUIDED:
            outcome = await self.guided[step_id].run()
            if outcome is GuidedOutcome.COMPLETED:
                return await self.complete_step(step_id)
            if outcome is GuidedOutcome.SKIPPED and step.skippable:
                return await checker.mark_skipped()
            return checker.state

        analytics.report(self.analytics, "step_execute", sectionId=self.section.id, stepId=step_id, mode=Mode(mode).value)
        self.monitor.force_disable()
        try:
            await perform_step(step, (mode,), self.executor, self.evaluator, self.config, CancellationToken())
        except GuideEngineError as e:
            display.action_failed(step_id, str(e))
            return self.coordinator.update_step(step_id, error=str(e))
        finally:
            self.monitor.force_enable()

        if Mode(mode) is Mode.SHOW:
            return checker.state
        return await self.complete_step(step_id)

    async def skip_step(self, step_id: str) -> StepState:
        return await self.checkers[step_id].resolve_blocked()

    async def reset(self) -> list[StepState]:
        self.store.clear(self.content_key, self.section.id)
        for step in self.section.steps:
            self.coordinator.reset_step(step.id)
        for detection in self.detections.values():
            detection.progress = 0
        self.completed_steps.clear()
        self._announced = False
        self.coordinator.mark_section_completed(self.section.id, False)
        self.current_step_index = 0
        return await self.check_all()
