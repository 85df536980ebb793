# session.py
# One guide mounted on one live page.
#
# Builds the shared collaborators (signal bus, coordinator, evaluator,
# executor, monitor), one SectionController per section, and the change
# sources that drive reactive re-checks. Everything is constructed here and
# passed down explicitly.

from urllib.parse import urlparse

from guide_engine import display
from guide_engine.analytics import AnalyticsSink
from guide_engine.config import EngineConfig
from guide_engine.coordinator import StepCoordinator
from guide_engine.detector import ActionMonitor
from guide_engine.environment import Environment, StaticEnvironment
from guide_engine.executor import ActionExecutor
from guide_engine.guide import Guide
from guide_engine.navigation import NavigationFixer
from guide_engine.observers import ManualChangeSource, PageMutationSource, UrlChangeSource
from guide_engine.page import LivePage
from guide_engine.persistence import CompletionStore, InMemoryCompletionStore
from guide_engine.registry import StepRegistry
from guide_engine.requirements import RequirementEvaluator
from guide_engine.runner import CancellationToken, RunStatus, SectionRunResult
from guide_engine.section import SectionController
from guide_engine.signals import SignalBus


class GuideSession:
    def __init__(
        self,
        guide: Guide,
        page: LivePage,
        environment: Environment | None = None,
        store: CompletionStore | None = None,
        analytics_sink: AnalyticsSink | None = None,
        config: EngineConfig | None = None,
    ):
        self.guide = guide
        self.page = page
        self.config = config or EngineConfig()
        if self.config.quiet:
            display.set_quiet(True)

        self.bus = SignalBus()
        self.coordinator = StepCoordinator(self.config)
        self.evaluator = RequirementEvaluator(
            page,
            environment or StaticEnvironment(),
            sections=self.coordinator,
            timeout=self.config.requirement_timeout,
        )
        self.navigation = NavigationFixer(page, self.config)
        self.executor = ActionExecutor(page, self.config, self.navigation)
        self.monitor = ActionMonitor(page, self.bus, self.config)
        self.store = store or InMemoryCompletionStore()
        self.analytics = analytics_sink
        self.registry = StepRegistry()
        self.changes = ManualChangeSource()

        self.sections: dict[str, SectionController] = {
            section.id: SectionController(
                section,
                guide.content_key,
                self.coordinator,
                self.evaluator,
                self.executor,
                self.monitor,
                self.bus,
                navigation=self.navigation,
                store=self.store,
                analytics_sink=analytics_sink,
                config=self.config,
            )
            for section in guide.sections
        }
        self.mounted = False

    async def mount(self) -> None:
        if self.mounted:
            return
        host = urlparse(await self.page.current_url()).netloc or "local"
        display.session_banner(self.guide.content_key, host, len(self.sections))

        self.registry.register(self.guide.content_key, list(self.guide.sections))
        for controller in self.sections.values():
            controller.mount()
        self.monitor.enable()
        self.coordinator.start_observing(
            [
                PageMutationSource(self.page),
                UrlChangeSource(self.page, self.config.url_poll_interval),
                self.changes,
            ]
        )
        self.mounted = True
        for controller in self.sections.values():
            await controller.check_all()

    async def unmount(self) -> None:
        if not self.mounted:
            return
        self.coordinator.stop_observing()
        for controller in self.sections.values():
            await controller.settle()
            controller.unmount()
        self.monitor.disable()
        self.registry.reset()
        self.mounted = False

    def section(self, section_id: str) -> SectionController:
        return self.sections[section_id]

    def completed_steps(self) -> set[str]:
        done: set[str] = set()
        for controller in self.sections.values():
            done |= controller.completed_steps
        return done

    def progress(self) -> float:
        """Document-wide completion percentage."""
        return self.registry.completion_percentage(self.completed_steps())

    async def run_section(self, section_id: str, cancel: CancellationToken | None = None) -> SectionRunResult:
        return await self.sections[section_id].run(cancel=cancel)

    async def run_all(self, cancel: CancellationToken | None = None) -> list[SectionRunResult]:
        """Run sections in document order. Stops at the first one that does not complete."""
        results: list[SectionRunResult] = []
        for controller in self.sections.values():
            if controller.is_completed:
                continue
            result = await controller.run(cancel=cancel)
            results.append(result)
            await controller.settle()
            if result.status is not RunStatus.COMPLETED:
                break
        display.run_summary(
            [
                (c.section.id, self._status(c, results), len(c.completed_steps), len(c.section.steps))
                for c in self.sections.values()
            ]
        )
        return results

    @staticmethod
    def _status(controller: SectionController, results: list[SectionRunResult]) -> str:
        for result in results:
            if result.section_id == controller.section.id:
                return result.status.value
        return "completed" if controller.is_completed else "pending"
