import pytest

from guide_engine import display
from guide_engine.analytics import RecordingAnalytics
from guide_engine.config import EngineConfig
from guide_engine.coordinator import StepCoordinator
from guide_engine.detector import ActionMonitor
from guide_engine.environment import (
    BuildInfo,
    Dashboard,
    DataSource,
    Plugin,
    StaticEnvironment,
    UserInfo,
)
from guide_engine.executor import ActionExecutor
from guide_engine.navigation import NavigationFixer
from guide_engine.persistence import InMemoryCompletionStore
from guide_engine.requirements import RequirementEvaluator
from guide_engine.section import SectionController
from guide_engine.signals import SignalBus


@pytest.fixture(autouse=True)
def quiet_console():
    display.set_quiet(True)
    yield


@pytest.fixture
def config():
    return EngineConfig.instant()


@pytest.fixture
def env():
    return StaticEnvironment(
        current_user=UserInfo(
            login="admin",
            org_role="Admin",
            is_grafana_admin=True,
            permissions=["dashboards:create", "datasources:read"],
        ),
        datasource_list=[DataSource(name="Prometheus", uid="prom", type="prometheus")],
        plugin_list=[Plugin(id="grafana-clock-panel"), Plugin(id="old-panel", enabled=False)],
        dashboard_list=[Dashboard(title="Home overview", uid="home")],
        toggles={"newNav": True, "oldThing": False},
        build=BuildInfo(version="10.0.0", env="production"),
    )


@pytest.fixture
def make_controller(env, config):
    """Build a mounted-ready SectionController around one page."""

    def _make(section, page, environment=None, store=None, analytics_sink=None, cfg=None, content_key="guide"):
        cfg = cfg or config
        bus = SignalBus()
        coordinator = StepCoordinator(cfg)
        evaluator = RequirementEvaluator(
            page, environment or env, sections=coordinator, timeout=cfg.requirement_timeout
        )
        navigation = NavigationFixer(page, cfg)
        return SectionController(
            section,
            content_key,
            coordinator,
            evaluator,
            ActionExecutor(page, cfg, navigation),
            ActionMonitor(page, bus, cfg),
            bus,
            navigation=navigation,
            store=store or InMemoryCompletionStore(),
            analytics_sink=analytics_sink if analytics_sink is not None else RecordingAnalytics(),
            config=cfg,
        )

    return _make
