import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from guide_engine import signals
from guide_engine.config import EngineConfig
from guide_engine.detector import ActionMonitor, StepAutoDetection, classify
from guide_engine.matcher import ActionMatcher, element_matches_selector, is_compatible, matches
from guide_engine.models import (
    ActionKind,
    ButtonAction,
    DetectedAction,
    DetectedActionEvent,
    FormFillAction,
    HighlightAction,
    HoverAction,
    NavigateAction,
    Step,
    StepKind,
    StepState,
)
from guide_engine.page import RawEvent
from guide_engine.soup_page import SoupPage

PAGE = """
<div id="app">
  <button id="save"><span id="save-label">Save dashboard now</span></button>
  <button id="ok-1">OK</button>
  <button id="ok-2">OK</button>
  <a id="docs" href="https://grafana.com/docs">Docs</a>
  <a id="explore" href="/explore">Explore</a>
  <input id="title" data-testid="dashboard-title">
  <textarea id="notes"></textarea>
  <div id="card" class="clickable">Card</div>
  <span id="label">Label</span>
  <div data-guide-panel="1"><button id="panel-next">Next</button></div>
</div>
"""


@pytest.fixture
def page():
    return SoupPage(PAGE)


def detected(page, selector, action_type, value=None):
    element = asyncio.run(page.query(selector))
    return DetectedActionEvent(action_type=action_type, element=element, value=value, timestamp=0.0)


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


def test_compatibility_is_asymmetric():
    assert is_compatible(DetectedAction.HIGHLIGHT, ActionKind.BUTTON) is True
    assert is_compatible(DetectedAction.BUTTON, ActionKind.HIGHLIGHT) is False
    assert is_compatible(DetectedAction.NAVIGATE, ActionKind.HIGHLIGHT) is True
    assert is_compatible(DetectedAction.HIGHLIGHT, ActionKind.NAVIGATE) is False


def test_button_substring_match_is_case_insensitive(page):
    event = detected(page, "#save", DetectedAction.BUTTON)
    assert asyncio.run(matches(page, event, ButtonAction(target="Save dashboard"))) is True
    assert asyncio.run(matches(page, event, ButtonAction(target="save DASHBOARD"))) is True
    assert asyncio.run(matches(page, event, ButtonAction(target="Delete"))) is False


def test_button_match_from_inner_element(page):
    event = detected(page, "#save-label", DetectedAction.HIGHLIGHT)
    assert asyncio.run(matches(page, event, ButtonAction(target="Save dashboard now"))) is True


def test_selector_match_strategies(page):
    title = asyncio.run(page.query("#title"))
    assert asyncio.run(element_matches_selector(title, "dashboard-title")) is True
    assert asyncio.run(element_matches_selector(title, "input#title")) is True

    label = asyncio.run(page.query("#save-label"))
    assert asyncio.run(element_matches_selector(label, "#save")) is True
    assert asyncio.run(element_matches_selector(label, "dashboard now")) is True
    assert asyncio.run(element_matches_selector(label, "")) is False


def test_formfill_value_must_agree(page):
    event = detected(page, "#title", DetectedAction.FORMFILL, value="Sales")
    assert asyncio.run(matches(page, event, FormFillAction(target="#title", value="Sales"))) is True
    assert asyncio.run(matches(page, event, FormFillAction(target="#title", value="Ops"))) is False
    assert asyncio.run(matches(page, event, FormFillAction(target="#title"))) is True


def test_navigate_match_on_href(page):
    event = detected(page, "#explore", DetectedAction.NAVIGATE)
    assert asyncio.run(matches(page, event, NavigateAction(target="/explore"))) is True
    assert asyncio.run(matches(page, event, NavigateAction(target="/alerting"))) is False


def test_action_matcher_registry(page):
    matcher = ActionMatcher(page)
    matcher.register_step("a", HighlightAction(target="#card"))
    matcher.register_step("b", FormFillAction(target="#title"))
    assert len(matcher) == 2

    event = detected(page, "#title", DetectedAction.FORMFILL, value="x")
    assert asyncio.run(matcher.find_matching_step(event)) == "b"
    matcher.unregister_step("b")
    assert asyncio.run(matcher.find_matching_step(event)) is None


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def raw(page, selector, event_type="click", **fields):
    return RawEvent(type=event_type, element=asyncio.run(page.query(selector)), **fields)


def test_classify_buttons_links_and_forms(page):
    assert asyncio.run(classify(page, raw(page, "#save"))) is DetectedAction.BUTTON
    # Duplicate button text cannot identify a single button.
    assert asyncio.run(classify(page, raw(page, "#ok-1"))) is DetectedAction.HIGHLIGHT
    assert asyncio.run(classify(page, raw(page, "#docs"))) is DetectedAction.NAVIGATE
    assert asyncio.run(classify(page, raw(page, "#explore"))) is DetectedAction.HIGHLIGHT
    assert asyncio.run(classify(page, raw(page, "#title", "input", value="x"))) is DetectedAction.FORMFILL


def test_classify_keys(page):
    assert asyncio.run(classify(page, raw(page, "#save", "keydown", key="a"))) is None
    assert asyncio.run(classify(page, raw(page, "#save", "keydown", key="Enter"))) is DetectedAction.BUTTON
    assert asyncio.run(classify(page, raw(page, "#notes", "keydown", key=" "))) is None


def test_classify_hover_only_for_declared_targets(page):
    event = raw(page, "#label", "mouseenter")
    assert asyncio.run(classify(page, event)) is None
    assert asyncio.run(classify(page, event, ("#label",))) is DetectedAction.HOVER


# ---------------------------------------------------------------------------
# Monitor
# ---------------------------------------------------------------------------


def monitor_for(page, **overrides):
    bus = signals.SignalBus()
    events = []
    bus.on(signals.USER_ACTION_DETECTED, events.append)
    return ActionMonitor(page, bus, EngineConfig.instant(**overrides)), events


def test_monitor_emits_detected_actions(page):
    monitor, events = monitor_for(page)
    monitor.enable()
    asyncio.run(page.user_click("#save"))
    assert [e.action_type for e in events] == [DetectedAction.BUTTON]
    assert events[0].element.identity == "button#save"


def test_monitor_ignores_guide_panel_and_plain_text(page):
    monitor, events = monitor_for(page)
    monitor.enable()
    asyncio.run(page.user_click("#panel-next"))
    asyncio.run(page.user_click("#label"))
    assert events == []


def test_monitor_reference_counting(page):
    monitor, events = monitor_for(page)
    monitor.enable()
    monitor.enable()
    monitor.disable()
    assert monitor.is_enabled()
    monitor.disable()
    assert not monitor.is_enabled()
    asyncio.run(page.user_click("#save"))
    assert events == []


def test_force_disable_overrides_references(page):
    monitor, events = monitor_for(page)
    monitor.enable()
    monitor.force_disable()
    asyncio.run(page.user_click("#save"))
    assert events == []

    monitor.force_enable()
    asyncio.run(page.user_click("#save"))
    assert len(events) == 1


def test_monitor_debounces_repeats(page):
    monitor, events = monitor_for(page, action_debounce=60.0)
    monitor.enable()
    asyncio.run(page.user_click("#save"))
    asyncio.run(page.user_click("#save"))
    asyncio.run(page.user_click("#card"))
    assert len(events) == 2


def test_monitor_forgets_expired_debounce_entries(page):
    monitor, events = monitor_for(page, action_debounce=1.0)
    monitor.enable()
    asyncio.run(monitor.handle(raw(page, "#save", timestamp=10.0)))
    asyncio.run(monitor.handle(raw(page, "#card", timestamp=10.5)))
    asyncio.run(monitor.handle(raw(page, "#save", timestamp=10.6)))
    assert len(events) == 2

    asyncio.run(monitor.handle(raw(page, "#docs", timestamp=20.0)))
    assert len(events) == 3
    assert list(monitor._last_emitted) == [(DetectedAction.NAVIGATE, events[-1].element.identity)]


def test_monitor_queue_is_bounded(page):
    monitor, _ = monitor_for(page, action_queue_size=2)
    monitor.enable()
    for selector in ("#save", "#card", "#docs"):
        asyncio.run(page.user_click(selector))
    assert len(monitor.queue) == 2
    assert monitor.queue[-1].action_type is DetectedAction.NAVIGATE


def test_monitor_hover_targets(page):
    monitor, events = monitor_for(page)
    monitor.enable()
    asyncio.run(page.user_hover("#label"))
    monitor.add_hover_target("#label")
    asyncio.run(page.user_hover("#label"))
    monitor.remove_hover_target("#label")
    asyncio.run(page.user_hover("#label"))
    assert [e.action_type for e in events] == [DetectedAction.HOVER]


# ---------------------------------------------------------------------------
# Step auto-detection
# ---------------------------------------------------------------------------


def checker_stub(enabled=True, completed=False):
    checker = MagicMock()
    checker.state = StepState(is_enabled=enabled, is_completed=completed)
    checker.mark_completed = AsyncMock()
    return checker


def test_composite_step_completes_after_every_action(page):
    monitor, _ = monitor_for(page)
    step = Step(
        id="fill",
        kind=StepKind.COMPOSITE,
        internal_actions=(FormFillAction(target="#title", value="Sales"), ButtonAction(target="Save dashboard")),
    )
    checker = checker_stub()
    detection = StepAutoDetection(step, checker, monitor)
    detection.attach()

    async def scenario():
        await page.user_click("#save")
        assert detection.progress == 0
        await page.user_fill("#title", "Sales")
        assert detection.progress == 1
        await page.user_click("#save")

    asyncio.run(scenario())
    checker.mark_completed.assert_awaited_once()


def test_disabled_step_is_not_auto_completed(page):
    monitor, _ = monitor_for(page)
    step = Step(id="hover", action=HoverAction(target="#label"))
    checker = checker_stub(enabled=False)
    detection = StepAutoDetection(step, checker, monitor)
    detection.attach()
    assert monitor.hover_targets == {"#label": 1}

    asyncio.run(page.user_hover("#label"))
    checker.mark_completed.assert_not_awaited()

    detection.detach()
    assert monitor.hover_targets == {}
    assert monitor.reference_count == 0


def test_guided_steps_cannot_auto_detect(page):
    monitor, _ = monitor_for(page)
    step = Step(id="g", kind=StepKind.GUIDED, internal_actions=(HighlightAction(target="#card"),))
    with pytest.raises(ValueError):
        StepAutoDetection(step, checker_stub(), monitor)
