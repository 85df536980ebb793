# detector.py
# Auto-detection: classify raw page interactions and complete steps the
# user performs by hand.
#
# ActionMonitor is reference counted. Section runs force-disable it so the
# engine's own clicks never auto-complete anything.

import time
from collections import deque

from guide_engine import display, signals
from guide_engine.config import EngineConfig
from guide_engine.matcher import element_matches_selector, matches
from guide_engine.models import (
    ActionKind,
    DetectedAction,
    DetectedActionEvent,
    Step,
    StepKind,
)
from guide_engine.page import FORM_TAGS, ElementRef, LivePage, RawEvent, find_buttons_by_text

INTERACTIVE_TAGS = ("button", "a", "input", "textarea", "select")
INTERACTIVE_ROLES = (
    "button", "link", "tab", "menuitem", "checkbox", "radio",
    "option", "switch", "combobox", "listbox", "menu", "slider",
)
INTERACTIVE_PARENT = (
    'button, a, [role="button"], [role="link"], [role="tab"], '
    '[role="menuitem"], input, select, textarea'
)
# The guide panel itself and blocking overlays are never user intent.
IGNORED_CONTAINERS = '[class*="debug"], [data-guide-panel], #interactive-blocking-overlay, .modal-backdrop'


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


async def should_capture(element: ElementRef) -> bool:
    return await element.closest(IGNORED_CONTAINERS) is None


async def is_interactive(element: ElementRef) -> bool:
    if element.tag in INTERACTIVE_TAGS:
        return True
    if await element.attr("role") in INTERACTIVE_ROLES:
        return True
    classes = ((await element.attr("class")) or "").split()
    if "clickable" in classes or await element.attr("onclick") is not None:
        return True
    if await element.closest(INTERACTIVE_PARENT) is not None:
        return True
    tabindex = await element.attr("tabindex")
    return tabindex is not None and tabindex != "-1"


async def detect_action_type(page: LivePage, element: ElementRef) -> DetectedAction:
    if element.tag in FORM_TAGS:
        return DetectedAction.FORMFILL

    if element.tag == "button" or await element.attr("role") == "button":
        text = (await element.text()).strip()
        if text and len(await find_buttons_by_text(page, text)) == 1:
            return DetectedAction.BUTTON
        return DetectedAction.HIGHLIGHT

    if element.tag == "a":
        href = (await element.attr("href")) or ""
        if href.startswith("http://") or href.startswith("https://"):
            return DetectedAction.NAVIGATE

    return DetectedAction.HIGHLIGHT


async def classify(page: LivePage, event: RawEvent, hover_targets=()) -> DetectedAction | None:
    """Detected action type for a raw event, or None when it carries no intent."""
    element = event.element
    if event.type == "mouseenter":
        for selector in hover_targets:
            if await element_matches_selector(element, selector):
                return DetectedAction.HOVER
        return None

    if event.type == "keydown":
        if event.key not in ("Enter", " "):
            return None
        if event.key == " " and element.tag in ("input", "textarea"):
            return None

    if event.type in ("input", "change") and element.tag in FORM_TAGS:
        return DetectedAction.FORMFILL

    return await detect_action_type(page, element)


# ---------------------------------------------------------------------------
# Monitor
# ---------------------------------------------------------------------------


class ActionMonitor:
    def __init__(self, page: LivePage, bus: signals.SignalBus, config: EngineConfig | None = None):
        self.page = page
        self.bus = bus
        self.config = config or EngineConfig()
        self.queue: deque[DetectedActionEvent] = deque(maxlen=self.config.action_queue_size)
        self.hover_targets: dict[str, int] = {}
        self._ref_count = 0
        self._listening = False
        self._force_disabled = False
        self._unsubscribe = None
        self._last_emitted: dict[tuple[DetectedAction, str], float] = {}

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    @property
    def reference_count(self) -> int:
        return self._ref_count

    def is_enabled(self) -> bool:
        return self._listening and not self._force_disabled

    def enable(self) -> None:
        self._ref_count += 1
        if not self._listening and not self._force_disabled:
            self._listen()

    def disable(self) -> None:
        self._ref_count = max(0, self._ref_count - 1)
        if self._ref_count == 0 and self._listening and not self._force_disabled:
            self._stop()

    def force_disable(self) -> None:
        self._force_disabled = True
        if self._listening:
            self._stop()

    def force_enable(self) -> None:
        self._force_disabled = False
        if self._ref_count > 0 and not self._listening:
            self._listen()

    def _listen(self) -> None:
        self._listening = True
        self._unsubscribe = self.page.on_user_event(self.handle)

    def _stop(self) -> None:
        self._listening = False
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.queue.clear()
        self._last_emitted.clear()

    def add_hover_target(self, selector: str) -> None:
        self.hover_targets[selector] = self.hover_targets.get(selector, 0) + 1

    def remove_hover_target(self, selector: str) -> None:
        remaining = self.hover_targets.get(selector, 0) - 1
        if remaining > 0:
            self.hover_targets[selector] = remaining
        else:
            self.hover_targets.pop(selector, None)

    # -----------------------------------------------------------------------
    # Events
    # -----------------------------------------------------------------------

    async def handle(self, event: RawEvent) -> DetectedActionEvent | None:
        if not self.is_enabled():
            return None
        element = event.element
        if not await should_capture(element):
            return None
        # Hover targets are declared explicitly and need not look interactive.
        if event.type != "mouseenter" and not await is_interactive(element):
            return None

        action_type = await classify(self.page, event, tuple(self.hover_targets))
        if action_type is None:
            return None

        timestamp = event.timestamp or time.monotonic()
        key = (action_type, element.identity)
        last = self._last_emitted.get(key)
        if last is not None and timestamp - last < self.config.action_debounce:
            return None
        # Entries past the window can no longer suppress anything.
        self._last_emitted = {
            k: t for k, t in self._last_emitted.items() if timestamp - t < self.config.action_debounce
        }
        self._last_emitted[key] = timestamp

        detected = DetectedActionEvent(
            action_type=action_type,
            element=element,
            value=event.value,
            timestamp=timestamp,
        )
        self.queue.append(detected)
        display.user_action_detected(action_type.value, element.identity, event.value)
        await self.bus.emit(signals.USER_ACTION_DETECTED, detected)
        return detected


# ---------------------------------------------------------------------------
# Per-step auto-completion
# ---------------------------------------------------------------------------


class StepAutoDetection:
    """Completes a simple or composite step when the user performs its actions.

    Composite steps advance one internal action per match and complete on
    the last one. Guided steps are driven by GuidedStepRunner instead.
    """

    def __init__(self, step: Step, checker, monitor: ActionMonitor):
        if step.kind is StepKind.GUIDED:
            raise ValueError(f"Guided step '{step.id}' cannot use auto-detection")
        self.step = step
        self.checker = checker
        self.monitor = monitor
        self.progress = 0
        self._off = None

    @property
    def _actions(self):
        return self.step.leaf_actions

    def attach(self) -> None:
        if self._off is not None:
            return
        self.monitor.enable()
        for action in self._actions:
            if action.kind is ActionKind.HOVER:
                self.monitor.add_hover_target(action.target)
        self._off = self.monitor.bus.on(signals.USER_ACTION_DETECTED, self._on_action)

    def detach(self) -> None:
        if self._off is None:
            return
        self._off()
        self._off = None
        for action in self._actions:
            if action.kind is ActionKind.HOVER:
                self.monitor.remove_hover_target(action.target)
        self.monitor.disable()

    async def _on_action(self, event: DetectedActionEvent) -> None:
        state = self.checker.state
        if state.is_completed or not state.is_enabled:
            return

        actions = self._actions
        if self.progress >= len(actions):
            return
        if not await matches(self.monitor.page, event, actions[self.progress]):
            return

        self.progress += 1
        if self.progress == len(actions):
            display.step_auto_completed(self.step.id)
            await self.checker.mark_completed()
