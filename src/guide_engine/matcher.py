# matcher.py
# Matches detected user actions against declared action descriptors.
#
# Compatibility is asymmetric: a generic click (highlight) can satisfy a
# declared button, and a link click (navigate) can satisfy a declared
# highlight. Never the other way round.

from typing import Awaitable, Callable

from guide_engine.models import (
    Action,
    ActionKind,
    DetectedAction,
    DetectedActionEvent,
)
from guide_engine.page import FORM_TAGS, ElementRef, LivePage, find_buttons_by_text

COMPATIBLE: dict[DetectedAction, set[ActionKind]] = {
    DetectedAction.BUTTON: {ActionKind.BUTTON},
    DetectedAction.HIGHLIGHT: {ActionKind.HIGHLIGHT, ActionKind.BUTTON},
    DetectedAction.FORMFILL: {ActionKind.FORMFILL},
    DetectedAction.NAVIGATE: {ActionKind.NAVIGATE, ActionKind.HIGHLIGHT},
    DetectedAction.HOVER: {ActionKind.HOVER},
}


def is_compatible(detected: DetectedAction, declared: ActionKind) -> bool:
    return declared in COMPATIBLE.get(detected, set())


async def element_matches_selector(element: ElementRef, selector: str) -> bool:
    """Test-id, then CSS (self or ancestor), then aria-label, then text."""
    if not selector:
        return False
    if await element.attr("data-testid") == selector:
        return True

    try:
        if await element.matches(selector) or await element.closest(selector) is not None:
            return True
    except Exception:
        # Not a valid CSS selector; fall through to label and text matching.
        pass

    if await element.attr("aria-label") == selector:
        return True

    text = (await element.text()).strip()
    return bool(text) and selector in text


# ---------------------------------------------------------------------------
# Per-kind matchers
# ---------------------------------------------------------------------------


async def _match_button(page: LivePage, event: DetectedActionEvent, action: Action) -> bool:
    element = event.element
    if (await element.text()).strip() == action.target:
        return True

    parent = await element.closest('button, [role="button"]')
    if parent is not None and (await parent.text()).strip() == action.target:
        return True

    for button in await find_buttons_by_text(page, action.target):
        if button == element or await button.contains(element):
            return True
    return False


async def _match_formfill(page: LivePage, event: DetectedActionEvent, action: Action) -> bool:
    if event.element.tag not in FORM_TAGS:
        return False
    if not await element_matches_selector(event.element, action.target):
        return False
    if action.value is not None and event.value is not None:
        return event.value == action.value
    return True


async def _match_selector(page: LivePage, event: DetectedActionEvent, action: Action) -> bool:
    return await element_matches_selector(event.element, action.target)


async def _match_navigate(page: LivePage, event: DetectedActionEvent, action: Action) -> bool:
    element = event.element
    link = element if element.tag == "a" else await element.closest("a")
    if link is None:
        return False
    href = await link.attr("href")
    if not href:
        return False
    return href == action.target or action.target in href


async def _match_sequence(page: LivePage, event: DetectedActionEvent, action: Action) -> bool:
    # Sequences are matched one internal action at a time by the caller.
    return False


MATCHERS: dict[ActionKind, Callable[[LivePage, DetectedActionEvent, Action], Awaitable[bool]]] = {
    ActionKind.BUTTON: _match_button,
    ActionKind.HIGHLIGHT: _match_selector,
    ActionKind.FORMFILL: _match_formfill,
    ActionKind.NAVIGATE: _match_navigate,
    ActionKind.HOVER: _match_selector,
    ActionKind.SEQUENCE: _match_sequence,
}

if set(MATCHERS) != set(ActionKind):
    raise RuntimeError("Every action kind needs a matcher")


async def matches(page: LivePage, event: DetectedActionEvent, action: Action) -> bool:
    if not is_compatible(event.action_type, action.kind):
        return False
    return await MATCHERS[action.kind](page, event, action)


class ActionMatcher:
    """Registry of step id -> declared action, searched in registration order."""

    def __init__(self, page: LivePage):
        self.page = page
        self._steps: dict[str, Action] = {}

    def register_step(self, step_id: str, action: Action) -> None:
        self._steps[step_id] = action

    def unregister_step(self, step_id: str) -> None:
        self._steps.pop(step_id, None)

    async def find_matching_step(self, event: DetectedActionEvent) -> str | None:
        for step_id, action in list(self._steps.items()):
            if await matches(self.page, event, action):
                return step_id
        return None

    def clear(self) -> None:
        self._steps.clear()

    def __len__(self) -> int:
        return len(self._steps)
