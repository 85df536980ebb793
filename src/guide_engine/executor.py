# executor.py
# Action executor: show (preview) and do (commit) primitives on the live page.
#
# Show mode never mutates page state, it only outlines targets. Do mode
# clicks, fills, hovers or navigates. Selector-based kinds must resolve to
# exactly one element; anything else raises SelectorAmbiguity.

import asyncio
from typing import Awaitable, Callable

from guide_engine import display
from guide_engine.config import EngineConfig
from guide_engine.errors import ActionExecutionFailure, GuideEngineError, SelectorAmbiguity
from guide_engine.models import (
    Action,
    ActionKind,
    ButtonAction,
    FormFillAction,
    HighlightAction,
    HoverAction,
    Mode,
    NavigateAction,
    SequenceAction,
)
from guide_engine.navigation import NavigationFixer
from guide_engine.page import FORM_TAGS, ElementRef, LivePage, find_buttons_by_text

NAV_CONTAINER = 'nav, [class*="nav"], [class*="menu"], [class*="sidebar"]'


def is_external_url(target: str) -> bool:
    return target.startswith("http://") or target.startswith("https://")


class ActionExecutor:
    def __init__(
        self,
        page: LivePage,
        config: EngineConfig | None = None,
        navigation: NavigationFixer | None = None,
    ):
        self.page = page
        self.config = config or EngineConfig()
        self.navigation = navigation
        self._running_sequences: set[str] = set()
        self._handlers: dict[ActionKind, Callable[[Action, Mode], Awaitable[None]]] = {
            ActionKind.BUTTON: self._button,
            ActionKind.HIGHLIGHT: self._highlight,
            ActionKind.FORMFILL: self._formfill,
            ActionKind.NAVIGATE: self._navigate,
            ActionKind.HOVER: self._hover,
            ActionKind.SEQUENCE: self._sequence,
        }
        missing = set(ActionKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No executor for action kinds: {sorted(k.value for k in missing)}")

    async def execute(self, action: Action, mode: Mode = Mode.DO) -> None:
        handler = self._handlers.get(action.kind)
        if handler is None:
            raise ActionExecutionFailure(f"Unsupported action kind: {action.kind}")
        try:
            await handler(action, Mode(mode))
        except GuideEngineError:
            raise
        except Exception as e:
            raise ActionExecutionFailure(f"{action.kind.value} '{action.target}' failed: {e}") from e

    # -----------------------------------------------------------------------
    # Resolution
    # -----------------------------------------------------------------------

    async def resolve_one(self, selector: str) -> ElementRef:
        found = await self.page.query_all(selector)
        if len(found) != 1:
            raise SelectorAmbiguity(selector, len(found))
        return found[0]

    async def _outline(self, elements: list[ElementRef], comment: str | None) -> None:
        for element in elements:
            await self.page.highlight(element, self.config.highlight_duration, comment)
        await asyncio.sleep(self.config.highlight_duration)

    async def _reveal(self, element: ElementRef) -> None:
        """Open the navigation menu first when the target lives inside it."""
        if self.navigation is not None and await element.closest(NAV_CONTAINER) is not None:
            await self.navigation.ensure_navigation_open()

    # -----------------------------------------------------------------------
    # Kinds
    # -----------------------------------------------------------------------

    async def _button(self, action: ButtonAction, mode: Mode) -> None:
        buttons = await find_buttons_by_text(self.page, action.target)
        if not buttons:
            raise SelectorAmbiguity(f'button "{action.target}"', 0)
        if mode is Mode.SHOW:
            display.page_action("highlight", f'{len(buttons)} button(s) "{action.target}"')
            await self._outline(buttons, action.comment)
            return
        display.page_action("click", f'button "{action.target}"')
        await self.page.click(buttons[0])

    async def _highlight(self, action: HighlightAction, mode: Mode) -> None:
        element = await self.resolve_one(action.target)
        await self._reveal(element)
        if mode is Mode.SHOW:
            display.page_action("highlight", action.target)
            await self._outline([element], action.comment)
            return
        display.page_action("click", action.target)
        await self.page.click(element)

    async def _formfill(self, action: FormFillAction, mode: Mode) -> None:
        element = await self.resolve_one(action.target)
        if element.tag not in FORM_TAGS:
            raise ActionExecutionFailure(f"'{action.target}' is a <{element.tag}>, not a form control")
        if mode is Mode.SHOW:
            display.page_action("highlight", action.target)
            await self._outline([element], action.comment)
            return
        display.page_action("fill", f"{action.target} = {action.value or ''!r}")
        await self.page.set_value(element, action.value or "")

    async def _navigate(self, action: NavigateAction, mode: Mode) -> None:
        if mode is Mode.SHOW:
            display.page_action("would navigate", action.target)
            return
        if is_external_url(action.target):
            display.page_action("open tab", action.target)
            await self.page.open_new_tab(action.target)
        else:
            display.page_action("route", action.target)
            await self.page.push_route(action.target)
        await asyncio.sleep(self.config.navigation_settle)

    async def _hover(self, action: HoverAction, mode: Mode) -> None:
        element = await self.resolve_one(action.target)
        await self._reveal(element)
        if mode is Mode.SHOW:
            display.page_action("highlight", action.target)
            await self._outline([element], action.comment)
            return
        display.page_action("hover", action.target)
        await self.page.hover(element, self.config.hover_duration)
        await asyncio.sleep(self.config.hover_duration)

    async def _sequence(self, action: SequenceAction, mode: Mode) -> None:
        if action.target in self._running_sequences:
            raise ActionExecutionFailure(f"Sequence '{action.target}' is already running")
        self._running_sequences.add(action.target)
        try:
            for i, nested in enumerate(action.actions):
                if i:
                    await asyncio.sleep(self.config.composite_action_delay)
                await self.execute(nested, mode)
        finally:
            self._running_sequences.discard(action.target)
