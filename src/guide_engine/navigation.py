# navigation.py
# Automated remediation for fixable requirement failures.
#
# Three fixes exist: open and dock the navigation menu, expand the parent
# navigation section that hides a target link, and push the route a
# location requirement asks for. Fixes raise FixAttemptFailure when they
# find nothing to act on; callers decide whether to skip or halt.

import asyncio

from guide_engine import display
from guide_engine.config import EngineConfig
from guide_engine.errors import FixAttemptFailure
from guide_engine.models import FixType
from guide_engine.page import ElementRef, LivePage

MEGA_MENU_TOGGLE = "#mega-menu-toggle"
DOCK_MENU_BUTTON = "#dock-menu-button"
EXPAND_SECTION_BUTTON = 'button[aria-label*="Expand section"]'
NAV_ITEM_LINK = 'a[data-testid="data-testid Nav menu item"]'


def parent_path(href: str) -> str | None:
    """'/alerting/list' -> '/alerting'. Top-level and non-path hrefs have no parent."""
    if not href or not href.startswith("/"):
        return None
    segments = [s for s in href.split("/") if s]
    if len(segments) <= 1:
        return None
    return f"/{segments[0]}"


async def is_expanded(button: ElementRef) -> bool:
    if await button.attr("aria-expanded") == "true":
        return True
    label = (await button.attr("aria-label")) or ""
    return "collapse" in label.lower()


class NavigationFixer:
    def __init__(self, page: LivePage, config: EngineConfig | None = None):
        self.page = page
        self.config = config or EngineConfig()

    async def _first(self, selector: str) -> ElementRef | None:
        found = await self.page.query_all(selector)
        return found[0] if found else None

    async def apply(self, fix_type: FixType | str, target_href: str | None = None) -> None:
        """Run the fix a failed CheckResult asked for."""
        fix_type = FixType(fix_type)
        if fix_type is FixType.NAVIGATION:
            await self.fix_navigation()
        elif fix_type is FixType.EXPAND_PARENT_NAVIGATION:
            if not target_href:
                raise FixAttemptFailure("expand-parent-navigation fix needs a target href")
            await self.fix_navigation()
            if not await self.expand_parent_navigation(target_href):
                raise FixAttemptFailure(f"No navigation section could be expanded for {target_href}")
        elif fix_type is FixType.LOCATION:
            if not target_href:
                raise FixAttemptFailure("location fix needs a target path")
            await self.fix_location(target_href)

    # -----------------------------------------------------------------------
    # Menu
    # -----------------------------------------------------------------------

    async def fix_navigation(self) -> None:
        """Open the mega menu if it is closed, then dock it."""
        toggle = await self._first(MEGA_MENU_TOGGLE)
        if toggle is None:
            raise FixAttemptFailure("Mega menu toggle button not found")

        expanded = await toggle.attr("aria-expanded")
        if expanded is None or expanded == "false":
            display.page_action("open", MEGA_MENU_TOGGLE)
            await self.page.click(toggle)
            await asyncio.sleep(self.config.navigation_settle)

        dock = await self._first(DOCK_MENU_BUTTON)
        if dock is not None:
            display.page_action("dock", DOCK_MENU_BUTTON)
            await self.page.click(dock)
            await asyncio.sleep(self.config.dock_settle)

    async def ensure_navigation_open(self) -> None:
        """fix_navigation, minus the failure when the menu has no toggle."""
        if await self._first(MEGA_MENU_TOGGLE) is not None:
            await self.fix_navigation()

    # -----------------------------------------------------------------------
    # Section expansion
    # -----------------------------------------------------------------------

    async def _find_parent_expand_button(self, parent: str) -> ElementRef | None:
        link = await self._first(f'{NAV_ITEM_LINK}[href="{parent}"]')
        if link is not None:
            container = await link.closest("li, div")
            if container is not None:
                for button in await self.page.query_all(EXPAND_SECTION_BUTTON):
                    if await container.contains(button):
                        return button

        name = parent[1:]
        button = await self._first(f'button[aria-label*="Expand section: {name[:1].upper() + name[1:]}"]')
        if button is not None:
            return button

        if link is not None:
            container = await link.closest("li, div")
            if container is not None:
                for candidate in await self.page.query_all("button"):
                    label = ((await candidate.attr("aria-label")) or "").lower()
                    if "expand" in label and await container.contains(candidate):
                        return candidate
        return None

    async def expand_parent_navigation(self, target_href: str) -> bool:
        if "/a/" in target_href:
            return await self.expand_all()

        parent = parent_path(target_href)
        if parent is None:
            return await self.expand_all()

        button = await self._find_parent_expand_button(parent)
        if button is None:
            return await self.expand_all()
        if await is_expanded(button):
            return True

        display.page_action("expand", parent)
        await self.page.click(button)
        await asyncio.sleep(self.config.expansion_settle)
        return True

    async def expand_all(self) -> bool:
        buttons = await self.page.query_all(EXPAND_SECTION_BUTTON)
        if not buttons:
            return False

        clicked = False
        for button in buttons:
            if not await is_expanded(button):
                await self.page.click(button)
                clicked = True
        if clicked:
            display.page_action("expand", f"{len(buttons)} navigation section(s)")
            await asyncio.sleep(self.config.expansion_settle)
        return True

    # -----------------------------------------------------------------------
    # Location
    # -----------------------------------------------------------------------

    async def fix_location(self, path: str) -> None:
        display.page_action("route", path)
        await self.page.push_route(path)
        await asyncio.sleep(self.config.navigation_settle)
