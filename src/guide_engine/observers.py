# observers.py
# Environment change sources feeding the coordinator's reactive checks.
#
# Each source turns one kind of page change into a call to `on_change`.
# Page mutations are filtered to navigation and connection hotspots to keep
# the cost bounded. URL changes are polled. ManualChangeSource lets a host
# without either (or a test) inject changes directly.

import asyncio
from typing import Callable, Protocol

from guide_engine.page import LivePage, MutationRecord

NAV_CONTAINERS = (
    'div[data-testid*="navigation"], nav[aria-label*="Navigation"], '
    'ul[aria-label*="Navigation"], ul[aria-label*="Main navigation"], [role="navigation"]'
)
HOTSPOTS = (
    '[data-testid*="nav"], [data-testid*="plugin"], [href*="/connections"], '
    '[href*="/dashboards"], [href*="/admin"]'
)
RELEVANT_ATTRIBUTES = ("aria-expanded", "class", "data-testid", "aria-label")


class ChangeSource(Protocol):
    name: str

    def start(self, on_change: Callable[[], None]) -> None: ...

    def stop(self) -> None: ...


async def is_significant(record: MutationRecord) -> bool:
    """True when the change touched a navigation container or a hotspot.

    Attribute records only count for RELEVANT_ATTRIBUTES, and only inside
    those subtrees like every other record.
    """
    if record.type == "attributes" and record.attribute_name not in RELEVANT_ATTRIBUTES:
        return False
    for element in (record.target, *record.added):
        if element is None:
            continue
        if await element.closest(NAV_CONTAINERS) is not None:
            return True
        if await element.closest(HOTSPOTS) is not None:
            return True
    return False


class PageMutationSource:
    name = "mutations"

    def __init__(self, page: LivePage):
        self.page = page
        self._unsubscribe = None
        self._on_change = None

    def start(self, on_change: Callable[[], None]) -> None:
        if self._unsubscribe is not None:
            return
        self._on_change = on_change
        self._unsubscribe = self.page.on_mutation(self._handle)

    async def _handle(self, record: MutationRecord) -> None:
        if self._on_change is not None and await is_significant(record):
            self._on_change()

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
        self._unsubscribe = None
        self._on_change = None


class UrlChangeSource:
    name = "url"

    def __init__(self, page: LivePage, interval: float = 2.0):
        self.page = page
        # A zero interval would spin the loop.
        self.interval = max(interval, 0.01)
        self._task: asyncio.Task | None = None
        self.last_url: str | None = None

    def start(self, on_change: Callable[[], None]) -> None:
        if self._task is not None:
            return
        self._task = asyncio.get_running_loop().create_task(self._poll(on_change))

    async def _poll(self, on_change: Callable[[], None]) -> None:
        self.last_url = await self.page.current_url()
        while True:
            await asyncio.sleep(self.interval)
            url = await self.page.current_url()
            if url != self.last_url:
                self.last_url = url
                on_change()

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
        self._task = None


class ManualChangeSource:
    name = "manual"

    def __init__(self):
        self._on_change = None

    def start(self, on_change: Callable[[], None]) -> None:
        self._on_change = on_change

    def stop(self) -> None:
        self._on_change = None

    def notify(self) -> bool:
        """Report a change. Returns False when the source is not started."""
        if self._on_change is None:
            return False
        self._on_change()
        return True
