# soup_page.py
# In-memory LivePage over a BeautifulSoup document.
#
# Used for dry runs against captured HTML and as the page host in tests.
# Every write is recorded so callers can assert on what the engine did,
# and user interactions can be simulated to drive auto-detection.

import asyncio
import inspect
import time
from urllib.parse import urljoin, urlparse

import soupsieve as sv
from bs4 import BeautifulSoup, Tag

from guide_engine.page import (
    FORM_TAGS,
    Handler,
    MutationRecord,
    RawEvent,
    notify,
    subscribe,
)


class SoupElement:
    def __init__(self, page: "SoupPage", tag: Tag):
        self._page = page
        self.node = tag
        self.tag = tag.name.lower()
        self.identity = _identity(tag)

    def __repr__(self) -> str:
        return f"SoupElement({self.identity})"

    def __eq__(self, other) -> bool:
        return isinstance(other, SoupElement) and other.node is self.node

    def __hash__(self) -> int:
        return id(self.node)

    async def attr(self, name: str) -> str | None:
        value = self.node.get(name)
        if isinstance(value, list):
            return " ".join(value)
        return value

    async def text(self) -> str:
        return " ".join(self.node.get_text(" ", strip=True).split())

    async def matches(self, selector: str) -> bool:
        return sv.match(selector, self.node)

    async def closest(self, selector: str) -> "SoupElement | None":
        found = sv.closest(selector, self.node)
        return self._page.wrap(found) if found is not None else None

    async def contains(self, other) -> bool:
        node = getattr(other, "node", None)
        if node is None:
            return False
        return node is self.node or any(parent is self.node for parent in node.parents)


def _identity(tag: Tag) -> str:
    """A CSS-ish path that stays the same for the element's lifetime."""
    if tag.get("id"):
        return f"{tag.name}#{tag['id']}"
    parts = []
    node = tag
    while isinstance(node, Tag) and node.name != "[document]":
        siblings = [s for s in node.parent.find_all(node.name, recursive=False)] if node.parent else [node]
        index = next(i for i, s in enumerate(siblings) if s is node) + 1
        parts.append(f"{node.name}:nth-of-type({index})")
        node = node.parent
    return " > ".join(reversed(parts))


class SoupPage:
    """LivePage host backed by an HTML string."""

    def __init__(self, html: str, url: str = "http://localhost:3000/"):
        self.soup = BeautifulSoup(html, "html.parser")
        self.url = url
        self._elements: dict[int, SoupElement] = {}
        self._mutation_listeners: list = []
        self._event_listeners: list = []
        self._click_handlers: list[tuple[str, Handler]] = []

        self.clicks: list[str] = []
        self.fills: list[tuple[str, str]] = []
        self.dispatched: list[tuple[str, str]] = []
        self.highlights: list[tuple[str, str | None]] = []
        self.hovers: list[str] = []
        self.routes: list[str] = []
        self.tabs: list[str] = []

    def wrap(self, tag: Tag) -> SoupElement:
        key = id(tag)
        if key not in self._elements:
            self._elements[key] = SoupElement(self, tag)
        return self._elements[key]

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    async def query_all(self, selector: str) -> list[SoupElement]:
        return [self.wrap(tag) for tag in self.soup.select(selector)]

    async def query(self, selector: str) -> SoupElement | None:
        found = self.soup.select_one(selector)
        return self.wrap(found) if found is not None else None

    async def current_url(self) -> str:
        return self.url

    async def current_path(self) -> str:
        return urlparse(self.url).path or "/"

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    def on_click(self, selector: str, handler: Handler) -> None:
        """Simulate application behaviour: run `handler(page, element)` when a match is clicked."""
        self._click_handlers.append((selector, handler))

    async def click(self, element: SoupElement) -> None:
        self.clicks.append(element.identity)
        for selector, handler in list(self._click_handlers):
            if await element.closest(selector) is not None:
                result = handler(self, element)
                if inspect.isawaitable(result):
                    await result

        link = await element.closest("a[href]")
        if link is not None:
            href = await link.attr("href")
            if href and href.startswith("/"):
                await self.push_route(href)

    async def set_value(self, element: SoupElement, value: str) -> None:
        node = element.node
        if element.tag == "input" and (node.get("type") or "").lower() in ("checkbox", "radio"):
            if value not in ("false", "0", ""):
                node["checked"] = ""
            elif node.has_attr("checked"):
                del node["checked"]
        elif element.tag == "textarea":
            node.string = value
        elif element.tag == "select":
            for option in node.find_all("option"):
                if option.get("value", option.get_text(strip=True)) == value:
                    option["selected"] = ""
                elif option.has_attr("selected"):
                    del option["selected"]
        else:
            node["value"] = value
        self.fills.append((element.identity, value))
        for event in ("focus", "input", "change", "blur"):
            self.dispatched.append((element.identity, event))

    async def hover(self, element: SoupElement, duration: float) -> None:
        self.hovers.append(element.identity)

    async def highlight(self, element: SoupElement, duration: float, comment: str | None = None) -> None:
        self.highlights.append((element.identity, comment))

    async def push_route(self, path: str) -> None:
        self.url = urljoin(self.url, path)
        self.routes.append(path)

    async def open_new_tab(self, url: str) -> None:
        self.tabs.append(url)

    # -----------------------------------------------------------------------
    # Observation
    # -----------------------------------------------------------------------

    def on_mutation(self, callback):
        return subscribe(self._mutation_listeners, callback)

    def on_user_event(self, callback):
        return subscribe(self._event_listeners, callback)

    async def set_attribute(self, selector: str, name: str, value: str | None) -> None:
        """Change an attribute and notify mutation listeners."""
        element = await self.query(selector)
        if element is None:
            raise LookupError(f"No element for {selector}")
        if value is None:
            if element.node.has_attr(name):
                del element.node[name]
        else:
            element.node[name] = value
        await notify(
            self._mutation_listeners,
            MutationRecord(type="attributes", target=element, attribute_name=name),
        )

    async def append_html(self, parent_selector: str, html: str) -> None:
        """Insert markup under the first match and notify mutation listeners."""
        parent = await self.query(parent_selector)
        if parent is None:
            raise LookupError(f"No element for {parent_selector}")
        fragment = BeautifulSoup(html, "html.parser")
        added = []
        for child in list(fragment.contents):
            parent.node.append(child)
            if isinstance(child, Tag):
                added.append(self.wrap(child))
        await notify(
            self._mutation_listeners,
            MutationRecord(type="childList", target=parent, added=added),
        )

    async def remove(self, selector: str) -> None:
        element = await self.query(selector)
        if element is None:
            return
        parent = self.wrap(element.node.parent)
        element.node.decompose()
        await notify(self._mutation_listeners, MutationRecord(type="childList", target=parent))

    # -----------------------------------------------------------------------
    # Simulated user interaction
    # -----------------------------------------------------------------------

    async def _emit(self, event_type: str, selector: str, **fields) -> SoupElement:
        element = await self.query(selector)
        if element is None:
            raise LookupError(f"No element for {selector}")
        await notify(
            self._event_listeners,
            RawEvent(type=event_type, element=element, timestamp=time.monotonic(), **fields),
        )
        return element

    async def user_click(self, selector: str) -> None:
        element = await self._emit("click", selector)
        await self.click(element)

    async def user_fill(self, selector: str, value: str) -> None:
        element = await self.query(selector)
        if element is None or element.tag not in FORM_TAGS:
            raise LookupError(f"No form control for {selector}")
        await self.set_value(element, value)
        await self._emit("input", selector, value=value)

    async def user_hover(self, selector: str) -> None:
        await self._emit("mouseenter", selector)

    async def user_key(self, selector: str, key: str) -> None:
        await self._emit("keydown", selector, key=key)

    async def settle(self) -> None:
        """Yield so scheduled tasks on the loop can run."""
        await asyncio.sleep(0)
