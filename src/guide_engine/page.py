# page.py
# The live-page seam. Everything the engine reads from or writes to the page
# goes through these protocols, so a browser host and an in-memory host are
# interchangeable.

import inspect
from typing import Any, Awaitable, Callable, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

FORM_TAGS = ("input", "textarea", "select")
BUTTON_SELECTOR = "button"


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class ElementRef(Protocol):
    """Handle to a single element. `identity` is stable for the element's lifetime."""

    tag: str
    identity: str

    async def attr(self, name: str) -> str | None: ...

    async def text(self) -> str: ...

    async def matches(self, selector: str) -> bool: ...

    async def closest(self, selector: str) -> "ElementRef | None": ...

    async def contains(self, other: "ElementRef") -> bool: ...


class LivePage(Protocol):
    async def query_all(self, selector: str) -> list[ElementRef]: ...

    async def click(self, element: ElementRef) -> None: ...

    async def set_value(self, element: ElementRef, value: str) -> None:
        """Assign a value and dispatch focus, input, change and blur."""

    async def hover(self, element: ElementRef, duration: float) -> None: ...

    async def highlight(self, element: ElementRef, duration: float, comment: str | None = None) -> None:
        """Outline an element for `duration` seconds without blocking."""

    async def current_url(self) -> str: ...

    async def current_path(self) -> str: ...

    async def push_route(self, path: str) -> None: ...

    async def open_new_tab(self, url: str) -> None: ...

    def on_mutation(self, callback: Callable[["MutationRecord"], Any]) -> Callable[[], None]:
        """Register a mutation listener. Returns an unsubscribe callable."""

    def on_user_event(self, callback: Callable[["RawEvent"], Any]) -> Callable[[], None]:
        """Register a raw user-interaction listener. Returns an unsubscribe callable."""


# ---------------------------------------------------------------------------
# Event records
# ---------------------------------------------------------------------------


class RawEvent(BaseModel):
    """A raw interaction as captured on the page, before classification."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    type: Literal["click", "input", "change", "mouseenter", "keydown"]
    element: Any = Field(..., description="ElementRef the event targeted.")
    key: str | None = None
    value: str | None = None
    timestamp: float = 0.0


class MutationRecord(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    type: Literal["childList", "attributes"]
    target: Any = Field(..., description="ElementRef whose subtree or attribute changed.")
    attribute_name: str | None = None
    added: list[Any] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


async def find_buttons_by_text(page: LivePage, text: str) -> list[ElementRef]:
    """Buttons whose full descendant text equals `text`, else those containing it.

    Comparison is case-insensitive. An empty needle matches nothing.
    """
    needle = (text or "").strip().lower()
    if not needle:
        return []

    exact: list[ElementRef] = []
    partial: list[ElementRef] = []
    for button in await page.query_all(BUTTON_SELECTOR):
        content = (await button.text()).strip().lower()
        if not content:
            continue
        if content == needle:
            exact.append(button)
        elif needle in content:
            partial.append(button)
    return exact or partial


async def notify(listeners: list[Callable[[Any], Any]], payload: Any) -> None:
    """Call every listener, awaiting the ones that return awaitables."""
    for listener in list(listeners):
        result = listener(payload)
        if inspect.isawaitable(result):
            await result


def subscribe(listeners: list, callback: Callable) -> Callable[[], None]:
    listeners.append(callback)

    def _unsubscribe() -> None:
        if callback in listeners:
            listeners.remove(callback)

    return _unsubscribe


Handler = Callable[..., Awaitable[None] | None]
