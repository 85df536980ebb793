# browser.py
# LivePage host driving a real browser through Playwright.
#
# A small script is injected into every document. It tags elements with a
# stable data-guide-ref, forwards trusted user events (click, input, change,
# keydown, mouseenter) and MutationObserver records back to Python through
# one exposed binding, and draws highlight outlines.

import asyncio
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from playwright.async_api import ElementHandle, JSHandle, Page, async_playwright

from guide_engine.observers import RELEVANT_ATTRIBUTES
from guide_engine.page import MutationRecord, RawEvent, notify, subscribe

BINDING = "__guideEngineEvent"
REF_ATTRIBUTE = "data-guide-ref"
VIEWPORT = {"width": 1440, "height": 900}

INSTALL_SCRIPT = """
(() => {
  if (window.__guideEngineInstalled) return;
  window.__guideEngineInstalled = true;
  const send = (payload) => window.%(binding)s && window.%(binding)s(payload);

  for (const type of ['click', 'input', 'change', 'keydown', 'mouseenter']) {
    document.addEventListener(type, (ev) => {
      const t = ev.target;
      if (!ev.isTrusted || !(t instanceof Element)) return;
      send({
        kind: 'event',
        type,
        target: t,
        key: ev.key || null,
        value: 'value' in t ? String(t.value) : null,
      });
    }, true);
  }

  const observer = new MutationObserver((records) => {
    for (const r of records) {
      if (!(r.target instanceof Element)) continue;
      send({
        kind: 'mutation',
        type: r.type,
        target: r.target,
        attributeName: r.attributeName,
        added: Array.from(r.addedNodes).filter((n) => n instanceof Element),
      });
    }
  });
  const start = () => observer.observe(document.documentElement, {
    childList: true,
    subtree: true,
    attributes: true,
    attributeFilter: %(attributes)s,
  });
  if (document.documentElement) start();
  else document.addEventListener('DOMContentLoaded', start);
})();
""" % {"binding": BINDING, "attributes": list(RELEVANT_ATTRIBUTES)}

REF_SCRIPT = """
(el) => {
  if (!el.hasAttribute('%(attr)s')) {
    window.__guideEngineRefs = (window.__guideEngineRefs || 0) + 1;
    el.setAttribute('%(attr)s', String(window.__guideEngineRefs));
  }
  return {ref: el.getAttribute('%(attr)s'), tag: el.tagName.toLowerCase(), id: el.id || null};
}
""" % {"attr": REF_ATTRIBUTE}

TEXT_SCRIPT = "(el) => (el.textContent || '').replace(/\\s+/g, ' ').trim()"

SET_VALUE_SCRIPT = """
(el, value) => {
  el.focus();
  const tag = el.tagName.toLowerCase();
  const type = (el.getAttribute('type') || '').toLowerCase();
  if (tag === 'input' && (type === 'checkbox' || type === 'radio')) {
    el.checked = !['false', '0', ''].includes(value);
  } else {
    const proto = tag === 'textarea' ? HTMLTextAreaElement.prototype
      : tag === 'select' ? HTMLSelectElement.prototype
      : HTMLInputElement.prototype;
    const setter = Object.getOwnPropertyDescriptor(proto, 'value').set;
    setter.call(el, value);
  }
  el.dispatchEvent(new Event('input', {bubbles: true}));
  el.dispatchEvent(new Event('change', {bubbles: true}));
  el.blur();
}
"""

HIGHLIGHT_SCRIPT = """
(el, [ms, comment]) => {
  el.scrollIntoView({block: 'center', behavior: 'smooth'});
  const rect = el.getBoundingClientRect();
  const box = document.createElement('div');
  box.setAttribute('data-guide-panel', 'highlight');
  Object.assign(box.style, {
    position: 'fixed', left: rect.left - 4 + 'px', top: rect.top - 4 + 'px',
    width: rect.width + 8 + 'px', height: rect.height + 8 + 'px',
    border: '2px solid #ff8800', borderRadius: '4px', pointerEvents: 'none', zIndex: 99999,
  });
  if (comment) {
    const note = document.createElement('div');
    note.textContent = comment;
    Object.assign(note.style, {
      position: 'absolute', top: '100%', left: 0, marginTop: '6px', padding: '4px 8px',
      background: '#222', color: '#fff', font: '12px sans-serif', borderRadius: '4px',
    });
    box.appendChild(note);
  }
  document.body.appendChild(box);
  setTimeout(() => box.remove(), ms);
}
"""

PUSH_ROUTE_SCRIPT = """
(path) => {
  window.history.pushState({}, '', path);
  window.dispatchEvent(new PopStateEvent('popstate', {state: {}}));
}
"""


class PlaywrightElement:
    def __init__(self, page: "PlaywrightPage", handle: ElementHandle, ref: str, tag: str, element_id: str | None):
        self._page = page
        self.handle = handle
        self.ref = ref
        self.tag = tag
        self.identity = f"{tag}#{element_id}" if element_id else f'[{REF_ATTRIBUTE}="{ref}"]'

    def __repr__(self) -> str:
        return f"PlaywrightElement({self.identity})"

    def __eq__(self, other) -> bool:
        return isinstance(other, PlaywrightElement) and other.ref == self.ref

    def __hash__(self) -> int:
        return hash(self.ref)

    async def attr(self, name: str) -> str | None:
        return await self.handle.get_attribute(name)

    async def text(self) -> str:
        return await self.handle.evaluate(TEXT_SCRIPT)

    async def matches(self, selector: str) -> bool:
        return await self.handle.evaluate("(el, s) => el.matches(s)", selector)

    async def closest(self, selector: str) -> "PlaywrightElement | None":
        found = await self.handle.evaluate_handle("(el, s) => el.closest(s)", selector)
        element = found.as_element()
        if element is None:
            await found.dispose()
            return None
        return await self._page.wrap(element)

    async def contains(self, other) -> bool:
        handle = getattr(other, "handle", None)
        if handle is None:
            return False
        return await self.handle.evaluate("(el, other) => el.contains(other)", handle)


class PlaywrightPage:
    """LivePage host over a playwright.async_api.Page."""

    def __init__(self, page: Page):
        self.page = page
        self.tabs: list[Page] = []
        self._mutation_listeners: list = []
        self._event_listeners: list = []
        self._installed = False

    async def install(self) -> None:
        """Expose the event binding and inject the observer script. Call before goto()."""
        if self._installed:
            return
        await self.page.expose_binding(BINDING, self._on_binding, handle=True)
        await self.page.add_init_script(INSTALL_SCRIPT)
        if self.page.url not in ("", "about:blank"):
            await self.page.evaluate(INSTALL_SCRIPT)
        self._installed = True

    async def wrap(self, handle: ElementHandle) -> PlaywrightElement:
        info = await handle.evaluate(REF_SCRIPT)
        return PlaywrightElement(self, handle, info["ref"], info["tag"], info["id"])

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    async def query_all(self, selector: str) -> list[PlaywrightElement]:
        return [await self.wrap(h) for h in await self.page.query_selector_all(selector)]

    async def current_url(self) -> str:
        return self.page.url

    async def current_path(self) -> str:
        return urlparse(self.page.url).path or "/"

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    async def click(self, element: PlaywrightElement) -> None:
        await element.handle.click()

    async def set_value(self, element: PlaywrightElement, value: str) -> None:
        await element.handle.evaluate(SET_VALUE_SCRIPT, value)

    async def hover(self, element: PlaywrightElement, duration: float) -> None:
        await element.handle.hover()

    async def highlight(self, element: PlaywrightElement, duration: float, comment: str | None = None) -> None:
        await element.handle.evaluate(HIGHLIGHT_SCRIPT, [int(duration * 1000), comment])

    async def push_route(self, path: str) -> None:
        await self.page.evaluate(PUSH_ROUTE_SCRIPT, path)

    async def open_new_tab(self, url: str) -> None:
        tab = await self.page.context.new_page()
        await tab.goto(url)
        self.tabs.append(tab)

    # -----------------------------------------------------------------------
    # Observation
    # -----------------------------------------------------------------------

    def on_mutation(self, callback):
        return subscribe(self._mutation_listeners, callback)

    def on_user_event(self, callback):
        return subscribe(self._event_listeners, callback)

    async def _on_binding(self, source, payload: JSHandle) -> None:
        kind = await _value(payload, "kind")
        target = (await payload.get_property("target")).as_element()
        if target is None:
            return
        element = await self.wrap(target)

        if kind == "mutation":
            added = []
            for item in (await (await payload.get_property("added")).get_properties()).values():
                node = item.as_element()
                if node is not None:
                    added.append(await self.wrap(node))
            record = MutationRecord(
                type=await _value(payload, "type"),
                target=element,
                attribute_name=await _value(payload, "attributeName"),
                added=added,
            )
            await notify(self._mutation_listeners, record)
            return

        event = RawEvent(
            type=await _value(payload, "type"),
            element=element,
            key=await _value(payload, "key"),
            value=await _value(payload, "value"),
        )
        await notify(self._event_listeners, event)


async def _value(handle: JSHandle, name: str):
    return await (await handle.get_property(name)).json_value()


@asynccontextmanager
async def launch(url: str, headless: bool = False):
    """Open `url` in Chromium and yield an installed PlaywrightPage."""
    playwright = await async_playwright().start()
    browser = await playwright.chromium.launch(headless=headless)
    try:
        context = await browser.new_context(viewport=VIEWPORT)
        page = PlaywrightPage(await context.new_page())
        await page.install()
        await page.page.goto(url)
        await page.page.wait_for_load_state("domcontentloaded")
        # Let the app's first render land before the first checks.
        await asyncio.sleep(0.5)
        yield page
    finally:
        await browser.close()
        await playwright.stop()
