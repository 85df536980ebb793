# analytics.py
# Fire-and-forget interaction reporting.
#
# Sinks never return anything the engine consumes, and a failing sink never
# interrupts a run: report() swallows and displays sink errors.

import asyncio
import os
import time
from typing import Any, Protocol

import httpx
from dotenv import load_dotenv

from guide_engine import display

load_dotenv()


class AnalyticsSink(Protocol):
    def track(self, event: str, properties: dict[str, Any]) -> None: ...


class NullAnalytics:
    def track(self, event: str, properties: dict[str, Any]) -> None:
        pass


class RecordingAnalytics:
    """Keeps every event in memory. Used by dry runs and tests."""

    def __init__(self):
        self.events: list[tuple[str, dict[str, Any]]] = []

    def track(self, event: str, properties: dict[str, Any]) -> None:
        self.events.append((event, dict(properties)))

    def named(self, event: str) -> list[dict[str, Any]]:
        return [props for name, props in self.events if name == event]


class HttpAnalytics:
    """POSTs each event as JSON from a background task.

    Endpoint defaults to GUIDE_ENGINE_ANALYTICS_URL.
    """

    def __init__(self, url: str | None = None, client: httpx.AsyncClient | None = None, timeout: float = 5.0):
        self.url = url or os.getenv("GUIDE_ENGINE_ANALYTICS_URL", "")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._pending: set[asyncio.Task] = set()

    def track(self, event: str, properties: dict[str, Any]) -> None:
        if not self.url:
            return
        payload = {"event": event, "timestamp": time.time(), "properties": properties}
        task = asyncio.get_running_loop().create_task(self._post(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _post(self, payload: dict) -> None:
        try:
            response = await self._client.post(self.url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            display.analytics_failed(str(e))

    async def aclose(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        await self._client.aclose()


def report(sink: AnalyticsSink | None, event: str, **properties) -> None:
    if sink is None:
        return
    try:
        sink.track(event, properties)
    except Exception as e:
        display.analytics_failed(f"{event}: {e}")
