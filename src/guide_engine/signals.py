# signals.py
# In-process pub/sub for cross-component engine events.
#
# Listeners may be plain callables or coroutine functions; emit() awaits
# them in registration order. A listener that raises does not stop delivery
# to the others.

import inspect
from collections import defaultdict
from typing import Any, Callable

from guide_engine import display

SECTION_COMPLETED = "section-completed"
USER_ACTION_DETECTED = "user-action-detected"
STEP_AUTO_SKIPPED = "step-auto-skipped"
PROGRESS_SAVED = "progress-saved"

SIGNALS = (SECTION_COMPLETED, USER_ACTION_DETECTED, STEP_AUTO_SKIPPED, PROGRESS_SAVED)


class SignalBus:
    def __init__(self):
        self._listeners: dict[str, list[Callable[[Any], Any]]] = defaultdict(list)

    def on(self, signal: str, listener: Callable[[Any], Any]) -> Callable[[], None]:
        if signal not in SIGNALS:
            raise ValueError(f"Unknown signal: {signal}")
        self._listeners[signal].append(listener)

        def _off() -> None:
            if listener in self._listeners[signal]:
                self._listeners[signal].remove(listener)

        return _off

    async def emit(self, signal: str, payload: Any = None) -> None:
        for listener in list(self._listeners[signal]):
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                display.check_exception(signal, str(e))

    def listener_count(self, signal: str) -> int:
        return len(self._listeners[signal])
