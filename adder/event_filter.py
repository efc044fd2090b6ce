"""Filter for events by their top-level type."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Iterable
from typing import Any

from .event import Event

_QUEUE_SIZE = 10
_POLL_INTERVAL = 0.05


class EventFilter:
    """Passes on events whose type is one of the configured types.

    With no types configured every event is passed on.
    """

    def __init__(
        self,
        logger: Any = None,
        types: Iterable[str] | None = None,
    ) -> None:
        self.logger = logger or logging.getLogger("adder.filter.event")
        self.types = tuple(types or ())
        self._input: queue.Queue[Event] = queue.Queue(_QUEUE_SIZE)
        self._output: queue.Queue[Event] = queue.Queue(_QUEUE_SIZE)
        self._stopping = threading.Event()
        self._worker: threading.Thread | None = None

    def accepts(self, evt: Event) -> bool:
        """Return whether the event passes the type filter."""
        return not self.types or evt.type in self.types

    def start(self) -> None:
        """Start passing events from the input to the output queue."""
        if self._stopping.is_set():
            raise RuntimeError("filter is stopped")
        if self._worker is not None:
            return
        self._worker = threading.Thread(target=self._run, daemon=True)
        self._worker.start()

    def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                evt = self._input.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                continue
            if self.accepts(evt):
                self._output.put(evt)

    def stop(self) -> None:
        """Stop the filter; it cannot be restarted."""
        if self._stopping.is_set():
            raise RuntimeError("filter is already stopped")
        self._stopping.set()
        if self._worker is not None:
            self._worker.join(timeout=1.0)

    def put(self, evt: Event) -> None:
        """Hand an event to the filter."""
        if self._stopping.is_set():
            raise RuntimeError("filter is stopped")
        self._input.put(evt)

    def get(self, timeout: float | None = None) -> Event:
        """Return the next event that passed the filter."""
        try:
            return self._output.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError("no event passed the filter in time") from None

    def __enter__(self) -> EventFilter:
        self.start()
        return self

    def __exit__(self, *exc: object) -> None:
        if not self._stopping.is_set():
            self.stop()


def new_from_options(event_type: str = "", logger: Any = None) -> EventFilter:
    """Build a filter from a comma-separated list of event types."""
    return EventFilter(
        logger=logger or logging.getLogger("adder.filter.event"),
        types=event_type.split(",") if event_type else None,
    )