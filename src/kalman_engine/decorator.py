"""Decorators wrapping a filter by composition.

A decorator holds a filter and forwards every attribute access, assignment and
call to it, adding behavior around them. Decorating never alters the numeric
results of the filter.

Decorators are built directly or with the pipe syntax:

    >>> kf = KalmanFilter() | Printer
"""

from __future__ import annotations

import sys
from typing import Any, TextIO

from .kalman_filter import KalmanFilter


class Printer:
    """Trace the events of a filter as JSON lines.

    One line is written after each event, holding the event name and the
    structured format of the filter (see :meth:`KalmanFilter.__format__`):

        {"event": "update", "filter": {"f": ..., "h": ..., ...}}

    Events are ``construction``, every assignment (named after the assigned
    attribute, e.g. ``x`` or ``q``), ``predict`` and ``update``.

    Attributes:
        decorated (KalmanFilter): The wrapped filter.
        file (TextIO | None): Stream to write to.
            Default: ``sys.stdout`` at the time of writing.
    """

    def __init__(self, decorated: KalmanFilter, file: TextIO | None = None) -> None:
        object.__setattr__(self, "decorated", decorated)
        object.__setattr__(self, "file", file)
        self._print("construction")

    def _print(self, event: str) -> None:
        print(f'{{"event": "{event}", "filter": {self.decorated:}}}', file=self.file or sys.stdout)

    def __getattr__(self, name: str) -> Any:
        # Only called for attributes not found on the printer itself.
        # Copy and pickle look up dunders on instances that do not hold ``decorated`` yet.
        if name == "decorated" or (name.startswith("__") and name.endswith("__")):
            raise AttributeError(name)
        return getattr(self.decorated, name)

    def __setattr__(self, name: str, value: Any) -> None:
        setattr(self.decorated, name, value)
        self._print(name)

    def __or__(self, decorator):
        return decorator(self)

    def __format__(self, format_spec: str) -> str:
        return format(self.decorated, format_spec)

    def __repr__(self) -> str:
        return repr(self.decorated)

    def predict(self, *arguments) -> None:
        self.decorated.predict(*arguments)
        self._print("predict")

    def update(self, z, *arguments) -> None:
        self.decorated.update(z, *arguments)
        self._print("update")
