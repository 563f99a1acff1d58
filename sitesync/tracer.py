# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

"""Verbosity-gated diagnostics written to stderr.

Messages carry a verbosity level `V` and are shown when `SITESYNC_VERBOSE` is at least that level.
Timed sections nest per thread: entering one prints its path from the outermost section and
leaving the outermost one prints the whole tree with durations.
"""

import sys
import threading
import time
from contextlib import contextmanager
from typing import IO, Callable, Iterator, List, Optional

from sitesync.variables import ENV

__all__ = ("TRACER", "TraceLogger")


class _Section:
    def __init__(
        self, msg: str, verbosity: int, parent: Optional["_Section"], start: float
    ) -> None:
        self.msg = msg
        self.verbosity = verbosity
        self.parent = parent
        self.children: List[_Section] = []
        self.start = start
        self.elapsed = 0.0
        if parent is not None:
            parent.children.append(self)

    def path(self, visible: Callable[[int], bool]) -> List[str]:
        path = []
        section: Optional[_Section] = self
        while section is not None:
            if visible(section.verbosity):
                path.append(section.msg)
            section = section.parent
        return path[::-1]


class TraceLogger:
    """Logs messages and timed sections of work, safe for use from multiple threads."""

    def __init__(
        self,
        predicate: Optional[Callable[[int], bool]] = None,
        output: Optional[IO] = None,
        clock: Callable[[], float] = time.perf_counter,
        prefix: str = "",
    ) -> None:
        """
        :param predicate: Decides whether a message of the given verbosity is shown; all are shown
                          by default.
        :param output: Where to write; `sys.stderr` as of the time of each write by default.
        :param clock: The source of timestamps for timed sections, in seconds.
        :param prefix: Text to lead each line with.
        """
        self._visible = predicate or (lambda verbosity: True)
        self._output = output
        self._clock = clock
        self._prefix = prefix
        self._lock = threading.RLock()
        self._local = threading.local()

    def log(self, msg: str, V: int = 1) -> None:
        if not self._visible(V):
            return
        output = self._output or sys.stderr
        with self._lock:
            output.write("{prefix}{msg}\n".format(prefix=self._prefix, msg=msg))
            output.flush()

    def _log_tree(self, section: _Section, depth: int = 0) -> None:
        self.log(
            "{indent}{msg}: {millis:.1f}ms".format(
                indent="  " * depth, msg=section.msg, millis=section.elapsed * 1000
            ),
            V=section.verbosity,
        )
        for child in section.children:
            self._log_tree(child, depth=depth + 1)

    @contextmanager
    def timed(self, msg: str, V: int = 1) -> Iterator[None]:
        parent: Optional[_Section] = getattr(self._local, "section", None)
        section = _Section(msg, verbosity=V, parent=parent, start=self._clock())
        self._local.section = section
        if self._visible(V):
            self.log(" :: ".join(section.path(self._visible)), V=V)
        try:
            yield
        finally:
            section.elapsed = self._clock() - section.start
            self._local.section = parent
            if parent is None:
                with self._lock:
                    self._log_tree(section)


TRACER = TraceLogger(
    predicate=lambda verbosity: verbosity <= ENV.SITESYNC_VERBOSE,
    prefix="sitesync: ",
)
