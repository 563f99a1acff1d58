# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

from typing import List, Tuple

import attr

from sitesync.common import pluralize
from sitesync.distribution import Distribution


def format_elapsed(seconds: float) -> str:
    """Format a duration as `12ms` below one second and `1.23s` otherwise."""
    if seconds < 1:
        return "{millis}ms".format(millis=int(seconds * 1000))
    return "{seconds:.2f}s".format(seconds=seconds)


@attr.s(frozen=True)
class Phase:
    count: int = attr.ib(default=0)
    elapsed: float = attr.ib(default=0.0)


@attr.s(frozen=True)
class Summary:
    """What a sync did, rendered the way it is reported to users."""

    resolved: Phase = attr.ib(factory=Phase)
    downloaded: Phase = attr.ib(factory=Phase)
    built_editables: Phase = attr.ib(factory=Phase)
    uninstalled: Phase = attr.ib(factory=Phase)
    installed: Phase = attr.ib(factory=Phase)
    compiled: Phase = attr.ib(factory=Phase)
    audited: Phase = attr.ib(factory=Phase)
    removed_distributions: Tuple[Distribution, ...] = attr.ib(default=())
    added_distributions: Tuple[Distribution, ...] = attr.ib(default=())
    warnings: Tuple[str, ...] = attr.ib(default=())

    @property
    def changed(self) -> bool:
        return bool(self.removed_distributions or self.added_distributions)

    def _iter_phase_lines(self):
        for verb, phase, noun in (
            ("Resolved", self.resolved, "package"),
            ("Downloaded", self.downloaded, "package"),
            ("Built", self.built_editables, "editable"),
            ("Uninstalled", self.uninstalled, "package"),
            ("Installed", self.installed, "package"),
            ("Bytecode compiled", self.compiled, "file"),
        ):
            if phase.count:
                yield "{verb} {count} {noun} in {elapsed}".format(
                    verb=verb,
                    count=phase.count,
                    noun=pluralize(phase.count, noun),
                    elapsed=format_elapsed(phase.elapsed),
                )
        if not self.changed:
            yield "Audited {count} {noun} in {elapsed}".format(
                count=self.audited.count,
                noun=pluralize(self.audited.count, "package"),
                elapsed=format_elapsed(self.audited.elapsed),
            )

    def changes(self) -> List[str]:
        """The per-package lines: removals before additions of the same project."""
        changes = [(dist.project_name, 0, " - " + str(dist)) for dist in self.removed_distributions]
        changes.extend(
            (dist.project_name, 1, " + " + str(dist)) for dist in self.added_distributions
        )
        return [line for _, _, line in sorted(changes, key=lambda change: change[:2])]

    def render(self) -> str:
        return "\n".join(list(self._iter_phase_lines()) + self.changes())

    def __str__(self) -> str:
        return self.render()
