# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

from typing import Optional, Tuple

import attr
from packaging.requirements import Requirement
from packaging.specifiers import SpecifierSet
from packaging.version import Version

from sitesync.fingerprint import SourceFingerprint
from sitesync.locators import Editable, SourceLocator
from sitesync.pep_503 import ProjectName


@attr.s(frozen=True)
class Distribution:
    """A concrete project version from a particular source.

    Distributions describe both what the resolver selected and what an environment currently has
    installed; the planner compares the two with `is_equivalent`.
    """

    project_name: ProjectName = attr.ib()
    version: Version = attr.ib()
    locator: SourceLocator = attr.ib()
    fingerprint: SourceFingerprint = attr.ib()
    requires_python: Optional[SpecifierSet] = attr.ib(default=None, eq=False)
    requires_dists: Tuple[Requirement, ...] = attr.ib(default=(), eq=False)

    @property
    def is_editable(self) -> bool:
        return isinstance(self.locator, Editable)

    @property
    def provenance(self) -> Optional[str]:
        """Where this distribution came from when that was not a package registry."""
        return self.locator.render()

    def is_equivalent(self, other: "Distribution") -> bool:
        """Two distributions are equivalent when installing one in place of the other is a no-op."""
        return (
            self.project_name == other.project_name
            and self.version == other.version
            and self.fingerprint == other.fingerprint
        )

    def pin(self) -> str:
        return "{project_name}=={version}".format(
            project_name=self.project_name.normalized, version=self.version
        )

    def __str__(self) -> str:
        provenance = self.provenance
        if provenance:
            return "{pin} (from {provenance})".format(pin=self.pin(), provenance=provenance)
        return self.pin()
