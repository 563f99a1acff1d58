# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import json
import os
from typing import Any, Dict, Iterator, List, Optional, Tuple

import attr
from packaging.requirements import Requirement

from sitesync.dist_metadata import DistMetadata, MetadataError
from sitesync.distribution import Distribution
from sitesync.fingerprint import SourceFingerprint
from sitesync.locators import (
    Registry,
    SourceLocator,
    as_json,
    from_direct_url_json,
    from_json,
)
from sitesync.pep_503 import ProjectName
from sitesync.pep_508 import MarkerEnvironment
from sitesync.target import InvalidTargetEnvironmentError, TargetEnvironment
from sitesync.tracer import TRACER

# Written by sitesync into each .dist-info it installs: the locator and source fingerprint the
# distribution was installed from.
INSTALL_JSON = "sitesync.json"

DIRECT_URL_JSON = "direct_url.json"


def install_json(distribution: Distribution) -> Dict[str, Any]:
    return {
        "locator": as_json(distribution.locator),
        "fingerprint": str(distribution.fingerprint),
    }


def _load_json(path: str) -> Optional[Dict[str, Any]]:
    if not os.path.isfile(path):
        return None
    with open(path) as fp:
        return json.load(fp)


def _foreign_fingerprint(locator: SourceLocator, dist_info_dir: str) -> SourceFingerprint:
    # Distributions installed by other tools carry no fingerprint. They never compare equivalent
    # to a desired distribution unless the resolver kept them as installed.
    if isinstance(locator, Registry):
        return SourceFingerprint(kind="registry", identity=os.path.basename(dist_info_dir))
    return SourceFingerprint(kind="foreign", identity=str(locator.render()))


@attr.s(frozen=True)
class InstalledDistribution:
    distribution: Distribution = attr.ib()
    dist_info_dir: str = attr.ib()
    metadata: DistMetadata = attr.ib(eq=False)

    @property
    def project_name(self) -> ProjectName:
        return self.distribution.project_name

    @classmethod
    def load(cls, site_packages: str, dist_info_dir: str) -> "InstalledDistribution":
        path = os.path.join(site_packages, dist_info_dir)
        metadata = DistMetadata.from_dist_info_dir(path)

        install_data = _load_json(os.path.join(path, INSTALL_JSON))
        if install_data is not None:
            locator = from_json(install_data["locator"])
            fingerprint = SourceFingerprint.parse(install_data["fingerprint"])
        else:
            locator = from_direct_url_json(_load_json(os.path.join(path, DIRECT_URL_JSON)))
            fingerprint = _foreign_fingerprint(locator, dist_info_dir)

        return cls(
            distribution=Distribution(
                project_name=metadata.project_name,
                version=metadata.version,
                locator=locator,
                fingerprint=fingerprint,
                requires_python=metadata.requires_python,
                requires_dists=metadata.requires_dists,
            ),
            dist_info_dir=dist_info_dir,
            metadata=metadata,
        )


def _render_requirement(requirement: Requirement) -> str:
    return "{name}{extras}{specifier}".format(
        name=requirement.name,
        extras="[{}]".format(",".join(sorted(requirement.extras))) if requirement.extras else "",
        specifier=requirement.specifier,
    )


@attr.s(frozen=True)
class Inventory:
    """The distributions currently installed in a target environment."""

    @classmethod
    def load(cls, environment: TargetEnvironment) -> "Inventory":
        """Read the records of every installed distribution.

        Only `.dist-info` directories holding a `RECORD` count as installed; a `.dist-info` without
        one is an install that never completed or an uninstall that never finished.

        :raise: :class:`InvalidTargetEnvironmentError` if an installed distribution's metadata
                cannot be read.
        """
        site_packages = environment.site_packages
        installed: Dict[ProjectName, InstalledDistribution] = {}
        if not os.path.isdir(site_packages):
            return cls(site_packages=site_packages, installed=())

        with TRACER.timed("Reading installed distributions in {}".format(site_packages), V=2):
            for entry in sorted(os.listdir(site_packages)):
                if not entry.endswith(".dist-info") or entry.startswith("."):
                    continue
                if not os.path.isfile(os.path.join(site_packages, entry, "RECORD")):
                    TRACER.log("Ignoring {entry} which has no RECORD.".format(entry=entry), V=3)
                    continue
                try:
                    installed_distribution = InstalledDistribution.load(site_packages, entry)
                except (IOError, OSError, ValueError, KeyError, MetadataError) as e:
                    raise InvalidTargetEnvironmentError(
                        "Failed to read the installed distribution {entry} in "
                        "{site_packages}: {err}".format(
                            entry=entry, site_packages=site_packages, err=e
                        )
                    ) from e
                installed[installed_distribution.project_name] = installed_distribution

        return cls(
            site_packages=site_packages,
            installed=tuple(installed[name] for name in sorted(installed)),
        )

    site_packages: str = attr.ib()
    installed: Tuple[InstalledDistribution, ...] = attr.ib()

    def __iter__(self) -> Iterator[InstalledDistribution]:
        return iter(self.installed)

    def __len__(self) -> int:
        return len(self.installed)

    def get(self, project_name: ProjectName) -> Optional[InstalledDistribution]:
        for installed_distribution in self.installed:
            if installed_distribution.project_name == project_name:
                return installed_distribution
        return None

    @property
    def distributions(self) -> Tuple[Distribution, ...]:
        return tuple(installed.distribution for installed in self.installed)

    def diagnostics(self, marker_environment: MarkerEnvironment) -> List[str]:
        """Describe the dependencies of installed distributions that are not satisfied."""
        problems = []
        for installed_distribution in self.installed:
            for requirement in installed_distribution.metadata.requires_dists:
                if not marker_environment.evaluate(requirement.marker):
                    continue
                dependency = self.get(ProjectName(requirement.name))
                if dependency is None:
                    problems.append(
                        "The package `{name}` requires `{requirement}`, but it's not "
                        "installed.".format(
                            name=installed_distribution.project_name,
                            requirement=_render_requirement(requirement),
                        )
                    )
                elif not requirement.specifier.contains(
                    dependency.distribution.version, prereleases=True
                ):
                    problems.append(
                        "The package `{name}` requires `{requirement}`, but `{version}` is "
                        "installed.".format(
                            name=installed_distribution.project_name,
                            requirement=_render_requirement(requirement),
                            version=dependency.distribution.version,
                        )
                    )
        return problems
