# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

"""Finding, fetching and building distributions through the artifact cache."""

import os
import threading
from typing import Iterator, List, Optional, Tuple

import attr
from packaging.specifiers import SpecifierSet
from packaging.version import InvalidVersion, Version

from sitesync.build import BuildBackend, unpack_sdist
from sitesync.cache.artifacts import ArtifactCache, Built, Builder, CacheEntry, Provenance, Refresh
from sitesync.cache.dirs import CacheDir
from sitesync.dist_metadata import (
    DistMetadata,
    MetadataError,
    ProjectNameAndVersion,
    is_sdist,
    is_wheel,
)
from sitesync.distribution import Distribution
from sitesync.exceptions import SourceFetchError
from sitesync.fetcher import URLFetcher
from sitesync.fingerprint import FingerprintEngine
from sitesync.hashing import Sha256
from sitesync.index import Candidate, IndexFile, PackageFinder
from sitesync.locators import (
    DirectUrl,
    Editable,
    LocalPath,
    Registry,
    SourceLocator,
    VersionControl,
    path_to_url,
    unexpected_locator,
)
from sitesync.pep_503 import ProjectName
from sitesync.requirement import Requirement
from sitesync.target import Target
from sitesync.tracer import TRACER
from sitesync.vcs import NETWORK_DISABLED_HINT, GitClient

INDEX_DISABLED_HINT = (
    "index lookups were disabled and no additional package locations were provided "
    "(try: `--find-links <uri>`)"
)


def exact_pin(specifier: SpecifierSet) -> Optional[Version]:
    """Return the version `specifier` pins exactly, if it does."""
    specs = list(specifier)
    if len(specs) != 1 or specs[0].operator not in ("==", "===") or "*" in specs[0].version:
        return None
    try:
        return Version(specs[0].version)
    except InvalidVersion:
        return None


@attr.s(frozen=True)
class Described:
    """A direct source pinned down to a distribution along with its metadata."""

    distribution: Distribution = attr.ib()
    metadata: DistMetadata = attr.ib()
    cached: bool = attr.ib(default=False)


@attr.s(frozen=True)
class FetchStatistics:
    prepared: int = attr.ib(default=0)
    built_editables: int = attr.ib(default=0)

    def __sub__(self, other: "FetchStatistics") -> "FetchStatistics":
        return FetchStatistics(
            prepared=self.prepared - other.prepared,
            built_editables=self.built_editables - other.built_editables,
        )


def _filename_version(filename: str) -> Optional[Version]:
    try:
        return ProjectNameAndVersion.from_filename(filename).canonicalized_version
    except (MetadataError, InvalidVersion):
        return None


class SourceProvider:
    """Supplies the resolver with candidates and metadata and the installer with artifacts.

    Everything fetched or built lands in the artifact cache keyed by source fingerprint; so each
    distinct source is downloaded or built at most once no matter how many times it is asked for.
    """

    def __init__(
        self,
        cache: ArtifactCache,
        target: Target,
        fetcher: URLFetcher,
        finder: PackageFinder,
        build_backend: BuildBackend,
        git: Optional[GitClient] = None,
        refresh: Refresh = Refresh(),
        no_index: bool = False,
    ) -> None:
        self._cache = cache
        self._target = target
        self._fetcher = fetcher
        self._finder = finder
        self._build_backend = build_backend
        self._git = git or GitClient(offline=fetcher.offline)
        self._fingerprints = FingerprintEngine(fetcher, self._git, build_backend)
        self._refresh = refresh
        self._no_index = no_index

        self._lock = threading.Lock()
        self._statistics = FetchStatistics()

    @property
    def statistics(self) -> FetchStatistics:
        with self._lock:
            return self._statistics

    def _record(self, prepared: int = 0, built_editables: int = 0) -> None:
        with self._lock:
            self._statistics = FetchStatistics(
                prepared=self._statistics.prepared + prepared,
                built_editables=self._statistics.built_editables + built_editables,
            )

    @property
    def location(self) -> str:
        """Where registry candidates were looked for, for error messages."""
        if self._fetcher.offline:
            return "the cache"
        if self._no_index:
            return "the provided package locations"
        return "the package registry"

    def unavailable_hint(self) -> Optional[str]:
        if self._fetcher.offline:
            return NETWORK_DISABLED_HINT
        if self._no_index and not self._finder.has_find_links:
            return INDEX_DISABLED_HINT
        return None

    def _iter_cached_registry_entries(self, project_name: ProjectName) -> Iterator[CacheEntry]:
        for entry in self._cache.entries_for(project_name):
            if entry.fingerprint.kind == "registry":
                yield entry

    def _cached_candidates(self, project_name: ProjectName) -> Iterator[Candidate]:
        for entry in self._iter_cached_registry_entries(project_name):
            requires_python = entry.metadata.requires_python
            candidate = Candidate.from_index_file(
                IndexFile(
                    filename=entry.fingerprint.identity,
                    url=path_to_url(entry.wheel),
                    requires_python=str(requires_python) if requires_python else None,
                    yanked=entry.yanked,
                    yanked_reason=entry.yanked_reason,
                )
            )
            if candidate is not None:
                yield candidate

    def candidates(self, project_name: ProjectName) -> Tuple[Candidate, ...]:
        """List the registry candidates for a project.

        Offline, the cache stands in for the package indexes.
        """
        candidates: List[Candidate] = list(self._finder.candidates(project_name))
        if self._fetcher.offline:
            seen = {candidate.file.filename for candidate in candidates}
            candidates.extend(
                candidate
                for candidate in self._cached_candidates(project_name)
                if candidate.file.filename not in seen
            )
        return tuple(candidates)

    def cached_distribution(self, requirement: Requirement) -> Optional[Distribution]:
        """Find a compatible cached registry artifact for an exactly pinned requirement."""
        if exact_pin(requirement.specifier) is None:
            return None
        if self._refresh.applies_to(requirement.project_name):
            return None

        best: Optional[Tuple[Tuple[Version, bool], CacheEntry]] = None
        for entry in self._iter_cached_registry_entries(requirement.project_name):
            filename = entry.fingerprint.identity
            version = entry.metadata.version
            if not requirement.specifier.contains(version, prereleases=True):
                continue
            if is_wheel(filename) and not self._target.is_compatible(filename):
                continue
            requires_python = entry.metadata.requires_python
            if requires_python is not None and not requires_python.contains(
                self._target.python_version, prereleases=True
            ):
                continue
            key = (version, is_wheel(filename))
            if best is None or key > best[0]:
                best = key, entry
        if best is None:
            return None

        entry = best[1]
        TRACER.log("Using cached {filename}".format(filename=entry.fingerprint.identity), V=2)
        return Distribution(
            project_name=requirement.project_name,
            version=entry.metadata.version,
            locator=Registry(
                filename=entry.fingerprint.identity,
                yanked=entry.yanked,
                yanked_reason=entry.yanked_reason,
            ),
            fingerprint=entry.fingerprint,
            requires_python=entry.metadata.requires_python,
            requires_dists=entry.metadata.requires_dists,
        )

    def describe(self, requirement: Requirement) -> Described:
        """Pin a direct requirement to a distribution.

        Local project directories only have their metadata prepared. Other direct sources are
        fetched, and built if need be, into the cache.
        """
        locator = self._fingerprints.pin(requirement.locator)
        if isinstance(locator, (LocalPath, Editable)):
            metadata = self._fingerprints.local_metadata(locator)
            fingerprint = self._fingerprints.fingerprint(locator, metadata)
            return Described(
                distribution=Distribution(
                    project_name=requirement.project_name,
                    version=metadata.version,
                    locator=locator,
                    fingerprint=fingerprint,
                    requires_python=metadata.requires_python,
                    requires_dists=metadata.requires_dists,
                ),
                metadata=metadata,
                cached=self._cache.lookup(fingerprint) is not None,
            )

        fingerprint = self._fingerprints.fingerprint(locator)
        refresh = self._refresh.applies_to(requirement.project_name)
        cached = not refresh and self._cache.lookup(fingerprint) is not None
        entry = self._cache.get_or_build(fingerprint, self._builder(locator), refresh=refresh)

        version = entry.metadata.version
        if isinstance(locator, DirectUrl) and is_wheel(locator.filename):
            version = _filename_version(locator.filename) or version
        return Described(
            distribution=Distribution(
                project_name=requirement.project_name,
                version=version,
                locator=locator,
                fingerprint=fingerprint,
                requires_python=entry.metadata.requires_python,
                requires_dists=entry.metadata.requires_dists,
            ),
            metadata=entry.metadata,
            cached=cached,
        )

    def metadata(self, distribution: Distribution) -> DistMetadata:
        if isinstance(distribution.locator, (LocalPath, Editable)):
            return self._fingerprints.local_metadata(distribution.locator)
        return self.fetch(distribution).metadata

    def fetch(self, distribution: Distribution) -> CacheEntry:
        """Return the cache entry holding the wheel for `distribution`, populating it if needed."""
        return self._cache.get_or_build(
            distribution.fingerprint,
            self._builder(distribution.locator),
            refresh=self._refresh.applies_to(distribution.project_name),
        )

    def _wheel_from_archive(
        self, archive: str, work_dir: str, subdirectory: Optional[str] = None
    ) -> Built:
        if is_wheel(archive):
            return Built(wheel=archive, provenance=Provenance.DOWNLOAD)
        if is_sdist(archive):
            project_dir = unpack_sdist(archive, os.path.join(work_dir, "sdist"))
            if subdirectory:
                project_dir = os.path.join(project_dir, subdirectory)
            wheel = self._build_backend.build_wheel(project_dir, os.path.join(work_dir, "dist"))
            return Built(wheel=wheel, provenance=Provenance.BUILD)
        raise SourceFetchError(
            "The artifact {archive} is neither a wheel nor a source distribution.".format(
                archive=os.path.basename(archive)
            )
        )

    def _checkout(self, locator: VersionControl) -> str:
        assert locator.resolved_commit is not None
        checkout_dir = self._cache.path(
            CacheDir.GIT,
            str(Sha256(locator.repository.encode("utf-8")).hexdigest()),
            locator.resolved_commit,
        )
        return self._git.checkout(locator.repository, locator.resolved_commit, checkout_dir)

    def _builder(self, locator: SourceLocator) -> Builder:
        def build(work_dir: str) -> Built:
            if isinstance(locator, Registry):
                if not locator.url:
                    raise SourceFetchError(
                        "No download URL is known for {filename}.".format(filename=locator.filename)
                    )
                result = self._fetcher.fetch(
                    locator.url, os.path.join(work_dir, "download"), filename=locator.filename
                )
                built = self._wheel_from_archive(result.path, work_dir)
                self._record(prepared=1)
                return attr.evolve(
                    built, yanked=locator.yanked, yanked_reason=locator.yanked_reason
                )
            elif isinstance(locator, DirectUrl):
                result = self._fetcher.fetch(
                    locator.url, os.path.join(work_dir, "download"), filename=locator.filename
                )
                built = self._wheel_from_archive(result.path, work_dir, locator.subdirectory)
                self._record(prepared=1)
                return built
            elif isinstance(locator, VersionControl):
                project_dir = self._checkout(locator)
                if locator.subdirectory:
                    project_dir = os.path.join(project_dir, locator.subdirectory)
                wheel = self._build_backend.build_wheel(project_dir, os.path.join(work_dir, "dist"))
                self._record(prepared=1)
                return Built(wheel=wheel, provenance=Provenance.BUILD)
            elif isinstance(locator, LocalPath):
                wheel = self._build_backend.build_wheel(
                    locator.path, os.path.join(work_dir, "dist")
                )
                self._record(prepared=1)
                return Built(wheel=wheel, provenance=Provenance.BUILD)
            elif isinstance(locator, Editable):
                wheel = self._build_backend.build_editable(
                    locator.path, os.path.join(work_dir, "dist")
                )
                self._record(built_editables=1)
                return Built(wheel=wheel, provenance=Provenance.BUILD)
            else:
                unexpected_locator(locator)

        return build
