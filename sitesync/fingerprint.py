# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

"""Source fingerprints: the identity of what a distribution was built or downloaded from.

A fingerprint serves two purposes. It keys the artifact cache and it decides whether an installed
distribution is still the one that is wanted. Each source locator variant has its own rule:

+ Registry artifacts are identified by their file name, which embeds the project name, version
  and compatibility tags. Registry artifacts are immutable so these never go stale.
+ Remote URLs are identified by the URL plus the cache validator (`ETag` or `Last-Modified`)
  the server reports for it.
+ Local archive files are identified by their URL plus their modification time. Touching a file
  without changing its content still yields a new fingerprint.
+ Version control sources are identified by the immutable commit their requested ref resolved to
  plus the subdirectory of the project.
+ Local project directories, editable or not, are identified by a digest of their metadata; so the
  fingerprint only changes when the declared version, dependencies or entry points do.
"""

import json
from typing import Optional

import attr

from sitesync.build import BuildBackend
from sitesync.dist_metadata import DistMetadata
from sitesync.exceptions import production_assert
from sitesync.fetcher import URLFetcher
from sitesync.hashing import Sha256
from sitesync.locators import (
    DirectUrl,
    Editable,
    LocalPath,
    Registry,
    SourceLocator,
    VersionControl,
    unexpected_locator,
)
from sitesync.vcs import GitClient


@attr.s(frozen=True)
class SourceFingerprint:
    """An opaque source identity.

    Fingerprints compare equal exactly when their rendered identity strings do; the `key` is a
    fixed width digest of that identity suitable for use as a file name.
    """

    kind: str = attr.ib()
    identity: str = attr.ib()

    @property
    def key(self) -> str:
        return str(Sha256(str(self).encode("utf-8")).hexdigest())

    def __str__(self) -> str:
        return "{kind}:{identity}".format(kind=self.kind, identity=self.identity)

    @classmethod
    def parse(cls, value: str) -> "SourceFingerprint":
        kind, sep, identity = value.partition(":")
        if not sep:
            raise ValueError("Invalid source fingerprint: {value!r}".format(value=value))
        return cls(kind=kind, identity=identity)


def metadata_digest(metadata: DistMetadata) -> str:
    """A digest of the parts of a distribution's metadata that affect installing it."""
    data = {
        "name": metadata.project_name.normalized,
        "version": str(metadata.version),
        "requires_dists": sorted(str(req) for req in metadata.requires_dists),
        "requires_python": str(metadata.requires_python) if metadata.requires_python else None,
        "entry_points": sorted(
            "{group}:{entry_point}".format(group=group, entry_point=entry_point)
            for group, entry_point in metadata.entry_points
        ),
    }
    return str(Sha256(json.dumps(data, sort_keys=True).encode("utf-8")).hexdigest())


def registry_fingerprint(locator: Registry) -> SourceFingerprint:
    production_assert(
        locator.filename is not None,
        "Can only fingerprint registry locators that name an artifact; given {locator}.",
        locator=locator,
    )
    return SourceFingerprint(kind="registry", identity=str(locator.filename))


def direct_url_fingerprint(locator: DirectUrl, validator: Optional[str]) -> SourceFingerprint:
    identity = locator.render()
    if validator:
        identity = "{identity}|{validator}".format(identity=identity, validator=validator)
    return SourceFingerprint(kind="file" if locator.is_local else "url", identity=identity)


def vcs_fingerprint(locator: VersionControl) -> SourceFingerprint:
    production_assert(
        locator.resolved_commit is not None,
        "Can only fingerprint version control locators pinned to a commit; given {locator}.",
        locator=locator,
    )
    return SourceFingerprint(kind=str(locator.vcs), identity=locator.render())


def local_project_fingerprint(locator: LocalPath, metadata: DistMetadata) -> SourceFingerprint:
    return SourceFingerprint(
        kind="path",
        identity="{url}|{digest}".format(url=locator.render(), digest=metadata_digest(metadata)),
    )


def editable_fingerprint(locator: Editable, metadata: DistMetadata) -> SourceFingerprint:
    return SourceFingerprint(
        kind="editable",
        identity="{url}|{digest}".format(url=locator.render(), digest=metadata_digest(metadata)),
    )


class FingerprintEngine:
    """Computes source fingerprints, consulting the outside world where the rule requires it."""

    def __init__(
        self,
        fetcher: URLFetcher,
        git: GitClient,
        build_backend: BuildBackend,
    ) -> None:
        self._fetcher = fetcher
        self._git = git
        self._build_backend = build_backend

    def pin(self, locator: SourceLocator) -> SourceLocator:
        """Pin any mutable reference in `locator` to an immutable one.

        Only version control locators carry mutable references (branches and tags); these are
        resolved to a commit. All other locators are returned as-is.
        """
        if isinstance(locator, VersionControl) and locator.resolved_commit is None:
            return locator.pinned(
                self._git.resolve_commit(locator.repository, locator.requested_ref)
            )
        return locator

    def local_metadata(self, locator: SourceLocator) -> DistMetadata:
        production_assert(
            isinstance(locator, (LocalPath, Editable)),
            "Can only prepare metadata for local project directories; given {locator}.",
            locator=locator,
        )
        return self._build_backend.prepare_metadata(locator.path)  # type: ignore[union-attr]

    def fingerprint(
        self, locator: SourceLocator, metadata: Optional[DistMetadata] = None
    ) -> SourceFingerprint:
        """Compute the fingerprint of `locator`.

        Version control locators are pinned first. For local project directories, `metadata` can
        be passed when already known to avoid preparing it again.
        """
        if isinstance(locator, Registry):
            return registry_fingerprint(locator)
        elif isinstance(locator, DirectUrl):
            return direct_url_fingerprint(locator, self._fetcher.validator(locator.url))
        elif isinstance(locator, VersionControl):
            pinned = self.pin(locator)
            assert isinstance(pinned, VersionControl)
            return vcs_fingerprint(pinned)
        elif isinstance(locator, LocalPath):
            return local_project_fingerprint(locator, metadata or self.local_metadata(locator))
        elif isinstance(locator, Editable):
            return editable_fingerprint(locator, metadata or self.local_metadata(locator))
        else:
            unexpected_locator(locator)
