# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

"""Where a distribution comes from.

A source locator is one of five variants: `Registry`, `DirectUrl`, `VersionControl`, `LocalPath`
or `Editable`. Code that needs to treat the variants differently dispatches exhaustively on the
`SourceLocator` union with `isinstance` checks and finishes with `unexpected_locator` so that adding
a variant fails loudly everywhere it is not yet handled.
"""

import os
import pathlib
from typing import Any, Dict, NoReturn, Optional, Union
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

import attr

from sitesync.exceptions import reportable_unexpected_error_msg
from sitesync.vcs import VCS


def path_to_url(path: str) -> str:
    return pathlib.Path(os.path.abspath(path)).as_uri()


def url_to_path(url: str) -> str:
    parsed = urlparse(url)
    if parsed.scheme != "file":
        raise ValueError("Expected a file:// URL, given: {url}".format(url=url))
    return url2pathname(unquote(parsed.path))


def _with_subdirectory(url: str, subdirectory: Optional[str]) -> str:
    if not subdirectory:
        return url
    return "{url}#subdirectory={subdirectory}".format(url=url, subdirectory=subdirectory)


@attr.s(frozen=True)
class Registry:
    """A distribution found by name in a package index or find-links location.

    A requirement's registry locator carries nothing; a resolved one carries the artifact it
    selected. The artifact's yank status is carried along but plays no part in equality.
    """

    filename: Optional[str] = attr.ib(default=None)
    url: Optional[str] = attr.ib(default=None)
    yanked: bool = attr.ib(default=False, eq=False)
    yanked_reason: Optional[str] = attr.ib(default=None, eq=False)

    def render(self) -> Optional[str]:
        return None


@attr.s(frozen=True)
class DirectUrl:
    """A wheel or source archive named by URL; `file://` URLs name local archives."""

    url: str = attr.ib()
    subdirectory: Optional[str] = attr.ib(default=None)

    @property
    def is_local(self) -> bool:
        return self.url.startswith("file:")

    @property
    def path(self) -> str:
        return url_to_path(self.url)

    @property
    def filename(self) -> str:
        return os.path.basename(unquote(urlparse(self.url).path))

    def render(self) -> str:
        return _with_subdirectory(self.url, self.subdirectory)


@attr.s(frozen=True)
class VersionControl:
    """A project in a version control repository at a requested ref.

    The `resolved_commit` is filled in once the requested ref has been pinned to an immutable
    commit.
    """

    vcs: VCS.Value = attr.ib()
    repository: str = attr.ib()
    requested_ref: Optional[str] = attr.ib(default=None)
    resolved_commit: Optional[str] = attr.ib(default=None)
    subdirectory: Optional[str] = attr.ib(default=None)

    def pinned(self, commit: str) -> "VersionControl":
        return attr.evolve(self, resolved_commit=commit)

    def render(self) -> str:
        url = "{vcs}+{repository}".format(vcs=self.vcs, repository=self.repository)
        ref = self.resolved_commit or self.requested_ref
        if ref:
            url = "{url}@{ref}".format(url=url, ref=ref)
        return _with_subdirectory(url, self.subdirectory)


@attr.s(frozen=True)
class LocalPath:
    """A project directory installed by building and copying it."""

    path: str = attr.ib()

    def render(self) -> str:
        return path_to_url(self.path)


@attr.s(frozen=True)
class Editable:
    """A project directory installed by reference."""

    path: str = attr.ib()

    def render(self) -> str:
        return path_to_url(self.path)


SourceLocator = Union[Registry, DirectUrl, VersionControl, LocalPath, Editable]


def unexpected_locator(locator: Any) -> NoReturn:
    raise AssertionError(
        reportable_unexpected_error_msg(
            "Unexpected source locator {locator!r} of type {type}.",
            locator=locator,
            type=type(locator).__name__,
        )
    )


def as_direct_url_json(locator: SourceLocator) -> Optional[Dict[str, Any]]:
    """Render the PEP-610 `direct_url.json` data for a locator.

    Registry installs have no direct URL and render as `None`.

    See: https://packaging.python.org/en/latest/specifications/direct-url-data-structure/
    """
    data: Dict[str, Any]
    if isinstance(locator, Registry):
        return None
    elif isinstance(locator, DirectUrl):
        data = {"url": locator.url, "archive_info": {}}
        if locator.subdirectory:
            data["subdirectory"] = locator.subdirectory
    elif isinstance(locator, VersionControl):
        vcs_info: Dict[str, Any] = {"vcs": str(locator.vcs)}
        if locator.resolved_commit:
            vcs_info["commit_id"] = locator.resolved_commit
        if locator.requested_ref:
            vcs_info["requested_revision"] = locator.requested_ref
        data = {"url": locator.repository, "vcs_info": vcs_info}
        if locator.subdirectory:
            data["subdirectory"] = locator.subdirectory
    elif isinstance(locator, LocalPath):
        data = {"url": locator.render(), "dir_info": {}}
    elif isinstance(locator, Editable):
        data = {"url": locator.render(), "dir_info": {"editable": True}}
    else:
        unexpected_locator(locator)
    return data


def from_direct_url_json(data: Optional[Dict[str, Any]]) -> SourceLocator:
    """Recover a locator from PEP-610 `direct_url.json` data.

    Missing data indicates an install from a registry.
    """
    if not data:
        return Registry()
    url = data["url"]
    subdirectory = data.get("subdirectory")
    if "vcs_info" in data:
        vcs_info = data["vcs_info"]
        return VersionControl(
            vcs=VCS.for_value(vcs_info["vcs"]),
            repository=url,
            requested_ref=vcs_info.get("requested_revision"),
            resolved_commit=vcs_info.get("commit_id"),
            subdirectory=subdirectory,
        )
    if "dir_info" in data:
        path = url_to_path(url)
        if data["dir_info"].get("editable", False):
            return Editable(path=path)
        return LocalPath(path=path)
    return DirectUrl(url=url, subdirectory=subdirectory)


def as_json(locator: SourceLocator) -> Dict[str, Any]:
    """Render a locator, registry locators included, for sitesync's own metadata files."""
    if isinstance(locator, Registry):
        return {"type": "registry", "filename": locator.filename, "url": locator.url}
    data = as_direct_url_json(locator)
    assert data is not None
    return dict(data, type="direct")


def from_json(data: Dict[str, Any]) -> SourceLocator:
    if data.get("type") == "registry":
        return Registry(filename=data.get("filename"), url=data.get("url"))
    direct_url = dict(data)
    direct_url.pop("type", None)
    return from_direct_url_json(direct_url)
