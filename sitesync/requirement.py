# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import os
import re
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple
from urllib.parse import unquote, urlparse

import attr
from packaging import requirements as packaging_requirements
from packaging.markers import InvalidMarker, Marker
from packaging.specifiers import SpecifierSet

from sitesync.build import PyProject
from sitesync.dist_metadata import MetadataError, ProjectNameAndVersion, is_archive
from sitesync.exceptions import DuplicateRequirementError, SitesyncError
from sitesync.locators import (
    DirectUrl,
    Editable,
    LocalPath,
    Registry,
    SourceLocator,
    VersionControl,
    path_to_url,
    url_to_path,
)
from sitesync.pep_503 import ProjectName
from sitesync.pep_508 import MarkerEnvironment, markers_disjoint
from sitesync.vcs import VCS


class InvalidRequirementError(SitesyncError):
    """Indicates a requirement string could not be parsed."""


_VCS_SCHEME_RE = re.compile(r"^(?P<vcs>bzr|git|hg|svn)\+(?P<scheme>[a-z][a-z0-9+.-]*)$")

_ARCHIVE_SCHEMES = ("http", "https", "ftp", "file")

# A PEP-508 name, optionally with extras, followed by an `@`.
_DIRECT_REFERENCE_RE = re.compile(
    r"""
    ^
    [a-zA-Z0-9]+(?:[-_.]+[a-zA-Z0-9]+)*
    \s*
    (?:\[[^\]]*\])?
    \s*
    @
    """,
    re.VERBOSE,
)

_EXTRAS_SUFFIX_RE = re.compile(r"^(?P<path>.*?)(?P<extras>\[[^\]]*\])?$")


def _parse_fragment(fragment: str) -> Dict[str, str]:
    params = {}
    for part in fragment.split("&"):
        key, sep, value = part.partition("=")
        if sep:
            params[key] = unquote(value)
    return params


def _parse_marker(text: str, value: str) -> Marker:
    try:
        return Marker(value)
    except InvalidMarker as e:
        raise InvalidRequirementError(
            "Problem parsing the marker in {text!r}: {err}".format(text=text, err=e)
        ) from e


def _parse_extras(text: str, extras: Optional[str]) -> FrozenSet[str]:
    if not extras:
        return frozenset()
    try:
        return frozenset(packaging_requirements.Requirement("placeholder" + extras).extras)
    except packaging_requirements.InvalidRequirement as e:
        raise InvalidRequirementError(
            "Problem parsing the extras in {text!r}: {err}".format(text=text, err=e)
        ) from e


def _project_name_for_directory(text: str, path: str) -> ProjectName:
    pyproject = PyProject.load(path)
    if pyproject is None or not pyproject.name:
        raise InvalidRequirementError(
            "Could not determine a project name for {text!r}: the project at {path} does not "
            "statically declare one in pyproject.toml; consider using `<name> @ {url}`.".format(
                text=text, path=path, url=path_to_url(path)
            )
        )
    return ProjectName(pyproject.name)


def _project_name_for_archive(text: str, filename: str) -> ProjectName:
    try:
        return ProjectName(ProjectNameAndVersion.from_filename(filename).project_name)
    except MetadataError as e:
        raise InvalidRequirementError(
            "Could not determine a project name for URL requirement {text!r}, consider using "
            "#egg=<project name>.".format(text=text)
        ) from e


def _parse_vcs_url(text: str, vcs: str, url: str) -> Tuple[VersionControl, Optional[str]]:
    if vcs != "git":
        raise InvalidRequirementError(
            "Unsupported version control system {vcs} in {text!r}; only git is supported.".format(
                vcs=vcs, text=text
            )
        )
    parsed = urlparse(url[len(vcs) + 1 :])
    fragment = _parse_fragment(parsed.fragment)
    path = parsed.path
    ref: Optional[str] = None
    if "@" in path:
        path, ref = path.rsplit("@", 1)
    repository = parsed._replace(path=path, params="", query="", fragment="").geturl()
    return (
        VersionControl(
            vcs=VCS.Git,
            repository=repository,
            requested_ref=unquote(ref) if ref else None,
            subdirectory=fragment.get("subdirectory"),
        ),
        fragment.get("egg"),
    )


def _locator_for_url(
    text: str, url: str, editable: bool
) -> Tuple[SourceLocator, Optional[ProjectName]]:
    """Determine the locator for a URL and, where the URL itself implies one, the project name."""
    parsed = urlparse(url)
    vcs_match = _VCS_SCHEME_RE.match(parsed.scheme)
    if vcs_match:
        if editable:
            raise InvalidRequirementError(
                "Editable requirements must be local directories, given: {text!r}".format(text=text)
            )
        locator, egg = _parse_vcs_url(text, vcs_match.group("vcs"), url)
        return locator, ProjectName(egg) if egg else None

    if parsed.scheme not in _ARCHIVE_SCHEMES:
        raise InvalidRequirementError(
            "Unsupported URL scheme {scheme!r} in {text!r}.".format(scheme=parsed.scheme, text=text)
        )

    fragment = _parse_fragment(parsed.fragment)
    egg = fragment.get("egg")
    subdirectory = fragment.get("subdirectory")
    base_url = parsed._replace(fragment="").geturl()

    if parsed.scheme == "file":
        path = url_to_path(base_url)
        if os.path.isdir(path):
            name = ProjectName(egg) if egg else _project_name_for_directory(text, path)
            return (Editable(path=path) if editable else LocalPath(path=path)), name
        if editable:
            raise InvalidRequirementError(
                "Editable requirements must be local directories, given: {text!r}".format(text=text)
            )
        if not os.path.exists(path):
            raise InvalidRequirementError(
                "The path {path} given in {text!r} does not exist.".format(path=path, text=text)
            )

    if editable:
        raise InvalidRequirementError(
            "Editable requirements must be local directories, given: {text!r}".format(text=text)
        )
    locator = DirectUrl(url=base_url, subdirectory=subdirectory)
    if egg:
        return locator, ProjectName(egg)
    if is_archive(locator.filename):
        return locator, _project_name_for_archive(text, locator.filename)
    return locator, None


def _looks_like_path(text: str) -> bool:
    return (
        text.startswith((".", "~"))
        or os.sep in text
        or (os.altsep is not None and os.altsep in text)
    )


@attr.s(frozen=True)
class Requirement:
    """A single requirement: a project name plus what versions of it are wanted from where.

    Registry requirements constrain versions via `specifier`; all other locators name the source
    directly and typically carry an empty specifier.
    """

    @classmethod
    def parse(
        cls,
        text: str,
        basedir: Optional[str] = None,
        editable: bool = False,
    ) -> "Requirement":
        """Parse a requirement in any of the forms accepted by `pip install`.

        Supported forms are PEP-508 requirements (`name[extras]>=1.0; marker`), direct references
        (`name @ url`), bare URLs to archives and git repositories (with the project name taken from
        an `#egg=` fragment or the archive file name) and local paths to archives or project
        directories. Relative paths are resolved against `basedir`, which defaults to the current
        working directory.
        """
        stripped = text.strip()
        if not stripped:
            raise InvalidRequirementError("Empty requirement.")
        basedir = basedir or os.getcwd()

        if _DIRECT_REFERENCE_RE.match(stripped):
            try:
                req = packaging_requirements.Requirement(stripped)
            except packaging_requirements.InvalidRequirement as e:
                raise InvalidRequirementError(
                    "Problem parsing {text!r} as a requirement: {err}".format(text=stripped, err=e)
                ) from e
            assert req.url is not None
            url = req.url
            if "://" not in url and not url.startswith("file:"):
                url = path_to_url(os.path.join(basedir, os.path.expanduser(url)))
            locator, _ = _locator_for_url(stripped, url, editable)
            return cls(
                project_name=ProjectName(req.name),
                extras=frozenset(req.extras),
                marker=req.marker,
                locator=locator,
            )

        url_text, marker_text = stripped, ""
        marker_split = re.split(r"\s+;\s*", stripped, maxsplit=1)
        if len(marker_split) == 2:
            url_text, marker_text = marker_split
        marker = _parse_marker(stripped, marker_text) if marker_text else None

        parsed = urlparse(url_text)
        if parsed.scheme and (parsed.netloc or parsed.scheme == "file") and len(parsed.scheme) > 1:
            locator, project_name = _locator_for_url(stripped, url_text, editable)
            if project_name is None:
                raise InvalidRequirementError(
                    "Could not determine a project name for URL requirement {text!r}, consider "
                    "using #egg=<project name>.".format(text=stripped)
                )
            return cls(project_name=project_name, marker=marker, locator=locator)

        match = _EXTRAS_SUFFIX_RE.match(url_text)
        assert match is not None
        path = os.path.join(basedir, os.path.expanduser(match.group("path")))
        if editable or _looks_like_path(url_text) or (os.path.isfile(path) and is_archive(path)):
            if os.path.isdir(path) or (os.path.isfile(path) and is_archive(path)):
                locator, project_name = _locator_for_url(
                    stripped, path_to_url(os.path.realpath(path)), editable
                )
                assert project_name is not None
                return cls(
                    project_name=project_name,
                    extras=_parse_extras(stripped, match.group("extras")),
                    marker=marker,
                    locator=locator,
                )
            if editable or _looks_like_path(url_text):
                raise InvalidRequirementError(
                    "The path {path} given in {text!r} is not a project directory or a "
                    "distribution archive.".format(path=path, text=stripped)
                )

        try:
            req = packaging_requirements.Requirement(stripped)
        except packaging_requirements.InvalidRequirement as e:
            raise InvalidRequirementError(
                "Problem parsing {text!r} as a requirement: {err}".format(text=stripped, err=e)
            ) from e
        return cls(
            project_name=ProjectName(req.name),
            specifier=req.specifier,
            extras=frozenset(req.extras),
            marker=req.marker,
        )

    project_name: ProjectName = attr.ib()
    specifier: SpecifierSet = attr.ib(factory=SpecifierSet)
    extras: FrozenSet[str] = attr.ib(default=frozenset(), converter=frozenset)
    marker: Optional[Marker] = attr.ib(default=None)
    locator: SourceLocator = attr.ib(factory=Registry)

    @property
    def editable(self) -> bool:
        return isinstance(self.locator, Editable)

    def applies(self, marker_environment: MarkerEnvironment) -> bool:
        return marker_environment.evaluate(self.marker)

    def __str__(self) -> str:
        rendered = self.project_name.raw
        if self.extras:
            rendered += "[{extras}]".format(extras=",".join(sorted(self.extras)))
        locator_url = self.locator.render()
        if locator_url:
            rendered += " @ {url}".format(url=locator_url)
        else:
            rendered += str(self.specifier)
        if self.marker:
            rendered += " ; {marker}".format(marker=self.marker)
        return rendered


@attr.s(frozen=True)
class RequirementSet:
    """The requirements that apply to a target, at most one per project."""

    @classmethod
    def create(
        cls,
        requirements: Iterable[Requirement],
        marker_environment: MarkerEnvironment,
        constraints: Iterable[Requirement] = (),
    ) -> "RequirementSet":
        """Validate requirements against each other and select those that apply.

        Identical requirements collapse into one. Two different requirements for the same project
        are only allowed when their markers can never both apply; otherwise a
        `DuplicateRequirementError` is raised.

        :raise: :class:`DuplicateRequirementError`
        """
        by_name: Dict[ProjectName, List[Requirement]] = {}
        for requirement in requirements:
            existing = by_name.setdefault(requirement.project_name, [])
            if requirement in existing:
                continue
            for other in existing:
                if not markers_disjoint(requirement.marker, other.marker):
                    raise DuplicateRequirementError(requirement.project_name.normalized)
            existing.append(requirement)

        selected = []
        for project_name, candidates in by_name.items():
            applicable = [req for req in candidates if req.applies(marker_environment)]
            if applicable:
                # Disjoint markers mean at most one requirement per project can apply.
                selected.append(applicable[0])

        return cls(
            requirements=tuple(sorted(selected, key=lambda req: req.project_name)),
            constraints=tuple(
                constraint for constraint in constraints if constraint.applies(marker_environment)
            ),
        )

    requirements: Tuple[Requirement, ...] = attr.ib(default=())
    constraints: Tuple[Requirement, ...] = attr.ib(default=())

    def __iter__(self):
        return iter(self.requirements)

    def __len__(self) -> int:
        return len(self.requirements)

    def get(self, project_name: ProjectName) -> Optional[Requirement]:
        for requirement in self.requirements:
            if requirement.project_name == project_name:
                return requirement
        return None

    def constraints_for(self, project_name: ProjectName) -> SpecifierSet:
        specifier = SpecifierSet()
        for constraint in self.constraints:
            if constraint.project_name == project_name:
                specifier &= constraint.specifier
        return specifier
