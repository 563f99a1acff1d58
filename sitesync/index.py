# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import json
import os
import re
import threading
from email.message import Message
from html.parser import HTMLParser
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import unquote, urljoin, urlparse

import attr
from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from sitesync.dist_metadata import MetadataError, ProjectNameAndVersion, is_archive, is_wheel
from sitesync.exceptions import SourceFetchError
from sitesync.fetcher import NotFoundError, URLFetcher
from sitesync.locators import Registry, path_to_url
from sitesync.pep_425 import CompatibilityTags
from sitesync.pep_503 import ProjectName
from sitesync.tracer import TRACER


@attr.s(frozen=True)
class IndexFile:
    """A distribution file listed by a package index or a find-links location."""

    filename: str = attr.ib()
    url: str = attr.ib()
    requires_python: Optional[str] = attr.ib(default=None)
    yanked: bool = attr.ib(default=False)
    yanked_reason: Optional[str] = attr.ib(default=None)
    hashes: Tuple[Tuple[str, str], ...] = attr.ib(default=())


@attr.s(frozen=True)
class Candidate:
    """A concrete release artifact a registry requirement could be satisfied with."""

    @classmethod
    def from_index_file(cls, index_file: IndexFile) -> Optional["Candidate"]:
        if not is_archive(index_file.filename):
            return None
        try:
            project_name_and_version = ProjectNameAndVersion.from_filename(index_file.filename)
            version = Version(project_name_and_version.version)
            tags = (
                CompatibilityTags.from_wheel(index_file.filename)
                if is_wheel(index_file.filename)
                else None
            )
        except (MetadataError, InvalidVersion, ValueError) as e:
            TRACER.log(
                "Ignoring unparseable distribution file {filename}: {err}".format(
                    filename=index_file.filename, err=e
                ),
                V=3,
            )
            return None
        requires_python: Optional[SpecifierSet] = None
        if index_file.requires_python:
            try:
                requires_python = SpecifierSet(index_file.requires_python)
            except InvalidSpecifier:
                TRACER.log(
                    "Ignoring invalid Requires-Python {value!r} for {filename}".format(
                        value=index_file.requires_python, filename=index_file.filename
                    ),
                    V=3,
                )
        return cls(
            project_name=project_name_and_version.canonicalized_project_name,
            version=version,
            file=index_file,
            tags=tags,
            requires_python=requires_python,
        )

    project_name: ProjectName = attr.ib()
    version: Version = attr.ib()
    file: IndexFile = attr.ib()
    tags: Optional[CompatibilityTags] = attr.ib(default=None, eq=False)
    requires_python: Optional[SpecifierSet] = attr.ib(default=None, eq=False)

    @property
    def is_wheel(self) -> bool:
        return self.tags is not None

    @property
    def yanked(self) -> bool:
        return self.file.yanked

    @property
    def locator(self) -> Registry:
        return Registry(
            filename=self.file.filename,
            url=self.file.url,
            yanked=self.file.yanked,
            yanked_reason=self.file.yanked_reason,
        )

    def __str__(self) -> str:
        return self.file.filename


def _split_hash(url: str) -> Tuple[str, Tuple[Tuple[str, str], ...]]:
    parsed = urlparse(url)
    match = re.match(
        r"^(?P<algorithm>sha256|sha384|sha512|md5)=(?P<value>[0-9a-f]+)$", parsed.fragment
    )
    if not match:
        return url, ()
    return (
        parsed._replace(fragment="").geturl(),
        ((match.group("algorithm"), match.group("value")),),
    )


class _LinkParser(HTMLParser):
    """Collects the anchors of a PEP 503 simple repository page."""

    def __init__(self) -> None:
        super().__init__()
        self._current: Optional[Dict[str, Optional[str]]] = None
        self._text: List[str] = []
        self.anchors: List[Tuple[str, Dict[str, Optional[str]]]] = []

    def handle_starttag(self, tag: str, attrs: List[Tuple[str, Optional[str]]]) -> None:
        if tag == "a":
            self._current = dict(attrs)
            self._text = []

    def handle_data(self, data: str) -> None:
        if self._current is not None:
            self._text.append(data)

    def handle_endtag(self, tag: str) -> None:
        if tag == "a" and self._current is not None:
            self.anchors.append(("".join(self._text).strip(), self._current))
            self._current = None


def parse_html_page(base_url: str, html: str) -> List[IndexFile]:
    """Parse the files listed by a PEP 503 HTML page (simple repository or find-links page)."""
    parser = _LinkParser()
    parser.feed(html)
    parser.close()

    index_files = []
    for text, anchor in parser.anchors:
        href = anchor.get("href")
        if not href:
            continue
        url, hashes = _split_hash(urljoin(base_url, href))
        filename = unquote(os.path.basename(urlparse(url).path)) or text
        yanked_reason = anchor.get("data-yanked")
        index_files.append(
            IndexFile(
                filename=filename,
                url=url,
                requires_python=anchor.get("data-requires-python"),
                yanked="data-yanked" in anchor,
                yanked_reason=yanked_reason or None,
                hashes=hashes,
            )
        )
    return index_files


def parse_json_page(base_url: str, data: Mapping[str, Any]) -> List[IndexFile]:
    """Parse the files listed by a PEP 691 JSON simple repository page."""
    index_files = []
    for file_info in data.get("files", ()):
        yanked = file_info.get("yanked", False)
        index_files.append(
            IndexFile(
                filename=file_info["filename"],
                url=urljoin(base_url, file_info["url"]),
                requires_python=file_info.get("requires-python"),
                yanked=bool(yanked),
                yanked_reason=yanked if isinstance(yanked, str) and yanked else None,
                hashes=tuple(sorted(file_info.get("hashes", {}).items())),
            )
        )
    return index_files


_ACCEPT = ", ".join(
    (
        "application/vnd.pypi.simple.v1+json",
        "application/vnd.pypi.simple.v1+html;q=0.2",
        "text/html;q=0.01",
    )
)


def _content_type(header: Optional[str]) -> str:
    message = Message()
    message["content-type"] = header or "text/html"
    return message.get_content_type()


@attr.s(frozen=True)
class SimpleIndex:
    """A PEP 503 / PEP 691 simple repository."""

    url: str = attr.ib()
    fetcher: URLFetcher = attr.ib(eq=False)

    def project_url(self, project_name: ProjectName) -> str:
        return "{base}/{name}/".format(base=self.url.rstrip("/"), name=project_name.normalized)

    def list_files(self, project_name: ProjectName) -> List[IndexFile]:
        url = self.project_url(project_name)
        with TRACER.timed("Fetching index page {url}".format(url=url), V=2):
            try:
                content, content_type = self.fetcher.get_content(url, accept=_ACCEPT)
            except NotFoundError:
                return []
        if _content_type(content_type).endswith("+json"):
            return parse_json_page(url, json.loads(content.decode("utf-8")))
        return parse_html_page(url, content.decode("utf-8"))


@attr.s(frozen=True)
class FindLinks:
    """A flat location listing distribution files: a local directory or an HTML page."""

    location: str = attr.ib()
    fetcher: URLFetcher = attr.ib(eq=False)

    @property
    def is_local(self) -> bool:
        return "://" not in self.location or self.location.startswith("file:")

    def _directory(self) -> str:
        if self.location.startswith("file:"):
            return unquote(urlparse(self.location).path)
        return self.location

    def _all_files(self) -> List[IndexFile]:
        if self.is_local:
            directory = self._directory()
            if not os.path.isdir(directory):
                raise SourceFetchError(
                    "The find-links location {location} is not a directory.".format(
                        location=self.location
                    )
                )
            return [
                IndexFile(filename=entry, url=path_to_url(os.path.join(directory, entry)))
                for entry in sorted(os.listdir(directory))
                if os.path.isfile(os.path.join(directory, entry))
            ]
        with self.fetcher.get_body_iter(self.location) as lines:
            return parse_html_page(self.location, "".join(lines))

    def list_files(self, project_name: ProjectName) -> List[IndexFile]:
        matching = []
        for index_file in self._all_files():
            try:
                name = ProjectNameAndVersion.from_filename(index_file.filename).project_name
            except MetadataError:
                continue
            if ProjectName(name) == project_name:
                matching.append(index_file)
        return matching


class PackageFinder:
    """Lists the candidates for a project across all configured package locations.

    Listings are memoized per project for the lifetime of the finder.
    """

    def __init__(
        self,
        indexes: Iterable[SimpleIndex] = (),
        find_links: Iterable[FindLinks] = (),
    ) -> None:
        self._indexes = tuple(indexes)
        self._find_links = tuple(find_links)
        self._lock = threading.Lock()
        self._listings: Dict[ProjectName, Tuple[Candidate, ...]] = {}

    @property
    def has_indexes(self) -> bool:
        return bool(self._indexes)

    @property
    def has_find_links(self) -> bool:
        return bool(self._find_links)

    def candidates(self, project_name: ProjectName) -> Tuple[Candidate, ...]:
        with self._lock:
            listing = self._listings.get(project_name)
        if listing is not None:
            return listing

        seen = set()
        candidates = []
        for location in self._find_links + self._indexes:  # type: ignore[operator]
            for index_file in location.list_files(project_name):
                if index_file.filename in seen:
                    continue
                seen.add(index_file.filename)
                candidate = Candidate.from_index_file(index_file)
                if candidate is not None and candidate.project_name == project_name:
                    candidates.append(candidate)

        listing = tuple(candidates)
        with self._lock:
            self._listings[project_name] = listing
        return listing
