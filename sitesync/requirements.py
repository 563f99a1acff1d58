# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import os
import re
from contextlib import contextmanager
from typing import Iterable, Iterator, List, Match, Optional, Tuple, Union
from urllib.parse import urljoin, urlparse

import attr

from sitesync.exceptions import SitesyncError, SourceFetchError
from sitesync.fetcher import URLFetcher
from sitesync.requirement import InvalidRequirementError, Requirement


@attr.s(frozen=True)
class LogicalLine:
    raw_text: str = attr.ib()
    processed_text: str = attr.ib()
    source: str = attr.ib()
    start_line: int = attr.ib()
    end_line: int = attr.ib()

    def render_location(self) -> str:
        if self.start_line == self.end_line:
            return "{} line {}".format(self.source, self.start_line)
        return "{} lines {}-{}".format(self.source, self.start_line, self.end_line)


class ParseError(SitesyncError):
    def __init__(self, logical_line: LogicalLine, msg: str) -> None:
        super().__init__(
            "{}:\n{}\n{}".format(logical_line.render_location(), logical_line.raw_text, msg)
        )
        self._logical_line = logical_line

    @property
    def logical_line(self) -> LogicalLine:
        return self._logical_line


@attr.s(frozen=True)
class Source:
    @classmethod
    @contextmanager
    def from_url(
        cls, fetcher: URLFetcher, url: str, is_constraints: bool = False
    ) -> Iterator["Source"]:
        with fetcher.get_body_iter(url) as lines:
            yield cls(origin=url, is_file=False, is_constraints=is_constraints, lines=lines)

    @classmethod
    @contextmanager
    def from_file(cls, path: str, is_constraints: bool = False) -> Iterator["Source"]:
        realpath = os.path.realpath(path)
        with open(realpath) as fp:
            yield cls(origin=realpath, is_file=True, is_constraints=is_constraints, lines=fp)

    @classmethod
    def from_text(
        cls, contents: str, origin: str = "<string>", is_constraints: bool = False
    ) -> "Source":
        return cls(
            origin=origin,
            is_file=False,
            is_constraints=is_constraints,
            lines=iter(contents.splitlines(True)),  # This is keepends=True.
        )

    origin: str = attr.ib()
    is_file: bool = attr.ib()
    is_constraints: bool = attr.ib()
    lines: Iterator[str] = attr.ib()

    @contextmanager
    def resolve(
        self,
        line: LogicalLine,
        origin: str,
        is_constraints: bool = False,
        fetcher: Optional[URLFetcher] = None,
    ) -> Iterator["Source"]:
        def create_parse_error(msg: str) -> ParseError:
            return ParseError(
                line,
                "Problem resolving {} file: {}".format(
                    "constraints" if is_constraints else "requirements", msg
                ),
            )

        url = urlparse(urljoin(self.origin, origin))
        if url.scheme and url.netloc:
            if fetcher is None:
                raise create_parse_error(
                    "The source is a url but no fetcher was supplied to resolve its contents with."
                )
            try:
                with self.from_url(fetcher, origin, is_constraints=is_constraints) as source:
                    yield source
            except SourceFetchError as e:
                raise create_parse_error(str(e))
            return

        path = url.path if url.scheme == "file" else origin
        if self.is_file and not os.path.isabs(path):
            path = os.path.join(os.path.dirname(self.origin), path)
        try:
            with self.from_file(path, is_constraints=is_constraints) as source:
                yield source
        except (IOError, OSError) as e:
            raise create_parse_error(str(e))


@attr.s(frozen=True)
class ParsedRequirement:
    line: LogicalLine = attr.ib()
    requirement: Requirement = attr.ib()


@attr.s(frozen=True)
class Constraint:
    line: LogicalLine = attr.ib()
    requirement: Requirement = attr.ib()


@attr.s(frozen=True)
class IndexUrl:
    line: LogicalLine = attr.ib()
    url: str = attr.ib()


@attr.s(frozen=True)
class ExtraIndexUrl:
    line: LogicalLine = attr.ib()
    url: str = attr.ib()


@attr.s(frozen=True)
class FindLinks:
    line: LogicalLine = attr.ib()
    location: str = attr.ib()


@attr.s(frozen=True)
class NoIndex:
    line: LogicalLine = attr.ib()


RequirementsItem = Union[ParsedRequirement, Constraint, IndexUrl, ExtraIndexUrl, FindLinks, NoIndex]


def _strip_requirement_options(line: LogicalLine) -> Tuple[bool, str]:
    processed_text = re.sub(r"^\s*(-e|--editable)(\s+|=)", "", line.processed_text)
    editable = processed_text != line.processed_text
    return editable, re.sub(
        r"\s--(global-option|install-option|hash|config-settings).*$", "", processed_text
    )


def _parse_requirement_line(line: LogicalLine, basepath: Optional[str] = None) -> Requirement:
    editable, processed_text = _strip_requirement_options(line)
    try:
        return Requirement.parse(processed_text, basedir=basepath, editable=editable)
    except InvalidRequirementError as e:
        raise ParseError(line, str(e))


def _expand_env_var(line: LogicalLine, match: Match) -> str:
    env_var_name = match.group(1)
    value = os.environ.get(env_var_name)
    if value is None:
        raise ParseError(line, "No value for environment variable ${} is set.".format(env_var_name))
    return value


def _expand_env_vars(line: LogicalLine) -> str:
    # Lowercase variable names are accepted too, unlike in POSIX.
    # See: https://pubs.opengroup.org/onlinepubs/007908799/xbd/envvar.html

    def expand_env_var(match: Match) -> str:
        return _expand_env_var(line, match)

    return re.sub(r"\${([A-Za-z0-9_]+)}", expand_env_var, line.processed_text)


def _get_parameter(line: LogicalLine) -> str:
    split_line = line.processed_text.split("=", 1)
    if len(split_line) != 2 or " " in split_line[0]:
        split_line = line.processed_text.split()
    if len(split_line) != 2:
        raise ParseError(line, "Unrecognized parameter format.")
    return split_line[1].strip()


def _is_option(processed_text: str, *names: str) -> bool:
    return any(re.match(r"^{}(\s|=|$)".format(re.escape(name)), processed_text) for name in names)


def parse_requirements(
    source: Source, fetcher: Optional[URLFetcher] = None
) -> Iterator[RequirementsItem]:
    """Parse a pip-style requirements file.

    For the format specification, see:
      https://pip.pypa.io/en/stable/reference/requirements-file-format/
    """

    start_line = 0
    line_buffer: List[str] = []
    logical_line_buffer: List[str] = []

    for line_no, line in enumerate(source.lines, start=1):
        if start_line == 0:
            start_line = line_no
        line_buffer.append(line)
        stripped_line = line.strip()

        # Process line continuations first.
        if re.search(r"(^|[^\\])\\$", stripped_line):
            logical_line_buffer.append(stripped_line[:-1])
            continue

        end_line = line_no
        logical_line_buffer.append(stripped_line)

        # Strip comment lines and trailing comments from non-comment lines.
        logical_line_stripped = re.sub(r"(^|\s+)#.*$", "", "".join(logical_line_buffer))
        logical_line = LogicalLine(
            raw_text="".join(line_buffer),
            processed_text=logical_line_stripped,
            source=source.origin,
            start_line=start_line,
            end_line=end_line,
        )
        logical_line = attr.evolve(logical_line, processed_text=_expand_env_vars(logical_line))
        try:
            processed_text = logical_line.processed_text

            # Recurse on any other requirement or constraint files.
            requirement_file = _is_option(processed_text, "-r", "--requirement")
            constraint_file = not requirement_file and _is_option(
                processed_text, "-c", "--constraint"
            )
            if requirement_file or constraint_file:
                relpath = _get_parameter(logical_line)
                with source.resolve(
                    line=logical_line,
                    origin=relpath,
                    is_constraints=constraint_file,
                    fetcher=fetcher,
                ) as other_source:
                    for item in parse_requirements(other_source, fetcher=fetcher):
                        yield item
                continue

            if _is_option(processed_text, "-i", "--index-url"):
                yield IndexUrl(logical_line, _get_parameter(logical_line))
                continue
            if _is_option(processed_text, "--extra-index-url"):
                yield ExtraIndexUrl(logical_line, _get_parameter(logical_line))
                continue
            if _is_option(processed_text, "-f", "--find-links"):
                location = _get_parameter(logical_line)
                if source.is_file and "://" not in location and not os.path.isabs(location):
                    location = os.path.join(os.path.dirname(source.origin), location)
                yield FindLinks(logical_line, location)
                continue
            if _is_option(processed_text, "--no-index"):
                yield NoIndex(logical_line)
                continue

            # Skip empty lines, comment lines and all other pip options.
            if not processed_text or (
                processed_text.startswith("-")
                and not _is_option(processed_text, "-e", "--editable")
            ):
                continue

            # Only requirement lines remain.
            requirement = _parse_requirement_line(
                logical_line, basepath=os.path.dirname(source.origin) if source.is_file else None
            )
            if source.is_constraints:
                if requirement.locator.render() is not None or requirement.extras:
                    raise ParseError(
                        logical_line,
                        "Constraint files do not support VCS, URL or local project requirements "
                        "and they do not support requirements with extras.",
                    )
                yield Constraint(logical_line, requirement)
            else:
                yield ParsedRequirement(logical_line, requirement)
        finally:
            start_line = 0
            del line_buffer[:]
            del logical_line_buffer[:]


def parse_requirement_file(
    location: str, is_constraints: bool = False, fetcher: Optional[URLFetcher] = None
) -> Iterator[RequirementsItem]:
    def open_source():
        url = urlparse(location)
        if url.scheme and url.netloc:
            if fetcher is None:
                raise ValueError(
                    "The location is a url but no fetcher was supplied to resolve its contents "
                    "with."
                )
            return Source.from_url(fetcher=fetcher, url=location, is_constraints=is_constraints)

        path = url.path if url.scheme == "file" else location
        return Source.from_file(path=path, is_constraints=is_constraints)

    with open_source() as source:
        for item in parse_requirements(source, fetcher=fetcher):
            yield item


def parse_requirement_strings(requirements: Iterable[str]) -> Iterator[Requirement]:
    for requirement in requirements:
        yield _parse_requirement_line(
            LogicalLine(
                raw_text=requirement,
                processed_text=requirement.strip(),
                source="<string>",
                start_line=1,
                end_line=1,
            )
        )


@attr.s(frozen=True)
class RequirementsConfiguration:
    """The requirements, constraints and package locations gathered from requirements files."""

    @classmethod
    def collect(cls, items: Iterable[RequirementsItem]) -> "RequirementsConfiguration":
        requirements: List[Requirement] = []
        constraints: List[Requirement] = []
        index_url: Optional[str] = None
        extra_index_urls: List[str] = []
        find_links: List[str] = []
        no_index = False
        for item in items:
            if isinstance(item, ParsedRequirement):
                requirements.append(item.requirement)
            elif isinstance(item, Constraint):
                constraints.append(item.requirement)
            elif isinstance(item, IndexUrl):
                index_url = item.url
            elif isinstance(item, ExtraIndexUrl):
                extra_index_urls.append(item.url)
            elif isinstance(item, FindLinks):
                find_links.append(item.location)
            elif isinstance(item, NoIndex):
                no_index = True
        return cls(
            requirements=tuple(requirements),
            constraints=tuple(constraints),
            index_url=index_url,
            extra_index_urls=tuple(extra_index_urls),
            find_links=tuple(find_links),
            no_index=no_index,
        )

    requirements: Tuple[Requirement, ...] = attr.ib(default=())
    constraints: Tuple[Requirement, ...] = attr.ib(default=())
    index_url: Optional[str] = attr.ib(default=None)
    extra_index_urls: Tuple[str, ...] = attr.ib(default=())
    find_links: Tuple[str, ...] = attr.ib(default=())
    no_index: bool = attr.ib(default=False)
