# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import os
import re
import zipfile
from collections import defaultdict
from email.message import Message
from email.parser import Parser
from io import StringIO
from typing import DefaultDict, Dict, Iterable, Iterator, List, Optional, Tuple, Union

import attr
from packaging.requirements import InvalidRequirement, Requirement
from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from sitesync.pep_503 import ProjectName


class MetadataError(Exception):
    """Indicates an error reading distribution metadata."""


class UnrecognizedDistributionFormat(MetadataError):
    """Indicates a distribution file is not of any recognized format."""


class MetadataNotFoundError(MetadataError):
    """Indicates an expected metadata file could not be found for a given distribution."""


class InvalidMetadataError(MetadataError):
    """Indicates a metadata value that is invalid."""


def is_tar_sdist(path: str) -> bool:
    # N.B.: PEP-625 (https://peps.python.org/pep-0625/) says sdists must use .tar.gz, but older
    # formats still turn up in the wild.
    return path.lower().endswith((".tar.gz", ".tgz", ".tar.bz2"))


def is_zip_sdist(path: str) -> bool:
    return path.lower().endswith(".zip")


def is_sdist(path: str) -> bool:
    return is_tar_sdist(path) or is_zip_sdist(path)


def is_wheel(path: str) -> bool:
    return path.lower().endswith(".whl")


def is_archive(path: str) -> bool:
    return is_wheel(path) or is_sdist(path)


def _strip_sdist_path(sdist_path: str) -> Optional[str]:
    if not is_sdist(sdist_path):
        return None

    sdist_basename = os.path.basename(sdist_path)
    filename, _ = os.path.splitext(sdist_basename)
    if filename.lower().endswith(".tar"):
        filename, _ = os.path.splitext(filename)
    return filename


def parse_message(message: Union[bytes, str]) -> Message:
    text = message.decode("utf-8") if isinstance(message, bytes) else message
    return Parser().parse(StringIO(text))


@attr.s(frozen=True)
class ProjectNameAndVersion:
    @classmethod
    def from_parsed_pkg_info(cls, source: str, pkg_info: Message) -> "ProjectNameAndVersion":
        project_name = pkg_info.get("Name", None)
        version = pkg_info.get("Version", None)
        if project_name is None or version is None:
            raise MetadataError(
                "The 'Name' and 'Version' fields are not both present in package metadata for "
                "{source}:\n{fields}".format(
                    source=source,
                    fields="\n".join("{}: {}".format(k, v) for k, v in pkg_info.items()),
                )
            )
        return cls(project_name=project_name, version=version)

    @classmethod
    def from_filename(cls, path: str) -> "ProjectNameAndVersion":
        # Handle wheels:
        #
        # The wheel filename convention is specified here:
        #   https://www.python.org/dev/peps/pep-0427/#file-name-convention.
        if is_wheel(path):
            components = os.path.basename(path).split("-", 2)
            if len(components) == 3:
                project_name, version, _ = components
                return cls(project_name=project_name, version=version)

        # Handle sdists:
        #
        # The sdist name format is specified here:
        #   https://www.python.org/dev/peps/pep-0625/#specification.
        #
        # Un-normalized versions can contain dashes; for those cases this logic produces incorrect
        # results since both project names and versions can contain dashes.
        fname = _strip_sdist_path(path)
        if fname is not None:
            components = fname.rsplit("-", 1)
            if len(components) == 2:
                project_name, version = components
                return cls(project_name=project_name, version=version)

        raise UnrecognizedDistributionFormat(
            "The distribution at path {!r} does not have a file name matching known sdist or wheel "
            "file name formats.".format(path)
        )

    project_name: str = attr.ib()
    version: str = attr.ib()

    @property
    def canonicalized_project_name(self) -> ProjectName:
        return ProjectName(self.project_name)

    @property
    def canonicalized_version(self) -> Version:
        return Version(self.version)


@attr.s(frozen=True)
class ModuleEntryPoint:
    module: str = attr.ib()

    def __str__(self) -> str:
        return self.module


@attr.s(frozen=True)
class CallableEntryPoint:
    module: str = attr.ib()
    attrs: Tuple[str, ...] = attr.ib()

    @attrs.validator
    def _validate_attrs(self, _, value):
        if not value:
            raise ValueError("A callable entry point must select a callable item from the module.")

    def __str__(self) -> str:
        return "{module}:{attrs}".format(module=self.module, attrs=".".join(self.attrs))


def parse_entry_point(value: str) -> Union[ModuleEntryPoint, CallableEntryPoint]:
    # The format of the value of an entry point (minus the name part), is specified here:
    #   https://packaging.python.org/en/latest/specifications/entry-points/#file-format

    # Extras in brackets are deprecated and ignored.
    value = re.sub(r"\[.*\]\s*$", "", str(value)).strip()
    module, sep, attrs = value.partition(":")
    if sep:
        if not attrs:
            raise ValueError("Invalid entry point specification: {value}.".format(value=value))
        return CallableEntryPoint(module=module.strip(), attrs=tuple(attrs.strip().split(".")))
    return ModuleEntryPoint(module=module)


@attr.s(frozen=True)
class NamedEntryPoint:
    @classmethod
    def parse(cls, spec: str) -> "NamedEntryPoint":
        # This file format is defined here:
        #   https://packaging.python.org/en/latest/specifications/entry-points/#file-format

        components = spec.split("=")
        if len(components) != 2:
            raise ValueError("Invalid entry point specification: {spec}.".format(spec=spec))

        name, value = components
        entry_point = parse_entry_point(value)
        return cls(name=name.strip(), entry_point=entry_point)

    name: str = attr.ib()
    entry_point: Union[ModuleEntryPoint, CallableEntryPoint] = attr.ib()

    def __str__(self) -> str:
        return "{name}={entry_point}".format(name=self.name, entry_point=self.entry_point)


def _read_metadata_lines(metadata: Union[bytes, str]) -> Iterator[str]:
    text = metadata.decode("utf-8") if isinstance(metadata, bytes) else metadata
    for line in text.splitlines():
        normalized = line.strip()
        if normalized and not normalized.startswith(("#", ";")):
            yield normalized


def parse_entry_map(
    entry_points_contents: Union[bytes, str]
) -> Dict[str, Dict[str, NamedEntryPoint]]:
    # This file format is defined here:
    #   https://packaging.python.org/en/latest/specifications/entry-points/#file-format

    entry_map: DefaultDict[str, Dict[str, NamedEntryPoint]] = defaultdict(dict)
    group: Optional[str] = None
    for index, line in enumerate(_read_metadata_lines(entry_points_contents), start=1):
        if line.startswith("[") and line.endswith("]"):
            group = line[1:-1]
        elif not group:
            raise ValueError(
                "Failed to parse entry_points.txt, encountered an entry point with no "
                "group on line {index}: {line}".format(index=index, line=line)
            )
        else:
            entry_point = NamedEntryPoint.parse(line)
            entry_map[group][entry_point.name] = entry_point
    return entry_map


def dist_info_name(project_name: Union[str, ProjectName], version: Union[str, Version]) -> str:
    """The `.dist-info` directory name for the given project as specified by PEP-427."""
    name = project_name.raw if isinstance(project_name, ProjectName) else project_name
    return "{name}-{version}.dist-info".format(
        name=re.sub(r"[-_.]+", "_", name).lower(), version=version
    )


def find_dist_info_dir(directory: str, project_name: Optional[ProjectName] = None) -> str:
    """Find the name of the single top-level `.dist-info` directory in `directory`.

    :param directory: A directory holding an unpacked wheel or a site-packages directory.
    :param project_name: The project to look for when `directory` holds more than one.
    """
    candidates: List[str] = []
    for entry in sorted(os.listdir(directory)):
        if not entry.endswith(".dist-info") or entry.startswith("."):
            continue
        if not os.path.isdir(os.path.join(directory, entry)):
            continue
        if project_name is not None:
            name, _, _ = entry[: -len(".dist-info")].partition("-")
            if ProjectName(name) != project_name:
                continue
        candidates.append(entry)
    if len(candidates) != 1:
        raise MetadataNotFoundError(
            "Expected exactly one .dist-info directory{for_project} in {directory}, found "
            "{count}.".format(
                for_project=" for {}".format(project_name) if project_name else "",
                directory=directory,
                count=len(candidates),
            )
        )
    return candidates[0]


def _parse_requires_python(source: str, value: Optional[str]) -> Optional[SpecifierSet]:
    if value is None:
        return None
    try:
        return SpecifierSet(value)
    except InvalidSpecifier as e:
        raise InvalidMetadataError(
            "Invalid Requires-Python metadata found in {source} {value!r}: {err}".format(
                source=source, value=value, err=e
            )
        )


def _parse_requires_dists(source: str, values: Iterable[str]) -> Iterator[Requirement]:
    for value in values:
        try:
            yield Requirement(value)
        except InvalidRequirement as e:
            raise InvalidMetadataError(
                "Invalid Requires-Dist metadata found in {source} {value!r}: {err}".format(
                    source=source, value=value, err=e
                )
            )


@attr.s(frozen=True, cache_hash=True)
class DistMetadata:
    """The core metadata of a distribution that sitesync needs to resolve and install it."""

    @classmethod
    def from_pkg_info(
        cls,
        pkg_info: Union[bytes, str, Message],
        source: str = "<parsed message>",
        entry_points: Optional[Union[bytes, str]] = None,
    ) -> "DistMetadata":
        message = pkg_info if isinstance(pkg_info, Message) else parse_message(pkg_info)
        name_and_version = ProjectNameAndVersion.from_parsed_pkg_info(source, message)
        try:
            version = Version(name_and_version.version)
        except InvalidVersion as e:
            raise InvalidMetadataError(
                "Invalid Version metadata found in {source}: {err}".format(source=source, err=e)
            )
        entry_map = parse_entry_map(entry_points) if entry_points else {}
        return cls(
            project_name=ProjectName(name_and_version.project_name),
            version=version,
            requires_dists=tuple(
                _parse_requires_dists(source, message.get_all("Requires-Dist") or ())
            ),
            requires_python=_parse_requires_python(source, message.get("Requires-Python")),
            entry_points=tuple(
                (group, entry_point)
                for group, entry_points_by_name in sorted(entry_map.items())
                for _, entry_point in sorted(entry_points_by_name.items())
            ),
        )

    @classmethod
    def from_dist_info_dir(cls, dist_info_dir: str) -> "DistMetadata":
        metadata_path = os.path.join(dist_info_dir, "METADATA")
        if not os.path.isfile(metadata_path):
            raise MetadataNotFoundError(
                "No METADATA file found in {dist_info_dir}".format(dist_info_dir=dist_info_dir)
            )
        with open(metadata_path, "rb") as fp:
            pkg_info = fp.read()
        entry_points: Optional[bytes] = None
        entry_points_path = os.path.join(dist_info_dir, "entry_points.txt")
        if os.path.isfile(entry_points_path):
            with open(entry_points_path, "rb") as fp:
                entry_points = fp.read()
        return cls.from_pkg_info(pkg_info, source=dist_info_dir, entry_points=entry_points)

    @classmethod
    def from_wheel(cls, wheel_path: str) -> "DistMetadata":
        with zipfile.ZipFile(wheel_path) as zf:
            dist_info_dirs = sorted(
                {
                    name.split("/", 1)[0]
                    for name in zf.namelist()
                    if "/" in name and name.split("/", 1)[0].endswith(".dist-info")
                }
            )
            if len(dist_info_dirs) != 1:
                raise MetadataNotFoundError(
                    "Expected exactly one .dist-info directory in {wheel}, found {count}.".format(
                        wheel=wheel_path, count=len(dist_info_dirs)
                    )
                )
            dist_info_dir = dist_info_dirs[0]
            try:
                pkg_info = zf.read("{}/METADATA".format(dist_info_dir))
            except KeyError:
                raise MetadataNotFoundError(
                    "No {dist_info_dir}/METADATA found in {wheel}".format(
                        dist_info_dir=dist_info_dir, wheel=wheel_path
                    )
                )
            try:
                entry_points: Optional[bytes] = zf.read(
                    "{}/entry_points.txt".format(dist_info_dir)
                )
            except KeyError:
                entry_points = None
        return cls.from_pkg_info(pkg_info, source=wheel_path, entry_points=entry_points)

    project_name: ProjectName = attr.ib()
    version: Version = attr.ib()
    requires_dists: Tuple[Requirement, ...] = attr.ib(default=())
    requires_python: Optional[SpecifierSet] = attr.ib(default=None)
    entry_points: Tuple[Tuple[str, NamedEntryPoint], ...] = attr.ib(default=())

    def get_entry_map(self) -> Dict[str, Dict[str, NamedEntryPoint]]:
        entry_map: DefaultDict[str, Dict[str, NamedEntryPoint]] = defaultdict(dict)
        for group, entry_point in self.entry_points:
            entry_map[group][entry_point.name] = entry_point
        return entry_map

    def __str__(self) -> str:
        return "{project_name} {version}".format(
            project_name=self.project_name.raw, version=self.version
        )
