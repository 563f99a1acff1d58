# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

"""Turning project source trees into wheels.

Invoking arbitrary PEP-517 build backends is left to a `BuildBackend` collaborator. The one
backend provided here, `StaticProjectBackend`, handles the common case of a pure-Python project
that declares all of its core metadata statically in the `[project]` table of its
`pyproject.toml`.
"""

import os
import re
import tarfile
import zipfile
from typing import Iterable, Iterator, List, Optional, Protocol, Tuple

import attr
from packaging.requirements import InvalidRequirement, Requirement
from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from sitesync import toml
from sitesync.common import safe_mkdir
from sitesync.dist_metadata import DistMetadata, is_tar_sdist, is_zip_sdist
from sitesync.exceptions import BuildError
from sitesync.hashing import Sha256
from sitesync.pep_376 import Hash, InstalledFile, Record
from sitesync.pep_503 import ProjectName
from sitesync.tracer import TRACER
from sitesync.version import __version__

_CORE_METADATA_FIELDS = ("version", "dependencies", "requires-python", "scripts", "entry-points")


@attr.s(frozen=True)
class PyProject:
    """The statically declared `[project]` metadata of a `pyproject.toml`.

    See: https://packaging.python.org/en/latest/specifications/pyproject-toml/
    """

    @classmethod
    def load(cls, project_dir: str) -> Optional["PyProject"]:
        pyproject_toml = os.path.join(project_dir, "pyproject.toml")
        if not os.path.isfile(pyproject_toml):
            return None
        try:
            data = toml.load(pyproject_toml)
        except toml.TomlDecodeError as e:
            raise BuildError(
                "Problem parsing toml in {pyproject_toml}: {err}".format(
                    pyproject_toml=pyproject_toml, err=e
                )
            ) from e
        project = data.get("project")
        if not isinstance(project, dict):
            return None
        return cls(
            project_dir=project_dir,
            name=project.get("name"),
            version=project.get("version"),
            dependencies=tuple(project.get("dependencies", ())),
            optional_dependencies=tuple(
                (extra, tuple(requirements))
                for extra, requirements in sorted(project.get("optional-dependencies", {}).items())
            ),
            requires_python=project.get("requires-python"),
            dynamic=tuple(project.get("dynamic", ())),
            scripts=tuple(sorted(project.get("scripts", {}).items())),
            gui_scripts=tuple(sorted(project.get("gui-scripts", {}).items())),
            entry_points=tuple(
                (group, tuple(sorted(entries.items())))
                for group, entries in sorted(project.get("entry-points", {}).items())
            ),
        )

    project_dir: str = attr.ib()
    name: Optional[str] = attr.ib()
    version: Optional[str] = attr.ib()
    dependencies: Tuple[str, ...] = attr.ib(default=())
    optional_dependencies: Tuple[Tuple[str, Tuple[str, ...]], ...] = attr.ib(default=())
    requires_python: Optional[str] = attr.ib(default=None)
    dynamic: Tuple[str, ...] = attr.ib(default=())
    scripts: Tuple[Tuple[str, str], ...] = attr.ib(default=())
    gui_scripts: Tuple[Tuple[str, str], ...] = attr.ib(default=())
    entry_points: Tuple[Tuple[str, Tuple[Tuple[str, str], ...]], ...] = attr.ib(default=())

    @property
    def dynamic_fields(self) -> Tuple[str, ...]:
        return tuple(field for field in _CORE_METADATA_FIELDS if field in self.dynamic)

    def _check_static(self) -> None:
        if not self.name:
            raise BuildError(
                "The project at {project_dir} does not declare a name in its "
                "pyproject.toml.".format(project_dir=self.project_dir)
            )
        if not self.version or self.dynamic_fields:
            raise BuildError(
                "The project at {project_dir} declares dynamic metadata ({fields}); building it "
                "requires a PEP-517 build backend.".format(
                    project_dir=self.project_dir,
                    fields=", ".join(self.dynamic_fields or ("version",)),
                )
            )

    def pkg_info(self) -> str:
        """Render core metadata (the `METADATA` file) for this project."""
        self._check_static()
        try:
            version = Version(str(self.version))
            if self.requires_python is not None:
                SpecifierSet(self.requires_python)
            for dependency in self.dependencies:
                Requirement(dependency)
        except (InvalidVersion, InvalidSpecifier, InvalidRequirement) as e:
            raise BuildError(
                "Invalid metadata in {project_dir}/pyproject.toml: {err}".format(
                    project_dir=self.project_dir, err=e
                )
            ) from e

        lines = [
            "Metadata-Version: 2.1",
            "Name: {name}".format(name=self.name),
            "Version: {version}".format(version=version),
        ]
        if self.requires_python is not None:
            lines.append("Requires-Python: {value}".format(value=self.requires_python))
        lines.extend("Requires-Dist: {req}".format(req=req) for req in self.dependencies)
        for extra, requirements in self.optional_dependencies:
            lines.append("Provides-Extra: {extra}".format(extra=extra))
            for requirement in requirements:
                req = Requirement(requirement)
                marker = 'extra == "{extra}"'.format(extra=extra)
                if req.marker:
                    marker = "({marker}) and {extra_marker}".format(
                        marker=req.marker, extra_marker=marker
                    )
                req.marker = None
                lines.append("Requires-Dist: {req}; {marker}".format(req=req, marker=marker))
        return "\n".join(lines) + "\n"

    def entry_points_txt(self) -> Optional[str]:
        groups: List[Tuple[str, Iterable[Tuple[str, str]]]] = []
        if self.scripts:
            groups.append(("console_scripts", self.scripts))
        if self.gui_scripts:
            groups.append(("gui_scripts", self.gui_scripts))
        groups.extend(self.entry_points)
        if not groups:
            return None
        sections = []
        for group, entries in groups:
            sections.append(
                "[{group}]\n{entries}\n".format(
                    group=group,
                    entries="\n".join(
                        "{name} = {value}".format(name=name, value=value) for name, value in entries
                    ),
                )
            )
        return "\n".join(sections)

    def wheel_stem(self) -> str:
        self._check_static()
        return "{name}-{version}".format(
            name=re.sub(r"[-_.]+", "_", str(self.name)).lower(), version=Version(str(self.version))
        )


class BuildBackend(Protocol):
    """Turns a project source tree into metadata and wheels."""

    def prepare_metadata(self, project_dir: str) -> DistMetadata:
        ...

    def build_wheel(self, project_dir: str, dest_dir: str) -> str:
        """Build a wheel for the project in `dest_dir` and return its path."""
        ...

    def build_editable(self, project_dir: str, dest_dir: str) -> str:
        """Build an editable wheel for the project in `dest_dir` and return its path."""
        ...


_EXCLUDED_TOP_LEVEL = frozenset(("test", "tests", "docs", "build", "dist"))


def _source_root(project_dir: str) -> str:
    src = os.path.join(project_dir, "src")
    return src if os.path.isdir(src) else project_dir


def _iter_package_files(source_root: str) -> Iterator[Tuple[str, str]]:
    """Yield (absolute path, archive path) pairs for the importable code under `source_root`."""
    for entry in sorted(os.listdir(source_root)):
        path = os.path.join(source_root, entry)
        if entry.startswith(".") or entry in _EXCLUDED_TOP_LEVEL:
            continue
        if os.path.isfile(path) and entry.endswith(".py") and entry != "setup.py":
            yield path, entry
        elif os.path.isdir(path) and os.path.isfile(os.path.join(path, "__init__.py")):
            for root, dirs, files in os.walk(path):
                dirs[:] = sorted(d for d in dirs if d != "__pycache__" and not d.startswith("."))
                for f in sorted(files):
                    if f.endswith((".pyc", ".pyo")):
                        continue
                    abs_path = os.path.join(root, f)
                    yield abs_path, os.path.relpath(abs_path, source_root).replace(os.sep, "/")


def _wheel_file(tag: str) -> str:
    return (
        "Wheel-Version: 1.0\n"
        "Generator: sitesync ({version})\n"
        "Root-Is-Purelib: true\n"
        "Tag: {tag}\n"
    ).format(version=__version__, tag=tag)


def _write_wheel(wheel_path: str, entries: Iterable[Tuple[str, bytes]], dist_info: str) -> str:
    installed_files = []
    with zipfile.ZipFile(wheel_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for arcname, data in entries:
            zf.writestr(arcname, data)
            hasher = Sha256()
            hasher.update(data)
            installed_files.append(
                InstalledFile(path=arcname, hash=Hash.create(hasher), size=len(data))
            )
        record_path = "{dist_info}/RECORD".format(dist_info=dist_info)
        installed_files.append(InstalledFile(path=record_path))
        zf.writestr(record_path, Record.write_bytes(installed_files))
    return wheel_path


@attr.s(frozen=True)
class StaticProjectBackend:
    """Builds pure-Python wheels for projects with fully static `pyproject.toml` metadata."""

    @staticmethod
    def _load(project_dir: str) -> PyProject:
        pyproject = PyProject.load(project_dir)
        if pyproject is None:
            raise BuildError(
                "The project at {project_dir} has no [project] table in a pyproject.toml; "
                "building it requires a PEP-517 build backend.".format(project_dir=project_dir)
            )
        return pyproject

    def prepare_metadata(self, project_dir: str) -> DistMetadata:
        pyproject = self._load(project_dir)
        return DistMetadata.from_pkg_info(
            pyproject.pkg_info(),
            source=os.path.join(project_dir, "pyproject.toml"),
            entry_points=pyproject.entry_points_txt(),
        )

    def _metadata_entries(self, pyproject: PyProject, dist_info: str) -> List[Tuple[str, bytes]]:
        entries = [
            ("{}/METADATA".format(dist_info), pyproject.pkg_info().encode("utf-8")),
            ("{}/WHEEL".format(dist_info), _wheel_file("py3-none-any").encode("utf-8")),
        ]
        entry_points_txt = pyproject.entry_points_txt()
        if entry_points_txt:
            entries.append(
                ("{}/entry_points.txt".format(dist_info), entry_points_txt.encode("utf-8"))
            )
        return entries

    def build_wheel(self, project_dir: str, dest_dir: str) -> str:
        pyproject = self._load(project_dir)
        stem = pyproject.wheel_stem()
        dist_info = "{stem}.dist-info".format(stem=stem)
        with TRACER.timed("Building wheel for {project_dir}".format(project_dir=project_dir)):
            entries: List[Tuple[str, bytes]] = []
            for path, arcname in _iter_package_files(_source_root(project_dir)):
                with open(path, "rb") as fp:
                    entries.append((arcname, fp.read()))
            entries.extend(self._metadata_entries(pyproject, dist_info))
            return _write_wheel(
                os.path.join(safe_mkdir(dest_dir), "{stem}-py3-none-any.whl".format(stem=stem)),
                entries,
                dist_info,
            )

    def build_editable(self, project_dir: str, dest_dir: str) -> str:
        pyproject = self._load(project_dir)
        stem = pyproject.wheel_stem()
        dist_info = "{stem}.dist-info".format(stem=stem)
        project_name = ProjectName(str(pyproject.name))
        with TRACER.timed("Building editable for {project_dir}".format(project_dir=project_dir)):
            pth_name = "_{name}_editable.pth".format(
                name=project_name.normalized.replace("-", "_")
            )
            source_root = os.path.realpath(_source_root(project_dir))
            entries = [(pth_name, "{root}\n".format(root=source_root).encode("utf-8"))]
            entries.extend(self._metadata_entries(pyproject, dist_info))
            return _write_wheel(
                os.path.join(safe_mkdir(dest_dir), "{stem}-py3-none-any.whl".format(stem=stem)),
                entries,
                dist_info,
            )


class InvalidSourceDistributionError(BuildError):
    pass


def _check_member_path(archive: str, dest_dir: str, name: str) -> None:
    dest = os.path.realpath(dest_dir)
    target = os.path.realpath(os.path.join(dest, name))
    if os.path.isabs(name) or os.path.commonpath((dest, target)) != dest:
        raise InvalidSourceDistributionError(
            "The source distribution {archive} contains a path outside its root: "
            "{name}".format(archive=archive, name=name)
        )


def unpack_sdist(sdist_path: str, dest_dir: str) -> str:
    """Unpack a source distribution into `dest_dir` and return the path of its project directory."""
    safe_mkdir(dest_dir)
    if is_tar_sdist(sdist_path):
        with tarfile.open(sdist_path) as tf:
            if hasattr(tarfile, "data_filter"):
                tf.extractall(dest_dir, filter="data")
            else:
                for member in tf.getmembers():
                    _check_member_path(sdist_path, dest_dir, member.name)
                    if member.issym() or member.islnk():
                        _check_member_path(
                            sdist_path,
                            dest_dir,
                            os.path.join(os.path.dirname(member.name), member.linkname),
                        )
                tf.extractall(dest_dir)
    elif is_zip_sdist(sdist_path):
        with zipfile.ZipFile(sdist_path) as zf:
            for name in zf.namelist():
                _check_member_path(sdist_path, dest_dir, name)
            zf.extractall(dest_dir)
    else:
        raise InvalidSourceDistributionError(
            "Not a recognized source distribution: {sdist}".format(sdist=sdist_path)
        )

    listing = sorted(os.listdir(dest_dir))
    if len(listing) != 1:
        raise InvalidSourceDistributionError(
            "Expected one top-level project directory to be extracted from {project}, "
            "found {count}: {listing}".format(
                project=sdist_path, count=len(listing), listing=", ".join(listing)
            )
        )

    project_dir = os.path.join(dest_dir, listing[0])
    if not os.path.isdir(project_dir):
        raise InvalidSourceDistributionError(
            "Expected one top-level project directory to be extracted from {project}, "
            "found file: {path}".format(project=sdist_path, path=listing[0])
        )
    return project_dir
