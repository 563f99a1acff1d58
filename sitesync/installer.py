# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

"""Applying an installation plan to a target environment.

Installs link files out of the unpacked wheels held in the artifact cache rather than unpacking
wheels afresh; so installing a distribution a second time, in the same or another environment,
costs no more than creating directory entries.

A distribution's `RECORD` is always written last and removed first. An environment therefore
only ever lists distributions whose files are all in place, no matter where an install or
uninstall is interrupted.
"""

import json
import os
import re
import shutil
from typing import Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Tuple
from uuid import uuid4

import attr

from sitesync import jobs
from sitesync.cache.artifacts import CacheEntry
from sitesync.common import (
    LinkMode,
    chmod_plus_x,
    link_file,
    prune_empty_dirs,
    safe_delete,
    safe_open,
    safe_rmtree,
)
from sitesync.dist_metadata import find_dist_info_dir, is_wheel
from sitesync.distribution import Distribution
from sitesync.entry_points_txt import install_scripts, script_name
from sitesync.exceptions import (
    ArtifactMismatchError,
    IncompatibleArtifactError,
    InstallError,
    SitesyncError,
)
from sitesync.inventory import DIRECT_URL_JSON, INSTALL_JSON, InstalledDistribution, install_json
from sitesync.locators import as_direct_url_json
from sitesync.pep_376 import InstalledFile, Record, RecordError, create_installed_file
from sitesync.pep_503 import ProjectName
from sitesync.planner import InstallationPlan
from sitesync.target import TargetEnvironment
from sitesync.tracer import TRACER

INSTALLER = "sitesync"

# These .dist-info files are generated for each install; never linked from the wheel.
_GENERATED_METADATA = frozenset(
    ("RECORD", "INSTALLER", "REQUESTED", DIRECT_URL_JSON, INSTALL_JSON)
)

_PYTHON_SHEBANG_RE = re.compile(br"^#!pythonw?(?P<args>\s.*)?$")


def _iter_wheel_files(unpacked_dir: str) -> Iterator[str]:
    for root, dirs, files in os.walk(unpacked_dir):
        dirs.sort()
        for path in sorted(files):
            yield os.path.relpath(os.path.join(root, path), unpacked_dir)


def _rewrite_script(src: str, dst: str, binary: str) -> bool:
    """Copy a `#!python` script from `src` to `dst` with its shebang pointed at `binary`.

    :return: `False` if `src` is not such a script; nothing is written in that case.
    """
    with open(src, "rb") as in_fp:
        match = _PYTHON_SHEBANG_RE.match(in_fp.readline().rstrip(b"\r\n"))
        if not match:
            return False
        safe_delete(dst)
        with safe_open(dst, "wb") as out_fp:
            out_fp.write(
                "#!{binary}{args}\n".format(
                    binary=binary, args=(match.group("args") or b"").decode("utf-8")
                ).encode("utf-8")
            )
            shutil.copyfileobj(in_fp, out_fp)
    chmod_plus_x(dst)
    return True


def _check_installable(
    distribution: Distribution, entry: CacheEntry, environment: TargetEnvironment
) -> None:
    target = environment.target
    if is_wheel(entry.filename) and not target.is_compatible(entry.filename):
        raise IncompatibleArtifactError(
            "The wheel {filename} is not compatible with the target interpreter {target}.".format(
                filename=entry.filename, target=target
            )
        )
    if entry.metadata.project_name != distribution.project_name:
        raise ArtifactMismatchError(
            "Wheel name does not match requested name: {actual} != {expected}".format(
                actual=entry.metadata.project_name, expected=distribution.project_name
            )
        )
    if entry.metadata.version != distribution.version:
        raise ArtifactMismatchError(
            "Wheel version does not match filename: {actual} != {expected}".format(
                actual=entry.metadata.version, expected=distribution.version
            )
        )


def install(
    distribution: Distribution,
    entry: CacheEntry,
    environment: TargetEnvironment,
    link_mode: LinkMode.Value = LinkMode.default(),
) -> Tuple[str, ...]:
    """Install a distribution from its cached wheel.

    See: https://packaging.python.org/en/latest/specifications/binary-distribution-format/

    :return: The absolute paths of the files installed.
    :raise: :class:`IncompatibleArtifactError` or :class:`ArtifactMismatchError` before any file
            is written.
    """
    _check_installable(distribution, entry, environment)

    site_packages = environment.site_packages
    unpacked_dir = entry.unpacked_dir
    dist_info_dir = find_dist_info_dir(unpacked_dir, project_name=distribution.project_name)
    data_dir = dist_info_dir[: -len(".dist-info")] + ".data"
    scheme = {
        "purelib": site_packages,
        "platlib": site_packages,
        "scripts": environment.scripts_dir,
        "data": environment.root,
        "headers": environment.headers_dir(distribution.project_name.raw),
    }
    entry_point_scripts = frozenset(
        script_name(named_entry_point)
        for group in ("console_scripts", "gui_scripts")
        for named_entry_point in entry.metadata.get_entry_map().get(group, {}).values()
    )

    installed: List[str] = []
    with TRACER.timed("Installing {dist}".format(dist=distribution), V=2):
        for rel_path in _iter_wheel_files(unpacked_dir):
            src = os.path.join(unpacked_dir, rel_path)
            components = rel_path.split(os.sep)
            if (
                len(components) == 2
                and components[0] == dist_info_dir
                and components[1] in _GENERATED_METADATA
            ):
                continue
            if components[0] == data_dir and len(components) > 2:
                key = components[1]
                if key not in scheme:
                    raise InstallError(
                        "The wheel {filename} has a file with no known install location: "
                        "{path}".format(filename=entry.filename, path=rel_path)
                    )
                dst = os.path.join(scheme[key], *components[2:])
                if key == "scripts":
                    if components[-1] in entry_point_scripts:
                        # Launchers for these are generated below.
                        continue
                    if _rewrite_script(src, dst, environment.target.binary):
                        installed.append(dst)
                        continue
            else:
                dst = os.path.join(site_packages, rel_path)
            link_file(src, dst, link_mode)
            installed.append(dst)

        installed.extend(
            install_scripts(environment.scripts_dir, entry.metadata, target=environment.target)
        )

        dist_info_path = os.path.join(site_packages, dist_info_dir)
        metadata_files = {"INSTALLER": INSTALLER + "\n", "REQUESTED": ""}
        direct_url = as_direct_url_json(distribution.locator)
        if direct_url is not None:
            metadata_files[DIRECT_URL_JSON] = json.dumps(direct_url, sort_keys=True)
        metadata_files[INSTALL_JSON] = json.dumps(install_json(distribution), sort_keys=True)
        for name, content in metadata_files.items():
            path = os.path.join(dist_info_path, name)
            safe_delete(path)
            with safe_open(path, "w") as fp:
                fp.write(content)
            installed.append(path)

        record_path = os.path.join(dist_info_path, "RECORD")
        installed_files = [create_installed_file(path, site_packages) for path in installed]
        installed_files.append(
            InstalledFile(path=os.path.relpath(record_path, site_packages).replace(os.sep, "/"))
        )
        safe_delete(record_path)
        Record.write(record_path, installed_files)

    return tuple(installed)


def _iter_bytecode(path: str) -> Iterator[str]:
    if not path.endswith(".py"):
        return
    pycache = os.path.join(os.path.dirname(path), "__pycache__")
    if not os.path.isdir(pycache):
        return
    stem = os.path.basename(path)[: -len(".py")] + "."
    for name in os.listdir(pycache):
        if name.startswith(stem) and name.endswith(".pyc"):
            yield os.path.join(pycache, name)


def uninstall(installed: InstalledDistribution, environment: TargetEnvironment) -> int:
    """Remove an installed distribution's files.

    The `.dist-info` directory is moved aside before anything else so the distribution stops
    being listed as installed at once.

    :return: The number of files removed.
    """
    site_packages = environment.site_packages
    try:
        record = Record.load(site_packages, installed.dist_info_dir)
        paths = list(record.iter_absolute_paths())
    except RecordError as e:
        raise InstallError(
            "Cannot uninstall {dist}: {err}".format(dist=installed.distribution.pin(), err=e)
        ) from e

    dist_info_path = os.path.join(site_packages, installed.dist_info_dir)
    trash = os.path.join(
        site_packages,
        ".{dist_info_dir}.{unique}.uninstalling".format(
            dist_info_dir=installed.dist_info_dir, unique=uuid4().hex
        ),
    )
    os.rename(dist_info_path, trash)

    removed = 0
    with TRACER.timed("Uninstalling {dist}".format(dist=installed.distribution), V=2):
        for path in paths:
            if os.path.commonpath((dist_info_path, path)) == dist_info_path:
                removed += 1
                continue
            for pyc in _iter_bytecode(path):
                safe_delete(pyc)
            if os.path.lexists(path):
                safe_delete(path)
                removed += 1
            parent = os.path.dirname(path)
            pycache = os.path.join(parent, "__pycache__")
            if os.path.isdir(pycache):
                prune_empty_dirs(pycache, site_packages)
            if os.path.commonpath((site_packages, parent)) == site_packages:
                prune_empty_dirs(parent, site_packages)
        safe_rmtree(trash)
    return removed


@attr.s(frozen=True)
class ApplyReport:
    uninstalled: Tuple[Distribution, ...] = attr.ib(default=())
    installed: Tuple[Distribution, ...] = attr.ib(default=())
    errors: Tuple[InstallError, ...] = attr.ib(default=())
    installed_files: Tuple[str, ...] = attr.ib(default=())

    @property
    def python_files(self) -> Tuple[str, ...]:
        return tuple(path for path in self.installed_files if path.endswith(".py"))


@attr.s(frozen=True)
class _Change:
    project_name: ProjectName = attr.ib()
    old: Optional[InstalledDistribution] = attr.ib()
    new: Optional[Distribution] = attr.ib()
    entry: Optional[CacheEntry] = attr.ib()


@attr.s(frozen=True)
class _Outcome:
    change: _Change = attr.ib()
    uninstalled: bool = attr.ib(default=False)
    installed_files: Optional[Tuple[str, ...]] = attr.ib(default=None)
    error: Optional[InstallError] = attr.ib(default=None)


def _apply_change(
    change: _Change, environment: TargetEnvironment, link_mode: LinkMode.Value
) -> _Outcome:
    # Uninstall happens-before install for a given project; so its files never collide.
    uninstalled = False
    if change.old is not None:
        try:
            uninstall(change.old, environment)
        except (SitesyncError, OSError) as e:
            error = InstallError(
                "Failed to uninstall: {dist}".format(dist=change.old.distribution)
            )
            error.__cause__ = e
            return _Outcome(change=change, error=error)
        uninstalled = True

    if change.new is None:
        return _Outcome(change=change, uninstalled=uninstalled)

    assert change.entry is not None
    try:
        installed_files = install(change.new, change.entry, environment, link_mode)
    except (SitesyncError, OSError) as e:
        error = InstallError(
            "Failed to install: {filename} ({dist})".format(
                filename=change.entry.filename, dist=change.new
            )
        )
        error.__cause__ = e
        return _Outcome(change=change, uninstalled=uninstalled, error=error)
    return _Outcome(change=change, uninstalled=uninstalled, installed_files=installed_files)


def apply(
    plan: InstallationPlan,
    environment: TargetEnvironment,
    installed: Iterable[InstalledDistribution],
    entries: Mapping[ProjectName, CacheEntry],
    link_mode: LinkMode.Value = LinkMode.default(),
    max_jobs: Optional[int] = None,
) -> ApplyReport:
    """Carry out a plan, project by project in parallel.

    A failure to install or uninstall one project does not stop the others; failures are
    collected in the returned report.
    """
    installed_by_name: Dict[ProjectName, InstalledDistribution] = {
        installed_distribution.project_name: installed_distribution
        for installed_distribution in installed
    }
    old_names: FrozenSet[ProjectName] = frozenset(dist.project_name for dist in plan.to_uninstall)
    new_by_name = {dist.project_name: dist for dist in plan.to_install}

    changes = []
    for project_name in sorted(old_names | frozenset(new_by_name)):
        new = new_by_name.get(project_name)
        changes.append(
            _Change(
                project_name=project_name,
                old=installed_by_name[project_name] if project_name in old_names else None,
                new=new,
                entry=entries.get(project_name) if new else None,
            )
        )

    outcomes = sorted(
        jobs.map_parallel(
            inputs=changes,
            function=lambda change: _apply_change(change, environment, link_mode),
            max_jobs=max_jobs,
            noun="distribution",
            verb="install",
            verb_past="installed",
        ),
        key=lambda outcome: outcome.change.project_name,
    )

    uninstalled = []
    installed_dists = []
    errors = []
    installed_files = []
    for outcome in outcomes:
        if outcome.uninstalled:
            assert outcome.change.old is not None
            uninstalled.append(outcome.change.old.distribution)
        if outcome.installed_files is not None:
            assert outcome.change.new is not None
            installed_dists.append(outcome.change.new)
            installed_files.extend(outcome.installed_files)
        if outcome.error is not None:
            errors.append(outcome.error)
    return ApplyReport(
        uninstalled=tuple(uninstalled),
        installed=tuple(installed_dists),
        errors=tuple(errors),
        installed_files=tuple(installed_files),
    )
