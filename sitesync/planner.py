# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

from typing import Dict, FrozenSet, Iterable, Set, Tuple

import attr

from sitesync.distribution import Distribution
from sitesync.exceptions import RequiresPythonViolation
from sitesync.pep_503 import ProjectName
from sitesync.target import Target
from sitesync.tracer import TRACER


def _project_names(names: Iterable[str]) -> FrozenSet[ProjectName]:
    return frozenset(
        name if isinstance(name, ProjectName) else ProjectName(name) for name in names
    )


@attr.s(frozen=True)
class ForceSpec:
    """Which installed distributions to reinstall even when they are already correct."""

    reinstall_all: bool = attr.ib(default=False)
    reinstall_packages: FrozenSet[ProjectName] = attr.ib(
        default=frozenset(), converter=_project_names
    )

    def forces(self, project_name: ProjectName) -> bool:
        return self.reinstall_all or project_name in self.reinstall_packages


def _sorted(distributions: Iterable[Distribution]) -> Tuple[Distribution, ...]:
    return tuple(sorted(distributions, key=lambda dist: dist.project_name))


@attr.s(frozen=True)
class InstallationPlan:
    """The changes that bring an environment in line with the desired distributions.

    A project name appears in at most one of `audited` and the other two sets; a name that appears
    in both `to_uninstall` and `to_install` is a replace.
    """

    to_uninstall: Tuple[Distribution, ...] = attr.ib(default=(), converter=_sorted)
    to_install: Tuple[Distribution, ...] = attr.ib(default=(), converter=_sorted)
    audited: Tuple[Distribution, ...] = attr.ib(default=(), converter=_sorted)

    @property
    def replaced(self) -> FrozenSet[ProjectName]:
        return frozenset(dist.project_name for dist in self.to_uninstall) & frozenset(
            dist.project_name for dist in self.to_install
        )

    @property
    def is_noop(self) -> bool:
        return not self.to_uninstall and not self.to_install


def plan(
    desired: Iterable[Distribution],
    installed: Iterable[Distribution],
    force: ForceSpec = ForceSpec(),
) -> InstallationPlan:
    desired_by_name: Dict[ProjectName, Distribution] = {dist.project_name: dist for dist in desired}
    installed_by_name: Dict[ProjectName, Distribution] = {
        dist.project_name: dist for dist in installed
    }

    to_uninstall: Set[Distribution] = set()
    to_install: Set[Distribution] = set()
    audited: Set[Distribution] = set()
    for project_name in set(desired_by_name) | set(installed_by_name):
        wanted = desired_by_name.get(project_name)
        present = installed_by_name.get(project_name)
        if wanted is None:
            assert present is not None
            to_uninstall.add(present)
        elif present is None:
            to_install.add(wanted)
        elif present.is_equivalent(wanted) and not force.forces(project_name):
            audited.add(present)
        else:
            TRACER.log(
                "Replacing {present} with {wanted}".format(present=present, wanted=wanted), V=2
            )
            to_uninstall.add(present)
            to_install.add(wanted)

    return InstallationPlan(to_uninstall=to_uninstall, to_install=to_install, audited=audited)


def check_requires_python(desired: Iterable[Distribution], target: Target) -> None:
    """Check that every editable distribution supports the target interpreter.

    Other distributions had their Requires-Python checked while being resolved.

    :raise: :class:`RequiresPythonViolation`
    """
    for dist in desired:
        if not dist.is_editable or dist.requires_python is None:
            continue
        if not dist.requires_python.contains(target.python_version, prereleases=True):
            raise RequiresPythonViolation(
                "Editable `{name}` requires Python {requires_python}, but {version} is "
                "installed".format(
                    name=dist.project_name,
                    requires_python=dist.requires_python,
                    version=target.python_version,
                )
            )
