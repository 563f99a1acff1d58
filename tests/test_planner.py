# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

from typing import Optional

import pytest
from packaging.specifiers import SpecifierSet
from packaging.version import Version

from sitesync.distribution import Distribution
from sitesync.exceptions import RequiresPythonViolation
from sitesync.fingerprint import SourceFingerprint
from sitesync.locators import Editable, Registry
from sitesync.pep_503 import ProjectName
from sitesync.planner import ForceSpec, InstallationPlan, check_requires_python, plan
from sitesync.target import Target


def registry_dist(name: str, version: str) -> Distribution:
    filename = "{name}-{version}-py3-none-any.whl".format(name=name, version=version)
    return Distribution(
        project_name=ProjectName(name),
        version=Version(version),
        locator=Registry(filename=filename),
        fingerprint=SourceFingerprint(kind="registry", identity=filename),
    )


def editable_dist(
    name: str, version: str, digest: str = "abc", requires_python: Optional[str] = None
) -> Distribution:
    path = "/projects/{name}".format(name=name)
    return Distribution(
        project_name=ProjectName(name),
        version=Version(version),
        locator=Editable(path=path),
        fingerprint=SourceFingerprint(
            kind="editable", identity="file://{path}|{digest}".format(path=path, digest=digest)
        ),
        requires_python=SpecifierSet(requires_python) if requires_python else None,
    )


def test_plan_noop() -> None:
    foo = registry_dist("foo", "1.0")
    installation_plan = plan(desired=[foo], installed=[foo])
    assert installation_plan.is_noop
    assert (foo,) == installation_plan.audited
    assert frozenset() == installation_plan.replaced


def test_plan_install_uninstall_replace() -> None:
    foo1 = registry_dist("foo", "1.0")
    foo2 = registry_dist("foo", "2.0")
    bar = registry_dist("bar", "1.0")
    baz = registry_dist("baz", "1.0")
    extraneous = registry_dist("extraneous", "0.1")

    installation_plan = plan(desired=[foo2, bar, baz], installed=[foo1, baz, extraneous])
    assert InstallationPlan(
        to_uninstall=[extraneous, foo1], to_install=[bar, foo2], audited=[baz]
    ) == installation_plan
    assert frozenset([ProjectName("foo")]) == installation_plan.replaced
    assert not installation_plan.is_noop


def test_plan_tracks_fingerprints() -> None:
    installed = editable_dist("proj", "1.0", digest="abc")
    desired = editable_dist("proj", "1.0", digest="def")

    installation_plan = plan(desired=[desired], installed=[installed])
    assert (installed,) == installation_plan.to_uninstall
    assert (desired,) == installation_plan.to_install


def test_plan_forced() -> None:
    foo = registry_dist("foo", "1.0")
    bar = registry_dist("bar", "1.0")

    installation_plan = plan(
        desired=[foo, bar], installed=[foo, bar], force=ForceSpec(reinstall_packages=["Foo"])
    )
    assert (foo,) == installation_plan.to_uninstall
    assert (foo,) == installation_plan.to_install
    assert (bar,) == installation_plan.audited

    installation_plan = plan(
        desired=[foo, bar], installed=[foo, bar], force=ForceSpec(reinstall_all=True)
    )
    assert (bar, foo) == installation_plan.to_install
    assert () == installation_plan.audited


def test_plan_empty_environment() -> None:
    assert InstallationPlan() == plan(desired=[], installed=[])


def test_check_requires_python() -> None:
    target = Target.current()
    check_requires_python(
        [
            editable_dist("ok", "1.0", requires_python=">=3"),
            editable_dist("unconstrained", "1.0"),
            registry_dist("registry", "1.0"),
        ],
        target,
    )

    with pytest.raises(
        RequiresPythonViolation,
        match=(
            r"Editable `future` requires Python >=99, but {version} is installed".format(
                version=target.python_version.replace(".", r"\.")
            )
        ),
    ):
        check_requires_python([editable_dist("future", "1.0", requires_python=">=99")], target)
