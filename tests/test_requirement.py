# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import os

import pytest
from packaging.markers import Marker
from packaging.specifiers import SpecifierSet

from sitesync.exceptions import DuplicateRequirementError
from sitesync.locators import DirectUrl, Editable, LocalPath, Registry, VersionControl, path_to_url
from sitesync.pep_503 import ProjectName
from sitesync.pep_508 import MarkerEnvironment
from sitesync.requirement import InvalidRequirementError, Requirement, RequirementSet
from sitesync.vcs import VCS
from testing import make_project
from testing.wheels import make_wheel


def test_parse_registry_requirement() -> None:
    requirement = Requirement.parse("Foo.Bar[baz]>=1.0,<2; python_version >= '3'")
    assert ProjectName("foo-bar") == requirement.project_name
    assert SpecifierSet(">=1.0,<2") == requirement.specifier
    assert frozenset(["baz"]) == requirement.extras
    assert requirement.marker is not None
    assert Registry() == requirement.locator
    assert not requirement.editable


def test_parse_direct_reference() -> None:
    requirement = Requirement.parse(
        "foo @ https://example.com/dists/foo-1.0.tar.gz#subdirectory=sub"
    )
    assert ProjectName("foo") == requirement.project_name
    assert (
        DirectUrl(url="https://example.com/dists/foo-1.0.tar.gz", subdirectory="sub")
        == requirement.locator
    )


def test_parse_bare_archive_url() -> None:
    requirement = Requirement.parse("https://example.com/foo_bar-2.0-py3-none-any.whl")
    assert ProjectName("foo-bar") == requirement.project_name
    assert DirectUrl(url="https://example.com/foo_bar-2.0-py3-none-any.whl") == requirement.locator

    with pytest.raises(InvalidRequirementError, match=r"consider using #egg=<project name>"):
        Requirement.parse("https://example.com/download")


def test_parse_git_url() -> None:
    requirement = Requirement.parse(
        "git+https://github.com/example/foo@v1.2#egg=foo&subdirectory=python"
    )
    assert ProjectName("foo") == requirement.project_name
    assert (
        VersionControl(
            vcs=VCS.Git,
            repository="https://github.com/example/foo",
            requested_ref="v1.2",
            subdirectory="python",
        )
        == requirement.locator
    )

    with pytest.raises(InvalidRequirementError, match=r"only git is supported"):
        Requirement.parse("hg+https://example.com/foo#egg=foo")


def test_parse_local_paths(tmpdir: str) -> None:
    project = make_project(os.path.join(tmpdir, "project"), name="my-project", version="0.1")
    wheel = make_wheel(os.path.join(tmpdir, "dists"), "local-wheel", "3.0")

    requirement = Requirement.parse("./project", basedir=tmpdir)
    assert ProjectName("my-project") == requirement.project_name
    assert LocalPath(path=os.path.realpath(project)) == requirement.locator

    requirement = Requirement.parse("./project[extra]", basedir=tmpdir, editable=True)
    assert Editable(path=os.path.realpath(project)) == requirement.locator
    assert frozenset(["extra"]) == requirement.extras
    assert requirement.editable

    requirement = Requirement.parse(wheel)
    assert ProjectName("local-wheel") == requirement.project_name
    assert DirectUrl(url=path_to_url(os.path.realpath(wheel))) == requirement.locator

    with pytest.raises(InvalidRequirementError, match=r"is not a project directory"):
        Requirement.parse("./missing", basedir=tmpdir)


def test_parse_editable_must_be_local() -> None:
    with pytest.raises(InvalidRequirementError, match=r"must be local directories"):
        Requirement.parse("git+https://github.com/example/foo#egg=foo", editable=True)


def test_requirement_str() -> None:
    assert "foo[bar]>=1" == str(Requirement.parse("foo[bar]>=1"))
    assert "foo @ https://example.com/foo-1.0.tar.gz" == str(
        Requirement.parse("foo @ https://example.com/foo-1.0.tar.gz")
    )


def create_set(*requirements: str, **kwargs) -> RequirementSet:
    return RequirementSet.create(
        [Requirement.parse(requirement) for requirement in requirements],
        MarkerEnvironment.default(),
        **kwargs
    )


def test_requirement_set_collapses_identical_requirements() -> None:
    requirement_set = create_set("foo==1.0", "bar", "Foo==1.0")
    assert [ProjectName("bar"), ProjectName("foo")] == [
        requirement.project_name for requirement in requirement_set
    ]


def test_requirement_set_rejects_duplicates() -> None:
    with pytest.raises(DuplicateRequirementError) as exc_info:
        create_set("foo==1.0", "foo==2.0")
    assert "Detected duplicate package in requirements: foo" == str(exc_info.value)

    with pytest.raises(DuplicateRequirementError) as exc_info:
        create_set("Foo_Bar==1.0", "foo-bar==2.0")
    assert "foo-bar" == exc_info.value.project_name


def test_requirement_set_allows_disjoint_markers() -> None:
    requirement_set = create_set(
        "foo==1.0; sys_platform == 'win32'", "foo==2.0; sys_platform != 'win32'"
    )
    assert 1 == len(requirement_set)
    requirement = requirement_set.get(ProjectName("foo"))
    assert requirement is not None
    environment = MarkerEnvironment.default()
    expected = "==1.0" if environment.evaluate(Marker("sys_platform == 'win32'")) else "==2.0"
    assert SpecifierSet(expected) == requirement.specifier


def test_requirement_set_drops_inapplicable_requirements() -> None:
    requirement_set = create_set("foo; python_version < '2'", "bar")
    assert [ProjectName("bar")] == [requirement.project_name for requirement in requirement_set]


def test_requirement_set_constraints() -> None:
    requirement_set = create_set(
        "foo",
        constraints=[
            Requirement.parse("foo<2"),
            Requirement.parse("foo!=1.5"),
            Requirement.parse("bar<1"),
        ],
    )
    assert SpecifierSet("<2,!=1.5") == requirement_set.constraints_for(ProjectName("foo"))
    assert SpecifierSet() == requirement_set.constraints_for(ProjectName("baz"))
