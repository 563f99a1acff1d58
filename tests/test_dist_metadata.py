# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import os
import re
import zipfile

import pytest
from packaging.requirements import Requirement
from packaging.specifiers import SpecifierSet
from packaging.version import Version

from sitesync.dist_metadata import (
    CallableEntryPoint,
    DistMetadata,
    InvalidMetadataError,
    MetadataError,
    MetadataNotFoundError,
    ModuleEntryPoint,
    NamedEntryPoint,
    ProjectNameAndVersion,
    UnrecognizedDistributionFormat,
    dist_info_name,
    find_dist_info_dir,
    parse_entry_map,
)
from sitesync.pep_503 import ProjectName
from testing.wheels import make_wheel


def test_project_name_and_version_from_filename() -> None:
    assert ProjectNameAndVersion(
        "pyfoo", "1.0.0"
    ) == ProjectNameAndVersion.from_filename("/a/b/pyfoo-1.0.0-py2.py3-none-any.whl")
    assert ProjectNameAndVersion("foo-bar", "1.0") == ProjectNameAndVersion.from_filename(
        "foo-bar-1.0.tar.gz"
    )
    assert ProjectNameAndVersion("foo", "2.0") == ProjectNameAndVersion.from_filename(
        "foo-2.0.zip"
    )
    with pytest.raises(UnrecognizedDistributionFormat):
        ProjectNameAndVersion.from_filename("foo.txt")


def test_parse_entry_map() -> None:
    entry_map = parse_entry_map(
        b"""
        # A comment.
        [console_scripts]
        foo = foo.main:run
        bar=bar [extra]

        [foo.plugins]
        baz = baz.plugin:Plugin.create
        """
    )
    assert {
        "console_scripts": {
            "foo": NamedEntryPoint(
                name="foo", entry_point=CallableEntryPoint(module="foo.main", attrs=("run",))
            ),
            "bar": NamedEntryPoint(name="bar", entry_point=ModuleEntryPoint(module="bar")),
        },
        "foo.plugins": {
            "baz": NamedEntryPoint(
                name="baz",
                entry_point=CallableEntryPoint(module="baz.plugin", attrs=("Plugin", "create")),
            )
        },
    } == entry_map
    assert "baz=baz.plugin:Plugin.create" == str(entry_map["foo.plugins"]["baz"])

    with pytest.raises(
        ValueError,
        match=re.escape(
            "Failed to parse entry_points.txt, encountered an entry point with no group on line "
            "1: foo = bar"
        ),
    ):
        parse_entry_map("foo = bar")

    with pytest.raises(ValueError, match=r"Invalid entry point specification: foo\."):
        NamedEntryPoint.parse("foo")


def test_from_pkg_info() -> None:
    metadata = DistMetadata.from_pkg_info(
        "Metadata-Version: 2.1\n"
        "Name: Foo.Bar\n"
        "Version: 1.0.post1\n"
        "Requires-Python: >=3.8\n"
        "Requires-Dist: baz>=2\n"
        "Requires-Dist: spam; extra == 'eggs'\n",
        entry_points="[console_scripts]\nfoo = foo:main\n",
    )
    assert ProjectName("foo-bar") == metadata.project_name
    assert Version("1.0.post1") == metadata.version
    assert SpecifierSet(">=3.8") == metadata.requires_python
    assert (Requirement("baz>=2"), Requirement("spam; extra == 'eggs'")) == metadata.requires_dists
    assert ["foo"] == list(metadata.get_entry_map()["console_scripts"])
    assert "Foo.Bar 1.0.post1" == str(metadata)


def test_from_pkg_info_invalid() -> None:
    with pytest.raises(MetadataError, match=r"The 'Name' and 'Version' fields are not both"):
        DistMetadata.from_pkg_info("Name: foo\n")

    with pytest.raises(InvalidMetadataError, match=r"Invalid Version metadata found in"):
        DistMetadata.from_pkg_info("Name: foo\nVersion: one\n")

    with pytest.raises(InvalidMetadataError, match=r"Invalid Requires-Python metadata found"):
        DistMetadata.from_pkg_info("Name: foo\nVersion: 1\nRequires-Python: >>3\n")

    with pytest.raises(InvalidMetadataError, match=r"Invalid Requires-Dist metadata found"):
        DistMetadata.from_pkg_info("Name: foo\nVersion: 1\nRequires-Dist: bar>>2\n")


def test_from_wheel(tmpdir: str) -> None:
    wheel = make_wheel(
        tmpdir,
        "foo",
        "1.0",
        requires_dists=["bar"],
        requires_python=">=3",
        entry_points="[console_scripts]\nfoo = foo:main\n",
    )
    metadata = DistMetadata.from_wheel(wheel)
    assert ProjectName("foo") == metadata.project_name
    assert (Requirement("bar"),) == metadata.requires_dists
    assert SpecifierSet(">=3") == metadata.requires_python
    assert 1 == len(metadata.entry_points)

    not_a_wheel = os.path.join(tmpdir, "bad-1.0-py3-none-any.whl")
    with zipfile.ZipFile(not_a_wheel, "w") as zf:
        zf.writestr("bad/__init__.py", "")
    with pytest.raises(MetadataNotFoundError, match=r"Expected exactly one \.dist-info"):
        DistMetadata.from_wheel(not_a_wheel)


def test_from_dist_info_dir(tmpdir: str) -> None:
    with zipfile.ZipFile(make_wheel(os.path.join(tmpdir, "dists"), "foo", "1.0")) as zf:
        zf.extractall(os.path.join(tmpdir, "site-packages"))
    site_packages = os.path.join(tmpdir, "site-packages")

    dist_info_dir = find_dist_info_dir(site_packages)
    assert "foo-1.0.dist-info" == dist_info_dir
    assert dist_info_dir == find_dist_info_dir(site_packages, ProjectName("Foo"))
    with pytest.raises(MetadataNotFoundError, match=r"for bar in"):
        find_dist_info_dir(site_packages, ProjectName("bar"))

    metadata = DistMetadata.from_dist_info_dir(os.path.join(site_packages, dist_info_dir))
    assert Version("1.0") == metadata.version

    with pytest.raises(MetadataNotFoundError, match=r"No METADATA file found in"):
        DistMetadata.from_dist_info_dir(site_packages)


def test_dist_info_name() -> None:
    assert "foo_bar-1.0.dist-info" == dist_info_name("Foo.Bar", "1.0")
    assert "foo_bar-2.0.dist-info" == dist_info_name(ProjectName("foo-bar"), Version("2.0"))
