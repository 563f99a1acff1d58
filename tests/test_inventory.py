# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import json
import os
from typing import Optional

import pytest
from packaging.markers import Marker
from packaging.version import Version

from sitesync.cache.artifacts import ArtifactCache
from sitesync.common import safe_open
from sitesync.fingerprint import SourceFingerprint
from sitesync.installer import install
from sitesync.inventory import Inventory
from sitesync.locators import DirectUrl, Registry
from sitesync.pep_503 import ProjectName
from sitesync.pep_508 import MarkerEnvironment
from sitesync.target import InvalidTargetEnvironmentError, TargetEnvironment
from testing import cache_wheel
from testing.wheels import make_wheel


def write_foreign_install(
    environment: TargetEnvironment,
    name: str,
    version: str,
    direct_url: Optional[str] = None,
    record: bool = True,
) -> str:
    dist_info = os.path.join(
        environment.site_packages, "{name}-{version}.dist-info".format(name=name, version=version)
    )
    with safe_open(os.path.join(dist_info, "METADATA"), "w") as fp:
        fp.write(
            "Metadata-Version: 2.1\nName: {name}\nVersion: {version}\n".format(
                name=name, version=version
            )
        )
    with safe_open(os.path.join(dist_info, "INSTALLER"), "w") as fp:
        fp.write("pip\n")
    if direct_url:
        with safe_open(os.path.join(dist_info, "direct_url.json"), "w") as fp:
            json.dump({"url": direct_url, "archive_info": {}}, fp)
    if record:
        with safe_open(os.path.join(dist_info, "RECORD"), "w") as fp:
            fp.write("{name}-{version}.dist-info/METADATA,,\n".format(name=name, version=version))
    return dist_info


def test_empty(environment: TargetEnvironment) -> None:
    inventory = Inventory.load(environment)
    assert 0 == len(inventory)
    assert () == inventory.distributions
    assert inventory.get(ProjectName("foo")) is None


def test_load_own_install(
    tmpdir: str, environment: TargetEnvironment, cache: ArtifactCache
) -> None:
    wheel = make_wheel(os.path.join(tmpdir, "dists"), "foo", "1.0")
    distribution, entry = cache_wheel(cache, wheel)
    install(distribution, entry, environment)

    inventory = Inventory.load(environment)
    installed = inventory.get(ProjectName("Foo"))
    assert installed is not None
    assert "foo-1.0.dist-info" == installed.dist_info_dir
    assert distribution == installed.distribution
    assert installed.distribution.is_equivalent(distribution)


def test_load_foreign_installs(environment: TargetEnvironment) -> None:
    write_foreign_install(environment, "registry_dist", "1.0")
    write_foreign_install(
        environment, "url_dist", "2.0", direct_url="https://example.com/url_dist-2.0.tar.gz"
    )

    inventory = Inventory.load(environment)
    assert [ProjectName("registry-dist"), ProjectName("url-dist")] == [
        installed.project_name for installed in inventory
    ]

    registry_dist = inventory.get(ProjectName("registry-dist"))
    assert registry_dist is not None
    assert Version("1.0") == registry_dist.distribution.version
    assert Registry() == registry_dist.distribution.locator
    assert (
        SourceFingerprint(kind="registry", identity="registry_dist-1.0.dist-info")
        == registry_dist.distribution.fingerprint
    )

    url_dist = inventory.get(ProjectName("url-dist"))
    assert url_dist is not None
    assert DirectUrl(url="https://example.com/url_dist-2.0.tar.gz") == url_dist.distribution.locator
    assert "foreign" == url_dist.distribution.fingerprint.kind


def test_incomplete_installs_ignored(environment: TargetEnvironment) -> None:
    write_foreign_install(environment, "complete", "1.0")
    write_foreign_install(environment, "incomplete", "1.0", record=False)

    assert [ProjectName("complete")] == [
        installed.project_name for installed in Inventory.load(environment)
    ]


def test_corrupt_metadata(environment: TargetEnvironment) -> None:
    dist_info = write_foreign_install(environment, "corrupt", "1.0")
    os.unlink(os.path.join(dist_info, "METADATA"))

    with pytest.raises(
        InvalidTargetEnvironmentError, match=r"Failed to read the installed distribution"
    ):
        Inventory.load(environment)


def test_diagnostics(tmpdir: str, environment: TargetEnvironment, cache: ArtifactCache) -> None:
    dists = os.path.join(tmpdir, "dists")
    for wheel in (
        make_wheel(
            dists,
            "app",
            "1.0",
            requires_dists=["lib>=2", "missing[extra]<3", "windows-only; sys_platform == 'win32'"],
        ),
        make_wheel(dists, "lib", "1.5"),
    ):
        distribution, entry = cache_wheel(cache, wheel)
        install(distribution, entry, environment)

    marker_environment = MarkerEnvironment.default()
    expected = [
        "The package `app` requires `lib>=2`, but `1.5` is installed.",
        "The package `app` requires `missing[extra]<3`, but it's not installed.",
    ]
    if marker_environment.evaluate(Marker("sys_platform == 'win32'")):
        expected.append("The package `app` requires `windows-only`, but it's not installed.")
    assert expected == Inventory.load(environment).diagnostics(marker_environment)
