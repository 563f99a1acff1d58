# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

from packaging.version import Version

from sitesync.distribution import Distribution
from sitesync.fingerprint import SourceFingerprint
from sitesync.locators import Editable, Registry
from sitesync.pep_503 import ProjectName
from sitesync.summary import Phase, Summary, format_elapsed


def test_format_elapsed() -> None:
    assert "0ms" == format_elapsed(0)
    assert "12ms" == format_elapsed(0.0125)
    assert "999ms" == format_elapsed(0.9999)
    assert "1.00s" == format_elapsed(1)
    assert "2.35s" == format_elapsed(2.3456)


def registry_dist(name: str, version: str) -> Distribution:
    filename = "{name}-{version}-py3-none-any.whl".format(name=name, version=version)
    return Distribution(
        project_name=ProjectName(name),
        version=Version(version),
        locator=Registry(filename=filename),
        fingerprint=SourceFingerprint(kind="registry", identity=filename),
    )


def test_render_unchanged() -> None:
    summary = Summary(resolved=Phase(count=0), audited=Phase(count=3, elapsed=0.002))
    assert not summary.changed
    assert "Audited 3 packages in 2ms" == summary.render()

    summary = Summary(resolved=Phase(count=1, elapsed=0.5), audited=Phase(count=1, elapsed=0.5))
    assert "Resolved 1 package in 500ms\nAudited 1 package in 500ms" == summary.render()


def test_render_changes() -> None:
    editable = Distribution(
        project_name=ProjectName("proj"),
        version=Version("0.1"),
        locator=Editable(path="/work/proj"),
        fingerprint=SourceFingerprint(kind="editable", identity="file:///work/proj|abc"),
    )
    summary = Summary(
        resolved=Phase(count=3, elapsed=1.5),
        downloaded=Phase(count=1, elapsed=0.25),
        built_editables=Phase(count=1, elapsed=0.25),
        uninstalled=Phase(count=2, elapsed=0.01),
        installed=Phase(count=2, elapsed=0.01),
        compiled=Phase(count=10, elapsed=0.1),
        audited=Phase(count=1),
        removed_distributions=(registry_dist("foo", "1.0"), registry_dist("bar", "1.0")),
        added_distributions=(registry_dist("foo", "2.0"), editable),
    )
    assert summary.changed
    assert [
        "Resolved 3 packages in 1.50s",
        "Downloaded 1 package in 250ms",
        "Built 1 editable in 250ms",
        "Uninstalled 2 packages in 10ms",
        "Installed 2 packages in 10ms",
        "Bytecode compiled 10 files in 100ms",
        " - bar==1.0",
        " - foo==1.0",
        " + foo==2.0",
        " + proj==0.1 (from file:///work/proj)",
    ] == summary.render().splitlines()
