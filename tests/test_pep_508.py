# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

from typing import Optional

from packaging.markers import Marker

from sitesync.pep_508 import MarkerEnvironment, markers_disjoint


def marker(expression: Optional[str]) -> Optional[Marker]:
    return Marker(expression) if expression else None


def test_for_target() -> None:
    base = MarkerEnvironment(sys_platform="linux", python_version="3.12")
    environment = MarkerEnvironment.for_target((3, 9, 18, "final", 0), base=base)
    assert "3.9" == environment.python_version
    assert "3.9.18" == environment.python_full_version
    assert "linux" == environment.sys_platform


def test_as_dict_omits_unset() -> None:
    assert {"sys_platform": "linux"} == MarkerEnvironment(sys_platform="linux").as_dict()
    assert MarkerEnvironment(sys_platform="linux") == MarkerEnvironment.from_dict(
        {"sys_platform": "linux", "bogus": "ignored"}
    )


def test_evaluate() -> None:
    environment = MarkerEnvironment.for_target(
        (3, 11, 2), base=MarkerEnvironment(sys_platform="linux", os_name="posix")
    )
    assert environment.evaluate(None)
    assert environment.evaluate(marker("python_version >= '3.8'"))
    assert not environment.evaluate(marker("sys_platform == 'win32'"))

    assert not environment.evaluate(marker("extra == 'test'"))
    assert environment.evaluate(marker("extra == 'test'"), "docs", "test")


def test_markers_disjoint() -> None:
    assert not markers_disjoint(None, marker("sys_platform == 'win32'"))
    assert markers_disjoint(marker("sys_platform == 'win32'"), marker("sys_platform == 'linux'"))
    assert not markers_disjoint(
        marker("sys_platform == 'win32'"), marker("sys_platform != 'linux'")
    )
    assert markers_disjoint(marker("python_version < '3.8'"), marker("python_version >= '3.8'"))
    assert not markers_disjoint(
        marker("python_version < '3.10'"), marker("python_version >= '3.8'")
    )
    assert markers_disjoint(
        marker("python_version >= '3.8' and sys_platform == 'linux'"),
        marker("sys_platform == 'darwin'"),
    )
