# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import hashlib
import os

import pytest

from sitesync.common import safe_open
from sitesync.pep_376 import (
    Hash,
    InstalledFile,
    Record,
    RecordNotFoundError,
    create_installed_file,
)


def test_hash() -> None:
    hasher = hashlib.sha256(b"")
    assert (
        "sha256=47DEQpj8HBSa-_TImW-5JCeuQeRkm5NMpJWZG3hSuFU" == Hash.create(hasher).value
    ), "Expected urlsafe base64 without padding."


def test_create_installed_file(tmpdir: str) -> None:
    path = os.path.join(tmpdir, "pkg", "mod.py")
    with safe_open(path, "w") as fp:
        fp.write("")
    installed_file = create_installed_file(path, tmpdir)
    assert "pkg/mod.py" == installed_file.path
    assert 0 == installed_file.size
    assert Hash.create(hashlib.sha256(b"")) == installed_file.hash


def test_record_write_and_load(tmpdir: str) -> None:
    site_packages = os.path.join(tmpdir, "site-packages")
    installed_files = [
        InstalledFile(path="foo/__init__.py", hash=Hash("sha256=abc"), size=3),
        InstalledFile(path="foo/with,comma.py", hash=Hash("sha256=def"), size=5),
        InstalledFile(path="../../bin/foo", hash=Hash("sha256=ghi"), size=7),
        InstalledFile(path="foo-1.0.dist-info/RECORD"),
    ]
    Record.write(os.path.join(site_packages, "foo-1.0.dist-info", "RECORD"), installed_files)

    record = Record.load(site_packages, "foo-1.0.dist-info")
    assert installed_files == list(record.installed_files())
    assert [
        os.path.join(site_packages, "foo", "__init__.py"),
        os.path.join(site_packages, "foo", "with,comma.py"),
        os.path.join(os.path.dirname(tmpdir), "bin", "foo"),
        os.path.join(site_packages, "foo-1.0.dist-info", "RECORD"),
    ] == list(record.iter_absolute_paths())


def test_record_read_exclude() -> None:
    lines = ["a.py,sha256=x,1\n", "\n", "b.pyc,,\n"]
    assert [InstalledFile(path="a.py", hash=Hash("sha256=x"), size=1)] == list(
        Record.read(lines, exclude=lambda path: path.endswith(".pyc"))
    )


def test_record_not_found(tmpdir: str) -> None:
    with pytest.raises(RecordNotFoundError, match=r"Could not find the installation RECORD"):
        Record.load(tmpdir, "foo-1.0.dist-info")
