# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import os
import struct

import pytest

from sitesync.common import environment_as, safe_open
from sitesync.compiler import Compiler
from sitesync.exceptions import FileCompileError, InvalidCompileOptionError
from sitesync.target import Target


def write(path: str, content: str) -> str:
    with safe_open(path, "w") as fp:
        fp.write(content)
    return path


def pyc_flags(pyc: str) -> int:
    with open(pyc, "rb") as fp:
        header = fp.read(8)
    return struct.unpack("<I", header[4:8])[0]


def test_compile(tmpdir: str) -> None:
    module = write(os.path.join(tmpdir, "pkg", "module.py"), "X = 1\n")
    other = write(os.path.join(tmpdir, "pkg", "other.py"), "Y = 2\n")

    with environment_as(PYC_INVALIDATION_MODE=None, SOURCE_DATE_EPOCH=None):
        result = Compiler(Target.current()).compile([other, module])
    assert 2 == len(result)
    for pyc in result.compiled:
        assert os.path.isfile(pyc)
        assert os.path.join(tmpdir, "pkg", "__pycache__") == os.path.dirname(pyc)
        assert 0 == pyc_flags(pyc)


def test_compile_invalidation_mode(tmpdir: str) -> None:
    module = write(os.path.join(tmpdir, "module.py"), "X = 1\n")
    compiler = Compiler(Target.current())

    (pyc,) = compiler.compile([module], invalidation_mode="checked_hash").compiled
    assert 0b11 == pyc_flags(pyc)

    with environment_as(PYC_INVALIDATION_MODE="UNCHECKED_HASH"):
        (pyc,) = compiler.compile([module]).compiled
    assert 0b01 == pyc_flags(pyc)


def test_compile_invalid_invalidation_mode(tmpdir: str) -> None:
    module = write(os.path.join(tmpdir, "module.py"), "X = 1\n")
    with environment_as(PYC_INVALIDATION_MODE="bogus"), pytest.raises(
        InvalidCompileOptionError, match=r"Invalid value for PYC_INVALIDATION_MODE: 'bogus'"
    ):
        Compiler(Target.current()).compile([module])


def test_compile_error(tmpdir: str) -> None:
    good = write(os.path.join(tmpdir, "a_good.py"), "X = 1\n")
    bad = write(os.path.join(tmpdir, "b_bad.py"), "def (\n")

    with pytest.raises(FileCompileError) as exc_info:
        Compiler(Target.current()).compile([bad, good])
    assert bad == exc_info.value.path
    assert str(exc_info.value).startswith("Failed to compile {path}: ".format(path=bad))
