# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import json
import os
import subprocess
import tempfile
from typing import Iterable, Optional, Tuple

import attr

from sitesync.exceptions import CompileError, FileCompileError, InvalidCompileOptionError
from sitesync.target import Target
from sitesync.tracer import TRACER

INVALIDATION_MODE_ENV_VAR = "PYC_INVALIDATION_MODE"

_COMPILER_MAIN = """
import json
import py_compile
import sys


def main(invalidation_mode, paths):
    mode = None
    if invalidation_mode:
        try:
            mode = py_compile.PycInvalidationMode[invalidation_mode.strip().upper()]
        except KeyError:
            json.dump(
                {
                    "invalid_option": (
                        "Invalid value for %(env_var)s: %%r; valid values are: %%s"
                        %% (
                            invalidation_mode,
                            ", ".join(m.name for m in py_compile.PycInvalidationMode),
                        )
                    )
                },
                sys.stdout,
            )
            return

    compiled = []
    for path in paths:
        try:
            if mode is None:
                compiled.append(py_compile.compile(path, doraise=True))
            else:
                compiled.append(py_compile.compile(path, doraise=True, invalidation_mode=mode))
        except py_compile.PyCompileError as e:
            json.dump({"compiled": compiled, "error": [path, e.msg]}, sys.stdout)
            return
    json.dump({"compiled": compiled}, sys.stdout)


main(%(invalidation_mode)r, %(paths)r)
"""


@attr.s(frozen=True)
class CompileResult:
    compiled: Tuple[str, ...] = attr.ib()

    def __len__(self) -> int:
        return len(self.compiled)


class Compiler:
    """Compiles Python source files to bytecode with a target's interpreter."""

    def __init__(self, target: Target) -> None:
        self._target = target

    def compile(
        self, paths: Iterable[str], invalidation_mode: Optional[str] = None
    ) -> CompileResult:
        """Compile the given Python source files.

        :param paths: The absolute paths of the source files to compile.
        :param invalidation_mode: One of `TIMESTAMP`, `CHECKED_HASH` or `UNCHECKED_HASH`; by
                                  default taken from the `PYC_INVALIDATION_MODE` environment
                                  variable.
        :return: The paths of the bytecode files written.
        :raise: :class:`InvalidCompileOptionError` if the invalidation mode is not valid or
                :class:`FileCompileError` for the first file that fails to compile.
        """
        paths = sorted(paths)
        if invalidation_mode is None:
            invalidation_mode = os.environ.get(INVALIDATION_MODE_ENV_VAR)

        with tempfile.NamedTemporaryFile(mode="w", suffix=".py") as fp:
            fp.write(
                _COMPILER_MAIN
                % {
                    "env_var": INVALIDATION_MODE_ENV_VAR,
                    "invalidation_mode": invalidation_mode,
                    "paths": paths,
                }
            )
            fp.flush()
            with TRACER.timed("Compiling {count} files".format(count=len(paths)), V=2):
                process = subprocess.Popen(
                    args=[self._target.binary, "-sE", fp.name],
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                )
                out, err = process.communicate()

        if process.returncode != 0:
            raise CompileError(
                "The bytecode compiler {binary} exited with code {code}:\n{stderr}".format(
                    binary=self._target.binary,
                    code=process.returncode,
                    stderr=err.decode("utf-8", errors="replace"),
                )
            )

        result = json.loads(out.decode("utf-8"))
        if "invalid_option" in result:
            raise InvalidCompileOptionError(result["invalid_option"])
        if "error" in result:
            path, diagnostic = result["error"]
            raise FileCompileError(path, diagnostic)
        return CompileResult(compiled=tuple(result["compiled"]))
