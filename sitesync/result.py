# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import sys

import attr


@attr.s(frozen=True)
class Result:
    exit_code: int = attr.ib()
    _message: str = attr.ib(default="")

    @property
    def is_error(self) -> bool:
        return self.exit_code != 0

    def maybe_display(self) -> None:
        if not self._message:
            return
        print(self._message, file=sys.stderr if self.is_error else sys.stdout)

    def __str__(self) -> str:
        return self._message


class Error(Result):
    """A failed sync; exit code 1 means unsatisfiable requirements, 2 any other failure."""

    def __init__(self, message: str = "", exit_code: int = 2) -> None:
        if exit_code == 0:
            raise ValueError("An Error must have a non-zero exit code; given: {}".format(exit_code))
        super().__init__(exit_code=exit_code, message=message)
