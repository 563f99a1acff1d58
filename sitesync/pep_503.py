# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import re

import attr
from packaging.utils import canonicalize_name


@attr.s(frozen=True, order=True)
class ProjectName:
    """Encodes a canonicalized project name as per PEP-503.

    Project names compare, hash and order by their normalized form only, so `WerkZeug`,
    `werkzeug` and `Werk_Zeug` are all the same project.

    See: https://www.python.org/dev/peps/pep-0503/#normalized-names
    """

    class InvalidError(ValueError):
        """Indicates an invalid project name as per https://peps.python.org/pep-0508/#names."""

    # See: https://peps.python.org/pep-0508/#names
    _VALID_RE = re.compile(r"^([A-Z0-9]|[A-Z0-9][A-Z0-9._-]*[A-Z0-9])$", re.IGNORECASE)

    raw: str = attr.ib(eq=False, order=False, converter=str)
    validated: bool = attr.ib(eq=False, order=False, default=False)
    normalized: str = attr.ib(init=False)

    def __attrs_post_init__(self) -> None:
        if self.validated and not self._VALID_RE.match(self.raw):
            raise self.InvalidError(
                "The given project name {value!r} is not valid. It must conform to the regex "
                "{pattern!r} as specified in https://peps.python.org/pep-0508/#names".format(
                    value=self.raw, pattern=self._VALID_RE.pattern
                )
            )
        object.__setattr__(self, "normalized", canonicalize_name(self.raw))

    def __str__(self) -> str:
        return self.normalized
