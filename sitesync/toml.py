# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

from typing import IO, Any, Dict, Union

import tomli

TomlDecodeError = tomli.TOMLDecodeError


def load(source: Union[str, IO[bytes]]) -> Dict[str, Any]:
    if isinstance(source, str):
        with open(source, "rb") as fp:
            return tomli.load(fp)
    else:
        return tomli.load(source)
