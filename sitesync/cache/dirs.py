# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import os
from typing import Optional

from sitesync.enum import Enum
from sitesync.variables import ENV


class CacheDir(Enum["CacheDir.Value"]):
    class Value(Enum.Value):
        def __init__(self, value: str, name: str, version: int, description: str) -> None:
            Enum.Value.__init__(self, value)
            self.name = name
            self.version = version
            self.description = description

        @property
        def rel_path(self) -> str:
            return os.path.join(self.value, str(self.version))

        def path(self, *subdirs: str, cache_root: Optional[str] = None) -> str:
            return os.path.join(cache_root or ENV.SITESYNC_CACHE_DIR, self.rel_path, *subdirs)

    ENTRIES = Value(
        "entries",
        version=0,
        name="Artifacts",
        description=(
            "Downloaded and built wheels along with their metadata, keyed by source fingerprint."
        ),
    )

    GIT = Value(
        "git",
        version=0,
        name="Git Checkouts",
        description="Checkouts of git repositories at specific commits.",
    )

    TMP = Value(
        "tmp",
        version=0,
        name="Scratch",
        description="Scratch space for in-flight downloads and builds.",
    )
