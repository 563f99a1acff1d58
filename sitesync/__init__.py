# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

"""Synchronize a Python environment with a declared set of requirements."""

from .version import __version__

__all__ = ("__version__",)
