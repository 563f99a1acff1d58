# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

from sitesync.variables import Variables


def emit_warnings(env: Variables) -> bool:
    """Whether the warnings a sync reports should be written to stderr."""
    if env.SITESYNC_VERBOSE > 0:
        return True
    elif env.SITESYNC_EMIT_WARNINGS is not None:
        return env.SITESYNC_EMIT_WARNINGS
    else:
        return True


def format_warning(message: str) -> str:
    return "warning: {message}".format(message=message)
