# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import platform
import sys
from textwrap import dedent
from typing import Any, Iterator, Optional

from sitesync.version import __version__

_ASSERT_DETAILS = (
    dedent(
        """\
        sitesync {version}
        platform: {platform}
        python: {python_version}
        argv: {argv}
        """
    )
    .format(
        version=__version__, platform=platform.platform(), python_version=sys.version, argv=sys.argv
    )
    .strip()
)

_ASSERT_ADVICE = dedent(
    """\
    The error reported above resulted from an unexpected error which you should
    never encounter.

    If you could file an issue with the error and details above, we'd be
    grateful. Please redact or amend any details that expose sensitive
    information.
    """
).strip()


def reportable_unexpected_error_msg(msg: str = "", *args: Any, **kwargs: Any) -> str:
    message = [msg.format(*args, **kwargs), "---", _ASSERT_DETAILS, "---", _ASSERT_ADVICE]
    return "\n".join(message)


def production_assert(condition: bool, msg: str = "", *args: Any, **kwargs: Any) -> None:
    if not condition:
        raise AssertionError(reportable_unexpected_error_msg(msg, *args, **kwargs))


class SitesyncError(Exception):
    """The root of all errors sitesync reports to its users."""


class DuplicateRequirementError(SitesyncError):
    def __init__(self, project_name: str) -> None:
        super().__init__(
            "Detected duplicate package in requirements: {project_name}".format(
                project_name=project_name
            )
        )
        self.project_name = project_name


class SourceFetchError(SitesyncError):
    """Indicates an artifact or index page could not be fetched.

    The optional hint explains why a fetch was not even attempted, for example when the network was
    disabled.
    """

    def __init__(self, msg: str, hint: Optional[str] = None) -> None:
        super().__init__(msg)
        self.hint = hint


class ArtifactMismatchError(SitesyncError):
    """Indicates an artifact's embedded name or version differs from what was requested."""


class IncompatibleArtifactError(SitesyncError):
    """Indicates an artifact's tags are not compatible with the target interpreter."""


class RequiresPythonViolation(SitesyncError):
    pass


class BuildError(SitesyncError):
    pass


class CompileError(SitesyncError):
    pass


class InvalidCompileOptionError(CompileError):
    """Indicates the compiler rejected its configuration before compiling any file."""


class FileCompileError(CompileError):
    def __init__(self, path: str, diagnostic: str) -> None:
        super().__init__(
            "Failed to compile {path}: {diagnostic}".format(path=path, diagnostic=diagnostic)
        )
        self.path = path
        self.diagnostic = diagnostic


class InstallError(SitesyncError):
    pass


class PlanError(SitesyncError):
    pass


class CacheError(SitesyncError):
    pass


def iter_causes(error: BaseException) -> Iterator[BaseException]:
    cause: Optional[BaseException] = error
    while cause is not None:
        yield cause
        cause = cause.__cause__


def render_error(error: BaseException) -> str:
    """Render an error and its explicit causes (`raise ... from ...`) one per line."""
    lines = []
    for index, cause in enumerate(iter_causes(error)):
        message = str(cause) or type(cause).__name__
        if index == 0:
            lines.append("error: {message}".format(message=message))
        else:
            lines.append("  Caused by: {message}".format(message=message))
    return "\n".join(lines)
