# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

from sitesync.sitesync_warnings import emit_warnings, format_warning
from sitesync.variables import Variables


def create_env(**env: str) -> Variables:
    return Variables(environ=dict(env, SITESYNC_IGNORE_RCFILES="1"))


def test_emit_warnings_default_on() -> None:
    assert emit_warnings(create_env())


def test_emit_warnings_env_off() -> None:
    assert not emit_warnings(create_env(SITESYNC_EMIT_WARNINGS="0"))


def test_emit_warnings_verbose_on() -> None:
    assert emit_warnings(create_env(SITESYNC_EMIT_WARNINGS="0", SITESYNC_VERBOSE="1"))


def test_format_warning() -> None:
    assert "warning: foo==1.0 is yanked." == format_warning("foo==1.0 is yanked.")
