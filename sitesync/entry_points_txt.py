# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import itertools
import os
import re
from textwrap import dedent
from typing import Iterator, Optional

from sitesync.common import chmod_plus_x, safe_open
from sitesync.dist_metadata import CallableEntryPoint, DistMetadata, NamedEntryPoint
from sitesync.target import Target

# Launchers such as `pip3.11` name the interpreter version they were built for; they are
# installed under the version of the interpreter they will actually run with.
_VERSIONED_LAUNCHER_RE = re.compile(r"^(?P<name>pip)\d+\.\d+$")


def script_name(named_entry_point: NamedEntryPoint, target: Optional[Target] = None) -> str:
    name = named_entry_point.name
    if target is not None:
        match = _VERSIONED_LAUNCHER_RE.match(name)
        if match:
            return "{name}{version}".format(name=match.group("name"), version=target.major_minor)
    return name


def _shebang(target: Optional[Target]) -> str:
    return "#!{binary}".format(binary=target.binary) if target else "#!python"


def install_scripts(
    dest_dir: str,
    metadata: DistMetadata,
    target: Optional[Target] = None,
    overwrite: bool = True,
) -> Iterator[str]:
    """Write a launcher script for each console and gui entry point of a distribution.

    :return: The absolute paths of the scripts written.
    """
    entry_map = metadata.get_entry_map()
    if not entry_map:
        return

    shebang = _shebang(target)
    for named_entry_point in itertools.chain.from_iterable(
        entry_map.get(group, {}).values() for group in ("console_scripts", "gui_scripts")
    ):
        entry_point = named_entry_point.entry_point
        if isinstance(entry_point, CallableEntryPoint):
            script = dedent(
                """\
                {shebang}
                # -*- coding: utf-8 -*-
                import importlib
                import sys

                entry_point = importlib.import_module({modname!r})
                for attr in {attrs!r}:
                    entry_point = getattr(entry_point, attr)

                if __name__ == "__main__":
                    sys.exit(entry_point())
                """
            ).format(shebang=shebang, modname=entry_point.module, attrs=entry_point.attrs)
        else:
            script = dedent(
                """\
                {shebang}
                # -*- coding: utf-8 -*-
                import runpy
                import sys

                if __name__ == "__main__":
                    runpy.run_module({modname!r}, run_name="__main__", alter_sys=True)
                    sys.exit(0)
                """
            ).format(shebang=shebang, modname=entry_point.module)
        script_abspath = os.path.join(dest_dir, script_name(named_entry_point, target))
        if overwrite or not os.path.exists(script_abspath):
            with safe_open(script_abspath, "w") as fp:
                fp.write(script)
            chmod_plus_x(fp.name)
            yield script_abspath
