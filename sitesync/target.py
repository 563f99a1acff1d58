# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import json
import os
import subprocess
import sys
import sysconfig
from textwrap import dedent
from typing import Any, Dict, Optional, Tuple

import attr
from packaging import tags

from sitesync.exceptions import SitesyncError
from sitesync.pep_425 import CompatibilityTags
from sitesync.pep_508 import MarkerEnvironment
from sitesync.tracer import TRACER


class InvalidTargetEnvironmentError(SitesyncError):
    """Indicates a target environment is malformed or its interpreter could not be identified."""


# Run with the target interpreter; so this must only use the standard library.
_IDENTIFY = dedent(
    """\
    import json
    import os
    import platform
    import sys
    import sysconfig


    def format_full_version(info):
        version = "{0.major}.{0.minor}.{0.micro}".format(info)
        kind = info.releaselevel
        if kind != "final":
            version += kind[0] + str(info.serial)
        return version


    json.dump(
        {
            "binary": sys.executable,
            "version": list(sys.version_info[:3]),
            "implementation": sys.implementation.name,
            "prefix": sys.prefix,
            "base_prefix": getattr(sys, "base_prefix", sys.prefix),
            "paths": {
                name: sysconfig.get_path(name)
                for name in ("purelib", "platlib", "scripts", "data", "include")
            },
            "markers": {
                "implementation_name": sys.implementation.name,
                "implementation_version": format_full_version(sys.implementation.version),
                "os_name": os.name,
                "platform_machine": platform.machine(),
                "platform_python_implementation": platform.python_implementation(),
                "platform_release": platform.release(),
                "platform_system": platform.system(),
                "platform_version": platform.version(),
                "python_full_version": platform.python_version(),
                "python_version": ".".join(platform.python_version_tuple()[:2]),
                "sys_platform": sys.platform,
            },
        },
        sys.stdout,
    )
    """
)


def _interpreter_tag(implementation: str, version: Tuple[int, ...]) -> str:
    abbreviation = tags.INTERPRETER_SHORT_NAMES.get(implementation, implementation)
    return "{abbreviation}{major}{minor}".format(
        abbreviation=abbreviation, major=version[0], minor=version[1]
    )


def _compatibility_tags(implementation: str, version: Tuple[int, ...]) -> CompatibilityTags:
    if implementation == sys.implementation.name and tuple(version[:2]) == sys.version_info[:2]:
        return CompatibilityTags.current()
    python_version = tuple(version[:2])
    platforms = list(tags.platform_tags())
    if implementation == "cpython":
        supported = list(tags.cpython_tags(python_version=python_version, platforms=platforms))
    else:
        supported = list(
            tags.generic_tags(
                interpreter=_interpreter_tag(implementation, version), platforms=platforms
            )
        )
    supported.extend(
        tags.compatible_tags(
            python_version=python_version,
            interpreter=_interpreter_tag(implementation, version),
            platforms=platforms,
        )
    )
    return CompatibilityTags(tags=supported)


@attr.s(frozen=True)
class Target:
    """The interpreter distributions are resolved and installed for."""

    @classmethod
    def current(cls) -> "Target":
        return cls(
            binary=sys.executable,
            version=tuple(sys.version_info[:3]),
            implementation=sys.implementation.name,
            marker_environment=MarkerEnvironment.default(),
            tags=CompatibilityTags.current(),
        )

    @classmethod
    def from_identity(cls, identity: Dict[str, Any]) -> "Target":
        version = tuple(identity["version"])
        implementation = identity["implementation"]
        return cls(
            binary=identity["binary"],
            version=version,
            implementation=implementation,
            marker_environment=MarkerEnvironment.from_dict(identity["markers"]),
            tags=_compatibility_tags(implementation, version),
        )

    binary: str = attr.ib()
    version: Tuple[int, ...] = attr.ib(converter=tuple)
    implementation: str = attr.ib()
    marker_environment: MarkerEnvironment = attr.ib()
    tags: CompatibilityTags = attr.ib(eq=False)

    @property
    def python_version(self) -> str:
        """The full version of the interpreter; e.g.: `3.12.1`."""
        return ".".join(map(str, self.version))

    @property
    def major_minor(self) -> str:
        return ".".join(map(str, self.version[:2]))

    def is_compatible(self, wheel: str) -> bool:
        return self.tags.is_compatible(wheel)

    def __str__(self) -> str:
        return "{implementation} {version} at {binary}".format(
            implementation=self.implementation, version=self.python_version, binary=self.binary
        )


def identify(binary: str) -> Dict[str, Any]:
    """Run the interpreter at `binary` to learn its version, markers and install paths."""
    with TRACER.timed("Identifying interpreter {binary}".format(binary=binary), V=2):
        try:
            process = subprocess.Popen(
                args=[binary, "-sE", "-c", _IDENTIFY],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise InvalidTargetEnvironmentError(
                "Failed to execute the interpreter at {binary}: {err}".format(binary=binary, err=e)
            ) from e
        stdout, stderr = process.communicate()
    if process.returncode != 0:
        raise InvalidTargetEnvironmentError(
            "Failed to identify the interpreter at {binary}:\n{stderr}".format(
                binary=binary, stderr=stderr.decode("utf-8", errors="replace")
            )
        )
    return json.loads(stdout.decode("utf-8"))


def _current_paths() -> Dict[str, str]:
    return {
        name: sysconfig.get_path(name)
        for name in ("purelib", "platlib", "scripts", "data", "include")
    }


@attr.s(frozen=True)
class TargetEnvironment:
    """A virtual environment: an interpreter plus the directories packages are installed into."""

    @staticmethod
    def _find_binary(venv_dir: str) -> str:
        for name in ("python", "python3"):
            for bin_dir in ("bin", "Scripts"):
                binary = os.path.join(venv_dir, bin_dir, name)
                if os.path.isfile(binary) and os.access(binary, os.X_OK):
                    return binary
        raise InvalidTargetEnvironmentError(
            "The virtual environment at {venv_dir} has no python interpreter.".format(
                venv_dir=venv_dir
            )
        )

    @classmethod
    def from_venv(cls, venv_dir: str) -> "TargetEnvironment":
        if not os.path.isfile(os.path.join(venv_dir, "pyvenv.cfg")):
            raise InvalidTargetEnvironmentError(
                "The directory {venv_dir} is not a virtual environment; it has no "
                "pyvenv.cfg.".format(venv_dir=venv_dir)
            )
        identity = identify(cls._find_binary(venv_dir))
        paths = identity["paths"]
        real_venv_dir = os.path.realpath(venv_dir)
        site_packages = os.path.realpath(paths["purelib"])
        if os.path.commonpath((real_venv_dir, site_packages)) != real_venv_dir:
            raise InvalidTargetEnvironmentError(
                "The virtual environment at {venv_dir} is not valid. Its interpreter installs into "
                "{site_packages}, which is outside the environment.".format(
                    venv_dir=venv_dir, site_packages=site_packages
                )
            )
        return cls(
            root=real_venv_dir,
            target=Target.from_identity(identity),
            site_packages=site_packages,
            scripts_dir=os.path.realpath(paths["scripts"]),
            include_dir=os.path.realpath(paths["include"]),
        )

    @classmethod
    def current(cls) -> "TargetEnvironment":
        """The environment of the running interpreter."""
        paths = _current_paths()
        return cls(
            root=os.path.realpath(sys.prefix),
            target=Target.current(),
            site_packages=os.path.realpath(paths["purelib"]),
            scripts_dir=os.path.realpath(paths["scripts"]),
            include_dir=os.path.realpath(paths["include"]),
        )

    root: str = attr.ib()
    target: Target = attr.ib()
    site_packages: str = attr.ib()
    scripts_dir: str = attr.ib()
    include_dir: Optional[str] = attr.ib(default=None)

    @property
    def python_version(self) -> str:
        return self.target.python_version

    def headers_dir(self, project_name: str) -> str:
        return os.path.join(
            self.include_dir or os.path.join(self.root, "include"),
            "site",
            "python{version}".format(version=self.target.major_minor),
            project_name,
        )

