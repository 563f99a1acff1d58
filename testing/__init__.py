# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import os
import shutil
import subprocess
from textwrap import dedent
from typing import Iterable, Mapping, Optional, Tuple

import pytest

from sitesync.cache.artifacts import ArtifactCache, Built, CacheEntry, Provenance
from sitesync.common import safe_mkdir, safe_open
from sitesync.distribution import Distribution
from sitesync.fingerprint import registry_fingerprint
from sitesync.locators import Registry
from sitesync.target import Target, TargetEnvironment


def make_environment(root: str) -> TargetEnvironment:
    """Create an empty virtual environment layout at `root` for the running interpreter."""
    return TargetEnvironment(
        root=root,
        target=Target.current(),
        site_packages=safe_mkdir(os.path.join(root, "lib", "site-packages")),
        scripts_dir=safe_mkdir(os.path.join(root, "bin")),
        include_dir=os.path.join(root, "include"),
    )


def make_project(
    project_dir: str,
    name: str,
    version: str,
    requires_python: Optional[str] = None,
    dependencies: Iterable[str] = (),
    scripts: Optional[Mapping[str, str]] = None,
    src_layout: bool = False,
) -> str:
    """Write a pure-Python project with static `pyproject.toml` metadata to `project_dir`."""
    lines = [
        "[project]",
        'name = "{name}"'.format(name=name),
        'version = "{version}"'.format(version=version),
    ]
    if requires_python:
        lines.append('requires-python = "{value}"'.format(value=requires_python))
    lines.append(
        "dependencies = [{dependencies}]".format(
            dependencies=", ".join('"{dep}"'.format(dep=dep) for dep in dependencies)
        )
    )
    if scripts:
        lines.append("")
        lines.append("[project.scripts]")
        lines.extend(
            '{name} = "{value}"'.format(name=script, value=value)
            for script, value in sorted(scripts.items())
        )
    with safe_open(os.path.join(project_dir, "pyproject.toml"), "w") as fp:
        fp.write("\n".join(lines) + "\n")

    module = name.replace("-", "_").replace(".", "_").lower()
    source_root = os.path.join(project_dir, "src") if src_layout else project_dir
    with safe_open(os.path.join(source_root, module, "__init__.py"), "w") as fp:
        fp.write(
            dedent(
                """\
                __version__ = {version!r}


                def main():
                    print({name!r}, __version__)
                """
            ).format(version=version, name=name)
        )
    return project_dir


def cache_wheel(cache: ArtifactCache, wheel: str) -> Tuple[Distribution, CacheEntry]:
    """Add a wheel to `cache` as if downloaded from a registry and return it as a distribution."""
    locator = Registry(filename=os.path.basename(wheel))
    fingerprint = registry_fingerprint(locator)

    def download(work_dir: str) -> Built:
        dest = os.path.join(work_dir, locator.filename)
        shutil.copy(wheel, dest)
        return Built(wheel=dest, provenance=Provenance.DOWNLOAD)

    entry = cache.get_or_build(fingerprint, download)
    return (
        Distribution(
            project_name=entry.project_name,
            version=entry.metadata.version,
            locator=locator,
            fingerprint=fingerprint,
            requires_python=entry.metadata.requires_python,
            requires_dists=entry.metadata.requires_dists,
        ),
        entry,
    )


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="Requires git.")


def git(repository: str, *args: str) -> str:
    """Run git in `repository` with a throwaway identity and return its stripped output."""
    return (
        subprocess.check_output(
            ["git", "-c", "user.name=test", "-c", "user.email=test@example.com"] + list(args),
            cwd=repository,
        )
        .decode("utf-8")
        .strip()
    )
