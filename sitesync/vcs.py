# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import os
import re
import subprocess
from typing import List, Optional, Tuple

import attr

from sitesync.atomic_directory import atomic_directory
from sitesync.enum import Enum
from sitesync.exceptions import SourceFetchError
from sitesync.tracer import TRACER


class VCS(Enum["VCS.Value"]):
    class Value(Enum.Value):
        pass

    Git = Value("git")


_COMMIT_RE = re.compile(r"^[0-9a-f]{40}$")

NETWORK_DISABLED_HINT = "the network was disabled"


def is_commit(ref: Optional[str]) -> bool:
    return ref is not None and _COMMIT_RE.match(ref) is not None


@attr.s(frozen=True)
class GitClient:
    """Resolves refs to commits and checks out commits using the `git` CLI."""

    git: str = attr.ib(default="git")
    offline: bool = attr.ib(default=False)

    def _run(self, args: List[str], cwd: Optional[str] = None) -> str:
        command = [self.git] + args
        TRACER.log("Running {command}".format(command=" ".join(command)), V=3)
        try:
            process = subprocess.Popen(
                args=command, cwd=cwd, stdout=subprocess.PIPE, stderr=subprocess.PIPE
            )
        except OSError as e:
            raise SourceFetchError(
                "Failed to execute {git}: {err}".format(git=self.git, err=e)
            ) from e
        stdout, stderr = process.communicate()
        if process.returncode != 0:
            raise SourceFetchError(
                "Command `{command}` failed with exit code {exit_code}: {stderr}".format(
                    command=" ".join(command),
                    exit_code=process.returncode,
                    stderr=stderr.decode("utf-8", errors="replace").strip(),
                )
            )
        return stdout.decode("utf-8")

    def _check_network(self, repository: str) -> None:
        if self.offline and not repository.startswith("file://") and not os.path.isdir(repository):
            raise SourceFetchError(
                "Cannot access {repository} in offline mode.".format(repository=repository),
                hint=NETWORK_DISABLED_HINT,
            )

    def resolve_commit(self, repository: str, ref: Optional[str] = None) -> str:
        """Resolve a ref (branch, tag or `HEAD` when unset) of `repository` to a commit id.

        Commit ids are returned as-is without consulting the repository.
        """
        if ref is not None and is_commit(ref):
            return ref
        self._check_network(repository)
        requested = ref or "HEAD"
        # Annotated tags only list the commit they point to when asked for the peeled ref.
        output = self._run(["ls-remote", repository, requested, "{}^{{}}".format(requested)])
        matches: List[Tuple[str, str]] = []
        for line in output.splitlines():
            commit, _, name = line.partition("\t")
            matches.append((commit.strip(), name.strip()))
        for preferred in (
            "refs/tags/{}^{{}}".format(requested),  # The commit an annotated tag points to.
            "refs/tags/{}".format(requested),
            "refs/heads/{}".format(requested),
            requested,
        ):
            for commit, name in matches:
                if name == preferred:
                    return commit
        if matches:
            return matches[0][0]
        raise SourceFetchError(
            "Failed to resolve {ref} of {repository} to a commit.".format(
                ref=requested, repository=repository
            )
        )

    def checkout(self, repository: str, commit: str, dest: str) -> str:
        """Check out `commit` of `repository` at `dest` unless already checked out there."""
        with atomic_directory(dest) as atomic_dir:
            if not atomic_dir.is_finalized():
                self._check_network(repository)
                message = "Checking out {repository}@{commit}".format(
                    repository=repository, commit=commit
                )
                with TRACER.timed(message):
                    self._run(["clone", "--quiet", repository, atomic_dir.work_dir])
                    self._run(["checkout", "--quiet", commit], cwd=atomic_dir.work_dir)
        return dest
