# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

"""Directories that appear fully populated or not at all.

The artifact cache and the git checkout store both populate directories that concurrent sitesync
processes (and threads) may race to create. Each populates a sibling work directory and renames
it into place; the rename is atomic since work directory and target share a parent.
"""

import errno
import fcntl
import os
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator
from uuid import uuid4

import attr

from sitesync.common import safe_mkdir, safe_rmtree
from sitesync.tracer import TRACER


class AtomicDirectory:
    """A target directory plus the private work directory used to populate it.

    Unlocked atomic directories get a unique work directory each, and the first racer to finalize
    wins. Use the `atomic_directory` context manager instead when only one racer should do the
    work.
    """

    def __init__(self, target_dir: str, locked: bool = False) -> None:
        head, tail = os.path.split(os.path.normpath(target_dir))
        self._target_dir = target_dir
        self._lockfile = os.path.join(head, ".{name}.lck".format(name=tail))
        self._work_dir = "{target_dir}.{suffix}.work".format(
            target_dir=target_dir, suffix="lck" if locked else uuid4().hex
        )

    @property
    def target_dir(self) -> str:
        return self._target_dir

    @property
    def work_dir(self) -> str:
        return self._work_dir

    @property
    def lockfile(self) -> str:
        return self._lockfile

    def is_finalized(self) -> bool:
        return os.path.exists(self._target_dir)

    def finalize(self) -> None:
        """Move the work directory into place as the target.

        Losing a race to another finalizer leaves the winner's target in place. The work directory
        is removed either way.
        """
        if self.is_finalized():
            return

        try:
            os.rename(self._work_dir, self._target_dir)
        except OSError as e:
            if e.errno not in (errno.EEXIST, errno.ENOTEMPTY):
                raise
        finally:
            self.cleanup()

    def cleanup(self) -> None:
        safe_rmtree(self._work_dir)


@attr.s(frozen=True)
class _FileLock:
    path: str = attr.ib()
    _thread_lock: threading.Lock = attr.ib(factory=threading.Lock, init=False, eq=False)

    def acquire(self) -> Callable[[], None]:
        # File locks are held per process; threads of this process serialize on the thread lock
        # first.
        self._thread_lock.acquire()
        try:
            safe_mkdir(os.path.dirname(self.path))
            fd = os.open(self.path, os.O_CREAT | os.O_WRONLY)
        except BaseException:
            self._thread_lock.release()
            raise

        # POSIX record locks are dropped by the OS when the process exits, so a crashed holder
        # never leaves one stale.
        fcntl.lockf(fd, fcntl.LOCK_EX)

        def release() -> None:
            try:
                fcntl.lockf(fd, fcntl.LOCK_UN)
            finally:
                os.close(fd)
                self._thread_lock.release()

        return release


_FILE_LOCKS: Dict[str, _FileLock] = {}
_FILE_LOCKS_LOCK = threading.Lock()


def lock_file(file_path: str) -> Callable[[], None]:
    """Exclusively lock `file_path` across threads and processes.

    :return: A callable that releases the lock.
    """
    with _FILE_LOCKS_LOCK:
        file_lock = _FILE_LOCKS.get(file_path)
        if file_lock is None:
            file_lock = _FileLock(file_path)
            _FILE_LOCKS[file_path] = file_lock
    return file_lock.acquire()


@contextmanager
def atomic_directory(target_dir: str) -> Iterator[AtomicDirectory]:
    """Yield an exclusively locked `AtomicDirectory` for `target_dir`.

    The yielded directory `is_finalized` when the target already exists and there is nothing to do.
    Otherwise the block populates `work_dir`, which is moved into place when the block completes
    and discarded when it raises.
    """
    atomic_dir = AtomicDirectory(target_dir=target_dir, locked=True)
    if atomic_dir.is_finalized():
        yield atomic_dir
        return

    unlock = lock_file(atomic_dir.lockfile)
    try:
        if atomic_dir.is_finalized():
            # Populated by whoever held the lock before us.
            yield atomic_dir
            return

        if os.path.exists(atomic_dir.work_dir):
            TRACER.log(
                "Discarding the work directory {work_dir} left by an interrupted process.".format(
                    work_dir=atomic_dir.work_dir
                )
            )
        safe_mkdir(atomic_dir.work_dir, clean=True)
        try:
            yield atomic_dir
        except BaseException:
            atomic_dir.cleanup()
            raise
        atomic_dir.finalize()
    finally:
        unlock()
