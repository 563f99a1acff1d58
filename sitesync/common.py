# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import errno
import os
import shutil
import stat
import sys
from contextlib import contextmanager
from typing import IO, Any, Iterator, Optional, Sized, Tuple, Union
from uuid import uuid4

from sitesync.enum import Enum


def pluralize(subject: Union[int, Sized], noun: str) -> str:
    if noun == "":
        return ""
    count = subject if isinstance(subject, int) else len(subject)
    if count == 1:
        return noun
    if noun[-1] == "y":
        return noun[:-1] + "ies"
    elif noun[-1] in ("s", "x", "z") or noun[-2:] in ("sh", "ch"):
        return noun + "es"
    else:
        return noun + "s"


def safe_mkdir(directory: str, clean: bool = False) -> str:
    """Safely create a directory.

    Ensures a directory is present.  If it's not there, it is created.  If it is, it's a no-op. If
    clean is True, ensures the directory is empty.
    """
    if clean:
        safe_rmtree(directory)
    try:
        os.makedirs(directory)
    except OSError as e:
        if e.errno != errno.EEXIST:
            raise
    return directory


def safe_open(filename: str, *args: Any, **kwargs: Any) -> IO:
    """Safely open a file.

    ``safe_open`` ensures that the directory components leading up the specified file have been
    created first.
    """
    parent_dir = os.path.dirname(filename)
    if parent_dir:
        safe_mkdir(parent_dir)
    return open(filename, *args, **kwargs)


def safe_delete(filename: str) -> None:
    """Delete a file safely.

    If it's not present, no-op.
    """
    try:
        os.unlink(filename)
    except OSError as e:
        if e.errno != errno.ENOENT:
            raise


def safe_rmtree(directory: str) -> None:
    """Delete a directory if it's present.

    If it's not present, no-op.
    """
    if os.path.exists(directory):
        shutil.rmtree(directory, True)


def prune_empty_dirs(start: str, stop: str) -> None:
    """Remove `start` and each of its parents up to (but excluding) `stop` while they are empty."""
    stop = os.path.realpath(stop)
    current = os.path.realpath(start)
    while current != stop and current.startswith(stop + os.sep):
        try:
            os.rmdir(current)
        except OSError as e:
            if e.errno in (errno.ENOTEMPTY, errno.EEXIST, errno.ENOENT):
                return
            raise
        current = os.path.dirname(current)


def touch(
    file: str,
    times: Optional[Union[int, float, Tuple[int, int], Tuple[float, float]]] = None,
) -> str:
    """Equivalent of unix `touch path`.

    If no times is passed, the current time is used to set atime and mtime. If a single int or float
    is passed for times, it is used for both atime and mtime. If a 2-tuple of ints or floats is
    passed, the 1st slot is the atime and the 2nd the mtime, just as for `os.utime`.
    """
    with safe_open(file, "a"):
        os.utime(file, (times, times) if isinstance(times, (int, float)) else times)
    return file


def chmod_plus_x(path: str) -> None:
    """Equivalent of unix `chmod a+x path`"""
    path_mode = os.stat(path).st_mode
    path_mode &= int("777", 8)
    if path_mode & stat.S_IRUSR:
        path_mode |= stat.S_IXUSR
    if path_mode & stat.S_IRGRP:
        path_mode |= stat.S_IXGRP
    if path_mode & stat.S_IROTH:
        path_mode |= stat.S_IXOTH
    os.chmod(path, path_mode)


def atomic_write(path: str, content: str) -> None:
    """Write `content` to `path` such that readers see either the old file or the new one."""
    temp_path = "{path}.{unique}.tmp".format(path=path, unique=uuid4().hex)
    with safe_open(temp_path, "w") as fp:
        fp.write(content)
    os.replace(temp_path, path)


@contextmanager
def environment_as(**kwargs: Any) -> Iterator[None]:
    """Mutates the `os.environ` for the duration of the context.

    Keyword arguments with None values are removed from os.environ (if present) and all other
    keyword arguments are added or updated in `os.environ` with the values taken from the
    stringification (`str(...)`) of each value.
    """
    existing = {key: os.environ.get(key) for key in kwargs}

    def adjust_environment(mapping):
        for key, value in mapping.items():
            if value is not None:
                os.environ[key] = str(value)
            else:
                os.environ.pop(key, None)

    adjust_environment(kwargs)
    try:
        yield
    finally:
        adjust_environment(existing)


class LinkMode(Enum["LinkMode.Value"]):
    class Value(Enum.Value):
        pass

    CLONE = Value("clone")
    COPY = Value("copy")
    HARDLINK = Value("hardlink")

    @classmethod
    def default(cls) -> "LinkMode.Value":
        return LinkMode.CLONE


# From linux/fs.h: _IOW(0x94, 9, int)
_FICLONE = 0x40049409


def _try_clone(src: str, dst: str) -> bool:
    if not sys.platform.startswith("linux"):
        return False

    import fcntl

    src_fd = os.open(src, os.O_RDONLY)
    try:
        dst_fd = os.open(dst, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        try:
            fcntl.ioctl(dst_fd, _FICLONE, src_fd)
        except OSError:
            os.close(dst_fd)
            dst_fd = -1
            os.unlink(dst)
            return False
        finally:
            if dst_fd != -1:
                os.close(dst_fd)
    finally:
        os.close(src_fd)
    shutil.copymode(src, dst)
    return True


def link_file(src: str, dst: str, link_mode: LinkMode.Value) -> LinkMode.Value:
    """Place the file at `src` at `dst` using the given link mode.

    Hard links fall back to copies across devices or when the kernel protects the source from being
    linked. Clones (copy-on-write reflinks) fall back to copies wherever the filesystem does not
    support them. Any existing file at `dst` is replaced.

    :return: The link mode actually used.
    """
    safe_mkdir(os.path.dirname(dst))
    safe_delete(dst)
    if link_mode is LinkMode.HARDLINK:
        try:
            os.link(src, dst)
            return LinkMode.HARDLINK
        except OSError as e:
            # For a permission issue, the cause can be `protected_hardlinks`.
            # See: https://www.kernel.org/doc/Documentation/sysctl/fs.txt
            if e.errno not in (errno.EPERM, errno.EXDEV, errno.EMLINK):
                raise
    elif link_mode is LinkMode.CLONE:
        if _try_clone(src, dst):
            return LinkMode.CLONE
    shutil.copy2(src, dst)
    return LinkMode.COPY
