# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

"""A fingerprint-addressed store of installable wheels.

Each source fingerprint owns a directory of immutable revisions plus a `current` pointer naming the
revision to use:

    entries/0/<fingerprint key>/
        current
        revisions/<revision>/
            entry.json
            <project>-<version>-<tags>.whl
            unpacked/

Revisions are never modified once finalized. A refresh builds a new revision and swings the
`current` pointer to it; readers holding the old revision are unaffected.

At most one build runs per fingerprint at a time: threads of this process coordinate through a
single-flight registry and processes coordinate through a per-fingerprint file lock.
"""

import json
import os
import shutil
import threading
import zipfile
from contextlib import contextmanager
from typing import Any, Callable, Dict, FrozenSet, Iterable, Iterator, List, Optional, Set, Tuple
from uuid import uuid4

import attr

from sitesync.atomic_directory import AtomicDirectory, lock_file
from sitesync.cache.dirs import CacheDir
from sitesync.common import atomic_write, pluralize, safe_mkdir, safe_rmtree
from sitesync.dist_metadata import DistMetadata, MetadataError
from sitesync.enum import Enum
from sitesync.exceptions import CacheError
from sitesync.fingerprint import SourceFingerprint
from sitesync.pep_503 import ProjectName
from sitesync.tracer import TRACER
from sitesync.variables import ENV

_ENTRY_JSON = "entry.json"
_CURRENT = "current"
_REVISIONS = "revisions"
_UNPACKED = "unpacked"


def _unpack_wheel(wheel: str, dest_dir: str) -> None:
    with zipfile.ZipFile(wheel) as zf:
        for name in zf.namelist():
            if os.path.isabs(name) or ".." in name.split("/"):
                raise CacheError(
                    "The wheel {wheel} contains a path outside its root: {name}".format(
                        wheel=os.path.basename(wheel), name=name
                    )
                )
        zf.extractall(dest_dir)


class Provenance(Enum["Provenance.Value"]):
    class Value(Enum.Value):
        pass

    DOWNLOAD = Value("download")
    BUILD = Value("build")


@attr.s(frozen=True)
class Built:
    """The output of a cache builder: a wheel somewhere under the work directory it was handed."""

    wheel: str = attr.ib()
    provenance: Provenance.Value = attr.ib()
    yanked: bool = attr.ib(default=False)
    yanked_reason: Optional[str] = attr.ib(default=None)


Builder = Callable[[str], Built]


@attr.s(frozen=True)
class CacheEntry:
    fingerprint: SourceFingerprint = attr.ib()
    metadata: DistMetadata = attr.ib()
    wheel: str = attr.ib()
    provenance: Provenance.Value = attr.ib()
    yanked: bool = attr.ib(default=False)
    yanked_reason: Optional[str] = attr.ib(default=None)

    @property
    def project_name(self) -> ProjectName:
        return self.metadata.project_name

    @property
    def filename(self) -> str:
        return os.path.basename(self.wheel)

    @property
    def unpacked_dir(self) -> str:
        """The wheel's contents unpacked; the source of the files linked into environments."""
        return os.path.join(os.path.dirname(self.wheel), _UNPACKED)


@attr.s(frozen=True)
class Refresh:
    """Which cache entries to bypass: all of them or just those of the named projects."""

    all: bool = attr.ib(default=False)
    project_names: FrozenSet[ProjectName] = attr.ib(default=frozenset(), converter=frozenset)

    def applies_to(self, project_name: ProjectName) -> bool:
        return self.all or project_name in self.project_names

    def __bool__(self) -> bool:
        return self.all or bool(self.project_names)


def format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if value < 1024 or unit == "GiB":
            return "{value:.1f}{unit}".format(value=value, unit=unit)
        value /= 1024
    raise AssertionError("Unreachable.")


@attr.s(frozen=True)
class CleanReport:
    project_names: Tuple[ProjectName, ...] = attr.ib()
    removed_files: int = attr.ib()
    removed_bytes: int = attr.ib()

    def render(self) -> str:
        if not self.removed_files:
            if self.project_names:
                return "No cache entries found for {names}".format(
                    names=", ".join(name.normalized for name in self.project_names)
                )
            return "No cache entries found"
        message = "Removed {count} {files}".format(
            count=self.removed_files, files=pluralize(self.removed_files, "file")
        )
        if self.project_names:
            message += " for {names}".format(
                names=", ".join(name.normalized for name in self.project_names)
            )
        return "{message} ({size})".format(message=message, size=format_size(self.removed_bytes))


class _Flight:
    """One in-flight build that any number of threads can wait on."""

    def __init__(self) -> None:
        self._done = threading.Event()
        self._entry: Optional[CacheEntry] = None
        self._error: Optional[BaseException] = None

    def succeed(self, entry: CacheEntry) -> None:
        self._entry = entry
        self._done.set()

    def fail(self, error: BaseException) -> None:
        self._error = error
        self._done.set()

    def wait(self) -> CacheEntry:
        self._done.wait()
        if self._error is not None:
            raise self._error
        assert self._entry is not None
        return self._entry


def _count_files(directory: str) -> Tuple[int, int]:
    files = 0
    size = 0
    for root, _, filenames in os.walk(directory):
        for filename in filenames:
            files += 1
            try:
                size += os.lstat(os.path.join(root, filename)).st_size
            except OSError:
                pass
    return files, size


class ArtifactCache:
    """A handle on the artifact cache rooted at a directory.

    Open the cache with `ArtifactCache.open` for the duration of a run; closing it removes any
    scratch space the run used.
    """

    @classmethod
    @contextmanager
    def open(cls, root: Optional[str] = None) -> Iterator["ArtifactCache"]:
        cache = cls(root or ENV.SITESYNC_CACHE_DIR)
        try:
            yield cache
        finally:
            cache.close()

    def __init__(self, root: str) -> None:
        self._root = os.path.realpath(root)
        self._session = uuid4().hex
        self._lock = threading.Lock()
        self._flights: Dict[str, _Flight] = {}
        self._fresh: Set[str] = set()
        self._closed = False

    @property
    def root(self) -> str:
        return self._root

    def path(self, cache_dir: CacheDir.Value, *subdirs: str) -> str:
        return cache_dir.path(*subdirs, cache_root=self._root)

    def scratch_dir(self) -> str:
        """Create a fresh scratch directory that is removed when the cache is closed."""
        if self._closed:
            raise CacheError("The cache at {root} is closed.".format(root=self._root))
        return safe_mkdir(self.path(CacheDir.TMP, self._session, uuid4().hex))

    def close(self) -> None:
        self._closed = True
        safe_rmtree(self.path(CacheDir.TMP, self._session))

    def _entry_dir(self, key: str) -> str:
        return self.path(CacheDir.ENTRIES, key)

    def _load_revision(self, revision_dir: str) -> Optional[Tuple[Dict[str, Any], str]]:
        entry_json = os.path.join(revision_dir, _ENTRY_JSON)
        try:
            with open(entry_json) as fp:
                data = json.load(fp)
        except (IOError, OSError, ValueError):
            return None
        return data, revision_dir

    def _current_revision(self, key: str) -> Optional[Tuple[Dict[str, Any], str]]:
        entry_dir = self._entry_dir(key)
        try:
            with open(os.path.join(entry_dir, _CURRENT)) as fp:
                revision = fp.read().strip()
        except (IOError, OSError):
            return None
        return self._load_revision(os.path.join(entry_dir, _REVISIONS, revision))

    @staticmethod
    def _to_entry(data: Dict[str, Any], revision_dir: str) -> Optional[CacheEntry]:
        wheel = os.path.join(revision_dir, data["wheel"])
        try:
            metadata = DistMetadata.from_wheel(wheel)
        except (IOError, OSError, MetadataError, zipfile.BadZipFile) as e:
            TRACER.log("Ignoring corrupt cache entry {wheel}: {err}".format(wheel=wheel, err=e))
            return None
        return CacheEntry(
            fingerprint=SourceFingerprint.parse(data["fingerprint"]),
            metadata=metadata,
            wheel=wheel,
            provenance=Provenance.for_value(data["provenance"]),
            yanked=bool(data.get("yanked", False)),
            yanked_reason=data.get("yanked_reason"),
        )

    def lookup(self, fingerprint: SourceFingerprint) -> Optional[CacheEntry]:
        """Return the current entry for `fingerprint` without building anything."""
        revision = self._current_revision(fingerprint.key)
        if revision is None:
            return None
        return self._to_entry(*revision)

    def entries_for(self, project_name: ProjectName) -> List[CacheEntry]:
        """Return the current entries of every fingerprint whose artifact is for `project_name`."""
        entries_dir = self.path(CacheDir.ENTRIES)
        if not os.path.isdir(entries_dir):
            return []
        entries = []
        for key in sorted(os.listdir(entries_dir)):
            revision = self._current_revision(key)
            if revision is None:
                continue
            data, revision_dir = revision
            if ProjectName(data.get("project_name", "")) != project_name:
                continue
            entry = self._to_entry(data, revision_dir)
            if entry is not None:
                entries.append(entry)
        return entries

    def _is_fresh(self, key: str, refresh: bool) -> bool:
        if not refresh:
            return True
        with self._lock:
            return key in self._fresh

    def get_or_build(
        self, fingerprint: SourceFingerprint, builder: Builder, refresh: bool = False
    ) -> CacheEntry:
        """Return the entry for `fingerprint`, running `builder` to populate it if needed.

        Concurrent calls for the same fingerprint run `builder` at most once; the other callers
        wait for its result. When `refresh` is set, any entry left by a prior run is bypassed and
        replaced by a new build; entries built earlier in this run are reused.

        A failed build is reported to every caller waiting on it but is not remembered: the next
        call for the fingerprint tries again.
        """
        key = fingerprint.key
        if self._is_fresh(key, refresh):
            entry = self.lookup(fingerprint)
            if entry is not None:
                return entry

        with self._lock:
            flight = self._flights.get(key)
            owner = flight is None
            if flight is None:
                flight = _Flight()
                self._flights[key] = flight

        if not owner:
            TRACER.log(
                "Waiting on in-flight build of {fingerprint}".format(fingerprint=fingerprint), V=3
            )
            return flight.wait()

        try:
            entry = self._build(fingerprint, builder, refresh)
        except BaseException as e:
            flight.fail(e)
            raise
        else:
            flight.succeed(entry)
            return entry
        finally:
            with self._lock:
                self._flights.pop(key, None)

    def _populate(self, fingerprint: SourceFingerprint, built: Built, entry_dir: str) -> CacheEntry:
        revision = uuid4().hex
        atomic_dir = AtomicDirectory(os.path.join(entry_dir, _REVISIONS, revision))
        wheel_name = os.path.basename(built.wheel)
        wheel = os.path.join(atomic_dir.work_dir, wheel_name)
        try:
            safe_mkdir(atomic_dir.work_dir)
            shutil.move(built.wheel, wheel)
            try:
                metadata = DistMetadata.from_wheel(wheel)
            except (MetadataError, zipfile.BadZipFile) as e:
                raise CacheError(
                    "Failed to read the metadata of {wheel} built for {fingerprint}.".format(
                        wheel=wheel_name, fingerprint=fingerprint
                    )
                ) from e
            _unpack_wheel(wheel, os.path.join(atomic_dir.work_dir, _UNPACKED))
            with open(os.path.join(atomic_dir.work_dir, _ENTRY_JSON), "w") as fp:
                json.dump(
                    {
                        "fingerprint": str(fingerprint),
                        "project_name": metadata.project_name.raw,
                        "version": str(metadata.version),
                        "wheel": wheel_name,
                        "provenance": str(built.provenance),
                        "yanked": built.yanked,
                        "yanked_reason": built.yanked_reason,
                    },
                    fp,
                    sort_keys=True,
                )
        except BaseException:
            atomic_dir.cleanup()
            raise
        atomic_dir.finalize()
        atomic_write(os.path.join(entry_dir, _CURRENT), revision)
        return CacheEntry(
            fingerprint=fingerprint,
            metadata=metadata,
            wheel=os.path.join(atomic_dir.target_dir, wheel_name),
            provenance=built.provenance,
            yanked=built.yanked,
            yanked_reason=built.yanked_reason,
        )

    def _build(self, fingerprint: SourceFingerprint, builder: Builder, refresh: bool) -> CacheEntry:
        key = fingerprint.key
        unlock = lock_file(os.path.join(self.path(CacheDir.ENTRIES), "{key}.lck".format(key=key)))
        try:
            if self._is_fresh(key, refresh):
                # Another process may have built the entry while we waited on the lock.
                entry = self.lookup(fingerprint)
                if entry is not None:
                    return entry

            work_dir = self.scratch_dir()
            try:
                with TRACER.timed(
                    "Populating cache entry for {fingerprint}".format(fingerprint=fingerprint), V=2
                ):
                    entry = self._populate(fingerprint, builder(work_dir), self._entry_dir(key))
            finally:
                safe_rmtree(work_dir)

            with self._lock:
                self._fresh.add(key)
            return entry
        finally:
            unlock()

    def clean(self, project_names: Iterable[ProjectName] = ()) -> CleanReport:
        """Remove cache entries for the given projects or else the whole cache."""
        names = tuple(sorted(set(project_names)))
        if not names:
            files, size = _count_files(self._root) if os.path.isdir(self._root) else (0, 0)
            with TRACER.timed("Removing the cache at {root}".format(root=self._root)):
                safe_rmtree(self._root)
            return CleanReport(project_names=(), removed_files=files, removed_bytes=size)

        removed_files = 0
        removed_bytes = 0
        entries_dir = self.path(CacheDir.ENTRIES)
        if os.path.isdir(entries_dir):
            for key in sorted(os.listdir(entries_dir)):
                entry_dir = os.path.join(entries_dir, key)
                revisions_dir = os.path.join(entry_dir, _REVISIONS)
                if not os.path.isdir(revisions_dir):
                    continue
                for revision in os.listdir(revisions_dir):
                    loaded = self._load_revision(os.path.join(revisions_dir, revision))
                    if loaded and ProjectName(loaded[0].get("project_name", "")) in names:
                        files, size = _count_files(entry_dir)
                        removed_files += files
                        removed_bytes += size
                        safe_rmtree(entry_dir)
                        break
        return CleanReport(
            project_names=names, removed_files=removed_files, removed_bytes=removed_bytes
        )
