# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import base64
import csv
import hashlib
import io
import os
from typing import IO, Callable, Iterable, Iterator, Optional

import attr

from sitesync import hashing
from sitesync.common import safe_open


@attr.s(frozen=True)
class Hash:
    @classmethod
    def create(cls, hasher: "hashlib._Hash") -> "Hash":
        # The fingerprint encoding is defined for PEP-376 RECORD files as `urlsafe-base64-nopad`
        # which is fully spelled out in code in PEP-427:
        # + https://peps.python.org/pep-0376/#record
        # + https://peps.python.org/pep-0427/#appendix
        fingerprint = base64.urlsafe_b64encode(hasher.digest()).rstrip(b"=")
        alg = hasher.name.lower()
        return cls(value="{alg}={hash}".format(alg=alg, hash=fingerprint.decode("ascii")))

    value: str = attr.ib()

    def __str__(self) -> str:
        return self.value


@attr.s(frozen=True)
class InstalledFile:
    """The record of a single installed file from a PEP 376 RECORD file.

    See: https://peps.python.org/pep-0376/#record
    """

    path: str = attr.ib()
    hash: Optional[Hash] = attr.ib(default=None)
    size: Optional[int] = attr.ib(default=None)


def create_installed_file(path: str, dest_dir: str) -> InstalledFile:
    hasher = hashlib.sha256()
    hashing.file_hash(path, digest=hasher)
    return InstalledFile(
        path=os.path.relpath(path, dest_dir).replace(os.sep, "/"),
        hash=Hash.create(hasher),
        size=os.stat(path).st_size,
    )


class RecordError(Exception):
    pass


class RecordNotFoundError(RecordError):
    """Indicates a distribution's RECORD metadata could not be found."""


@attr.s(frozen=True)
class Record:
    """Represents the PEP-376 RECORD of an installed distribution.

    See: https://peps.python.org/pep-0376/#record
    """

    @classmethod
    def write_fp(cls, fp: IO, installed_files: Iterable[InstalledFile], eol: str = "\n") -> None:
        csv_writer = csv.writer(fp, delimiter=",", quotechar='"', lineterminator=eol)
        for installed_file in installed_files:
            csv_writer.writerow(
                (
                    installed_file.path,
                    str(installed_file.hash) if installed_file.hash else "",
                    installed_file.size if installed_file.size is not None else "",
                )
            )

    @classmethod
    def write_bytes(cls, installed_files: Iterable[InstalledFile], eol: str = "\n") -> bytes:
        record_fp = io.StringIO()
        cls.write_fp(fp=record_fp, installed_files=installed_files, eol=eol)
        return record_fp.getvalue().encode("utf-8")

    @classmethod
    def write(cls, dst: str, installed_files: Iterable[InstalledFile], eol: str = "\n") -> None:
        # The RECORD is a csv file with the path to each installed file in the 1st column.
        # See: https://peps.python.org/pep-0376/#record
        with safe_open(dst, "w", newline="") as fp:
            cls.write_fp(fp, installed_files, eol=eol)

    @classmethod
    def read(
        cls, lines: Iterable[str], exclude: Optional[Callable[[str], bool]] = None
    ) -> Iterator[InstalledFile]:
        # The RECORD is a csv file with the path to each installed file in the 1st column.
        # See: https://peps.python.org/pep-0376/#record
        for row in csv.reader(lines, delimiter=",", quotechar='"'):
            if not row:
                continue
            path = row[0]
            fingerprint = row[1] if len(row) > 1 else ""
            file_size = row[2] if len(row) > 2 else ""
            if exclude and exclude(path):
                continue
            file_hash = Hash(fingerprint) if fingerprint else None
            size = int(file_size) if file_size else None
            yield InstalledFile(path=path, hash=file_hash, size=size)

    @classmethod
    def load(cls, site_packages: str, dist_info_dir: str) -> "Record":
        record = cls(
            site_packages=site_packages, relative_path=os.path.join(dist_info_dir, "RECORD")
        )
        if not os.path.isfile(record.path):
            raise RecordNotFoundError(
                "Could not find the installation RECORD for {dist_info_dir} in "
                "{site_packages}".format(
                    dist_info_dir=dist_info_dir, site_packages=site_packages
                )
            )
        return record

    site_packages: str = attr.ib()
    relative_path: str = attr.ib()

    @property
    def path(self) -> str:
        return os.path.join(self.site_packages, self.relative_path)

    def installed_files(self) -> Iterator[InstalledFile]:
        with open(self.path, newline="") as fp:
            for installed_file in self.read(fp):
                yield installed_file

    def iter_absolute_paths(self) -> Iterator[str]:
        """Yield the absolute path of every file this RECORD claims, RECORD itself included.

        Recorded paths are relative to site-packages; scripts and data files recorded with `../`
        prefixes resolve outside of it.
        """
        for installed_file in self.installed_files():
            yield os.path.normpath(os.path.join(self.site_packages, installed_file.path))
