# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import hashlib
import os

from sitesync.hashing import Fingerprint, Sha256, Sha256Fingerprint, file_hash


def test_sha256() -> None:
    hasher = Sha256(b"foo")
    hasher.update(b"bar")
    fingerprint = hasher.hexdigest()
    assert isinstance(fingerprint, Sha256Fingerprint)
    assert "sha256" == fingerprint.algorithm
    assert hashlib.sha256(b"foobar").hexdigest() == fingerprint


def test_fingerprint_equality() -> None:
    hexdigest = hashlib.sha256(b"").hexdigest()
    assert Sha256Fingerprint(hexdigest) == hexdigest
    assert Sha256Fingerprint(hexdigest) != Fingerprint(hexdigest)
    assert 1 == len({Sha256Fingerprint(hexdigest), Sha256(b"").hexdigest()})


def test_file_hash(tmpdir: str) -> None:
    path = os.path.join(tmpdir, "data")
    data = os.urandom(100000)
    with open(path, "wb") as fp:
        fp.write(data)

    hasher = Sha256()
    file_hash(path, hasher)
    assert hashlib.sha256(data).hexdigest() == hasher.hexdigest()
