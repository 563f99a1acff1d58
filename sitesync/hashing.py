# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import hashlib
from typing import IO, Generic, Protocol, Type, TypeVar


class HintedDigest(Protocol):
    @property
    def block_size(self) -> int:
        pass

    def update(self, data: bytes) -> None:
        pass


class Fingerprint(str):
    """A hex digest that remembers the algorithm that produced it."""

    algorithm = ""

    def __eq__(self, other):
        if isinstance(other, Fingerprint) and type(self) != type(other):
            return False
        return super().__eq__(other)

    def __ne__(self, other):
        return not self == other

    def __hash__(self) -> int:
        return hash((self.algorithm, str(self)))


class Sha256Fingerprint(Fingerprint):
    algorithm = "sha256"


_F = TypeVar("_F", bound=Fingerprint)


class HashlibHasher(Generic[_F]):
    def __init__(self, hexdigest_type: Type[_F], data: bytes = b"") -> None:
        self._hexdigest_type = hexdigest_type
        self._hasher = hashlib.new(hexdigest_type.algorithm, data)

    @property
    def name(self) -> str:
        return self._hasher.name

    @property
    def block_size(self) -> int:
        return self._hasher.block_size

    def update(self, data: bytes) -> None:
        self._hasher.update(data)

    def digest(self) -> bytes:
        return self._hasher.digest()

    def hexdigest(self) -> _F:
        return self._hexdigest_type(self._hasher.hexdigest())


class Sha256(HashlibHasher[Sha256Fingerprint]):
    def __init__(self, data: bytes = b"") -> None:
        super().__init__(hexdigest_type=Sha256Fingerprint, data=data)


def update_hash(filelike: IO[bytes], digest: HintedDigest) -> None:
    """Feed a stream to the digest in chunks sized to the digest's block size."""
    block_size = digest.block_size * 1024
    for chunk in iter(lambda: filelike.read(block_size), b""):
        digest.update(chunk)


def file_hash(path: str, digest: HintedDigest) -> None:
    with open(path, "rb") as fp:
        update_hash(filelike=fp, digest=digest)
