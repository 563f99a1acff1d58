# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import os
from typing import Iterator

import pytest

from sitesync.cache.artifacts import ArtifactCache
from sitesync.target import TargetEnvironment
from testing import make_environment
from testing.index import Index, IndexFetcher


@pytest.fixture
def tmpdir(tmp_path) -> str:
    return str(tmp_path)


@pytest.fixture
def environment(tmpdir: str) -> TargetEnvironment:
    return make_environment(os.path.join(tmpdir, "venv"))


@pytest.fixture
def cache(tmpdir: str) -> Iterator[ArtifactCache]:
    with ArtifactCache.open(os.path.join(tmpdir, "cache")) as artifact_cache:
        yield artifact_cache


@pytest.fixture
def index(tmpdir: str) -> Index:
    return Index(root=os.path.join(tmpdir, "index"))


@pytest.fixture
def fetcher(index: Index) -> IndexFetcher:
    return IndexFetcher(index)
