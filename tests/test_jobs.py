# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import threading
from typing import List

import pytest

from sitesync.jobs import DEFAULT_MAX_JOBS, map_parallel


def test_map_parallel() -> None:
    assert [] == map_parallel([], str)
    assert [1, 4, 9, 16] == sorted(map_parallel(range(1, 5), lambda x: x * x, max_jobs=4))
    assert ["3", "1", "2"] == map_parallel([3, 1, 2], str, max_jobs=1)


def test_map_parallel_bounded() -> None:
    lock = threading.Lock()
    active: List[int] = [0]
    peak: List[int] = [0]
    barrier = threading.Event()

    def work(item: int) -> int:
        with lock:
            active[0] += 1
            peak[0] = max(peak[0], active[0])
        barrier.wait(0.05)
        with lock:
            active[0] -= 1
        return item

    assert list(range(8)) == sorted(map_parallel(range(8), work, max_jobs=2))
    assert 1 <= peak[0] <= 2


def test_map_parallel_error() -> None:
    def fail(item: int) -> int:
        if item == 3:
            raise ValueError("Failed on {item}".format(item=item))
        return item

    with pytest.raises(ValueError, match=r"Failed on 3"):
        map_parallel(range(5), fail, max_jobs=3)


def test_default_max_jobs() -> None:
    assert DEFAULT_MAX_JOBS >= 1
    assert [0] == map_parallel([0], int, max_jobs=0)
