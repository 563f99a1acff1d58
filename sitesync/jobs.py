# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import functools
import os
import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from multiprocessing.pool import ThreadPool
from typing import (
    Callable,
    DefaultDict,
    Iterable,
    Iterator,
    List,
    Optional,
    Tuple,
    TypeVar,
)

from sitesync.common import pluralize
from sitesync.tracer import TRACER
from sitesync.variables import ENV

_I = TypeVar("_I")
_O = TypeVar("_O")

_CPU_COUNT = os.cpu_count() or 1
_ABSOLUTE_MAX_JOBS = _CPU_COUNT * 4

DEFAULT_MAX_JOBS = _CPU_COUNT
"""The default maximum number of parallel jobs sitesync should use."""


def _sanitize_max_jobs(max_jobs: Optional[int] = None) -> int:
    if max_jobs is None:
        max_jobs = ENV.SITESYNC_MAX_JOBS
    if max_jobs <= 0:
        return DEFAULT_MAX_JOBS
    else:
        return min(max_jobs, _ABSOLUTE_MAX_JOBS)


now: Callable[[], float] = time.perf_counter


def _apply_function(function: Callable[[_I], _O], input_item: _I) -> Tuple[int, _O, float]:
    start = now()
    result = function(input_item)
    return threading.get_ident(), result, now() - start


@contextmanager
def _thread_pool(size: int) -> Iterator[ThreadPool]:
    pool = ThreadPool(processes=size)
    try:
        yield pool
    finally:
        pool.close()
        pool.join()


def iter_map_parallel(
    inputs: Iterable[_I],
    function: Callable[[_I], _O],
    max_jobs: Optional[int] = None,
    noun: str = "item",
    verb: str = "process",
    verb_past: str = "processed",
) -> Iterator[_O]:
    """Enhanced `ThreadPool.imap_unordered` that bounds pool size.

    The work sitesync parallelizes is dominated by network and filesystem IO, so a pool of threads
    is used.

    :param inputs: The items to process with `function`.
    :param function: A function that takes a single argument from `inputs` and returns a result.
    :param max_jobs: The maximum number of threads to use to service the `inputs`.
    :param noun: A noun indicating what the input type is; "item" by default.
    :param verb: A verb indicating what the function does; "process" by default.
    :param verb_past: The past tense of `verb`; "processed" by default.
    :return: An iterator over the mapped results.
    """
    input_items = list(inputs)
    if not input_items:
        return

    pool_size = max(1, min(len(input_items), _sanitize_max_jobs(max_jobs)))
    if pool_size == 1:
        for item in input_items:
            yield function(item)
        return

    apply_function = functools.partial(_apply_function, function)

    slots: DefaultDict[int, List[float]] = defaultdict(list)
    with TRACER.timed(
        "Using {pool_size} parallel jobs to {verb} {count} {inputs}".format(
            pool_size=pool_size,
            verb=verb,
            count=len(input_items),
            inputs=pluralize(input_items, noun),
        )
    ):
        with _thread_pool(size=pool_size) as pool:
            for ident, result, elapsed_secs in pool.imap_unordered(apply_function, input_items):
                TRACER.log(
                    "[{ident}] {verbed} {result} in {elapsed_secs:.2f}s".format(
                        ident=ident,
                        verbed=verb_past,
                        result=result,
                        elapsed_secs=elapsed_secs,
                    ),
                    V=2,
                )
                yield result
                slots[ident].append(elapsed_secs)

    TRACER.log(
        "Elapsed time per {verb} job:\n  {times}".format(
            verb=verb,
            times="\n  ".join(
                "{index}) [{ident}] {total_secs:.2f}s {count} {inputs}".format(
                    index=index,
                    ident=ident,
                    count=len(elapsed),
                    inputs=pluralize(elapsed, noun),
                    total_secs=total_secs,
                )
                for index, (total_secs, ident, elapsed) in enumerate(
                    sorted(
                        ((sum(elapsed), ident, elapsed) for ident, elapsed in slots.items()),
                        reverse=True,
                    ),
                    start=1,
                )
            ),
        ),
        V=3,
    )


def map_parallel(
    inputs: Iterable[_I],
    function: Callable[[_I], _O],
    max_jobs: Optional[int] = None,
    noun: str = "item",
    verb: str = "process",
    verb_past: str = "processed",
) -> List[_O]:
    """Enhanced version of `ThreadPool.map` that bounds pool size.

    Unlike `ThreadPool.map`, the output order is not guaranteed.

    Forwards all arguments to `iter_map_parallel`.

    :return: A list of the mapped results.
    """
    return list(
        iter_map_parallel(
            inputs,
            function,
            max_jobs=max_jobs,
            noun=noun,
            verb=verb,
            verb_past=verb_past,
        )
    )
