# src/aggregation.py
"""
Fan one task per raster descriptor out over a worker pool.

Each task loads its grid once and overlays every region in canonical order.
Results are written into a slot per descriptor (by submission index), so the
concatenated record list depends only on descriptor order and region order,
never on which worker finishes first.
"""
from __future__ import annotations

import math
import os
from dataclasses import dataclass
from functools import partial
from multiprocessing import Pool
from multiprocessing.dummy import Pool as ThreadPool
from typing import Callable, List, Optional, Sequence, Tuple

from tqdm import tqdm

from errors import LoadError, ReferenceFrameError, SchemaError
from overlay import overlay
from polygons import Region
from rasters import RasterDescriptor, StratumKey, TaskFailure, load_raster


@dataclass(frozen=True)
class PopulationRecord:
    province: str
    key: StratumKey
    n: float


@dataclass(frozen=True)
class _TaskContext:
    regions: Tuple[Region, ...]
    crs: object
    loader: Callable


# Set once per worker process by the pool initializer.
_WORKER_CONTEXT: Optional[_TaskContext] = None


def default_pool_size() -> int:
    """Available CPUs minus one for the coordinating process, at least one."""
    return max(1, (os.cpu_count() or 1) - 1)


def _init_worker(context: _TaskContext) -> None:
    global _WORKER_CONTEXT
    _WORKER_CONTEXT = context


def _run_task(item, context: _TaskContext):
    """
    Load one grid and overlay every region.

    Returns (index, records, failure); a load or reference-frame error, or a
    negative or non-finite region count, yields no records and a TaskFailure
    instead of propagating.
    """
    index, descriptor = item
    try:
        grid = context.loader(descriptor, context.crs)
    except (LoadError, ReferenceFrameError) as e:
        return index, [], TaskFailure.from_exception(descriptor.path, e)
    records = [
        PopulationRecord(province=region.name, key=descriptor.key, n=overlay(grid, region))
        for region in context.regions
    ]
    del grid
    bad = [r for r in records if not math.isfinite(r.n) or r.n < 0]
    if bad:
        err = SchemaError(
            f"Invalid count {bad[0].n!r} for region '{bad[0].province}' "
            f"({len(bad)} of {len(records)} region(s))"
        )
        return index, [], TaskFailure.from_exception(descriptor.path, err)
    return index, records, None


def _run_task_in_worker(item):
    return _run_task(item, _WORKER_CONTEXT)


def aggregate(
    descriptors: Sequence[RasterDescriptor],
    regions: Sequence[Region],
    crs="EPSG:4326",
    processes: Optional[int] = None,
    backend: str = "process",
    loader: Callable = load_raster,
    progress: bool = True,
) -> Tuple[List[PopulationRecord], List[TaskFailure]]:
    """
    Population of every region in every raster.

    Parameters
    ----------
    descriptors : sequence of RasterDescriptor
        One task each, in this order.
    regions : sequence of Region
        Shared read-only by all tasks; their order is kept inside each task's records.
    crs :
        Reference frame the rasters must be in (the regions' frame).
    processes : int, optional
        Pool size; defaults to `default_pool_size()`. 1 runs serially in this process.
    backend : {"process", "thread"}
        `multiprocessing.Pool` or its thread-based twin `multiprocessing.dummy.Pool`.
        With "process", `loader` must be picklable (a module-level function).
    loader : callable
        `loader(descriptor, crs) -> RasterGrid`; `load_raster` by default.
    progress : bool
        Show a tqdm bar over completed tasks.

    Returns
    -------
    (records, failures)
        Records ordered by descriptor then region; one TaskFailure per raster that
        could not be loaded or produced a negative or non-finite count, in
        descriptor order.
    """
    if backend not in ("process", "thread"):
        raise ValueError(f"backend must be 'process' or 'thread', got: '{backend}'")

    descriptors = list(descriptors)
    context = _TaskContext(regions=tuple(regions), crs=crs, loader=loader)
    n_tasks = len(descriptors)
    procs = default_pool_size() if processes is None else max(1, int(processes))
    procs = min(procs, max(1, n_tasks))

    slots: list = [None] * n_tasks
    items = list(enumerate(descriptors))
    pbar = tqdm(total=n_tasks, desc="Overlaying rasters", unit="raster", disable=not progress)
    try:
        if procs == 1:
            outcomes = map(partial(_run_task, context=context), items)
            for index, records, failure in outcomes:
                slots[index] = (records, failure)
                pbar.update(1)
        elif backend == "thread":
            with ThreadPool(procs) as pool:
                for index, records, failure in pool.imap_unordered(partial(_run_task, context=context), items):
                    slots[index] = (records, failure)
                    pbar.update(1)
        else:
            with Pool(procs, initializer=_init_worker, initargs=(context,)) as pool:
                for index, records, failure in pool.imap_unordered(_run_task_in_worker, items):
                    slots[index] = (records, failure)
                    pbar.update(1)
    finally:
        pbar.close()

    all_records: List[PopulationRecord] = []
    failures: List[TaskFailure] = []
    for records, failure in slots:
        all_records.extend(records)
        if failure is not None:
            failures.append(failure)

    print(f"[aggregate] {n_tasks - len(failures)}/{n_tasks} raster(s) overlaid on "
          f"{len(context.regions)} region(s) with {procs} worker(s) ({backend}); "
          f"{len(all_records)} record(s), {len(failures)} failure(s).")
    for f in failures:
        print(f"[aggregate]   failed {os.path.basename(f.path)}: {f.error}: {f.message}")
    return all_records, failures
