# ------------------------------------------------------------------------------
# Gridded population -> province table pipeline.
# - Boundaries: one polygon per province, reprojected to the configured CRS.
# - Rasters: one GeoTIFF per (sex, age, year) stratum in a flat folder.
# - Every raster is loaded once by one pool task and summed inside every province.
# - Output, written to results_dir:
#     * population_by_province.{parquet,csv}  (cached; reused while present)
#     * failed_rasters.csv                    (rasters left out at enumeration, load or overlay;
#                                             read back when the cached dataset is reused)
# - Optional maintenance.clean_run deletes the cached dataset before running.
#
# Usage:  python src/main_compute.py [path/to/config.yaml]
# ------------------------------------------------------------------------------


from __future__ import annotations
from dataclasses import asdict
from typing import List, Optional, Tuple
import os
import sys
import pandas as pd

from data_loaders import _load_config
from polygons import load_regions
from rasters import TaskFailure, enumerate_rasters
from aggregation import aggregate
from assembly import assemble, build_age_classes, get_or_compute, save_dataset, summarize_by_age_class
from helpers import _coerce_list

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
CONFIG_PATH = os.path.join(ROOT_DIR, "config.yaml")


def write_failures(failures: List[TaskFailure], path: str) -> None:
    """Write the failure report (path, error, message); an empty run writes the header only."""
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    df = pd.DataFrame([asdict(f) for f in failures], columns=["path", "error", "message"])
    df.to_csv(path, index=False)


def read_failures(path: str) -> List[TaskFailure]:
    """Read a report written by `write_failures` back into TaskFailure entries."""
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    return [TaskFailure(path=row["path"], error=row["error"], message=row["message"])
            for row in df.to_dict("records")]


def _csv_twin(path: str) -> Optional[str]:
    base, ext = os.path.splitext(path)
    return f"{base}.csv" if ext.lower() != ".csv" else None


def run_pipeline(cfg: dict, paths: dict) -> Tuple[pd.DataFrame, List[TaskFailure]]:
    """
    Run (or reuse) the full pipeline.

    Returns
    -------
    (dataset, failures)
        `failures` lists the rasters left out of the dataset. When the dataset
        comes from the cache nothing is recomputed and the list is read back from
        the failure report of the run that built it (empty if there is none).
    """
    REG = cfg["regions"]
    RAS = cfg["rasters"]
    PAR = cfg.get("parallel", {}) or {}
    progress = bool(cfg.get("diagnostics", {}).get("progress", True))
    crs = REG.get("crs", "EPSG:4326")

    dataset_path = paths["dataset"]
    twin = _csv_twin(dataset_path)
    if bool(cfg.get("maintenance", {}).get("clean_run", False)):
        for p in (dataset_path, twin):
            if p is not None and os.path.exists(p):
                os.remove(p)
                print(f"[maintenance] Removed cached dataset: {p}")
    os.makedirs(paths["results_dir"], exist_ok=True)

    age_classes = build_age_classes(cfg["age_breakpoints"])
    failures: List[TaskFailure] = []
    computed = []

    def _compute() -> pd.DataFrame:
        regions = load_regions(
            paths["boundaries"],
            name_field=REG["name_field"],
            crs=crs,
            assume_crs=REG.get("assume_crs"),
            on_duplicate=REG.get("on_duplicate", "error"),
            normalize_names=bool(REG.get("normalize_names", False)),
            aliases=REG.get("aliases") or None,
        )
        extensions = _coerce_list(RAS.get("extensions")) or [".tif", ".tiff"]
        descriptors, parse_failures = enumerate_rasters(paths["rasters_dir"], RAS["pattern"], extensions)
        failures.extend(parse_failures)

        records, task_failures = aggregate(
            descriptors,
            regions,
            crs=crs,
            processes=PAR.get("processes"),
            backend=PAR.get("backend", "process"),
            progress=progress,
        )
        failures.extend(task_failures)
        computed.append(True)
        return assemble(records, age_classes)

    dataset = get_or_compute(dataset_path, _compute, age_classes)

    # The twin always mirrors the dataset it sits beside.
    if twin is not None and (computed or not os.path.exists(twin)):
        save_dataset(dataset, twin)
    if "failures_csv" in paths:
        if computed:
            write_failures(failures, paths["failures_csv"])
        elif os.path.exists(paths["failures_csv"]):
            failures = read_failures(paths["failures_csv"])

    if dataset.empty and failures:
        print(f"[pipeline] No population rows produced; {len(failures)} raster(s) failed. "
              f"See {paths.get('failures_csv')}.")
    elif failures:
        print(f"[pipeline] {len(dataset)} row(s); {len(failures)} raster(s) excluded.")
    else:
        print(f"[pipeline] {len(dataset)} row(s).")
    return dataset, failures


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if argv:
        # Relative paths in a user config are relative to the config file.
        config_path = os.path.abspath(argv[0])
        root = os.path.dirname(config_path)
    else:
        config_path, root = CONFIG_PATH, ROOT_DIR
    cfg, paths = _load_config(root, config_path)
    dataset, failures = run_pipeline(cfg, paths)
    if not dataset.empty:
        summary = summarize_by_age_class(dataset)
        totals = summary.groupby(["year", "sex"], observed=True)["n"].sum().unstack("sex")
        print(totals.round(0).to_string())
    return 1 if dataset.empty and failures else 0


if __name__ == "__main__":
    sys.exit(main())
