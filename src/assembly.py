# src/assembly.py
"""
Turn aggregated PopulationRecords into the tidy province table and cache it.

Dataset columns:
    year (int64), province (str), sex (category: female/male), age (int64),
    n (float64), age_class (ordered category)

One row per (province, year, sex, age). `age_class` is a pure function of `age`
through the map built by `build_age_classes`.
"""
from __future__ import annotations

import os
import tempfile
from typing import Callable, Iterable, Optional

import numpy as np
import pandas as pd

from errors import LoadError, SchemaError
from helpers import SEX_LABELS, _band_label, _coerce_sex, _validate_breakpoints

DATASET_COLUMNS = ["year", "province", "sex", "age", "n", "age_class"]
KEY_COLUMNS = ["province", "year", "sex", "age"]


# ---------------------------------------------------------------------------
# Age classes
# ---------------------------------------------------------------------------

def build_age_classes(breakpoints) -> dict[int, str]:
    """
    Map every integer age in [b_0, b_last] to its band label.

    Interior bands are half-open, '[lo;hi[', and the last breakpoint opens the
    terminal band 'b_last+'. Ages above b_last are resolved by `age_class_for`.

    Example
    -------
    >>> build_age_classes([0, 1, 5])
    {0: '[0;1[', 1: '[1;5[', 2: '[1;5[', 3: '[1;5[', 4: '[1;5[', 5: '5+'}
    """
    bps = _validate_breakpoints(breakpoints)
    classes: dict[int, str] = {}
    for lo, hi in zip(bps[:-1], bps[1:]):
        label = _band_label(lo, hi)
        for age in range(lo, hi):
            classes[age] = label
    classes[bps[-1]] = _band_label(bps[-1], None)
    return classes


def age_class_order(age_classes: dict[int, str]) -> list[str]:
    """Distinct labels from youngest to oldest band."""
    return list(dict.fromkeys(age_classes[a] for a in sorted(age_classes)))


def age_class_for(age, age_classes: dict[int, str]) -> str:
    """
    Label of one age. Ages past the last breakpoint fall in the terminal band.

    Raises
    ------
    SchemaError
        If the age is below the first breakpoint or not an integer.
    """
    try:
        a = int(age)
    except (TypeError, ValueError):
        raise SchemaError(f"Age must be an integer, got {age!r}") from None
    if a != age:
        raise SchemaError(f"Age must be an integer, got {age!r}")
    label = age_classes.get(a)
    if label is not None:
        return label
    if age_classes and a > max(age_classes):
        return age_classes[max(age_classes)]
    raise SchemaError(f"Age {age} falls outside every configured age band.")


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------

def _empty_dataset(age_classes: Optional[dict[int, str]] = None) -> pd.DataFrame:
    df = pd.DataFrame({c: [] for c in DATASET_COLUMNS})
    return _coerce_dataset_dtypes(df, age_classes)


def _coerce_dataset_dtypes(df: pd.DataFrame, age_classes: Optional[dict[int, str]] = None) -> pd.DataFrame:
    """
    Cast dataset columns to their schema dtypes. Used after assembly and after
    reading a cached file (CSV loses categories; parquet keeps them).
    """
    df = df.copy()
    df["year"] = pd.to_numeric(df["year"]).astype("int64")
    df["province"] = df["province"].astype(str)
    df["sex"] = pd.Categorical(df["sex"].astype(str), categories=list(SEX_LABELS))
    df["age"] = pd.to_numeric(df["age"]).astype("int64")
    df["n"] = pd.to_numeric(df["n"]).astype("float64")
    if age_classes is not None:
        order = age_class_order(age_classes)
    else:
        # Without a map, recover band order from the youngest age carrying each label.
        first_age = (
            df.groupby(df["age_class"].astype(str), observed=True)["age"].min().sort_values()
            if len(df) else pd.Series(dtype="int64")
        )
        order = list(first_age.index)
    df["age_class"] = pd.Categorical(df["age_class"].astype(str), categories=order, ordered=True)
    return df[DATASET_COLUMNS].reset_index(drop=True)


def assemble(records: Iterable, age_classes: dict[int, str]) -> pd.DataFrame:
    """
    Build the Dataset from PopulationRecords.

    Records keep their incoming order. Each gets its age-class label, a sex
    normalized to 'female'/'male' and integer year/age.

    Raises
    ------
    SchemaError
        Age outside every band, unknown sex code, negative or non-finite count,
        or two records for the same (province, year, sex, age).
    """
    rows = []
    for rec in records:
        key = rec.key
        n = float(rec.n)
        if not np.isfinite(n) or n < 0:
            raise SchemaError(f"Invalid count {rec.n!r} for {rec.province}/{key}")
        rows.append({
            "year": int(key.year),
            "province": str(rec.province),
            "sex": _coerce_sex(key.sex),
            "age": int(key.age),
            "n": n,
            "age_class": age_class_for(key.age, age_classes),
        })

    if not rows:
        return _empty_dataset(age_classes)

    df = pd.DataFrame(rows, columns=DATASET_COLUMNS)
    dup = df.duplicated(subset=KEY_COLUMNS, keep=False)
    if dup.any():
        sample = df.loc[dup, KEY_COLUMNS].drop_duplicates().head(5).to_dict("records")
        raise SchemaError(f"Duplicate (province, year, sex, age) records, e.g. {sample}")
    return _coerce_dataset_dtypes(df, age_classes)


def summarize_by_age_class(dataset: pd.DataFrame) -> pd.DataFrame:
    """
    Collapse single-band rows to age classes: sum of n per
    (year, province, sex, age_class), in band order.
    """
    out = (
        dataset.groupby(["year", "province", "sex", "age_class"], observed=True, sort=True)["n"]
               .sum()
               .reset_index()
    )
    return out


# ---------------------------------------------------------------------------
# Persistence / cache
# ---------------------------------------------------------------------------

def _format_for(path: str) -> str:
    ext = os.path.splitext(str(path))[1].lower()
    if ext in (".parquet", ".pq"):
        return "parquet"
    if ext == ".csv":
        return "csv"
    raise ValueError(f"Unsupported dataset format '{ext}' for {path}; use .parquet or .csv")


def save_dataset(dataset: pd.DataFrame, path: str) -> None:
    """
    Write the dataset as parquet or CSV, chosen from the file suffix.

    The file is written beside `path` under a temporary name and moved into
    place with `os.replace`, so `path` either holds a complete dataset or does
    not exist.
    """
    fmt = _format_for(path)
    parent = os.path.dirname(os.path.abspath(path))
    os.makedirs(parent, exist_ok=True)
    base, ext = os.path.splitext(os.path.basename(path))
    fd, tmp_path = tempfile.mkstemp(dir=parent, prefix=f".{base}.", suffix=ext)
    os.close(fd)
    try:
        if fmt == "parquet":
            dataset.to_parquet(tmp_path, index=False)
        else:
            dataset.to_csv(tmp_path, index=False)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def load_dataset(path: str, age_classes: Optional[dict[int, str]] = None) -> pd.DataFrame:
    """
    Read a dataset written by `save_dataset` and restore the schema dtypes.

    Raises
    ------
    LoadError
        The file is missing or cannot be parsed as parquet/CSV.
    SchemaError
        The file parses but lacks dataset columns or holds invalid values.
    """
    fmt = _format_for(path)
    try:
        if fmt == "parquet":
            df = pd.read_parquet(path)
        else:
            df = pd.read_csv(path, dtype={"province": str})
    except (OSError, ValueError) as e:
        raise LoadError(f"Failed to read cached dataset {path}: {e}") from e
    missing = [c for c in DATASET_COLUMNS if c not in df.columns]
    if missing:
        raise SchemaError(f"Cached dataset {path} lacks column(s): {missing}")
    return _coerce_dataset_dtypes(df, age_classes)


def get_or_compute(
    cache_location: str,
    compute_fn: Callable[[], pd.DataFrame],
    age_classes: Optional[dict[int, str]] = None,
) -> pd.DataFrame:
    """
    Return the dataset at `cache_location`, computing and saving it first if absent.

    The cache is presence-only: an existing file is returned as is, even if new
    rasters have been added since it was written. Delete the file (or set
    maintenance.clean_run) to force a recomputation.
    A file that cannot be read raises LoadError rather than being recomputed
    over.
    """
    if os.path.exists(cache_location):
        print(f"[cache] Loading dataset from {cache_location}")
        return load_dataset(cache_location, age_classes)
    print(f"[cache] No dataset at {cache_location}; computing.")
    dataset = compute_fn()
    save_dataset(dataset, cache_location)
    print(f"[cache] Saved {len(dataset)} row(s) to {cache_location}")
    return dataset
