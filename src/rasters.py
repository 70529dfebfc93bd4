# src/rasters.py
"""
Raster catalog: turn a flat folder of WorldPop-style age/sex rasters into typed
descriptors, and load one descriptor into memory as a RasterGrid.

File names carry the stratum as '{sex}_{age}_{year}', e.g.
    col_f_0_2020.tif, col_m_80_2015_constrained.tif
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from enum import Enum

import numpy as np
import rasterio
from affine import Affine
from rasterio.crs import CRS
from rasterio.errors import CRSError, RasterioError
from rasterio.transform import array_bounds

from data_loaders import DEFAULT_RASTER_PATTERN
from errors import LoadError, ParseError, ReferenceFrameError


class Sex(str, Enum):
    FEMALE = "female"
    MALE = "male"

    @classmethod
    def from_code(cls, code: str) -> "Sex":
        c = str(code).strip().lower()
        if c in ("f", "female"):
            return cls.FEMALE
        if c in ("m", "male"):
            return cls.MALE
        raise ParseError(f"Unknown sex code: {code!r}")


@dataclass(frozen=True)
class StratumKey:
    year: int
    age: int
    sex: Sex


@dataclass(frozen=True)
class RasterDescriptor:
    key: StratumKey
    path: str

    @property
    def name(self) -> str:
        return os.path.basename(self.path)


@dataclass(frozen=True)
class TaskFailure:
    """One excluded raster: where it was, which error, and why."""
    path: str
    error: str
    message: str

    @classmethod
    def from_exception(cls, path: str, exc: Exception) -> "TaskFailure":
        return cls(path=str(path), error=type(exc).__name__, message=str(exc))


@dataclass
class RasterGrid:
    """Band values plus the georeferencing needed to overlay polygons on them."""
    data: np.ndarray
    transform: Affine
    crs: CRS | None
    nodata: float | None = None

    @property
    def shape(self) -> tuple[int, int]:
        return self.data.shape

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """(west, south, east, north) of the full grid."""
        height, width = self.data.shape
        return array_bounds(height, width, self.transform)


# ---------------------------------------------------------------------------
# Enumeration
# ---------------------------------------------------------------------------

def parse_raster_name(name: str, pattern: str = DEFAULT_RASTER_PATTERN) -> StratumKey:
    """
    Parse the stratum out of a raster file name.

    The extension is stripped first; `pattern` is searched (not matched) in the
    stem and must define the named groups 'sex', 'age' and 'year'.

    Raises
    ------
    ParseError
        If the stem does not contain the pattern or a group is unusable.
    """
    stem = os.path.splitext(os.path.basename(str(name)))[0]
    m = re.search(pattern, stem)
    if not m:
        raise ParseError(f"File name does not encode sex_age_year: {name}")
    try:
        sex = Sex.from_code(m.group("sex"))
        age = int(m.group("age"))
        year = int(m.group("year"))
    except IndexError as e:
        raise ParseError(f"Pattern must define 'sex', 'age' and 'year' groups: {pattern}") from e
    except ValueError as e:
        raise ParseError(f"Unusable stratum in {name}: {e}") from e
    return StratumKey(year=year, age=age, sex=sex)


def enumerate_rasters(
    folder: str,
    pattern: str = DEFAULT_RASTER_PATTERN,
    extensions=(".tif", ".tiff"),
) -> tuple[list[RasterDescriptor], list[TaskFailure]]:
    """
    List the rasters of a flat folder as descriptors, sorted by file name.

    Files whose extension is not in `extensions` are ignored. Files whose name
    cannot be parsed, or whose stratum repeats an earlier file's, are left out
    and returned in the failure list.

    Raises
    ------
    LoadError
        If `folder` does not exist or is not a directory.
    """
    if not folder or not os.path.isdir(folder):
        raise LoadError(f"Raster folder not found: {folder}")

    exts = tuple(e.lower() for e in extensions)
    descriptors: list[RasterDescriptor] = []
    failures: list[TaskFailure] = []
    seen: dict[StratumKey, str] = {}

    for file_name in sorted(os.listdir(folder)):
        file_path = os.path.join(folder, file_name)
        if not os.path.isfile(file_path) or not file_name.lower().endswith(exts):
            continue
        try:
            key = parse_raster_name(file_name, pattern)
        except ParseError as e:
            failures.append(TaskFailure.from_exception(file_path, e))
            continue
        if key in seen:
            failures.append(TaskFailure(
                path=file_path, error="ParseError",
                message=f"Stratum {key.sex.value}/{key.age}/{key.year} already provided by {seen[key]}",
            ))
            continue
        seen[key] = file_name
        descriptors.append(RasterDescriptor(key=key, path=file_path))

    print(f"[catalog] {len(descriptors)} raster(s) in {folder}; {len(failures)} skipped.")
    for f in failures:
        print(f"[catalog]   skipped {os.path.basename(f.path)}: {f.message}")
    return descriptors, failures


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def _as_crs(crs) -> CRS:
    try:
        return crs if isinstance(crs, CRS) else CRS.from_user_input(crs)
    except CRSError as e:
        raise ReferenceFrameError(f"Invalid reference frame {crs!r}: {e}") from e


def load_raster(descriptor: RasterDescriptor, crs="EPSG:4326") -> RasterGrid:
    """
    Read band 1 of a descriptor's file.

    Raises
    ------
    LoadError
        Missing or unreadable file.
    ReferenceFrameError
        The file has no CRS, or its CRS differs from `crs`.
    """
    path = descriptor.path
    if not os.path.exists(path):
        raise LoadError(f"Raster not found: {path}")
    expected = _as_crs(crs)
    try:
        with rasterio.open(path) as src:
            if src.crs is None:
                raise ReferenceFrameError(f"Raster has no CRS: {path}")
            if src.crs != expected:
                raise ReferenceFrameError(
                    f"Raster CRS {src.crs} does not match regions CRS {expected}: {path}"
                )
            data = src.read(1)
            return RasterGrid(data=data, transform=src.transform, crs=src.crs, nodata=src.nodata)
    except RasterioError as e:
        raise LoadError(f"Failed to read raster {path}: {e}") from e
