# src/overlay.py
"""
Sum of a raster grid inside one region polygon.

A pixel belongs to a region when its centre falls inside the polygon
(rasterio's default, all_touched=False), so regions that partition the grid
extent split every pixel exactly once. Nodata pixels, and NaN in float
grids, are left out of the sum.
"""
from __future__ import annotations

import math

import numpy as np
from affine import Affine
from rasterio.features import geometry_mask

from polygons import Region
from rasters import RasterGrid


def _pixel_window(grid: RasterGrid, bounds) -> tuple[int, int, int, int] | None:
    """
    Row/column slice (r0, r1, c0, c1) of the pixels covering `bounds`,
    clipped to the grid; None when the two rectangles do not overlap.
    """
    minx, miny, maxx, maxy = bounds
    west, south, east, north = grid.bounds
    if maxx <= west or minx >= east or maxy <= south or miny >= north:
        return None

    inv = ~grid.transform
    corners = [inv * (x, y) for x in (minx, maxx) for y in (miny, maxy)]
    cols = [c for c, _ in corners]
    rows = [r for _, r in corners]

    height, width = grid.shape
    c0 = max(0, int(math.floor(min(cols))))
    c1 = min(width, int(math.ceil(max(cols))))
    r0 = max(0, int(math.floor(min(rows))))
    r1 = min(height, int(math.ceil(max(rows))))
    if c0 >= c1 or r0 >= r1:
        return None
    return r0, r1, c0, c1


def _valid_mask(values: np.ndarray, nodata) -> np.ndarray:
    valid = np.ones(values.shape, dtype=bool)
    if nodata is not None and not (isinstance(nodata, float) and math.isnan(nodata)):
        valid &= values != nodata
    if np.issubdtype(values.dtype, np.floating):
        valid &= ~np.isnan(values)
    return valid


def overlay(grid: RasterGrid, region: Region) -> float:
    """
    Population of `grid` inside `region`.

    1) crop the array to the region's bounding box (0.0 if it misses the grid);
    2) keep pixels whose centre lies inside the polygon;
    3) sum them, skipping nodata.

    Returns
    -------
    float
        Sum of the retained pixel values, accumulated in float64.
    """
    window = _pixel_window(grid, region.bounds)
    if window is None:
        return 0.0
    r0, r1, c0, c1 = window

    values = grid.data[r0:r1, c0:c1]
    sub_transform = grid.transform * Affine.translation(c0, r0)
    inside = geometry_mask(
        [region.geometry],
        out_shape=values.shape,
        transform=sub_transform,
        all_touched=False,
        invert=True,
    )
    keep = inside & _valid_mask(values, grid.nodata)
    if not keep.any():
        return 0.0
    return float(values[keep].sum(dtype=np.float64))
