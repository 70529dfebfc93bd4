# tests/conftest.py
import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))


@pytest.fixture
def write_raster():
    """
    Return a function that writes a single-band GeoTIFF and gives back its path.

    Grids are north-up with 1-unit pixels and their top-left corner at (west, north).
    """
    import rasterio
    from rasterio.transform import from_origin

    def _write(path, data, west=0.0, north=None, res=1.0, crs="EPSG:4326", nodata=None):
        data = np.asarray(data)
        height, width = data.shape
        if north is None:
            north = float(height) * res
        profile = {
            "driver": "GTiff",
            "height": height,
            "width": width,
            "count": 1,
            "dtype": str(data.dtype),
            "transform": from_origin(west, north, res, res),
        }
        if crs is not None:
            profile["crs"] = crs
        if nodata is not None:
            profile["nodata"] = nodata
        with rasterio.open(str(path), "w", **profile) as dst:
            dst.write(data, 1)
        return str(path)

    return _write


@pytest.fixture
def quadrant_regions():
    """Four regions exactly partitioning the 4x4 extent [0, 4] x [0, 4]."""
    from shapely.geometry import box
    from polygons import Region
    return [
        Region("NW", box(0, 2, 2, 4)),
        Region("NE", box(2, 2, 4, 4)),
        Region("SW", box(0, 0, 2, 2)),
        Region("SE", box(2, 0, 4, 2)),
    ]
