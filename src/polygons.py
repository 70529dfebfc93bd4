# src/polygons.py
"""
Administrative boundaries: read a vector source into an ordered list of Regions.

The order of the returned list is the canonical region order used by the
aggregator and, through it, by every dataset row.
"""
from __future__ import annotations

import os
from dataclasses import dataclass

import geopandas as gpd
from shapely.geometry.base import BaseGeometry

from errors import LoadError, ReferenceFrameError
from helpers import _find_col, norm_name


@dataclass(frozen=True)
class Region:
    name: str
    geometry: BaseGeometry

    @property
    def bounds(self):
        return self.geometry.bounds


def _read_boundaries(source: str) -> gpd.GeoDataFrame:
    if not source or not os.path.exists(source):
        raise LoadError(f"Boundary source not found: {source}")
    try:
        return gpd.read_file(source)
    except Exception as e:
        raise LoadError(f"Failed to read boundary source {source}: {e}") from e


def _to_reference_frame(gdf: gpd.GeoDataFrame, crs, assume_crs=None) -> gpd.GeoDataFrame:
    """
    Put `gdf` in `crs`. A source without CRS metadata takes `assume_crs`;
    with neither available the frame cannot be known and we refuse to guess.
    """
    if gdf.crs is None:
        if assume_crs is None:
            raise ReferenceFrameError(
                "Boundary source has no CRS metadata and no 'assume_crs' was configured."
            )
        gdf = gdf.set_crs(assume_crs)
    if crs is not None and gdf.crs != crs:
        gdf = gdf.to_crs(crs)
    return gdf


def load_regions(
    source: str,
    name_field: str,
    crs="EPSG:4326",
    assume_crs=None,
    on_duplicate: str = "error",
    normalize_names: bool = False,
    aliases: dict | None = None,
) -> list[Region]:
    """
    Load region polygons keyed by `name_field`.

    Parameters
    ----------
    source : str
        Any vector file geopandas can read (Shapefile, GeoPackage, GeoJSON, ...).
    name_field : str
        Attribute holding the region name. Matched case-insensitively if the exact
        column is absent.
    crs :
        Reference frame every region is returned in.
    assume_crs :
        Frame to assume when the source carries no CRS.
    on_duplicate : {"error", "dissolve"}
        "error" fails when two features share a name; "dissolve" unions them into
        one region kept at the position of the first appearance.
    normalize_names : bool
        Apply `norm_name` (de-accent, upper-case, aliases) to names before the
        duplicate check.
    aliases : dict, optional
        Name replacements applied by `norm_name`.

    Returns
    -------
    list[Region]
        Regions in source row order.

    Raises
    ------
    LoadError
        Missing/unreadable source, missing name field, or duplicate names with
        on_duplicate="error".
    ReferenceFrameError
        Source without CRS and no `assume_crs`.
    """
    if on_duplicate not in ("error", "dissolve"):
        raise ValueError(f"on_duplicate must be 'error' or 'dissolve', got: '{on_duplicate}'")

    gdf = _read_boundaries(source)

    col = _find_col(gdf, name_field)
    if col is None or col == gdf.geometry.name:
        raise LoadError(f"Name field '{name_field}' not found in {source}; columns: {list(gdf.columns)}")

    gdf = _to_reference_frame(gdf, crs, assume_crs)

    bad = gdf.geometry.isna() | gdf.geometry.is_empty
    if bad.any():
        print(f"[regions] Dropping {int(bad.sum())} feature(s) with empty geometry from {source}.")
        gdf = gdf.loc[~bad]

    names = gdf[col].astype(str).str.strip()
    if normalize_names:
        names = names.map(lambda s: norm_name(s, aliases))
    gdf = gdf.assign(_region_name=names.to_numpy())

    dup = gdf["_region_name"].duplicated(keep=False)
    if dup.any():
        dup_names = sorted(gdf.loc[dup, "_region_name"].unique())
        if on_duplicate == "error":
            raise LoadError(f"Duplicate region names in {source}: {dup_names}")
        print(f"[regions] Dissolving {len(dup_names)} duplicated name(s): {dup_names}")
        order = list(dict.fromkeys(gdf["_region_name"]))
        gdf = gdf[["_region_name", gdf.geometry.name]].dissolve(by="_region_name", as_index=False)
        gdf = gdf.set_index("_region_name").loc[order].reset_index()

    regions = [Region(name=n, geometry=g) for n, g in zip(gdf["_region_name"], gdf.geometry)]
    print(f"[regions] Loaded {len(regions)} region(s) from {source} (field: {col}, crs: {gdf.crs}).")
    return regions
