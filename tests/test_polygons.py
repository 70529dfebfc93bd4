# tests/test_polygons.py
import os
import sys
import pytest
import geopandas as gpd
from shapely.geometry import box

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from errors import LoadError, ReferenceFrameError
from polygons import Region, load_regions


def _write(path, names, geoms, crs="EPSG:4326", field="NAME_1", driver=None):
    gdf = gpd.GeoDataFrame({field: names}, geometry=geoms, crs=crs)
    gdf.to_file(str(path), driver=driver)
    return str(path)


class TestLoadRegions:
    """Reading boundaries into ordered regions"""

    def test_keeps_source_order(self, tmp_path):
        path = _write(tmp_path / "prov.gpkg", ["Cauca", "Amazonas", "Boyacá"],
                      [box(0, 0, 1, 1), box(1, 0, 2, 1), box(2, 0, 3, 1)], driver="GPKG")
        regions = load_regions(path, "NAME_1")
        assert [r.name for r in regions] == ["Cauca", "Amazonas", "Boyacá"]
        assert isinstance(regions[0], Region)
        assert regions[1].bounds == pytest.approx((1, 0, 2, 1))

    def test_name_field_case_insensitive(self, tmp_path):
        path = _write(tmp_path / "prov.gpkg", ["A"], [box(0, 0, 1, 1)], field="Name_1", driver="GPKG")
        assert [r.name for r in load_regions(path, "NAME_1")] == ["A"]

    def test_name_field_not_matched_by_substring(self, tmp_path):
        gdf = gpd.GeoDataFrame({"VARNAME_1": ["Alt A", "Alt B"], "name_1": ["A", "B"]},
                               geometry=[box(0, 0, 1, 1), box(1, 0, 2, 1)], crs="EPSG:4326")
        path = str(tmp_path / "prov.gpkg")
        gdf.to_file(path, driver="GPKG")
        assert [r.name for r in load_regions(path, "NAME_1")] == ["A", "B"]

    def test_name_field_only_as_substring_is_missing(self, tmp_path):
        path = _write(tmp_path / "prov.gpkg", ["A"], [box(0, 0, 1, 1)], field="VARNAME_1", driver="GPKG")
        with pytest.raises(LoadError):
            load_regions(path, "NAME_1")

    def test_reprojects_to_target_crs(self, tmp_path):
        # 1 degree box around the origin, stored in web mercator metres
        merc = gpd.GeoSeries([box(0, 0, 1, 1)], crs="EPSG:4326").to_crs("EPSG:3857")
        path = _write(tmp_path / "prov.gpkg", ["A"], list(merc), crs="EPSG:3857", driver="GPKG")
        (region,) = load_regions(path, "NAME_1", crs="EPSG:4326")
        assert region.bounds == pytest.approx((0, 0, 1, 1), abs=1e-6)

    def test_missing_crs_without_assumption(self, tmp_path):
        path = _write(tmp_path / "prov.shp", ["A"], [box(0, 0, 1, 1)], crs=None)
        with pytest.raises(ReferenceFrameError):
            load_regions(path, "NAME_1")

    def test_missing_crs_with_assumption(self, tmp_path):
        path = _write(tmp_path / "prov.shp", ["A"], [box(0, 0, 1, 1)], crs=None)
        (region,) = load_regions(path, "NAME_1", assume_crs="EPSG:4326")
        assert region.bounds == pytest.approx((0, 0, 1, 1))

    def test_missing_source(self, tmp_path):
        with pytest.raises(LoadError):
            load_regions(str(tmp_path / "nope.shp"), "NAME_1")

    def test_unreadable_source(self, tmp_path):
        path = tmp_path / "broken.geojson"
        path.write_text("{ not json")
        with pytest.raises(LoadError):
            load_regions(str(path), "NAME_1")

    def test_missing_name_field(self, tmp_path):
        path = _write(tmp_path / "prov.gpkg", ["A"], [box(0, 0, 1, 1)], driver="GPKG")
        with pytest.raises(LoadError):
            load_regions(path, "DPTO_NOMBRE")


class TestDuplicates:
    """Duplicate region names"""

    def _dups(self, tmp_path):
        return _write(tmp_path / "prov.gpkg", ["B", "A", "B"],
                      [box(0, 0, 1, 1), box(1, 0, 2, 1), box(2, 0, 3, 1)], driver="GPKG")

    def test_fail_fast_by_default(self, tmp_path):
        with pytest.raises(LoadError, match="Duplicate"):
            load_regions(self._dups(tmp_path), "NAME_1")

    def test_dissolve(self, tmp_path):
        regions = load_regions(self._dups(tmp_path), "NAME_1", on_duplicate="dissolve")
        assert [r.name for r in regions] == ["B", "A"]
        assert regions[0].geometry.area == pytest.approx(2.0)

    def test_normalized_names_collide(self, tmp_path):
        path = _write(tmp_path / "prov.gpkg", ["Bogotá D.C.", "BOGOTA D C"],
                      [box(0, 0, 1, 1), box(1, 0, 2, 1)], driver="GPKG")
        assert len(load_regions(path, "NAME_1")) == 2
        with pytest.raises(LoadError):
            load_regions(path, "NAME_1", normalize_names=True)

    def test_aliases(self, tmp_path):
        path = _write(tmp_path / "prov.gpkg", ["Valle del Cauca", "Nariño"],
                      [box(0, 0, 1, 1), box(1, 0, 2, 1)], driver="GPKG")
        regions = load_regions(path, "NAME_1", normalize_names=True, aliases={"VALLE DEL CAUCA": "VALLE"})
        assert [r.name for r in regions] == ["VALLE", "NARINO"]

    def test_invalid_policy(self, tmp_path):
        with pytest.raises(ValueError):
            load_regions(self._dups(tmp_path), "NAME_1", on_duplicate="overwrite")
