# src/data_loaders.py
import os
import yaml

from helpers import _default_breakpoints

DEFAULT_RASTER_PATTERN = r"(?:^|_)(?P<sex>[fmFM])_(?P<age>\d{1,3})_(?P<year>\d{4})(?=_|$)"


def return_default_config():
    """
    Returns the default configuration dictionary
    """
    return {
        "paths": {
            "boundaries": "./data/boundaries/provinces.shp",
            "rasters_dir": "./data/rasters",
            "results_dir": "./results",
            "dataset": "./results/population_by_province.parquet",
            "failures_csv": "./results/failed_rasters.csv",
        },
        "regions": {
            "name_field": "NAME_1",
            "crs": "EPSG:4326",
            "assume_crs": None,          # CRS to assume when the boundary file has none
            "on_duplicate": "error",     # "error" | "dissolve"
            "normalize_names": False,
            "aliases": {},
        },
        "rasters": {
            "pattern": DEFAULT_RASTER_PATTERN,
            "extensions": [".tif", ".tiff"],
        },
        "age_breakpoints": _default_breakpoints(),
        "parallel": {"processes": None, "backend": "process"},
        "diagnostics": {"progress": True},
        "maintenance": {"clean_run": False},
    }

def _resolve(ROOT_DIR, p):
    """
    Resolve path p relative to ROOT_DIR if not absolute.
    """
    return os.path.abspath(os.path.join(ROOT_DIR, p))

def _deep_merge(dst, src):
    """
    Recursively merge src into dst
    """
    for k, v in src.items():
        if isinstance(v, dict) and isinstance(dst.get(k), dict):
            _deep_merge(dst[k], v)
        else:
            dst[k] = v

def _load_config(ROOT_DIR: str, path: str):
    """
    Load YAML config if present; otherwise use defaults for both config and paths.
    Returns (cfg, PATHS)
    """
    cfg = return_default_config()
    if path and os.path.exists(path):
        with open(path, "r", encoding="utf-8") as fh:
            user = yaml.safe_load(fh) or {}
        if not isinstance(user, dict):
            raise ValueError(f"[config] Expected a mapping at the top of {path}, got {type(user).__name__}.")
        _deep_merge(cfg, user)
    else:
        print(f"[config] No config file at {path}; using built-in defaults.")

    PATHS = {key: _resolve(ROOT_DIR, value) for key, value in cfg["paths"].items()}
    return cfg, PATHS
