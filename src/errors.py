# src/errors.py
"""
Error taxonomy for the gridded-population pipeline.

- LoadError: a boundary or raster source is missing or unreadable.
- ParseError: a raster file name does not encode a (sex, age, year) stratum.
- ReferenceFrameError: a source has no CRS, or its CRS disagrees with the regions'.
- SchemaError: an assembled record does not fit the dataset schema
  (age outside every band, unknown sex code, duplicate stratum, negative count).

Per-raster errors (ParseError, LoadError, ReferenceFrameError while aggregating)
are caught and reported by the caller; everything else propagates.
"""


class PopulationGridError(Exception):
    """Base class for all pipeline errors."""


class LoadError(PopulationGridError):
    pass


class ParseError(PopulationGridError, ValueError):
    pass


class ReferenceFrameError(PopulationGridError):
    pass


class SchemaError(PopulationGridError, ValueError):
    pass
