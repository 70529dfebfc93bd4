# src/helpers.py
"""
General-purpose helpers shared across the pipeline.

This module centralizes reusable utilities that are agnostic to the overlay itself:
- Age-band utilities (default breakpoints, band labels, breakpoint validation).
- Region-name normalization (de-accenting, alias replacement).
- Sex-code coercion to the canonical 'female' / 'male' labels.
- Liberal column lookup and list coercions for config values.

All functions are pure and side-effect free, facilitating reuse and unit testing.

IMPORTANT: This module does not import project-specific modules other than `errors`
to avoid circular dependencies. Callers must supply any configuration they need.
"""
from __future__ import annotations

import re
import unicodedata
import pandas as pd

from errors import SchemaError

SEX_LABELS = ("female", "male")

_SEX_CODES = {
    "f": "female", "female": "female",
    "m": "male", "male": "male",
}

# ---------------------------------------------------------------------------
# Age scaffolding
# ---------------------------------------------------------------------------

def _default_breakpoints() -> list[int]:
    """
    Return the lower bounds of the WorldPop age bands: 0, 1, 5, 10, ..., 80.

    Returns
    -------
    list[int]
        Ascending age breakpoints; the last one opens the terminal '80+' band.
    """
    return [0, 1] + list(range(5, 85, 5))


def _band_label(lo: int, hi: int | None) -> str:
    """
    Label of a half-open age band.

    Conventions
    -----------
    - interior band [lo, hi) → '[lo;hi['
    - terminal band [lo, ∞)  → 'lo+'
    """
    if hi is None:
        return f"{int(lo)}+"
    return f"[{int(lo)};{int(hi)}["


def _validate_breakpoints(breakpoints) -> list[int]:
    """
    Coerce breakpoints to a list of ints and check they are usable.

    Raises
    ------
    ValueError
        If the sequence is empty, holds non-integers or negatives, or is not
        strictly ascending.
    """
    if breakpoints is None:
        raise ValueError("Age breakpoints must not be None.")
    out: list[int] = []
    for b in breakpoints:
        if isinstance(b, bool):
            raise ValueError(f"Age breakpoint must be an integer, got {b!r}.")
        try:
            v = int(b)
        except (TypeError, ValueError):
            raise ValueError(f"Age breakpoint must be an integer, got {b!r}.") from None
        if v != b and not (isinstance(b, str) and str(v) == b.strip()):
            raise ValueError(f"Age breakpoint must be an integer, got {b!r}.")
        if v < 0:
            raise ValueError(f"Age breakpoints must be non-negative, got {v}.")
        out.append(v)
    if not out:
        raise ValueError("At least one age breakpoint is required.")
    for a, b in zip(out[:-1], out[1:]):
        if b <= a:
            raise ValueError(f"Age breakpoints must be strictly ascending ({a} then {b}).")
    return out


# ---------------------------------------------------------------------------
# Name normalization
# ---------------------------------------------------------------------------

def deaccent(s):
    """Strip combining marks: 'Bogotá' -> 'Bogota'."""
    if s is None:
        return None
    return "".join(c for c in unicodedata.normalize("NFKD", str(s)) if not unicodedata.combining(c))


def norm_name(s, aliases: dict | None = None):
    """
    Canonical upper-case region name.

    De-accents, upper-cases, turns '&' into ' Y ', drops separators ('/', '.', ',')
    and collapses whitespace. The result is then looked up in `aliases`, whose keys
    are normalized the same way, so alias tables can be written in any spelling.
    """
    if s is None:
        return None
    t = deaccent(s).upper()
    t = (t.replace("&", " Y ").replace("/", " ").replace(".", " ").replace(",", " ")
           .replace("’", "'").replace("`", "'"))
    t = re.sub(r"\s+", " ", t).strip()
    if aliases:
        table = {norm_name(k): str(v) for k, v in aliases.items()}
        return table.get(t, t)
    return t


# ---------------------------------------------------------------------------
# Sex codes
# ---------------------------------------------------------------------------

def _coerce_sex(code) -> str:
    """
    Map a raw sex code to 'female' or 'male'.

    Accepts 'f'/'m' and 'female'/'male' in any case, and the Sex enum
    through its value.

    Raises
    ------
    SchemaError
        If the code is not recognised.
    """
    raw = getattr(code, "value", code)
    key = str(raw).strip().lower()
    try:
        return _SEX_CODES[key]
    except KeyError:
        raise SchemaError(f"Unknown sex code: {code!r}") from None


# ---------------------------------------------------------------------------
# Column lookup / list coercions for config-like values
# ---------------------------------------------------------------------------

def _find_col(df: pd.DataFrame, name: str) -> str | None:
    """
    Return the column of `df` whose name equals `name` ignoring case.

    An exact match wins over a case-insensitive one; when several columns
    differ only by case, the first in column order is returned.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame with candidate columns.
    name : str
        Wanted column name.

    Returns
    -------
    str | None
        Original column name or None if not found.
    """
    if name in df.columns:
        return name
    want = str(name).lower()
    for c in df.columns:
        if str(c).lower() == want:
            return c
    return None


def _coerce_list(x):
    """
    Coerce input to a flat list of strings.

    Rules
    -----
    - If `x` is a list or tuple, flatten one level; split any string items on ';' or ','.
    - If `x` is a string, split on ';' or ',' and strip.
    - Otherwise return None (caller should fall back to project defaults).

    Parameters
    ----------
    x : Any

    Returns
    -------
    list[str] | None
    """
    if isinstance(x, (list, tuple)):
        flat: list[str] = []
        for it in x:
            if isinstance(it, (list, tuple)):
                flat.extend(str(v) for v in it)
            elif isinstance(it, str) and (";" in it or "," in it):
                flat.extend(
                    [s.strip() for s in it.replace(",", ";").split(";") if s.strip()]
                )
            else:
                flat.append(str(it))
        return flat
    if isinstance(x, str):
        if ";" in x or "," in x:
            return [s.strip() for s in x.replace(",", ";").split(";") if s.strip()]
        return [x.strip()]
    return None
