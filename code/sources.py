#!/usr/bin/env python3
"""Source Tables and Field Lookup.

Reads one raw country extract into a DataFrame and resolves requested
fields on it without ever raising for a field the survey did not collect.

Survey rounds differ in which variables they carry (the hysterectomy and
tobacco modules are country-specific, older rounds lack the wealth score),
so all derivation code asks a `FieldResolver` for a field and receives a
`FieldValue` whose `present` flag says whether the source had it. Absent
fields come back as an all-unknown series aligned to the table.

Example:
    >>> table = load_source("data/DHS/IAIR7EFL.DTA", "IA")
    >>> resolver = FieldResolver(table)
    >>> resolver.get("v226").present
    True
"""

from pathlib import Path
from typing import NamedTuple, Union

import numpy as np
import pandas as pd

from errors import LoadError

SUPPORTED_SUFFIXES = {'.dta', '.csv'}


def load_source(path: Union[str, Path], country_code: str) -> pd.DataFrame:
    """Load one raw country table.

    Stata files are read with value labels left as their numeric codes, since
    every coding rule downstream works on codes and DHS label sets are not
    unique across rounds.

    Args:
        path: Path to a `.dta` or `.csv` extract
        country_code: Country the source belongs to (used in error messages)

    Returns:
        The raw table, columns exactly as stored in the source.

    Raises:
        LoadError: If the file is missing, has an unsupported format, or
            cannot be parsed.
    """
    path = Path(path)
    if not path.exists():
        raise LoadError(country_code, f"file {path} not found")

    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise LoadError(country_code, f"unsupported format '{suffix}' for {path}")

    try:
        if suffix == '.dta':
            df = pd.read_stata(path, convert_categoricals=False)
        else:
            df = pd.read_csv(path)
    except Exception as e:
        raise LoadError(country_code, f"could not read {path}: {e}") from e

    return df


class FieldValue(NamedTuple):
    """Result of a field lookup."""
    present: bool
    values: pd.Series


def _absent(index: pd.Index) -> pd.Series:
    return pd.Series(np.nan, index=index, dtype=float)


def as_float(values: pd.Series) -> pd.Series:
    """Coerce a column to float64; unparseable entries and missing codes become NaN."""
    numeric = pd.to_numeric(values, errors='coerce')
    return pd.Series(numeric.to_numpy(dtype=float, na_value=np.nan), index=values.index)


def resolve_field(table: pd.DataFrame, name: str) -> FieldValue:
    """Look up `name` in `table`, matching column names case-insensitively.

    Never raises for a missing field: the result has `present=False` and
    all-unknown values.
    """
    if name in table.columns:
        return FieldValue(True, table[name])
    lowered = name.lower()
    for column in table.columns:
        if isinstance(column, str) and column.lower() == lowered:
            return FieldValue(True, table[column])
    return FieldValue(False, _absent(table.index))


class FieldResolver:
    """Field lookups against one loaded table."""

    def __init__(self, table: pd.DataFrame):
        self.table = table

    @property
    def index(self) -> pd.Index:
        return self.table.index

    def get(self, name: str) -> FieldValue:
        return resolve_field(self.table, name)

    def has(self, name: str) -> bool:
        return self.get(name).present

    def numeric(self, name: str) -> FieldValue:
        """Like `get`, with values coerced to float64.

        Non-numeric entries become NaN rather than raising.
        """
        present, values = self.get(name)
        if not present:
            return FieldValue(False, values)
        return FieldValue(True, as_float(values))
