"""Shared fixtures: synthetic raw country extracts written to tmp_path."""

import matplotlib
matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest


def tri(series):
    """Tri-state values as True/False/None for easy comparison."""
    return [None if pd.isna(v) else bool(v) for v in series]


@pytest.fixture
def write_source(tmp_path):
    """Write a raw table to `tmp_path` and return its path."""
    def _write(name, data, fmt="csv"):
        df = pd.DataFrame(data)
        path = tmp_path / f"{name}.{fmt}"
        if fmt == "dta":
            df.to_stata(path, write_index=False)
        else:
            df.to_csv(path, index=False)
        return path
    return _write


@pytest.fixture
def country_p():
    """Three women with a period 20 months ago and wealth scores 1, 2, 3."""
    return {
        "v012": [40, 45, 36],
        "v226": [20, 20, 20],
        "v191": [1.0, 2.0, 3.0],
        "v025": [1, 2, 1],
        "v005": [1_000_000, 2_000_000, 1_500_000],
        "v021": [1, 1, 2],
        "s116": [1, 2, 3],
    }


@pytest.fixture
def country_q():
    """Two amenorrheic women with no months-since-period or pregnancy field."""
    return {
        "v012": [42, 48],
        "v405": [1, 1],
        "v191": [10.0, 20.0],
        "v025": [2, 2],
        "v005": [500_000, 500_000],
        "v021": [7, 8],
    }


@pytest.fixture
def rng():
    return np.random.default_rng(20261019)
