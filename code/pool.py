#!/usr/bin/env python3
"""Pool Builder.

Harmonizes every configured country, concatenates the results into one
pooled table, assigns `country_id`, and writes the pooled artifact.

Each country moves through the states

    PENDING -> LOADED -> APPENDED
    PENDING -> FAILED                 (source could not be loaded; skipped)

A failed country never stops the others. The build succeeds if at least
one country is appended.

`country_id` is the position of the country's code among the codes present
in the pooled table, ordered as they appear in the configured country list.
It is therefore only meaningful within one build: adding or removing a
country renumbers the rest, which is why the mapping table is written next
to every pooled artifact.

Usage:
    $ python pool.py --countries data/countries.csv --workers 4
"""

import argparse
import os
import tempfile
import warnings
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import pandas as pd
from tqdm import tqdm

from config import HarmonizationConfig
from errors import ConfigError, LoadError, PoolBuildError, SchemaError
from harmonize import (STANDARD_FIELDS, coerce_standard_dtypes,
                       derive_sample_flag, harmonize_table)
from paths import (CORE_FILE, COUNTRY_LIST_FILE, POOLED_FILE,
                   ensure_directories_exist)
from sources import load_source

# Columns of the core extract handed to the modeling code
CORE_COLUMNS: List[str] = [
    'country_code', 'country_id',
    'age_years', 'age_group',
    'weight', 'psu', 'strata',
    'outcome_any', 'outcome_excl_cause', 'cause_flag',
    'education_level', 'is_urban', 'wealth_z', 'bmi', 'tobacco_user',
    'sample_flag',
]


class CountryState(str, Enum):
    PENDING = 'pending'
    LOADED = 'loaded'
    APPENDED = 'appended'
    FAILED = 'failed'


@dataclass(frozen=True)
class CountrySource:
    """One configured country: its code and the path of its raw extract."""
    code: str
    path: Path


@dataclass
class BuildSummary:
    """Per-country outcome of one pool build."""
    states: Dict[str, CountryState] = field(default_factory=dict)
    failures: List[Tuple[str, str]] = field(default_factory=list)
    records: Dict[str, int] = field(default_factory=dict)

    @property
    def appended(self) -> List[str]:
        return [code for code, state in self.states.items() if state is CountryState.APPENDED]

    @property
    def succeeded(self) -> bool:
        return len(self.appended) > 0

    def to_frame(self) -> pd.DataFrame:
        reasons = dict(self.failures)
        return pd.DataFrame([
            {'country_code': code, 'state': state.value,
             'records': self.records.get(code, 0), 'reason': reasons.get(code)}
            for code, state in self.states.items()
        ])


@dataclass
class PoolResult:
    pooled: pd.DataFrame
    country_map: pd.DataFrame
    summary: BuildSummary


CountryList = Union[Sequence[CountrySource], Sequence[Tuple[str, Union[str, Path]]], Dict[str, Union[str, Path]]]


# ============================================================================
# Country List
# ============================================================================

def normalize_countries(countries: CountryList) -> List[CountrySource]:
    """Validate the configured country list and return it as `CountrySource`s.

    Raises:
        ConfigError: If the list is empty, an entry is malformed, or a
            country code appears more than once.
    """
    if isinstance(countries, dict):
        countries = list(countries.items())
    if countries is None or len(countries) == 0:
        raise ConfigError("Country list is empty")

    sources = []
    for entry in countries:
        if isinstance(entry, CountrySource):
            sources.append(entry)
            continue
        if isinstance(entry, (str, bytes)) or not isinstance(entry, Sequence) or len(entry) != 2:
            raise ConfigError(f"Country entry must be a (country_code, path) pair, got {entry!r}")
        code, path = entry
        sources.append(CountrySource(code, Path(path)))

    codes = [s.code for s in sources]
    if any(not isinstance(code, str) or not code.strip() for code in codes):
        raise ConfigError(f"Country codes must be non-empty strings, got {codes}")
    duplicates = sorted({code for code in codes if codes.count(code) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate country codes in country list: {duplicates}")
    return sources


def load_country_list(path: Union[str, Path]) -> List[CountrySource]:
    """Read a country list CSV with columns `country_code` and `path`.

    Relative paths are resolved against the directory holding the list.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Country list {path} not found")
    # Codes such as "NA" (Namibia) must stay strings
    table = pd.read_csv(path, dtype=str, keep_default_na=False)
    missing = {'country_code', 'path'} - set(table.columns)
    if missing:
        raise ConfigError(f"Country list {path} missing columns: {sorted(missing)}")
    entries = []
    for code, source in zip(table['country_code'], table['path']):
        if not source.strip():
            raise ConfigError(f"Country list {path} has no path for {code}")
        source = Path(source)
        if not source.is_absolute():
            source = path.parent / source
        entries.append((code, source))
    return normalize_countries(entries)


# ============================================================================
# Building the Pool
# ============================================================================

def _process(source: CountrySource, config: HarmonizationConfig,
             summary: BuildSummary, verbose: bool) -> pd.DataFrame:
    raw = load_source(source.path, source.code)
    summary.states[source.code] = CountryState.LOADED
    return harmonize_table(raw, source.code, config, verbose=verbose)


def encode_country_ids(pooled: pd.DataFrame, order: Iterable[str]) -> Tuple[pd.Series, pd.DataFrame]:
    """Number the country codes present in `pooled` by their position in `order`.

    Returns:
        (country_id, country_map): the per-record ids and the mapping table
        with columns `country_id` and `country_code`.
    """
    present = set(pooled['country_code'].unique())
    codes = [code for code in order if code in present]
    mapping = {code: i for i, code in enumerate(codes)}
    country_id = pooled['country_code'].map(mapping).astype(int)
    country_map = pd.DataFrame({'country_id': range(len(codes)), 'country_code': codes})
    return country_id, country_map


def concat_countries(tables: List[pd.DataFrame], config: HarmonizationConfig) -> pd.DataFrame:
    """Stack harmonized country tables into one schema-union table.

    Columns present in only some countries are unknown for the others.
    """
    pooled = pd.concat(tables, ignore_index=True, sort=False)
    raw_columns = [c for c in pooled.columns if c not in STANDARD_FIELDS]
    pooled = coerce_standard_dtypes(pooled[raw_columns + STANDARD_FIELDS])
    pooled['sample_flag'] = derive_sample_flag(pooled, config)
    return pooled


def build_pool(countries: CountryList,
               config: Optional[HarmonizationConfig] = None,
               output_path: Optional[Union[str, Path]] = None,
               max_workers: int = 1,
               verbose: bool = False) -> PoolResult:
    """Harmonize and pool every configured country.

    Countries are processed sequentially by default. With `max_workers > 1`
    they run on a thread pool; results are still stacked and numbered in
    configuration order, so the output does not depend on which country
    finishes first.

    Args:
        countries: Ordered `(country_code, path)` pairs, `CountrySource`s,
            or a dict of code to path
        config: Coding rules (defaults to `HarmonizationConfig()`)
        output_path: Where to write the pooled CSV; the country mapping is
            written next to it. Nothing is written if None.
        max_workers: Number of countries processed concurrently
        verbose: Whether to print per-country summaries

    Returns:
        PoolResult with the pooled table, country mapping and build summary.

    Raises:
        ConfigError: If the country list is malformed (before any loading).
        PoolBuildError: If no country could be appended.
    """
    sources = normalize_countries(countries)
    config = config or HarmonizationConfig()
    summary = BuildSummary(states={s.code: CountryState.PENDING for s in sources})

    print("=" * 80)
    print("BUILDING POOLED DATASET")
    print("=" * 80)
    print(f"Countries: {', '.join(s.code for s in sources)}\n")

    results: Dict[str, pd.DataFrame] = {}

    def record_failure(source: CountrySource, error: LoadError):
        summary.states[source.code] = CountryState.FAILED
        summary.failures.append((source.code, error.reason))
        warnings.warn(f"Skipping {source.code}: {error.reason}")

    if max_workers > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {executor.submit(_process, s, config, summary, verbose): s for s in sources}
            for future in tqdm(as_completed(futures), total=len(futures), desc="Harmonizing countries"):
                source = futures[future]
                try:
                    results[source.code] = future.result()
                except LoadError as e:
                    record_failure(source, e)
    else:
        for source in tqdm(sources, desc="Harmonizing countries"):
            try:
                results[source.code] = _process(source, config, summary, verbose)
            except LoadError as e:
                record_failure(source, e)

    # Append in configuration order, not completion order
    tables = []
    for source in sources:
        if source.code not in results:
            continue
        tables.append(results[source.code])
        summary.states[source.code] = CountryState.APPENDED
        summary.records[source.code] = len(results[source.code])

    # Failures are reported in configuration order too
    order = {s.code: i for i, s in enumerate(sources)}
    summary.failures.sort(key=lambda failure: order[failure[0]])

    if not summary.succeeded:
        raise PoolBuildError(summary.failures)

    pooled = concat_countries(tables, config)
    country_id, country_map = encode_country_ids(pooled, [s.code for s in sources])
    pooled.insert(pooled.columns.get_loc('country_code') + 1, 'country_id', country_id)

    if output_path is not None:
        output_path = Path(output_path)
        write_atomic(pooled, output_path)
        write_atomic(country_map, country_map_path(output_path))

    print(f"\nAppended {len(summary.appended)}/{len(sources)} countries, {len(pooled)} records")
    for code, reason in summary.failures:
        print(f"  Skipped {code}: {reason}")
    if output_path is not None:
        print(f"Output: {output_path}")

    return PoolResult(pooled=pooled, country_map=country_map, summary=summary)


# ============================================================================
# Core Extract
# ============================================================================

def project_core(pooled: pd.DataFrame, columns: Sequence[str] = CORE_COLUMNS) -> pd.DataFrame:
    """Return only the allowlisted columns of `pooled`, for every record.

    Raises:
        SchemaError: If any allowlisted column is missing.
    """
    missing = [c for c in columns if c not in pooled.columns]
    if missing:
        raise SchemaError(missing)
    return pooled.loc[:, list(columns)].copy()


# ============================================================================
# Artifacts
# ============================================================================

def country_map_path(output_path: Union[str, Path]) -> Path:
    output_path = Path(output_path)
    return output_path.with_name(f"{output_path.stem}_countries.csv")


def write_atomic(df: pd.DataFrame, path: Union[str, Path]) -> None:
    """Write `df` as CSV so that `path` is either the old file or the complete new one."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix='.tmp')
    try:
        with os.fdopen(fd, 'w', newline='') as handle:
            df.to_csv(handle, index=False)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)
        raise


def read_pooled(path: Union[str, Path]) -> pd.DataFrame:
    """Read a pooled or core extract CSV, restoring the standardized dtypes."""
    # Only empty cells are missing, so a country_code of "NA" survives the round trip
    df = pd.read_csv(path, dtype={'country_code': str}, keep_default_na=False,
                     na_values=[''], low_memory=False)
    return coerce_standard_dtypes(df)


# ============================================================================
# Command-line Interface
# ============================================================================

def main(countries_file: Union[str, Path] = COUNTRY_LIST_FILE,
         output_path: Union[str, Path] = POOLED_FILE,
         core_path: Union[str, Path] = CORE_FILE,
         max_workers: int = 1,
         verbose: bool = False) -> PoolResult:
    """Build the pooled table and its core extract from a country list file."""
    ensure_directories_exist()
    sources = load_country_list(countries_file)
    result = build_pool(sources, output_path=output_path,
                        max_workers=max_workers, verbose=verbose)
    core = project_core(result.pooled)
    write_atomic(core, core_path)
    print(f"Core extract: {core_path} ({len(core)} rows, {len(core.columns)} columns)")
    return result


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description='Build the pooled harmonized dataset')
    parser.add_argument('--countries', type=str, default=str(COUNTRY_LIST_FILE),
                        help='CSV with columns country_code,path')
    parser.add_argument('--output', type=str, default=str(POOLED_FILE), help='Pooled table output path')
    parser.add_argument('--core', type=str, default=str(CORE_FILE), help='Core extract output path')
    parser.add_argument('--workers', type=int, default=1, help='Countries processed concurrently')
    parser.add_argument('--verbose', action='store_true', help='Print per-country summaries')
    args = parser.parse_args()

    main(args.countries, args.output, args.core, max_workers=args.workers, verbose=args.verbose)
