#!/usr/bin/env python3
"""Harmonization Module.

Derives the standardized outcome and covariate fields for one country's
survey table. Each country is harmonized independently: the only quantity
computed over more than one record is the wealth mean/SD, and it is taken
over the current country's records alone.

Outcome fields are tri-state (True / False / unknown) and stored with the
pandas nullable "boolean" dtype, so unknown is `pd.NA` and never collapses
into False. Unknown arises in two distinct ways that stay distinguishable
in the output: the source lacks the input (`outcome_rule` is unknown), or
the record was excluded because of a hysterectomy (`cause_flag` is True).

Each outcome field is derived from an ordered tuple of `Rule`s. A rule only
fills records that earlier rules left unknown, so earlier rules take
precedence:

    outcome_any:  months_since_period  ->  amenorrhea_fallback
    cause_flag:   hysterectomy

Example:
    >>> from harmonize import process_country
    >>> df = process_country("data/DHS/NPIR7HFL.DTA", "NP")
    >>> df[['outcome_any', 'outcome_rule', 'sample_flag']].head()
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple, Union
import warnings

import numpy as np
import pandas as pd

from config import HarmonizationConfig
from sources import FieldResolver, as_float, load_source

EDUCATION_LEVELS = ['none', 'primary', 'secondary', 'higher']
EDUCATION_DTYPE = pd.CategoricalDtype(EDUCATION_LEVELS, ordered=True)

OUTCOME_FIELDS = ['outcome_any', 'outcome_excl_cause', 'cause_flag', 'outcome_rule']
COVARIATE_FIELDS = ['education_level', 'is_urban', 'wealth_z', 'bmi', 'tobacco_user']
PASSTHROUGH_FIELDS = ['age_years', 'age_group', 'weight', 'psu', 'strata']
COUNTRY_SPECIFIC_FIELDS = ['caste', 'religion', 'health_insurance']

STANDARD_FIELDS = (
    ['country_code'] + PASSTHROUGH_FIELDS + OUTCOME_FIELDS
    + COVARIATE_FIELDS + ['sample_flag'] + COUNTRY_SPECIFIC_FIELDS
)

# Dtypes every harmonized table carries, per country and after pooling
STANDARD_DTYPES = {
    'outcome_any': 'boolean',
    'outcome_excl_cause': 'boolean',
    'cause_flag': 'boolean',
    'outcome_rule': 'string',
    'education_level': EDUCATION_DTYPE,
    'is_urban': 'boolean',
    'wealth_z': 'float64',
    'bmi': 'float64',
    'tobacco_user': 'boolean',
    'weight': 'float64',
    'sample_flag': 'bool',
}


def _unknown(index: pd.Index) -> pd.Series:
    return pd.Series(pd.NA, index=index, dtype='boolean')


def _in_band(values: pd.Series, band: Tuple[float, float]) -> pd.Series:
    return (values >= band[0]) & (values <= band[1])


def _tri_state(values: pd.Series, true_code, false_code) -> pd.Series:
    """Map two codes to True/False; every other value is unknown."""
    out = _unknown(values.index)
    out[values == true_code] = True
    out[values == false_code] = False
    return out


# ============================================================================
# Outcome Rules
# ============================================================================

@dataclass(frozen=True)
class Rule:
    """One step in a derived field's precedence order.

    `decide` returns a nullable boolean series: True/False where the rule
    determines the value, unknown where it does not apply.
    """
    name: str
    decide: Callable[[FieldResolver, HarmonizationConfig], pd.Series]


def _months_since_period(resolver: FieldResolver, config: HarmonizationConfig) -> pd.Series:
    decided = _unknown(resolver.index)
    present, months = resolver.numeric(config.variables.months_since_period)
    if not present:
        return decided
    decided[_in_band(months, config.outcome.elapsed_band)] = True
    decided[_in_band(months, config.outcome.recent_band)] = False
    return decided


def _amenorrhea_fallback(resolver: FieldResolver, config: HarmonizationConfig) -> pd.Series:
    decided = _unknown(resolver.index)
    present, amenorrheic = resolver.numeric(config.variables.amenorrheic)
    if not present:
        return decided
    yes = config.outcome.yes_code
    pregnant_present, pregnant = resolver.numeric(config.variables.pregnant)
    if pregnant_present:
        not_pregnant = pregnant != yes
    else:
        not_pregnant = pd.Series(True, index=resolver.index)
    decided[(amenorrheic == yes) & not_pregnant] = True
    return decided


def _hysterectomy(resolver: FieldResolver, config: HarmonizationConfig) -> pd.Series:
    decided = _unknown(resolver.index)
    present, answered = resolver.numeric(config.variables.hysterectomy)
    if not present:
        return decided
    decided[answered.notna()] = False
    decided[answered == config.outcome.yes_code] = True
    return decided


OUTCOME_RULES: Tuple[Rule, ...] = (
    Rule('months_since_period', _months_since_period),
    Rule('amenorrhea_fallback', _amenorrhea_fallback),
)

CAUSE_RULES: Tuple[Rule, ...] = (
    Rule('hysterectomy', _hysterectomy),
)


def apply_rules(resolver: FieldResolver, rules: Tuple[Rule, ...],
                config: HarmonizationConfig) -> Tuple[pd.Series, pd.Series]:
    """Apply `rules` in order, each filling only still-unknown records.

    Returns:
        (values, rule_names): the derived nullable boolean series and, per
        record, the name of the rule that set it (unknown if none did).
    """
    values = _unknown(resolver.index)
    decided_by = pd.Series(pd.NA, index=resolver.index, dtype='string')
    for rule in rules:
        decided = rule.decide(resolver, config)
        fill = (values.isna() & decided.notna()).to_numpy(dtype=bool)
        values[fill] = decided[fill]
        decided_by[fill] = rule.name
    return values, decided_by


def derive_outcomes(resolver: FieldResolver, config: HarmonizationConfig) -> Dict[str, pd.Series]:
    """Derive `outcome_any`, `outcome_excl_cause`, `cause_flag` and `outcome_rule`."""
    cause_flag, _ = apply_rules(resolver, CAUSE_RULES, config)
    outcome_any, outcome_rule = apply_rules(resolver, OUTCOME_RULES, config)

    outcome_excl_cause = outcome_any.copy()
    outcome_excl_cause[cause_flag.fillna(False).to_numpy(dtype=bool)] = pd.NA

    return {
        'outcome_any': outcome_any,
        'outcome_excl_cause': outcome_excl_cause,
        'cause_flag': cause_flag,
        'outcome_rule': outcome_rule,
    }


# ============================================================================
# Covariates
# ============================================================================

def derive_education(resolver: FieldResolver, config: HarmonizationConfig) -> pd.Series:
    """Bin years of schooling into none / primary / secondary / higher."""
    present, years = resolver.numeric(config.variables.education_years)
    if not present:
        return pd.Series(pd.NA, index=resolver.index, dtype=EDUCATION_DTYPE)
    params = config.covariates
    years = years.where(years <= params.education_ceiling)
    bins = [0, *params.education_breaks, params.education_ceiling + 1]
    levels = pd.cut(years, bins=bins, right=False, labels=EDUCATION_LEVELS)
    return levels.astype(EDUCATION_DTYPE)


def derive_urban(resolver: FieldResolver, config: HarmonizationConfig) -> pd.Series:
    present, residence = resolver.numeric(config.variables.residence)
    if not present:
        return _unknown(resolver.index)
    return _tri_state(residence, config.covariates.urban_code, config.covariates.rural_code)


def derive_wealth_z(resolver: FieldResolver, config: HarmonizationConfig,
                    country_code: str = '') -> pd.Series:
    """Standardize the wealth factor score over this table's records only.

    Factor scores come from a separate principal-components fit per survey,
    so only the within-country spread is comparable; the mean and SD are
    therefore never pooled.
    """
    present, score = resolver.numeric(config.variables.wealth_score)
    if not present:
        return pd.Series(np.nan, index=resolver.index)
    mean, sd = score.mean(), score.std()
    if pd.isna(sd) or sd == 0:
        warnings.warn(f"Wealth score for {country_code or 'table'} has no spread; wealth_z left unknown")
        return pd.Series(np.nan, index=resolver.index)
    return (score - mean) / sd


def derive_bmi(resolver: FieldResolver, config: HarmonizationConfig) -> pd.Series:
    present, raw = resolver.numeric(config.variables.bmi)
    if not present:
        return raw
    params = config.covariates
    return (raw / params.bmi_scale).where(raw < params.bmi_sentinel)


def derive_tobacco(resolver: FieldResolver, config: HarmonizationConfig) -> pd.Series:
    present, no_tobacco = resolver.numeric(config.variables.no_tobacco)
    if not present:
        return _unknown(resolver.index)
    params = config.covariates
    # The source asks about *not* using tobacco, so the codes are inverted
    return _tri_state(no_tobacco, params.uses_tobacco_code, params.no_tobacco_code)


def derive_passthrough(resolver: FieldResolver, config: HarmonizationConfig) -> Dict[str, pd.Series]:
    """Copy demographic, design and country-specific fields verbatim.

    Absent fields are unknown (NaN), never zero-filled. The sample weight is
    the one exception to verbatim copying: it is rescaled from its implied
    decimals.
    """
    names = config.variables
    out = {
        'age_years': resolver.get(names.age_years).values,
        'age_group': resolver.get(names.age_group).values,
        'psu': resolver.get(names.psu).values,
        'strata': resolver.get(names.strata).values,
    }
    present, weight = resolver.numeric(names.weight)
    out['weight'] = weight / config.covariates.weight_scale if present else weight
    for field in COUNTRY_SPECIFIC_FIELDS:
        out[field] = resolver.get(getattr(names, field)).values
    return out


def derive_covariates(resolver: FieldResolver, config: HarmonizationConfig,
                      country_code: str = '') -> Dict[str, pd.Series]:
    """Derive every harmonized covariate, each independently."""
    return {
        'education_level': derive_education(resolver, config),
        'is_urban': derive_urban(resolver, config),
        'wealth_z': derive_wealth_z(resolver, config, country_code),
        'bmi': derive_bmi(resolver, config),
        'tobacco_user': derive_tobacco(resolver, config),
    }


# ============================================================================
# Analysis Sample
# ============================================================================

def derive_sample_flag(table: pd.DataFrame, config: Optional[HarmonizationConfig] = None) -> pd.Series:
    """Flag records in the inclusion age band with a known `outcome_excl_cause`.

    Reads only the stored `age_years` and `outcome_excl_cause` columns, so
    the flag can be recomputed identically on a per-country or pooled table.
    """
    config = config or HarmonizationConfig()
    age = as_float(table['age_years'])
    in_band = _in_band(age, config.sample.age_band)
    known = table['outcome_excl_cause'].notna().to_numpy(dtype=bool)
    return pd.Series(in_band.to_numpy(dtype=bool) & known, index=table.index, dtype=bool)


def coerce_standard_dtypes(table: pd.DataFrame) -> pd.DataFrame:
    """Cast the standardized fields present in `table` to their fixed dtypes."""
    dtypes = {k: v for k, v in STANDARD_DTYPES.items() if k in table.columns}
    return table.astype(dtypes)


# ============================================================================
# Country Processing
# ============================================================================

def harmonize_table(raw: pd.DataFrame, country_code: str,
                    config: Optional[HarmonizationConfig] = None,
                    verbose: bool = False) -> pd.DataFrame:
    """Harmonize one already-loaded country table.

    The raw table is not modified; the result is a copy holding every
    original column plus the standardized fields.

    Args:
        raw: Raw survey table for one country
        country_code: Short code identifying the source
        config: Coding rules (defaults to `HarmonizationConfig()`)
        verbose: Whether to print a per-country summary

    Returns:
        DataFrame with original columns followed by `STANDARD_FIELDS`.
    """
    config = config or HarmonizationConfig()
    resolver = FieldResolver(raw)

    df = raw.copy()
    df['country_code'] = country_code

    derived = {}
    derived.update(derive_passthrough(resolver, config))
    derived.update(derive_outcomes(resolver, config))
    derived.update(derive_covariates(resolver, config, country_code))
    for name, values in derived.items():
        df[name] = values.to_numpy() if isinstance(values.dtype, np.dtype) else values.array

    df['sample_flag'] = derive_sample_flag(df, config)

    # Standardized fields last, in a fixed order
    original = [c for c in df.columns if c not in STANDARD_FIELDS]
    df = coerce_standard_dtypes(df[original + STANDARD_FIELDS])

    if verbose:
        known = df['outcome_excl_cause'].notna().sum()
        print(f"  {country_code}: {len(df)} records, outcome known for {known}, "
              f"{int(df['sample_flag'].sum())} in analysis sample")
    return df


def process_country(source: Union[str, Path], country_code: str,
                    config: Optional[HarmonizationConfig] = None,
                    verbose: bool = False) -> pd.DataFrame:
    """Load and harmonize one country's source.

    Raises:
        LoadError: If the source cannot be read.
    """
    raw = load_source(source, country_code)
    return harmonize_table(raw, country_code, config, verbose=verbose)
