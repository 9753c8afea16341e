#!/usr/bin/env python3
"""Analysis Module.

Survey-weighted models of menopause status on the pooled core extract.
This module only reads harmonized fields; all coding decisions live in
`harmonize.py`.

The baseline model is a logistic regression of `outcome_excl_cause` on
age, education, residence, wealth, BMI and tobacco use, with country fixed
effects, fit on the analysis sample (`sample_flag`). Survey weights enter as
normalized variance weights and standard errors are clustered on the
primary sampling unit within country.

Example:
    >>> from analysis import fit_weighted_logit
    >>> core = read_pooled(CORE_FILE)
    >>> result = fit_weighted_logit(core)
    >>> print(result.odds_ratios)

Constants:
    DEFAULT_COVARIATES: Covariates in the baseline model.
"""

import argparse
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
import statsmodels.api as sm

from paths import CORE_FILE, FIGURES_DIR, OUTPUT_DIR, ensure_directories_exist
from pool import read_pooled
from sources import as_float

DEFAULT_OUTCOME = 'outcome_excl_cause'

DEFAULT_COVARIATES: List[str] = [
    'age_years',
    'education_level',
    'is_urban',
    'wealth_z',
    'bmi',
    'tobacco_user',
]


def _analysis_weights(df: pd.DataFrame, weight: str = 'weight') -> pd.Series:
    """Sample weights, with 1.0 for records whose survey has none."""
    if weight not in df.columns:
        return pd.Series(1.0, index=df.index)
    return as_float(df[weight]).fillna(1.0)


def _analysis_sample(df: pd.DataFrame, outcome: str) -> pd.DataFrame:
    data = df[df['sample_flag'].astype(bool)]
    return data[data[outcome].notna()]


def weighted_prevalence(df: pd.DataFrame,
                        outcome: str = DEFAULT_OUTCOME,
                        by: Optional[str] = 'country_code',
                        weight: str = 'weight') -> pd.DataFrame:
    """Weighted outcome prevalence in the analysis sample.

    Args:
        df: Pooled table or core extract
        outcome: Tri-state outcome column
        by: Grouping column, or None for the overall prevalence only
        weight: Sample weight column

    Returns:
        DataFrame with one row per group plus an 'All' row, columns
        `group`, `n` (unweighted records), `cases` (unweighted) and
        `prevalence` (weighted proportion).
    """
    data = _analysis_sample(df, outcome)
    y = data[outcome].astype(bool).astype(float)
    w = _analysis_weights(data, weight)

    def summarize(label, mask):
        return {
            'group': label,
            'n': int(mask.sum()),
            'cases': int(y[mask].sum()),
            'prevalence': float((w[mask] * y[mask]).sum() / w[mask].sum()) if mask.any() else np.nan,
        }

    rows = []
    if by is not None:
        for group in pd.unique(data[by]):
            rows.append(summarize(group, data[by] == group))
    rows.append(summarize('All', pd.Series(True, index=data.index)))
    return pd.DataFrame(rows)


def describe_sample(df: pd.DataFrame, weight: str = 'weight') -> pd.DataFrame:
    """Per-country record counts and weighted covariate means.

    Boolean covariates are summarized as weighted shares, education as the
    weighted share in each level. Unknown values are left out of each
    covariate's own mean.
    """
    rows = []
    for code, group in df.groupby('country_code', sort=False):
        sample = group[group['sample_flag'].astype(bool)]
        w = _analysis_weights(sample, weight)
        row = {'country_code': code, 'records': len(group), 'sample': len(sample)}
        for column in ['outcome_excl_cause', 'is_urban', 'tobacco_user', 'wealth_z', 'bmi']:
            values = as_float(sample[column].astype('Float64'))
            known = values.notna()
            row[column] = (values[known] * w[known]).sum() / w[known].sum() if known.any() else np.nan
        education = sample['education_level']
        known = education.notna()
        for level in education.cat.categories:
            share = (w[known] * (education[known] == level)).sum() / w[known].sum() if known.any() else np.nan
            row[f'education_{level}'] = share
        rows.append(row)
    return pd.DataFrame(rows)


# ============================================================================
# Weighted Logistic Regression
# ============================================================================

@dataclass
class LogitResult:
    """Fitted model plus the tables reported from it."""
    fit: object
    odds_ratios: pd.DataFrame
    design: pd.DataFrame
    weights: pd.Series
    n: int


def build_design(df: pd.DataFrame,
                 outcome: str = DEFAULT_OUTCOME,
                 covariates: List[str] = DEFAULT_COVARIATES,
                 country_effects: bool = True):
    """Complete-case model frame for the analysis sample.

    Categorical covariates are dummy-coded against their first level and
    boolean covariates enter as 0/1. Country fixed effects use the first
    country in the data as reference.

    Returns:
        (y, X, data): outcome vector, design matrix with constant, and the
        analysis-sample rows used.

    Raises:
        ValueError: If no analysis-sample record has complete data.
    """
    data = _analysis_sample(df, outcome)
    data = data.dropna(subset=covariates)
    if data.empty:
        raise ValueError(f"No complete analysis-sample records for {outcome} ~ {covariates}")

    parts = []
    for column in covariates:
        values = data[column]
        if isinstance(values.dtype, pd.CategoricalDtype):
            values = values.cat.remove_unused_categories()
            parts.append(pd.get_dummies(values, prefix=column, drop_first=True, dtype=float))
        elif pd.api.types.is_bool_dtype(values.dtype):
            parts.append(values.astype(bool).astype(float).rename(column))
        else:
            parts.append(as_float(values).rename(column))
    if country_effects and data['country_code'].nunique() > 1:
        codes = pd.Categorical(data['country_code'], categories=pd.unique(data['country_code']))
        dummies = pd.get_dummies(codes, prefix='country', drop_first=True, dtype=float)
        dummies.index = data.index
        parts.append(dummies)

    X = sm.add_constant(pd.concat(parts, axis=1), has_constant='add')
    y = data[outcome].astype(bool).astype(float)
    return y, X, data


def fit_weighted_logit(df: pd.DataFrame,
                       outcome: str = DEFAULT_OUTCOME,
                       covariates: List[str] = DEFAULT_COVARIATES,
                       country_effects: bool = True,
                       weight: str = 'weight') -> LogitResult:
    """Fit the survey-weighted logistic regression.

    Raises:
        ValueError: If no analysis-sample record has complete data.
    """
    y, X, data = build_design(df, outcome, covariates, country_effects)

    w = _analysis_weights(data, weight)
    w = w / w.mean()

    model = sm.GLM(y, X, family=sm.families.Binomial(), var_weights=w)
    if 'psu' in data.columns and data['psu'].notna().all():
        clusters = pd.factorize(data['country_code'].astype(str) + ':' + data['psu'].astype(str))[0]
        fit = model.fit(cov_type='cluster', cov_kwds={'groups': clusters})
    else:
        fit = model.fit(cov_type='HC0')

    ci = fit.conf_int()
    odds_ratios = pd.DataFrame({
        'coef': fit.params,
        'odds_ratio': np.exp(fit.params),
        'ci_low': np.exp(ci[0]),
        'ci_high': np.exp(ci[1]),
        'p_value': fit.pvalues,
    })
    odds_ratios.index.name = 'term'
    return LogitResult(fit=fit, odds_ratios=odds_ratios, design=X, weights=w, n=len(y))


def average_marginal_effects(result: LogitResult) -> pd.DataFrame:
    """Weighted average marginal effect of each design term on the probability scale.

    0/1 columns use the discrete change from 0 to 1; other columns use the
    derivative p(1 - p) * beta.
    """
    X = result.design
    beta = result.fit.params[X.columns].to_numpy()
    w = result.weights.to_numpy()

    def prob(matrix):
        return 1.0 / (1.0 + np.exp(-(matrix @ beta)))

    p = prob(X.to_numpy())
    rows = []
    for j, term in enumerate(X.columns):
        if term == 'const':
            continue
        column = X[term].to_numpy()
        if np.isin(column, [0.0, 1.0]).all():
            high, low = X.to_numpy().copy(), X.to_numpy().copy()
            high[:, j], low[:, j] = 1.0, 0.0
            effects = prob(high) - prob(low)
            kind = 'discrete'
        else:
            effects = p * (1 - p) * beta[j]
            kind = 'derivative'
        rows.append({'term': term, 'ame': float(np.average(effects, weights=w)), 'type': kind})
    return pd.DataFrame(rows)


def summarize_result(result: LogitResult) -> None:
    print(f"  Records: {result.n}")
    for term, row in result.odds_ratios.iterrows():
        if term == 'const' or str(term).startswith('country_'):
            continue
        print(f"  {term:30s} OR {row['odds_ratio']:.3f} "
              f"({row['ci_low']:.3f}-{row['ci_high']:.3f}), p={row['p_value']:.3g}")


def main(core_path=CORE_FILE, create_plots: bool = False) -> Dict[str, pd.DataFrame]:
    """Run the baseline tables and model on the core extract.

    Writes `prevalence_by_country.csv`, `sample_description.csv`,
    `odds_ratios.csv` and `marginal_effects.csv` to OUTPUT_DIR.
    """
    print("=" * 80)
    print("POOLED MENOPAUSE ANALYSIS")
    print("=" * 80)

    ensure_directories_exist()
    core = read_pooled(core_path)
    print(f"Loaded {len(core)} records from {core_path}")

    prevalence = weighted_prevalence(core)
    description = describe_sample(core)
    result = fit_weighted_logit(core)
    ame = average_marginal_effects(result)
    summarize_result(result)

    outputs = {
        'prevalence_by_country': prevalence,
        'sample_description': description,
        'odds_ratios': result.odds_ratios.reset_index(),
        'marginal_effects': ame,
    }
    for name, table in outputs.items():
        table.to_csv(OUTPUT_DIR / f"{name}.csv", index=False)
        print(f"Output: {OUTPUT_DIR / f'{name}.csv'} ({len(table)} rows)")

    if create_plots:
        from plot import plot_odds_ratios, plot_prevalence_by_country
        plot_prevalence_by_country(prevalence, FIGURES_DIR / "prevalence_by_country.pdf")
        plot_odds_ratios(result.odds_ratios, FIGURES_DIR / "odds_ratios.pdf")

    print("\n" + "=" * 80)
    print("ANALYSIS COMPLETE")
    print("=" * 80)
    return outputs


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description='Run the pooled menopause analysis')
    parser.add_argument('--core', type=str, default=str(CORE_FILE), help='Core extract CSV')
    parser.add_argument('--plots', action='store_true', help='Also create figures')
    args = parser.parse_args()

    main(args.core, create_plots=args.plots)
