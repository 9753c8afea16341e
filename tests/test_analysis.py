"""Tests for the weighted tables, the logistic model and the plots."""

import numpy as np
import pandas as pd
import pytest

from analysis import (average_marginal_effects, build_design, describe_sample,
                      fit_weighted_logit, weighted_prevalence)
from harmonize import EDUCATION_LEVELS, coerce_standard_dtypes
from plot import plot_odds_ratios, plot_prevalence_by_country


@pytest.fixture
def small_core():
    return coerce_standard_dtypes(pd.DataFrame({
        "country_code": ["A", "A", "A", "A", "B"],
        "outcome_excl_cause": pd.array([True, False, True, None, True], dtype="boolean"),
        "sample_flag": [True, True, False, False, True],
        "weight": [1.0, 3.0, 5.0, 1.0, 2.0],
    }))


@pytest.fixture
def synthetic_core(rng):
    """Pooled core extract where menopause odds rise with age."""
    n = 600
    age = rng.integers(35, 50, n)
    logit = -12.0 + 0.28 * age
    outcome = rng.random(n) < 1 / (1 + np.exp(-logit))
    return coerce_standard_dtypes(pd.DataFrame({
        "country_code": np.where(np.arange(n) < n // 2, "NP", "IA"),
        "country_id": np.where(np.arange(n) < n // 2, 0, 1),
        "age_years": age,
        "weight": rng.uniform(0.5, 1.5, n),
        "psu": rng.integers(1, 30, n),
        "outcome_excl_cause": pd.array(outcome, dtype="boolean"),
        "education_level": pd.Categorical(rng.choice(EDUCATION_LEVELS, n)),
        "is_urban": pd.array(rng.random(n) < 0.4, dtype="boolean"),
        "wealth_z": rng.normal(size=n),
        "bmi": rng.normal(23, 3, n),
        "tobacco_user": pd.array(rng.random(n) < 0.2, dtype="boolean"),
        "sample_flag": np.ones(n, dtype=bool),
    }))


class TestWeightedPrevalence:

    def test_by_country(self, small_core):
        table = weighted_prevalence(small_core).set_index("group")
        assert table.loc["A", "n"] == 2
        assert table.loc["A", "cases"] == 1
        assert table.loc["A", "prevalence"] == pytest.approx(0.25)
        assert table.loc["B", "prevalence"] == pytest.approx(1.0)
        assert table.loc["All", "prevalence"] == pytest.approx(0.5)

    def test_overall_only(self, small_core):
        table = weighted_prevalence(small_core, by=None)
        assert table["group"].tolist() == ["All"]

    def test_missing_weights_count_as_one(self, small_core):
        table = weighted_prevalence(small_core.drop(columns=["weight"])).set_index("group")
        assert table.loc["A", "prevalence"] == pytest.approx(0.5)


def test_describe_sample(synthetic_core):
    table = describe_sample(synthetic_core).set_index("country_code")
    assert table.loc["NP", "records"] == 300
    assert table.loc["NP", "sample"] == 300
    shares = table.loc["NP", [f"education_{level}" for level in EDUCATION_LEVELS]]
    assert shares.sum() == pytest.approx(1.0)


class TestWeightedLogit:

    def test_design_matrix(self, synthetic_core):
        y, X, data = build_design(synthetic_core)
        assert len(y) == len(X) == len(data) == 600
        assert "const" in X.columns
        assert "education_level_none" not in X.columns
        assert "education_level_higher" in X.columns
        assert "country_IA" in X.columns
        assert set(X["is_urban"].unique()) <= {0.0, 1.0}

    def test_complete_cases_only(self, synthetic_core):
        core = synthetic_core.copy()
        core.loc[:9, "bmi"] = np.nan
        core.loc[10:19, "sample_flag"] = False
        y, X, data = build_design(core)
        assert len(y) == 580

    def test_age_effect_recovered(self, synthetic_core):
        result = fit_weighted_logit(synthetic_core)
        assert result.n == 600
        age = result.odds_ratios.loc["age_years"]
        assert age["odds_ratio"] > 1.0
        assert age["ci_low"] < age["odds_ratio"] < age["ci_high"]

    def test_without_psu_uses_robust_errors(self, synthetic_core):
        result = fit_weighted_logit(synthetic_core.drop(columns=["psu"]), country_effects=False)
        assert "country_IA" not in result.odds_ratios.index

    def test_no_complete_records(self, synthetic_core):
        core = synthetic_core.assign(sample_flag=False)
        with pytest.raises(ValueError, match="No complete"):
            fit_weighted_logit(core)

    def test_marginal_effects(self, synthetic_core):
        ame = average_marginal_effects(fit_weighted_logit(synthetic_core)).set_index("term")
        assert "const" not in ame.index
        assert ame.loc["age_years", "type"] == "derivative"
        assert ame.loc["is_urban", "type"] == "discrete"
        assert ame.loc["age_years", "ame"] > 0


class TestPlots:

    def test_prevalence_plot(self, small_core, tmp_path):
        path = plot_prevalence_by_country(weighted_prevalence(small_core), tmp_path / "prev.pdf")
        assert path.exists()

    def test_odds_ratio_plot(self, synthetic_core, tmp_path):
        result = fit_weighted_logit(synthetic_core)
        path = plot_odds_ratios(result.odds_ratios, tmp_path / "or.pdf")
        assert path.exists()
