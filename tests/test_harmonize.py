"""Tests for outcome, covariate and sample-flag derivation."""

import numpy as np
import pandas as pd
import pytest

from config import HarmonizationConfig
from conftest import tri
from harmonize import (EDUCATION_LEVELS, STANDARD_FIELDS, derive_sample_flag,
                       harmonize_table, process_country)


def harmonize(data, code="XX"):
    return harmonize_table(pd.DataFrame(data), code)


# ============================================================================
# Outcomes
# ============================================================================

class TestOutcomePrecedence:

    def test_months_band_boundaries(self):
        df = harmonize({"v226": [0, 11, 12, 994, 995, 996, -1, np.nan]})
        assert tri(df["outcome_any"]) == [False, False, True, True, None, None, None, None]

    def test_primary_rule_wins_over_fallback(self):
        # The fallback would exclude the pregnant woman; the months rule still applies
        df = harmonize({"v226": [20, 5], "v405": [1, 1], "v213": [1, 0]})
        assert tri(df["outcome_any"]) == [True, False]
        assert df["outcome_rule"].tolist() == ["months_since_period", "months_since_period"]

    def test_fallback_only_when_months_field_absent(self):
        df = harmonize({"v405": [1]})
        assert tri(df["outcome_any"]) == [True]
        assert df["outcome_rule"].tolist() == ["amenorrhea_fallback"]

    def test_fallback_fills_only_unknown_months(self):
        df = harmonize({"v226": [995, 20, np.nan], "v405": [1, 1, 0]})
        assert tri(df["outcome_any"]) == [True, True, None]
        assert df["outcome_rule"].tolist()[:2] == ["amenorrhea_fallback", "months_since_period"]
        assert pd.isna(df["outcome_rule"].iloc[2])

    def test_fallback_blocked_by_pregnancy(self):
        df = harmonize({"v405": [1, 1, 1], "v213": [1, 0, np.nan]})
        assert tri(df["outcome_any"]) == [None, True, True]

    def test_fallback_never_sets_false(self):
        df = harmonize({"v405": [0]})
        assert tri(df["outcome_any"]) == [None]

    def test_no_indicators_all_unknown(self):
        df = harmonize({"v012": [40, 41]})
        for column in ["outcome_any", "outcome_excl_cause", "cause_flag"]:
            assert tri(df[column]) == [None, None]
        assert df["outcome_rule"].isna().all()


class TestCauseExclusion:

    def test_cause_flag_excludes_outcome(self):
        df = harmonize({"v226": [20, 20, 5], "hysterectomy": [1, 0, 1]})
        assert tri(df["cause_flag"]) == [True, False, True]
        assert tri(df["outcome_any"]) == [True, True, False]
        assert tri(df["outcome_excl_cause"]) == [None, True, None]

    def test_absent_cause_is_unknown_not_false(self):
        df = harmonize({"v226": [20]})
        assert tri(df["cause_flag"]) == [None]
        assert tri(df["outcome_excl_cause"]) == [True]

    def test_missing_answer_is_unknown(self):
        df = harmonize({"v226": [20], "hysterectomy": [np.nan]})
        assert tri(df["cause_flag"]) == [None]

    def test_custom_cause_field_name(self):
        from config import FieldNames
        config = HarmonizationConfig(variables=FieldNames(hysterectomy="s254"))
        df = harmonize_table(pd.DataFrame({"v226": [20], "s254": [1]}), "IA", config)
        assert tri(df["outcome_excl_cause"]) == [None]


# ============================================================================
# Covariates
# ============================================================================

class TestCovariates:

    def test_education_bins(self):
        df = harmonize({"v133": [0, 1, 5, 6, 11, 12, 20, 97, np.nan]})
        levels = [v if isinstance(v, str) else None for v in df["education_level"].tolist()]
        assert levels == ["none", "primary", "primary", "secondary", "secondary",
                          "higher", "higher", None, None]
        assert list(df["education_level"].cat.categories) == EDUCATION_LEVELS
        assert df["education_level"].cat.ordered

    def test_urban(self):
        df = harmonize({"v025": [1, 2, 3]})
        assert tri(df["is_urban"]) == [True, False, None]

    def test_bmi_rescaled_and_sentinel(self):
        df = harmonize({"v445": [2150, 9998, 9999, np.nan]})
        assert df["bmi"].iloc[0] == pytest.approx(21.5)
        assert df["bmi"].iloc[1:].isna().all()

    def test_tobacco(self):
        df = harmonize({"v463z": [0, 1, 9]})
        assert tri(df["tobacco_user"]) == [True, False, None]

    def test_tobacco_absent_is_unknown(self):
        df = harmonize({"v012": [40]})
        assert tri(df["tobacco_user"]) == [None]

    def test_wealth_standardized(self):
        df = harmonize({"v191": [1.0, 2.0, 3.0]})
        assert df["wealth_z"].tolist() == pytest.approx([-1.0, 0.0, 1.0])

    def test_wealth_absent_isolated(self):
        df = harmonize({"v012": [40, 44], "v025": [1, 2], "v226": [20, 3]})
        assert df["wealth_z"].isna().all()
        assert tri(df["is_urban"]) == [True, False]
        assert tri(df["outcome_any"]) == [True, False]

    def test_wealth_without_spread_warns(self):
        with pytest.warns(UserWarning, match="no spread"):
            df = harmonize({"v191": [5.0, 5.0]}, code="ZZ")
        assert df["wealth_z"].isna().all()

    def test_passthrough_and_country_specific(self):
        df = harmonize({"v012": [40], "v013": [6], "v005": [1_250_000], "v130": [3]})
        assert df["age_years"].iloc[0] == 40
        assert df["age_group"].iloc[0] == 6
        assert df["weight"].iloc[0] == pytest.approx(1.25)
        assert df["religion"].iloc[0] == 3
        # Not collected in this source: unknown, not zero
        assert df["caste"].isna().all()
        assert df["health_insurance"].isna().all()


# ============================================================================
# Sample Flag
# ============================================================================

class TestSampleFlag:

    def test_boundaries(self):
        table = pd.DataFrame({
            "age_years": [34, 35, 49, 50],
            "outcome_excl_cause": pd.array([True, False, None, True], dtype="boolean"),
        })
        assert derive_sample_flag(table).tolist() == [False, True, False, False]

    def test_custom_band(self):
        from config import SampleParameters
        config = HarmonizationConfig(sample=SampleParameters(age_band=(40, 45)))
        table = pd.DataFrame({
            "age_years": [39, 40],
            "outcome_excl_cause": pd.array([True, True], dtype="boolean"),
        })
        assert derive_sample_flag(table, config).tolist() == [False, True]

    def test_flag_in_harmonized_table(self):
        df = harmonize({"v012": [34, 35, 49, 50], "v226": [20, 3, 995, 20]})
        assert df["sample_flag"].tolist() == [False, True, False, False]
        assert df["sample_flag"].dtype == bool


# ============================================================================
# Country Processing
# ============================================================================

class TestProcessCountry:

    def test_tags_country_and_keeps_raw_columns(self, write_source, country_p):
        df = process_country(write_source("p", country_p), "P")
        assert (df["country_code"] == "P").all()
        assert list(df.columns) == list(country_p) + STANDARD_FIELDS
        assert df["v226"].tolist() == [20, 20, 20]

    def test_raw_table_not_modified(self, country_p):
        raw = pd.DataFrame(country_p)
        before = raw.copy()
        harmonize_table(raw, "P")
        pd.testing.assert_frame_equal(raw, before)

    def test_idempotent(self, write_source, country_p):
        path = write_source("p", country_p)
        first = process_country(path, "P")
        second = process_country(path, "P")
        pd.testing.assert_frame_equal(first, second)
        assert first.to_csv(index=False) == second.to_csv(index=False)

    def test_stata_source(self, write_source, country_q):
        df = process_country(write_source("q", country_q, fmt="dta"), "Q")
        assert tri(df["outcome_any"]) == [True, True]

    def test_verbose_summary(self, write_source, country_p, capsys):
        process_country(write_source("p", country_p), "P", verbose=True)
        assert "P: 3 records" in capsys.readouterr().out
