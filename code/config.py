#!/usr/bin/env python3
"""Harmonization Configuration and Parameter Documentation.

This module centralizes every coding rule used to derive the standardized
fields, with their justifications and default values, using Pydantic for
validation and documentation.

Key features:
- Type validation and coercion
- Immutable configuration (frozen=True)
- Rich metadata with sources and interpretation
- Programmatic access to documentation

Parameters are organized by category:
- Fields: Raw variable names looked up in each country source
- Outcome: Menopause coding bands and answer codes
- Covariates: Education bins, residence codes, BMI and tobacco coding
- Sample: Analysis-sample inclusion band

Usage:
    >>> from config import HarmonizationConfig
    >>> config = HarmonizationConfig()
    >>> print(config.sample.age_band)  # (35, 49)
    >>> config.outcome.describe('elapsed_band')  # Print full documentation
    >>> custom = HarmonizationConfig(variables=FieldNames(hysterectomy='s254'))
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Dict, Any, Tuple


class _DocumentedParameters(BaseModel):
    """Shared immutable base with a `describe` helper."""

    model_config = {'frozen': True, 'extra': 'forbid'}

    def describe(self, param_name: str) -> None:
        """Print comprehensive documentation for a parameter.

        Args:
            param_name: Name of the parameter to describe
        """
        fields = type(self).model_fields
        if param_name not in fields:
            raise ValueError(f"Unknown parameter: {param_name}")

        field_info = fields[param_name]
        value = getattr(self, param_name)
        extra = field_info.json_schema_extra or {}

        print(f"\n{'=' * 70}")
        print(f"Parameter: {param_name}")
        print(f"{'=' * 70}")
        print(f"Value: {value}")
        if 'units' in extra:
            print(f"Units: {extra['units']}")
        print(f"\nDescription:")
        print(f"  {field_info.description}")
        if 'source' in extra:
            print(f"\nSource:")
            print(f"  {extra['source']}")
        if 'interpretation' in extra:
            print(f"\nInterpretation:")
            print(f"  {extra['interpretation']}")
        if 'notes' in extra:
            print(f"\nNotes:")
            print(f"  {extra['notes']}")
        print(f"{'=' * 70}\n")


def _check_band(name: str, band: Tuple[float, float]) -> Tuple[float, float]:
    if band[0] > band[1]:
        raise ValueError(f"{name} must have low <= high, got {band}")
    return band


# ============================================================================
# Raw Variable Names
# ============================================================================

class FieldNames(_DocumentedParameters):
    """Raw variable names read from each country source.

    Defaults are DHS women's recode (IR) names. Lookup is case-insensitive,
    so upper-case extracts resolve to the same fields.
    """

    # === Outcome inputs ===

    months_since_period: str = Field(
        default='v226',
        description="Time since last menstrual period, in months.",
        json_schema_extra={
            'source': 'DHS recode manual',
            'notes': '994 = in menopause/has had hysterectomy, 995 = before last birth, 996 = never menstruated',
        }
    )

    amenorrheic: str = Field(
        default='v405',
        description="Currently amenorrheic (no period since last birth).",
        json_schema_extra={'source': 'DHS recode manual'}
    )

    pregnant: str = Field(
        default='v213',
        description="Currently pregnant.",
        json_schema_extra={'source': 'DHS recode manual'}
    )

    hysterectomy: str = Field(
        default='hysterectomy',
        description="Ever had a hysterectomy. Country-specific module, so the raw name is usually overridden per survey round.",
        json_schema_extra={
            'notes': 'Only some surveys ask this; absent sources leave cause_flag unknown',
        }
    )

    # === Demographics ===

    age_years: str = Field(default='v012', description="Respondent's current age in completed years.")
    age_group: str = Field(default='v013', description="Five-year age group.")

    # === Socioeconomic covariates ===

    education_years: str = Field(default='v133', description="Education in single years.")
    residence: str = Field(default='v025', description="Type of place of residence.")
    wealth_score: str = Field(
        default='v191',
        description="Wealth index factor score (5 implied decimals).",
        json_schema_extra={
            'interpretation': 'Only the within-survey spread is meaningful; scores are not comparable across countries',
        }
    )
    bmi: str = Field(default='v445', description="Body mass index with 2 implied decimals.")
    no_tobacco: str = Field(
        default='v463z',
        description="Composite indicator: respondent uses no tobacco of any kind.",
    )

    # === Survey design ===

    weight: str = Field(default='v005', description="Women's individual sample weight (6 implied decimals).")
    psu: str = Field(default='v021', description="Primary sampling unit.")
    strata: str = Field(default='v023', description="Stratification used in sample design.")

    # === Country-specific, not for pooled analysis ===

    caste: str = Field(default='s116', description="Caste or tribe (India NFHS only).")
    religion: str = Field(default='v130', description="Religion; codes differ by country.")
    health_insurance: str = Field(default='v481', description="Covered by health insurance.")


# ============================================================================
# Outcome Parameters (Menopause Coding)
# ============================================================================

class OutcomeParameters(_DocumentedParameters):
    """Coding rules for the menopause outcome fields."""

    yes_code: int = Field(
        default=1,
        description="Code for a 'yes' answer in the amenorrhea, pregnancy and hysterectomy indicators.",
        json_schema_extra={'source': 'DHS recode manual (0 = no, 1 = yes)'}
    )

    recent_band: Tuple[int, int] = Field(
        default=(0, 11),
        description="Months since last period that count as NOT menopausal (inclusive).",
        json_schema_extra={
            'units': 'months',
            'interpretation': 'A period within the last year rules out menopause',
        }
    )

    elapsed_band: Tuple[int, int] = Field(
        default=(12, 994),
        description="Months since last period that count as menopausal (inclusive). The upper bound is the DHS 'in menopause' code.",
        json_schema_extra={
            'units': 'months',
            'source': 'WHO definition: 12 months of amenorrhea',
            'notes': 'Codes above the band (995 before last birth, 996 never menstruated, 997-999 missing) stay unknown',
        }
    )

    @field_validator('recent_band', 'elapsed_band')
    @classmethod
    def validate_band(cls, v, info):
        """Ensure band bounds are ordered."""
        return _check_band(info.field_name, v)

    @model_validator(mode='after')
    def validate_disjoint(self):
        """Ensure the recent and elapsed bands do not overlap."""
        (r_low, r_high), (e_low, e_high) = self.recent_band, self.elapsed_band
        if r_low <= e_high and e_low <= r_high:
            raise ValueError(
                f"recent_band {self.recent_band} overlaps elapsed_band {self.elapsed_band}"
            )
        return self


# ============================================================================
# Covariate Parameters
# ============================================================================

class CovariateParameters(_DocumentedParameters):
    """Coding rules for the harmonized covariates."""

    education_breaks: Tuple[int, int, int] = Field(
        default=(1, 6, 12),
        description="Lower bounds (years) of the primary, secondary and higher education bins. Zero years is 'none'.",
        json_schema_extra={
            'units': 'years of schooling',
            'interpretation': '0 -> none; 1-5 -> primary; 6-11 -> secondary; 12+ -> higher',
        }
    )

    education_ceiling: int = Field(
        default=96,
        ge=12,
        description="Largest plausible years-of-schooling value. Larger codes are treated as unknown.",
        json_schema_extra={
            'source': 'DHS recode manual: 97 inconsistent, 98 don\'t know, 99 missing',
        }
    )

    urban_code: int = Field(default=1, description="Residence code for urban.")
    rural_code: int = Field(default=2, description="Residence code for rural.")

    bmi_scale: float = Field(
        default=100.0,
        gt=0.0,
        description="Divisor applied to the raw BMI value (2 implied decimals).",
    )

    bmi_sentinel: float = Field(
        default=9998.0,
        gt=0.0,
        description="Raw BMI values at or above this threshold mark non-collection (flagged, pregnant or recent birth, missing).",
        json_schema_extra={'source': 'DHS recode manual: 9998 flagged cases, 9999 missing'}
    )

    no_tobacco_code: int = Field(
        default=1,
        description="Code in the 'uses no tobacco' indicator meaning the respondent uses none.",
    )

    uses_tobacco_code: int = Field(
        default=0,
        description="Code in the 'uses no tobacco' indicator meaning the respondent uses some tobacco.",
    )

    weight_scale: float = Field(
        default=1_000_000.0,
        gt=0.0,
        description="Divisor applied to the raw sample weight (6 implied decimals).",
    )

    @field_validator('education_breaks')
    @classmethod
    def validate_breaks(cls, v):
        """Ensure breakpoints are strictly increasing and start above zero."""
        if not (0 < v[0] < v[1] < v[2]):
            raise ValueError(f"education_breaks must be strictly increasing and > 0, got {v}")
        return v

    @model_validator(mode='after')
    def validate_codes(self):
        """Ensure paired codes are distinguishable."""
        if self.urban_code == self.rural_code:
            raise ValueError("urban_code and rural_code must differ")
        if self.no_tobacco_code == self.uses_tobacco_code:
            raise ValueError("no_tobacco_code and uses_tobacco_code must differ")
        return self

    @model_validator(mode='after')
    def validate_education_ceiling(self):
        """Ensure the highest breakpoint is a valid number of years."""
        if self.education_breaks[-1] > self.education_ceiling:
            raise ValueError(
                f"education_breaks {self.education_breaks} exceed "
                f"education_ceiling {self.education_ceiling}"
            )
        return self


# ============================================================================
# Analysis Sample
# ============================================================================

class SampleParameters(_DocumentedParameters):
    """Analysis-sample inclusion rule."""

    age_band: Tuple[int, int] = Field(
        default=(35, 49),
        description="Inclusive age band for the analysis sample.",
        json_schema_extra={
            'units': 'years',
            'interpretation': 'DHS interviews women 15-49; menopause before 35 is rare',
        }
    )

    @field_validator('age_band')
    @classmethod
    def validate_age_band(cls, v):
        """Ensure the band is ordered."""
        return _check_band('age_band', v)


# ============================================================================
# Main Configuration Class
# ============================================================================

class HarmonizationConfig(BaseModel):
    """Complete harmonization configuration.

    Passed explicitly to the country processor and the pool builder; there
    is no module-level configuration state.

    Usage:
        >>> config = HarmonizationConfig()
        >>> config.outcome.elapsed_band
        >>> config.to_dict()
    """

    model_config = {'frozen': True}

    variables: FieldNames = Field(
        default_factory=FieldNames,
        description="Raw variable names"
    )

    outcome: OutcomeParameters = Field(
        default_factory=OutcomeParameters,
        description="Menopause coding rules"
    )

    covariates: CovariateParameters = Field(
        default_factory=CovariateParameters,
        description="Covariate coding rules"
    )

    sample: SampleParameters = Field(
        default_factory=SampleParameters,
        description="Analysis-sample inclusion rule"
    )

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        """Export all parameters as nested dictionary."""
        return {
            'variables': self.variables.model_dump(),
            'outcome': self.outcome.model_dump(),
            'covariates': self.covariates.model_dump(),
            'sample': self.sample.model_dump(),
        }

    def describe_all(self) -> None:
        """Print documentation for all parameters in all categories."""
        for category_name in ['variables', 'outcome', 'covariates', 'sample']:
            category = getattr(self, category_name)
            print(f"\n{'#' * 70}")
            print(f"# {category_name.upper()}")
            print(f"{'#' * 70}")
            for param_name in type(category).model_fields.keys():
                category.describe(param_name)


# ============================================================================
# Command-line Interface
# ============================================================================

if __name__ == "__main__":
    config = HarmonizationConfig()

    print("=" * 80)
    print("HARMONIZATION PARAMETERS")
    print("=" * 80)

    for category_name, params in config.to_dict().items():
        print(f"\n{category_name.upper()}")
        print("-" * 80)
        for param_name, value in params.items():
            print(f"  {param_name:20s} = {value}")

    print("\n" + "=" * 80)
    print("\nFor detailed documentation, use:")
    print("  >>> from config import HarmonizationConfig")
    print("  >>> HarmonizationConfig().outcome.describe('elapsed_band')")
    print("=" * 80)
