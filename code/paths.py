#!/usr/bin/env python3
"""Centralized Path Management for the Pooled Menopause Analysis.

This module provides a single source of truth for all file paths used across
the project. Using centralized path management ensures:
- Code works regardless of working directory
- Easy to relocate project
- Clear documentation of expected directory structure

Directory Structure:
    project_root/
    ├── code/           # Python source code
    ├── data/           # Raw input data
    │   └── DHS/        # Women's recode files, one per country (.dta / .csv)
    ├── intermediate/   # Pooled and core extract tables
    ├── output/         # Model tables (prevalence, odds ratios, AMEs)
    └── figures/        # Generated plots

Usage:
    >>> from paths import POOLED_FILE, CORE_FILE
    >>> pooled = read_pooled(POOLED_FILE)
"""

from pathlib import Path

# ============================================================================
# Root Directory
# ============================================================================

# Project root is parent of code/ directory
PROJECT_ROOT = Path(__file__).parent.parent

# ============================================================================
# Input Data Directories (Raw Data)
# ============================================================================

DATA_DIR = PROJECT_ROOT / "data"
"""Root directory for all raw input data."""

COUNTRY_LIST_FILE = DATA_DIR / "countries.csv"
"""Default country list (columns: country_code, path)."""

# ============================================================================
# Intermediate Data (Harmonized Tables)
# ============================================================================

INTERMEDIATE_DIR = PROJECT_ROOT / "intermediate"
"""Root directory for harmonized data."""

POOLED_FILE = INTERMEDIATE_DIR / "pooled.csv"
"""Full pooled table: every record, raw fields plus standardized fields."""

CORE_FILE = INTERMEDIATE_DIR / "core.csv"
"""Core extract: fixed column subset of the pooled table."""

# ============================================================================
# Output Directories
# ============================================================================

OUTPUT_DIR = PROJECT_ROOT / "output"
"""Final analysis outputs and results."""

FIGURES_DIR = PROJECT_ROOT / "figures"
"""Generated plots, charts, and visualizations."""

# ============================================================================
# Directory Creation
# ============================================================================

def ensure_directories_exist() -> None:
    """Create all output and intermediate directories if they don't exist.

    Safe to call multiple times. Called by the command-line entry points
    before anything is written.

    Note:
        Does NOT create data/ directories, as these should contain
        user-provided raw data.
    """
    INTERMEDIATE_DIR.mkdir(parents=True, exist_ok=True)
    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    FIGURES_DIR.mkdir(parents=True, exist_ok=True)
