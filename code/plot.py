#!/usr/bin/env python3
"""Plotting Utilities for the Pooled Menopause Analysis.

This module provides functions to visualize the analysis tables produced by
`analysis.py`. Plots are saved in high-resolution PDF format.

Functions:
    plot_prevalence_by_country: Bar chart of weighted prevalence per country.
    plot_odds_ratios: Forest plot of odds ratios with confidence intervals.
    main: Create all plots from the tables in OUTPUT_DIR.

Usage:
    $ python plot.py  # Generate all plots

    Or import specific functions:
    >>> from plot import plot_odds_ratios
    >>> plot_odds_ratios(result.odds_ratios, FIGURES_DIR / "odds_ratios.pdf")
"""

from pathlib import Path
from typing import Union

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from paths import FIGURES_DIR, OUTPUT_DIR

# Plotting parameters
DPI = 300  # High resolution for publications
FIGSIZE_MEDIUM = (10, 5)  # For compact comparisons


def plot_prevalence_by_country(prevalence: pd.DataFrame,
                               save_path: Union[str, Path] = FIGURES_DIR / "prevalence_by_country.pdf") -> Path:
    """Bar chart of weighted menopause prevalence per country.

    Args:
        prevalence: Output of `analysis.weighted_prevalence` (columns
            `group`, `n`, `prevalence`). The 'All' row is drawn as a
            reference line rather than a bar.
        save_path: Output file

    Returns:
        Path of the saved figure.
    """
    print("Creating prevalence plot...")
    save_path = Path(save_path)

    sns.set_palette("husl")
    countries = prevalence[prevalence['group'] != 'All']
    overall = prevalence.loc[prevalence['group'] == 'All', 'prevalence']

    fig, ax = plt.subplots(figsize=FIGSIZE_MEDIUM)
    sns.barplot(data=countries, x='group', y='prevalence', ax=ax)
    for i, (_, row) in enumerate(countries.iterrows()):
        ax.text(i, row['prevalence'], f"n={row['n']}", ha='center', va='bottom', fontsize=8)
    if not overall.empty:
        ax.axhline(overall.iloc[0], color='black', linestyle='--', alpha=0.7, label='Pooled')
        ax.legend()

    ax.set_xlabel('Country')
    ax.set_ylabel('Weighted prevalence')
    ax.set_title('Menopause Prevalence, Women 35-49')
    ax.grid(True, axis='y', alpha=0.3)
    plt.tight_layout()
    plt.savefig(save_path, dpi=DPI, bbox_inches='tight')
    plt.close(fig)

    print(f"Prevalence plot saved to {save_path}")
    return save_path


def plot_odds_ratios(odds_ratios: pd.DataFrame,
                     save_path: Union[str, Path] = FIGURES_DIR / "odds_ratios.pdf",
                     include_countries: bool = False) -> Path:
    """Forest plot of odds ratios on a log scale.

    Args:
        odds_ratios: `LogitResult.odds_ratios` (indexed by term, or with a
            `term` column)
        save_path: Output file
        include_countries: Whether to draw the country fixed effects

    Returns:
        Path of the saved figure.
    """
    print("Creating odds ratio plot...")
    save_path = Path(save_path)

    table = odds_ratios.reset_index() if 'term' not in odds_ratios.columns else odds_ratios.copy()
    table = table[table['term'] != 'const']
    if not include_countries:
        table = table[~table['term'].astype(str).str.startswith('country_')]
    table = table.iloc[::-1]  # First term at the top

    positions = np.arange(len(table))
    fig, ax = plt.subplots(figsize=(8, max(3, 0.5 * len(table) + 1)))
    ax.errorbar(
        table['odds_ratio'], positions,
        xerr=[table['odds_ratio'] - table['ci_low'], table['ci_high'] - table['odds_ratio']],
        fmt='o', color='black', ecolor='gray', capsize=3,
    )
    ax.axvline(1.0, color='red', linestyle='--', alpha=0.7)
    ax.set_xscale('log')
    ax.set_yticks(positions)
    ax.set_yticklabels(table['term'])
    ax.set_xlabel('Odds ratio (95% CI)')
    ax.set_title('Menopause: Weighted Logistic Regression')
    ax.grid(True, axis='x', alpha=0.3)
    plt.tight_layout()
    plt.savefig(save_path, dpi=DPI, bbox_inches='tight')
    plt.close(fig)

    print(f"Odds ratio plot saved to {save_path}")
    return save_path


def main():
    """Create all plots from the tables written by `analysis.main`."""
    FIGURES_DIR.mkdir(parents=True, exist_ok=True)
    plot_prevalence_by_country(pd.read_csv(OUTPUT_DIR / "prevalence_by_country.csv"))
    plot_odds_ratios(pd.read_csv(OUTPUT_DIR / "odds_ratios.csv"))


if __name__ == "__main__":
    main()
