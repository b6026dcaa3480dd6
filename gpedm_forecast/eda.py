"""
Exploratory Data Analysis (EDA) Module - Phase 1
================================================

Figures used to choose the lags of each target by eye.

Functions:
    - compute_acf: Autocorrelation with 95% band and significant lags
    - plot_target_series: Daily series with gaps marked
    - plot_autocorrelation: ACF bar chart for one variable
    - plot_distributions: Histograms with a normality test
    - generate_eda_report: All figures for the configured targets
"""

import logging
from pathlib import Path
from typing import Dict, Any, Optional, Tuple

import pandas as pd
import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns
from scipy import stats

logger = logging.getLogger(__name__)

# Set style for all plots
plt.style.use('seaborn-v0_8-whitegrid')
sns.set_palette("husl")


def compute_acf(series: pd.Series, max_lag: int = 60) -> Dict[str, Any]:
    """
    Autocorrelation function of a daily series.

    Gaps are skipped pairwise: each lag uses only the days where both the
    value and its lagged value are observed.

    Args:
        series: Daily series on a contiguous index
        max_lag: Maximum lag to compute

    Returns:
        Dictionary with 'acf' (lags 0..max_lag), 'conf_int' and
        'significant_lags'
    """
    values = series.to_numpy(dtype=float)
    n = int((~np.isnan(values)).sum())
    if n < 3:
        raise ValueError(f"Need at least 3 observations for ACF, got {n}")

    max_lag = min(max_lag, len(values) - 1)
    centered = values - np.nanmean(values)
    variance = np.nanmean(centered ** 2)

    acf = np.empty(max_lag + 1)
    acf[0] = 1.0
    for lag in range(1, max_lag + 1):
        products = centered[lag:] * centered[:-lag]
        acf[lag] = np.nanmean(products) / variance if np.isfinite(products).any() else np.nan

    # 95% band under white noise
    conf_int = 1.96 / np.sqrt(n)
    significant_lags = [int(lag) for lag in np.where(np.abs(acf[1:]) > conf_int)[0] + 1]

    return {
        'acf': acf,
        'conf_int': float(conf_int),
        'significant_lags': significant_lags,
    }


def plot_target_series(
    series: pd.Series,
    variable: str,
    figsize: Tuple[int, int] = (14, 4),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Plot a daily series, marking days without observations.

    Args:
        series: Daily series
        variable: Variable name for the title
        figsize: Figure size (width, height)
        save_path: Path to save the figure (optional)

    Returns:
        Matplotlib Figure object
    """
    fig, ax = plt.subplots(figsize=figsize)
    ax.plot(series.index, series.values, linewidth=0.8, alpha=0.9)

    gaps = series.index[series.isna()]
    if len(gaps) > 0:
        ax.scatter(gaps, np.full(len(gaps), np.nanmin(series.values)),
                   marker='|', color='red', s=30, label=f'Missing ({len(gaps)} days)')
        ax.legend(loc='upper right', fontsize=8)

    ax.set_title(variable, fontsize=12, fontweight='bold')
    ax.set_xlabel('Date')
    ax.set_ylabel('Observation')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Time series plot saved to {save_path}")

    return fig


def plot_autocorrelation(
    acf_result: Dict[str, Any],
    variable: str,
    figsize: Tuple[int, int] = (12, 4),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Bar chart of the ACF with the 95% band and significant lags.

    Args:
        acf_result: Dictionary from compute_acf
        variable: Variable name for the title
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    acf_values = acf_result['acf']
    conf_int = acf_result['conf_int']

    fig, ax = plt.subplots(figsize=figsize)

    ax.bar(range(len(acf_values)), acf_values, width=0.8, alpha=0.7)
    ax.axhline(y=0, color='k', linestyle='-', linewidth=0.5)
    ax.axhline(y=conf_int, color='r', linestyle='--', alpha=0.5, label='95% CI')
    ax.axhline(y=-conf_int, color='r', linestyle='--', alpha=0.5)

    significant = acf_result['significant_lags']
    if significant:
        ax.scatter(significant, acf_values[significant],
                   color='red', s=20, zorder=5, label='Significant lags')

    ax.set_xlabel('Lag (days)')
    ax.set_ylabel('Autocorrelation')
    ax.set_title(f'Autocorrelation Function: {variable}', fontsize=12, fontweight='bold')
    ax.legend(loc='upper right')

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"ACF plot saved to {save_path}")

    return fig


def plot_distributions(
    series_by_variable: Dict[str, pd.Series],
    figsize: Tuple[int, int] = (14, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Create distribution plots (histogram + KDE) for every variable.

    Args:
        series_by_variable: Mapping variable -> daily series
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    n_cols = len(series_by_variable)
    fig, axes = plt.subplots(1, n_cols, figsize=figsize, squeeze=False)

    for ax, (variable, series) in zip(axes[0], series_by_variable.items()):
        values = series.dropna()
        sns.histplot(values, kde=True, ax=ax, bins=40, alpha=0.7)

        if len(values) >= 8:
            _, p_value = stats.normaltest(values)
            normality = "Normal" if p_value > 0.05 else "Non-Normal"
            ax.set_title(f'{variable} ({normality}, p={p_value:.3f})', fontsize=10, fontweight='bold')
        else:
            ax.set_title(variable, fontsize=10, fontweight='bold')

    plt.suptitle('Distribution Analysis', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Distribution plots saved to {save_path}")

    return fig


def generate_eda_report(
    series_by_variable: Dict[str, pd.Series],
    output_dir: str = "reports/figures/",
    max_lag: int = 60,
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Generate the figures used for lag selection.

    Args:
        series_by_variable: Mapping variable -> daily series
        output_dir: Directory to save figures
        max_lag: Maximum ACF lag
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing figures, significant lags and statistics
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    report = {
        "variables": list(series_by_variable),
        "figures": [],
        "significant_lags": {},
        "statistics": {}
    }

    logger.info("=" * 60)
    logger.info("STARTING EXPLORATORY DATA ANALYSIS (Phase 1)")
    logger.info("=" * 60)

    for variable, series in series_by_variable.items():
        logger.info(f"Analyzing {variable}...")

        name = f"01_series_{variable}.png"
        plot_target_series(series, variable, save_path=str(output_dir / name))
        report["figures"].append(name)

        acf_result = compute_acf(series, max_lag=max_lag)
        name = f"02_acf_{variable}.png"
        plot_autocorrelation(acf_result, variable, save_path=str(output_dir / name))
        report["figures"].append(name)
        report["significant_lags"][variable] = acf_result['significant_lags']

        report["statistics"][variable] = {
            "n_days": int(len(series)),
            "n_observed": int(series.count()),
            "mean": float(series.mean()),
            "std": float(series.std()),
            "min": float(series.min()),
            "max": float(series.max()),
        }

    plot_distributions(series_by_variable, save_path=str(output_dir / "03_distributions.png"))
    report["figures"].append("03_distributions.png")

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info("=" * 60)
    logger.info("EDA COMPLETE - All figures saved to: %s", output_dir)
    logger.info("=" * 60)

    return report


def print_lag_insights(report: Dict[str, Any], n_show: int = 10) -> None:
    """
    Print the significant ACF lags of each variable.

    Args:
        report: Dictionary from generate_eda_report
        n_show: Number of lags to list per variable
    """
    print("\n" + "=" * 50)
    print("AUTOCORRELATION INSIGHTS")
    print("=" * 50)

    for variable, lags in report["significant_lags"].items():
        if lags:
            shown = ", ".join(str(lag) for lag in lags[:n_show])
            more = f" (+{len(lags) - n_show} more)" if len(lags) > n_show else ""
            print(f"  • {variable}: significant at lags {shown}{more}")
        else:
            print(f"  • {variable}: no significant autocorrelation")

    print("\nChoose lags for each target in the config 'targets' section.")
    print("=" * 50 + "\n")
