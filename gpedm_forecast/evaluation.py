"""
Model Evaluation Module - Phase 5
=================================

In-sample skill of the fitted GP-EDM models and probabilistic scoring of
forecasts against later observations.

Features:
    - RMSE, MAE, R², bias on leave-one-out predictions
    - Closed-form CRPS for normal forecasts
    - Observed vs predicted plots
    - Evaluation report generation
"""

import logging
import json
from pathlib import Path
from typing import Dict, Any, Optional, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from scipy import stats
from sklearn.metrics import mean_squared_error, mean_absolute_error, r2_score

logger = logging.getLogger(__name__)


def calculate_metrics(y_true: np.ndarray, y_pred: np.ndarray) -> Dict[str, float]:
    """
    Point-forecast metrics, ignoring pairs with a missing value.

    Args:
        y_true: Observed values
        y_pred: Predicted means

    Returns:
        Dictionary with rmse, mae, r2, bias and n_samples
    """
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    keep = ~(np.isnan(y_true) | np.isnan(y_pred))
    y_true, y_pred = y_true[keep], y_pred[keep]

    if len(y_true) < 2:
        raise ValueError(f"Need at least 2 paired values, got {len(y_true)}")

    return {
        'rmse': float(np.sqrt(mean_squared_error(y_true, y_pred))),
        'mae': float(mean_absolute_error(y_true, y_pred)),
        'r2': float(r2_score(y_true, y_pred)),
        'bias': float(np.mean(y_pred - y_true)),
        'n_samples': int(len(y_true)),
    }


def crps_normal(obs, mu, sigma) -> np.ndarray:
    """
    CRPS of a normal predictive distribution.

    For sigma == 0 this reduces to the absolute error.

    Args:
        obs: Observed values
        mu: Predictive means
        sigma: Predictive standard deviations

    Returns:
        Array of CRPS values
    """
    obs = np.asarray(obs, dtype=float)
    mu = np.asarray(mu, dtype=float)
    sigma = np.asarray(sigma, dtype=float)

    with np.errstate(divide='ignore', invalid='ignore'):
        z = (obs - mu) / sigma
        crps = sigma * (
            z * (2 * stats.norm.cdf(z) - 1) + 2 * stats.norm.pdf(z) - 1 / np.sqrt(np.pi)
        )
    return np.where(sigma > 0, crps, np.abs(obs - mu))


def score_forecast(forecast: pd.DataFrame, observations: pd.DataFrame) -> pd.DataFrame:
    """
    Score a forecast table against observations.

    Args:
        forecast: Long forecast table (parameter mu/sigma)
        observations: Long observation table (site_id, datetime, variable,
            observation, optionally depth_m)

    Returns:
        One row per scored (datetime, site, variable) with mu, sigma,
        observation, crps and absolute error
    """
    keys = ['datetime', 'site_id', 'variable']
    if 'depth_m' in forecast.columns and 'depth_m' in observations.columns:
        keys.append('depth_m')

    wide = forecast.pivot_table(
        index=keys, columns='parameter', values='prediction'
    ).reset_index()
    wide.columns.name = None
    wide['datetime'] = pd.to_datetime(wide['datetime']).dt.normalize()

    obs = observations.copy()
    obs['datetime'] = pd.to_datetime(obs['datetime']).dt.normalize()
    obs = obs.groupby(keys, as_index=False)['observation'].mean()

    scored = wide.merge(obs, on=keys, how='inner')
    scored['crps'] = crps_normal(scored['observation'], scored['mu'], scored['sigma'])
    scored['abs_error'] = (scored['observation'] - scored['mu']).abs()

    logger.info(f"Scored {len(scored)} forecast dates; mean CRPS {scored['crps'].mean():.4f}")
    return scored


def plot_fit(
    loo: pd.DataFrame,
    variable: str,
    figsize: Tuple[int, int] = (12, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Plot observed values against leave-one-out predictions.

    Args:
        loo: DataFrame from GPEDMModel.leave_one_out
        variable: Variable name for titles
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    fig, axes = plt.subplots(1, 2, figsize=figsize)
    x = loo['time'] if 'time' in loo.columns else np.arange(len(loo))

    ax = axes[0]
    ax.plot(x, loo['observed'], 'b-', linewidth=1.0, label='Observed', alpha=0.8)
    ax.plot(x, loo['mean'], 'r--', linewidth=1.0, label='LOO mean', alpha=0.8)
    ax.fill_between(x, loo['mean'] - 2 * loo['sd'], loo['mean'] + 2 * loo['sd'],
                    alpha=0.2, color='red', label='±2 SD')
    ax.set_xlabel('Time index')
    ax.set_ylabel(variable)
    ax.legend(loc='upper right', fontsize=8)

    ax = axes[1]
    ax.scatter(loo['observed'], loo['mean'], alpha=0.5, s=15)
    lo = min(loo['observed'].min(), loo['mean'].min())
    hi = max(loo['observed'].max(), loo['mean'].max())
    ax.plot([lo, hi], [lo, hi], 'r--', linewidth=2, label='1:1')
    ax.set_xlabel('Observed')
    ax.set_ylabel('Predicted')
    ax.legend(loc='upper left', fontsize=8)

    plt.suptitle(f'GP-EDM In-Sample Fit: {variable}', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Fit plot saved to {save_path}")

    return fig


def evaluate_model(
    models: Dict[str, Any],
    output_dir: str = "reports/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    In-sample evaluation of every fitted model.

    Args:
        models: Mapping variable -> fitted GPEDMModel
        output_dir: Directory for output files
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing metrics and file paths
    """
    output_dir = Path(output_dir)
    figures_dir = output_dir / "figures"
    metrics_dir = output_dir / "metrics"

    figures_dir.mkdir(parents=True, exist_ok=True)
    metrics_dir.mkdir(parents=True, exist_ok=True)

    logger.info("=" * 60)
    logger.info("STARTING MODEL EVALUATION (Phase 5)")
    logger.info("=" * 60)

    metrics = {}
    figures = []
    for variable, model in models.items():
        loo = model.leave_one_out()
        metrics[variable] = calculate_metrics(loo['observed'], loo['mean'])
        metrics[variable]['mean_crps'] = float(
            np.mean(crps_normal(loo['observed'], loo['mean'], loo['sd']))
        )
        metrics[variable]['length_scales'] = model.get_length_scales()

        filename = f"fit_{variable}.png"
        plot_fit(loo, variable, save_path=str(figures_dir / filename))
        figures.append(filename)

    metrics_file = metrics_dir / "evaluation_metrics.json"
    with open(metrics_file, 'w') as f:
        json.dump(metrics, f, indent=2)
    logger.info(f"Metrics saved to {metrics_file}")

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    return {
        'metrics': metrics,
        'figures': figures,
        'metrics_file': str(metrics_file)
    }


def print_evaluation_report(metrics: Dict[str, Any]) -> None:
    """
    Print a formatted evaluation report to console.

    Args:
        metrics: Per-variable metrics from evaluate_model
    """
    print("\n" + "=" * 70)
    print("IN-SAMPLE (LEAVE-ONE-OUT) EVALUATION")
    print("=" * 70)
    print(f"{'Variable':<20} {'RMSE':<10} {'MAE':<10} {'R²':<10} {'CRPS':<10} {'N':<6}")
    print("-" * 70)

    for variable, m in metrics.items():
        print(f"{variable:<20} {m['rmse']:<10.4f} {m['mae']:<10.4f} "
              f"{m['r2']:<10.4f} {m['mean_crps']:<10.4f} {m['n_samples']:<6}")

    print("=" * 70 + "\n")
