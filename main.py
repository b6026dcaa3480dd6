#!/usr/bin/env python3
"""
GP-EDM Reservoir Forecast - Main Pipeline
=========================================

Orchestrates the forecast workflow for daily reservoir water-quality targets.

Phases:
    1. EDA - Autocorrelation figures for lag selection
    2. Preprocessing - Lag-feature tables and forecast rows
    3. Training - GP-EDM fit per target variable
    4. Forecast - Iterative multi-day-ahead forecast and CSV export
    5. Evaluation - Leave-one-out skill of the fitted models
    6. Submission - Validate and upload the forecast file

Usage:
    # Run complete pipeline (downloads the targets)
    python main.py

    # Use a local copy of the targets
    python main.py --data data/raw/daily-insitu-targets.csv.gz

    # Run specific phase
    python main.py --phase eda

    # Forecast and submit
    python main.py --submit
"""

import argparse
import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, Optional, List

import pandas as pd

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from gpedm_forecast.data_loader import (
    load_config, fetch_targets, load_data, validate_data,
    filter_observations, to_daily_series, print_data_summary
)
from gpedm_forecast.eda import generate_eda_report, print_lag_insights
from gpedm_forecast.preprocessing import resolve_lags, preprocess_pipeline, print_preprocessing_summary
from gpedm_forecast.model import train_model, print_model_summary
from gpedm_forecast.forecast import run_forecast, print_forecast_results
from gpedm_forecast.evaluation import evaluate_model, print_evaluation_report
from gpedm_forecast.submission import validate_forecast, submit_forecast


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the pipeline."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(f'pipeline_{datetime.now().strftime("%Y%m%d_%H%M%S")}.log')
        ]
    )


def load_targets(config: Dict[str, Any], data_path: Optional[str] = None) -> pd.DataFrame:
    """
    Load the observation table from a local file or the configured URL.

    Args:
        config: Configuration dictionary
        data_path: Local CSV overriding the download

    Returns:
        Validated long-format observation table
    """
    data_config = config.get('data', {})

    print("\n📊 Loading data...")
    if data_path:
        df = load_data(data_path)
    else:
        kwargs = {'cache_path': data_config.get('cache_path'),
                  'timeout': data_config.get('timeout', 60)}
        if data_config.get('targets_url'):
            kwargs['url'] = data_config['targets_url']
        df = fetch_targets(**kwargs)

    print_data_summary(df)

    is_valid, _ = validate_data(df, strict=False)
    if not is_valid:
        print("⚠️  Data validation warnings detected. Proceeding anyway...")

    return df


def build_series(df: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, pd.Series]:
    """
    Daily series of every configured target.

    Args:
        df: Long-format observation table
        config: Configuration dictionary

    Returns:
        Mapping variable -> daily series
    """
    data_config = config.get('data', {})
    series_by_variable = {}

    for target in config.get('targets', []):
        depth = target.get('depth_m', data_config.get('depth_m'))
        observations = filter_observations(
            df, site=data_config.get('site', 'fcre'),
            variable=target['variable'], depth=depth
        )
        series_by_variable[target['variable']] = to_daily_series(observations)

    if not series_by_variable:
        raise ValueError("No targets configured")

    return series_by_variable


def run_eda(series_by_variable: Dict[str, pd.Series], config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 1: Exploratory Data Analysis.

    Args:
        series_by_variable: Daily series per variable
        config: Configuration dictionary

    Returns:
        EDA report dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 1: EXPLORATORY DATA ANALYSIS")
    print("=" * 70)

    output_dir = config.get('output', {}).get('figures_path', 'reports/figures/')

    report = generate_eda_report(
        series_by_variable,
        output_dir=output_dir,
        max_lag=config.get('eda', {}).get('max_lag', 60),
        show_plots=False
    )
    print_lag_insights(report)

    print(f"\n✓ EDA complete. {len(report['figures'])} figures saved to {output_dir}")

    return report


def run_preprocessing(
    series_by_variable: Dict[str, pd.Series],
    config: Dict[str, Any]
) -> List[Dict[str, Any]]:
    """
    Execute Phase 2: Lag-feature preparation.

    Args:
        series_by_variable: Daily series per variable
        config: Configuration dictionary

    Returns:
        One preprocessing result per target
    """
    print("\n" + "=" * 70)
    print("PHASE 2: LAG FEATURES")
    print("=" * 70)

    horizon = config.get('forecast', {}).get('horizon', 35)
    depth_default = config.get('data', {}).get('depth_m')

    results = []
    for target in config.get('targets', []):
        variable = target['variable']
        result = preprocess_pipeline(
            series_by_variable[variable],
            variable=variable,
            lags=resolve_lags(target),
            horizon=horizon
        )
        result['depth_m'] = target.get('depth_m', depth_default)
        print_preprocessing_summary(result)
        results.append(result)

    return results


def run_training(
    prep_results: List[Dict[str, Any]],
    config: Dict[str, Any]
) -> List[Dict[str, Any]]:
    """
    Execute Phase 3: GP-EDM fitting.

    Args:
        prep_results: Results from run_preprocessing
        config: Configuration dictionary

    Returns:
        One entry per target with the fitted model added
    """
    print("\n" + "=" * 70)
    print("PHASE 3: MODEL TRAINING")
    print("=" * 70)

    model_dir = Path(config.get('output', {}).get('model_path', 'models/'))

    fitted = []
    for result in prep_results:
        variable = result['variable']
        model = train_model(
            result['train'],
            variable,
            result['feature_names'],
            config,
            save_path=str(model_dir / f"gpedm_{variable}.joblib")
        )
        print_model_summary(model)

        fitted.append({
            'variable': variable,
            'model': model,
            'future': result['future'],
            'lags': result['embedder'].lags,
            'depth_m': result['depth_m'],
        })

    return fitted


def run_forecast_phase(fitted: List[Dict[str, Any]], config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 4: Iterative forecast and file export.

    Args:
        fitted: Results from run_training
        config: Configuration dictionary

    Returns:
        Forecast result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 4: ITERATIVE FORECAST")
    print("=" * 70)

    result = run_forecast(fitted, config)
    print_forecast_results(result)

    return result


def run_evaluation(fitted: List[Dict[str, Any]], config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 5: In-sample evaluation.

    Args:
        fitted: Results from run_training
        config: Configuration dictionary

    Returns:
        Evaluation result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 5: MODEL EVALUATION")
    print("=" * 70)

    output_dir = config.get('output', {}).get('reports_path', 'reports/')
    result = evaluate_model(
        {item['variable']: item['model'] for item in fitted},
        output_dir=output_dir,
        show_plots=False
    )
    print_evaluation_report(result['metrics'])

    return result


def run_submission(csv_path: str, config: Dict[str, Any], submit: bool = False) -> Dict[str, Any]:
    """
    Execute Phase 6: Validate and optionally submit the forecast file.

    Args:
        csv_path: Forecast file
        config: Configuration dictionary
        submit: Upload after validation

    Returns:
        Validation report, plus upload result when submitted
    """
    print("\n" + "=" * 70)
    print("PHASE 6: SUBMISSION")
    print("=" * 70)

    submission_config = config.get('submission', {})
    is_valid, report = validate_forecast(csv_path, strict=False)
    result = {'validation': report}

    for issue in report['issues']:
        print(f"  ✗ {issue}")
    print(f"{'✓' if is_valid else '❌'} Validation {'passed' if is_valid else 'failed'}: {csv_path}")

    if submit or submission_config.get('enabled', False):
        if not is_valid:
            raise ValueError(f"Refusing to submit invalid forecast: {report['issues']}")
        endpoint = submission_config.get('endpoint')
        if not endpoint:
            raise ValueError("submission.endpoint is not configured")
        result['upload'] = submit_forecast(
            csv_path, endpoint, timeout=submission_config.get('timeout', 60)
        )
        print(f"✓ Submitted to {result['upload']['destination']}")
    else:
        print("Submission disabled (use --submit or submission.enabled)")

    return result


def run_full_pipeline(
    config_path: str = "config/config.yaml",
    data_path: Optional[str] = None,
    submit: bool = False,
    log_level: Optional[str] = None
) -> Dict[str, Any]:
    """
    Execute the complete pipeline.

    Args:
        config_path: Path to configuration file
        data_path: Local targets file (downloads when None)
        submit: Upload the forecast file
        log_level: Overrides the configured logging level

    Returns:
        Dictionary containing all phase results
    """
    print("\n" + "=" * 70)
    print("GP-EDM FORECAST PIPELINE")
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    config = load_config(config_path)
    setup_logging(log_level or config.get('logging', {}).get('level', 'INFO'))

    df = load_targets(config, data_path)
    series_by_variable = build_series(df, config)

    results = {'config': config, 'variables': list(series_by_variable)}

    results['eda'] = run_eda(series_by_variable, config)
    results['preprocessing'] = run_preprocessing(series_by_variable, config)
    fitted = run_training(results['preprocessing'], config)
    results['models'] = {item['variable']: item['model'] for item in fitted}
    results['forecast'] = run_forecast_phase(fitted, config)
    results['evaluation'] = run_evaluation(fitted, config)
    results['submission'] = run_submission(results['forecast']['csv_path'], config, submit)

    print("\n" + "=" * 70)
    print("PIPELINE COMPLETE")
    print("=" * 70)
    print(f"  • Variables: {', '.join(results['variables'])}")
    for variable, metrics in results['evaluation']['metrics'].items():
        print(f"  • {variable} LOO R²: {metrics['r2']:.4f}")
    print(f"  • Output: {results['forecast']['csv_path']}")
    print(f"Completed at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70 + "\n")

    return results


def run_single_phase(
    phase: str,
    config_path: str = "config/config.yaml",
    data_path: Optional[str] = None,
    submit: bool = False,
    log_level: Optional[str] = None
) -> Dict[str, Any]:
    """
    Execute a single phase of the pipeline (with the phases it depends on).

    Args:
        phase: Phase to run ('eda', 'preprocess', 'train', 'forecast', 'evaluate', 'submit')
        config_path: Path to configuration file
        data_path: Local targets file (downloads when None)
        submit: Upload the forecast file
        log_level: Overrides the configured logging level

    Returns:
        Phase result dictionary
    """
    config = load_config(config_path)
    setup_logging(log_level or config.get('logging', {}).get('level', 'INFO'))

    if phase not in ('eda', 'preprocess', 'train', 'forecast', 'evaluate', 'submit'):
        raise ValueError(
            f"Unknown phase: {phase}. Choose from: eda, preprocess, train, forecast, evaluate, submit"
        )

    df = load_targets(config, data_path)
    series_by_variable = build_series(df, config)

    if phase == 'eda':
        return run_eda(series_by_variable, config)

    prep_results = run_preprocessing(series_by_variable, config)
    if phase == 'preprocess':
        return {'preprocessing': prep_results}

    fitted = run_training(prep_results, config)
    if phase == 'train':
        return {'models': {item['variable']: item['model'] for item in fitted}}

    if phase == 'evaluate':
        return run_evaluation(fitted, config)

    forecast = run_forecast_phase(fitted, config)
    if phase == 'forecast':
        return forecast

    return run_submission(forecast['csv_path'], config, submit)


def main():
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="GP-EDM forecasts of reservoir water quality",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py
  python main.py --data data/raw/daily-insitu-targets.csv.gz --phase eda
  python main.py --config config/custom.yaml --submit
        """
    )

    parser.add_argument(
        '--data', '-d',
        type=str,
        default=None,
        help='Local targets CSV (default: download from data.targets_url)'
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        default='config/config.yaml',
        help='Path to configuration file (default: config/config.yaml)'
    )

    parser.add_argument(
        '--phase', '-p',
        type=str,
        choices=['eda', 'preprocess', 'train', 'forecast', 'evaluate', 'submit', 'all'],
        default='all',
        help='Phase to run (default: all)'
    )

    parser.add_argument(
        '--submit',
        action='store_true',
        help='Upload the forecast file after validation'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output'
    )

    args = parser.parse_args()

    if args.data and not Path(args.data).exists():
        print(f"Error: Data file not found: {args.data}")
        print("\nExpected format: long-format CSV with site_id, datetime, variable, depth_m, observation")
        sys.exit(1)

    if not Path(args.config).exists():
        print(f"Error: Config file not found: {args.config}")
        sys.exit(1)

    log_level = 'DEBUG' if args.verbose else None

    try:
        if args.phase == 'all':
            run_full_pipeline(args.config, args.data, args.submit, log_level)
        else:
            run_single_phase(args.phase, args.config, args.data, args.submit, log_level)

        return 0

    except Exception as e:
        logging.error(f"Pipeline failed: {e}", exc_info=True)
        print(f"\n❌ Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
