"""
Forecast Module - Phase 4
=========================

Iterative multi-day-ahead forecasting and forecast file export.

Features:
    - Recursive one-step predictions feeding their mean back into the lags
    - Long-format forecast table (mu and sigma per date)
    - Nearest-value backfill of missing predictions
    - File naming by theme, reference date and model id
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import numpy as np
import pandas as pd

from .preprocessing import DATE_COLUMN

logger = logging.getLogger(__name__)

FORECAST_COLUMNS = [
    'project_id', 'model_id', 'datetime', 'reference_datetime', 'duration',
    'site_id', 'depth_m', 'family', 'parameter', 'variable', 'prediction'
]
PARAMETERS = ('mu', 'sigma')


def iterative_forecast(
    model,
    future: pd.DataFrame,
    variable: str,
    lags: List[int]
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Recursively forecast every row of ``future``.

    At step ``i`` the model predicts on row ``i``; the predicted mean is then
    written into every later row whose lag points back at step ``i``: the
    shortest lag of the next row, and longer lags of rows further ahead.

    Args:
        model: Fitted model exposing predict(rows) -> DataFrame(mean, sd)
        future: Forecast rows of the lag table (lags pointing at observed
            days already filled)
        variable: Target column
        lags: Lag offsets in days

    Returns:
        Tuple of (predictions with datetime/mean/sd, updated future table)
    """
    future = future.reset_index(drop=True).copy()
    lag_columns = {lag: f"{variable}_lag{lag}" for lag in sorted(lags)}
    horizon = len(future)

    means = np.full(horizon, np.nan)
    sds = np.full(horizon, np.nan)

    for i in range(horizon):
        row = future.iloc[[i]]
        pred = model.predict(row)
        means[i] = float(pred['mean'].iloc[0])
        sds[i] = float(pred['sd'].iloc[0])

        future.loc[i, variable] = means[i]
        for lag, column in lag_columns.items():
            j = i + lag
            if j < horizon:
                future.loc[j, column] = means[i]

        logger.debug(
            f"{future.loc[i, DATE_COLUMN].date()}: mean={means[i]:.4f} sd={sds[i]:.4f}"
        )

    predictions = pd.DataFrame({
        DATE_COLUMN: future[DATE_COLUMN].to_numpy(),
        'mean': means,
        'sd': sds,
    })

    n_missing = int(np.isnan(means).sum())
    if n_missing:
        logger.warning(f"{n_missing} of {horizon} forecast steps for {variable} had missing predictors")

    return predictions, future


def build_forecast_table(
    predictions: pd.DataFrame,
    variable: str,
    metadata: Dict[str, Any]
) -> pd.DataFrame:
    """
    Convert per-date mean/sd predictions to the long forecast format.

    Args:
        predictions: DataFrame with datetime, mean, sd
        variable: Forecast variable name
        metadata: model_id, reference_datetime, site_id and optionally
            project_id, depth_m, duration

    Returns:
        Forecast table with two rows (mu, sigma) per date
    """
    frames = []
    for parameter, source in zip(PARAMETERS, ('mean', 'sd')):
        frames.append(pd.DataFrame({
            'project_id': metadata.get('project_id'),
            'model_id': metadata['model_id'],
            'datetime': pd.to_datetime(predictions[DATE_COLUMN]).to_numpy(),
            'reference_datetime': pd.Timestamp(metadata['reference_datetime']),
            'duration': metadata.get('duration', 'P1D'),
            'site_id': metadata['site_id'],
            'depth_m': metadata.get('depth_m'),
            'family': 'normal',
            'parameter': parameter,
            'variable': variable,
            'prediction': predictions[source].to_numpy(dtype=float),
        }))

    table = pd.concat(frames, ignore_index=True)
    return table.sort_values(['datetime', 'parameter']).reset_index(drop=True)[FORECAST_COLUMNS]


def backfill_predictions(table: pd.DataFrame) -> pd.DataFrame:
    """
    Fill missing predictions with the nearest value in time.

    Each (site, depth, variable, parameter) group is forward-filled and
    then back-filled along datetime.

    Args:
        table: Forecast table

    Returns:
        Copy with no missing predictions

    Raises:
        ValueError: If a group has no prediction at all
    """
    table = table.sort_values(['variable', 'parameter', 'datetime']).copy()
    keys = ['site_id', 'depth_m', 'variable', 'parameter']

    n_missing = int(table['prediction'].isna().sum())
    table['prediction'] = (
        table.groupby(keys, dropna=False)['prediction']
        .transform(lambda s: s.ffill().bfill())
    )

    if table['prediction'].isna().any():
        empty = table.loc[table['prediction'].isna(), ['variable', 'parameter']].drop_duplicates()
        raise ValueError(f"No predictions available to backfill for: {empty.to_dict('records')}")

    if n_missing:
        logger.info(f"Backfilled {n_missing} missing predictions")

    return table.sort_values(['variable', 'datetime', 'parameter']).reset_index(drop=True)


def forecast_filename(
    theme: str,
    reference_date,
    model_id: str,
    compress: bool = False
) -> str:
    """
    Build the forecast file name ``<theme>-<YYYY-MM-DD>-<model_id>.csv``.

    Args:
        theme: Forecast theme, e.g. 'daily'
        reference_date: Date the forecast is issued for
        model_id: Model identifier
        compress: Append .gz

    Returns:
        File name
    """
    date_str = pd.Timestamp(reference_date).strftime('%Y-%m-%d')
    filename = f"{theme}-{date_str}-{model_id}.csv"
    return filename + '.gz' if compress else filename


def export_forecast(
    table: pd.DataFrame,
    output_dir: str,
    theme: str,
    model_id: str,
    compress: bool = False
) -> str:
    """
    Write the forecast table to CSV.

    Args:
        table: Backfilled forecast table
        output_dir: Directory to save the file
        theme: Forecast theme
        model_id: Model identifier
        compress: Write gzipped CSV

    Returns:
        Path to the saved file
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    reference_date = table['reference_datetime'].iloc[0]
    filepath = output_dir / forecast_filename(theme, reference_date, model_id, compress)

    out = table.copy()
    out['datetime'] = pd.to_datetime(out['datetime']).dt.strftime('%Y-%m-%d')
    out['reference_datetime'] = pd.to_datetime(out['reference_datetime']).dt.strftime('%Y-%m-%d')
    out.to_csv(filepath, index=False)

    logger.info(f"Forecast exported to {filepath}")
    return str(filepath)


def run_forecast(
    fitted: List[Dict[str, Any]],
    config: Dict[str, Any],
    output_dir: Optional[str] = None
) -> Dict[str, Any]:
    """
    Forecast every configured variable and write one combined file.

    Args:
        fitted: One entry per variable with keys variable, model, future,
            lags, depth_m
        config: Configuration dictionary
        output_dir: Directory for the forecast file (default from config)

    Returns:
        Dictionary with the forecast table, per-variable predictions and
        the file path
    """
    logger.info("=" * 60)
    logger.info("STARTING ITERATIVE FORECAST (Phase 4)")
    logger.info("=" * 60)

    forecast_config = config.get('forecast', {})
    data_config = config.get('data', {})
    model_id = forecast_config.get('model_id', 'gpedm')
    theme = forecast_config.get('theme', 'daily')
    output_dir = output_dir or forecast_config.get('output_dir', 'data/forecasts/')

    tables = []
    predictions_by_variable = {}
    for item in fitted:
        predictions, _ = iterative_forecast(
            item['model'], item['future'], item['variable'], item['lags']
        )
        first_date = pd.Timestamp(predictions[DATE_COLUMN].iloc[0])
        reference = forecast_config.get('reference_date') or first_date

        metadata = {
            'project_id': forecast_config.get('project_id', 'vera4cast'),
            'model_id': model_id,
            'reference_datetime': reference,
            'duration': forecast_config.get('duration', 'P1D'),
            'site_id': data_config.get('site', 'fcre'),
            'depth_m': item.get('depth_m'),
        }
        tables.append(build_forecast_table(predictions, item['variable'], metadata))
        predictions_by_variable[item['variable']] = predictions

    # one reference date per file
    forecast = pd.concat(tables, ignore_index=True)
    forecast['reference_datetime'] = forecast['reference_datetime'].min()
    forecast = backfill_predictions(forecast)

    csv_path = export_forecast(
        forecast, output_dir, theme, model_id,
        compress=forecast_config.get('compress', False)
    )

    logger.info("=" * 60)
    logger.info("FORECAST COMPLETE")
    logger.info(f"  Variables: {list(predictions_by_variable)}")
    logger.info(f"  Rows: {len(forecast)}")
    logger.info(f"  Output: {csv_path}")
    logger.info("=" * 60)

    return {
        'forecast': forecast,
        'predictions': predictions_by_variable,
        'csv_path': csv_path,
    }


def print_forecast_results(result: Dict[str, Any], n_days: int = 7) -> None:
    """
    Print the first days of each variable's forecast.

    Args:
        result: Result dictionary from run_forecast
        n_days: Number of days to show per variable
    """
    print("\n" + "=" * 70)
    print("FORECAST RESULTS")
    print("=" * 70)

    for variable, predictions in result['predictions'].items():
        print(f"\n{variable}")
        print(f"{'Date':<15} {'Mean':<15} {'SD':<15}")
        print("-" * 45)
        for _, row in predictions.head(n_days).iterrows():
            print(f"{pd.Timestamp(row[DATE_COLUMN]).date()!s:<15} "
                  f"{row['mean']:<15.4f} {row['sd']:<15.4f}")
        if len(predictions) > n_days:
            print(f"... {len(predictions) - n_days} more days")

    print(f"\nForecast exported to: {result['csv_path']}")
    print("=" * 70 + "\n")
