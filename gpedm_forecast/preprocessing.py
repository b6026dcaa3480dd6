"""
Lag Feature Module - Phase 2
============================

Builds the wide lag-feature table used by the GP-EDM model and appends the
future rows that the iterative forecast fills in.

Functions:
    - resolve_lags: Lag offsets from an explicit list or an (E, tau) pair
    - LagEmbedder.fit_transform: Daily series -> lag table
    - LagEmbedder.extend_future: Append forecast rows to the lag table
    - split_train_future: Separate fitting rows from forecast rows
"""

import logging
from typing import Dict, Any, Tuple, Optional, List

import pandas as pd
import numpy as np
import joblib

logger = logging.getLogger(__name__)

TIME_COLUMN = 'time'
DATE_COLUMN = 'datetime'


def resolve_lags(target_config: Dict[str, Any]) -> List[int]:
    """
    Resolve the lag offsets of one target.

    Either an explicit ``lags`` list is given, or ``embedding`` (E) and
    ``tau`` which expand to ``[tau, 2*tau, ..., E*tau]``.

    Args:
        target_config: Per-variable configuration dictionary

    Returns:
        Sorted list of unique positive lags

    Raises:
        ValueError: If the configuration gives no usable lags
    """
    if target_config.get('lags'):
        lags = [int(lag) for lag in target_config['lags']]
    elif 'embedding' in target_config:
        embedding = int(target_config['embedding'])
        tau = int(target_config.get('tau', 1))
        if embedding < 1 or tau < 1:
            raise ValueError(f"embedding and tau must be >= 1, got E={embedding}, tau={tau}")
        lags = [tau * i for i in range(1, embedding + 1)]
    else:
        raise ValueError(
            f"Target {target_config.get('variable')!r} needs either 'lags' or 'embedding'"
        )

    if any(lag < 1 for lag in lags):
        raise ValueError(f"Lags must be positive, got {lags}")
    if len(set(lags)) != len(lags):
        raise ValueError(f"Duplicate lags in {lags}")

    return sorted(lags)


class LagEmbedder:
    """
    Time-delay embedding of a single daily series.

    The lag table has one row per day with an integer time index, the
    target column and one column per lag offset. Lag column ``k`` at row
    ``i`` holds the target of row ``i - k``.
    """

    def __init__(self, variable: str, lags: List[int]):
        """
        Initialize the embedder.

        Args:
            variable: Target variable name (becomes the target column)
            lags: Positive lag offsets in days
        """
        if not lags:
            raise ValueError("At least one lag is required")

        self.variable = variable
        self.lags = sorted(int(lag) for lag in lags)

        self.last_observed_date: Optional[pd.Timestamp] = None
        self.n_rows: Optional[int] = None
        self._is_fitted = False

    @property
    def feature_names(self) -> List[str]:
        """Lag column names, shortest lag first."""
        return [f"{self.variable}_lag{lag}" for lag in self.lags]

    def fit_transform(self, series: pd.Series) -> pd.DataFrame:
        """
        Build the lag table from a daily series.

        Args:
            series: Daily series on a contiguous date index

        Returns:
            Lag table with columns datetime, time, target and lags
        """
        if series.dropna().empty:
            raise ValueError(f"Series for {self.variable} has no observations")

        index = pd.DatetimeIndex(series.index)
        expected = pd.date_range(index.min(), index.max(), freq='D')
        if len(index) != len(expected) or not (index == expected).all():
            raise ValueError("Series index must be contiguous daily dates in increasing order")

        table = pd.DataFrame({
            DATE_COLUMN: index,
            TIME_COLUMN: np.arange(1, len(series) + 1),
            self.variable: series.to_numpy(dtype=float),
        })

        for lag, name in zip(self.lags, self.feature_names):
            table[name] = table[self.variable].shift(lag)

        self.last_observed_date = series.dropna().index.max()
        self.n_rows = len(table)
        self._is_fitted = True

        logger.info(
            f"Built lag table for {self.variable}: {len(table)} rows, lags {self.lags}"
        )
        return table

    def extend_future(self, table: pd.DataFrame, horizon: int) -> pd.DataFrame:
        """
        Append ``horizon`` forecast rows after the last observed date.

        Rows after the last observation are dropped first, so the first
        forecast date is always the day after the last observed value. Lag
        values that point at observed rows are pre-filled; lags pointing at
        forecast rows stay NaN until the forecast loop fills them.

        Args:
            table: Lag table from fit_transform
            horizon: Number of days to forecast

        Returns:
            Lag table including the future rows (target NaN)
        """
        if not self._is_fitted:
            raise ValueError("Embedder must be fitted before extend_future. Call fit_transform() first.")
        if horizon < 1:
            raise ValueError(f"Horizon must be >= 1, got {horizon}")

        observed = table.loc[table[DATE_COLUMN] <= self.last_observed_date]
        last_time = int(observed[TIME_COLUMN].iloc[-1])

        future = pd.DataFrame({
            DATE_COLUMN: pd.date_range(
                self.last_observed_date + pd.Timedelta(days=1), periods=horizon, freq='D'
            ),
            TIME_COLUMN: np.arange(last_time + 1, last_time + horizon + 1),
            self.variable: np.nan,
        })

        extended = pd.concat([observed, future], ignore_index=True)
        for lag, name in zip(self.lags, self.feature_names):
            extended[name] = extended[self.variable].shift(lag)

        logger.info(
            f"Added {horizon} forecast rows for {self.variable}: "
            f"{future[DATE_COLUMN].iloc[0].date()} → {future[DATE_COLUMN].iloc[-1].date()}"
        )
        return extended

    def save(self, filepath: str) -> None:
        """
        Save the embedder state to disk.

        Args:
            filepath: Path to save the embedder
        """
        state = {
            'variable': self.variable,
            'lags': self.lags,
            'last_observed_date': self.last_observed_date,
            'n_rows': self.n_rows,
            '_is_fitted': self._is_fitted
        }
        joblib.dump(state, filepath)
        logger.info(f"Embedder saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'LagEmbedder':
        """
        Load an embedder from disk.

        Args:
            filepath: Path to the saved embedder

        Returns:
            Loaded LagEmbedder instance
        """
        state = joblib.load(filepath)

        embedder = cls(variable=state['variable'], lags=state['lags'])
        embedder.last_observed_date = state['last_observed_date']
        embedder.n_rows = state['n_rows']
        embedder._is_fitted = state['_is_fitted']

        logger.info(f"Embedder loaded from {filepath}")
        return embedder


def split_train_future(
    table: pd.DataFrame,
    variable: str,
    predictors: List[str],
    last_observed_date: pd.Timestamp
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Split an extended lag table into fitting rows and forecast rows.

    Training rows are on or before the last observed date and have the
    target plus every predictor available.

    Args:
        table: Extended lag table
        variable: Target column
        predictors: Lag column names
        last_observed_date: Date of the last non-missing observation

    Returns:
        Tuple of (train, future)
    """
    is_past = table[DATE_COLUMN] <= last_observed_date
    train = table.loc[is_past].dropna(subset=[variable] + predictors)
    future = table.loc[~is_past].reset_index(drop=True)

    logger.info(f"Train/future split: {len(train)} training rows, {len(future)} forecast rows")
    return train.reset_index(drop=True), future


def preprocess_pipeline(
    series: pd.Series,
    variable: str,
    lags: List[int],
    horizon: int,
    save_embedder: Optional[str] = None
) -> Dict[str, Any]:
    """
    Complete lag-feature preparation for one variable.

    Args:
        series: Daily series on a contiguous date index
        variable: Target variable name
        lags: Lag offsets
        horizon: Forecast horizon in days
        save_embedder: Path to save the fitted embedder

    Returns:
        Dictionary containing:
            - table: Lag table including future rows
            - train, future: Split tables
            - embedder: Fitted LagEmbedder
            - feature_names: Lag column names
    """
    logger.info("=" * 60)
    logger.info(f"BUILDING LAG FEATURES (Phase 2): {variable}")
    logger.info("=" * 60)

    embedder = LagEmbedder(variable, lags)
    table = embedder.fit_transform(series)
    extended = embedder.extend_future(table, horizon)
    train, future = split_train_future(
        extended, variable, embedder.feature_names, embedder.last_observed_date
    )

    if save_embedder:
        embedder.save(save_embedder)

    return {
        'variable': variable,
        'table': extended,
        'train': train,
        'future': future,
        'embedder': embedder,
        'feature_names': embedder.feature_names,
    }


def print_preprocessing_summary(result: Dict[str, Any]) -> None:
    """
    Print a summary of the lag-feature preparation.

    Args:
        result: Dictionary from preprocess_pipeline
    """
    embedder = result['embedder']
    print("\n" + "=" * 50)
    print(f"LAG FEATURES: {result['variable']}")
    print("=" * 50)
    print(f"Lags: {embedder.lags}")
    print(f"Training rows: {len(result['train'])}")
    print(f"Forecast rows: {len(result['future'])}")
    print(f"Last observation: {embedder.last_observed_date.date()}")
    print("=" * 50 + "\n")
