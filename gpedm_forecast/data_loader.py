"""
Data Loader Module
==================

Handles target download, CSV ingestion, validation and reshaping of the
long-format observation table into daily series.

Functions:
    - load_config: Load YAML configuration file
    - fetch_targets: Download the compressed targets CSV over HTTPS
    - load_data: Load a local targets CSV
    - validate_data: Check data quality constraints
    - filter_observations: Select one (site, variable, depth) series
    - to_daily_series: Collapse to one value per day on a contiguous index
"""

import io
import logging
from pathlib import Path
from typing import Dict, Any, Optional, Tuple

import pandas as pd
import numpy as np
import requests
import yaml

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ['site_id', 'datetime', 'variable', 'observation']
DEFAULT_TARGETS_URL = (
    "https://renc.osn.xsede.org/bio230121-bucket01/vera4cast/targets/"
    "project_id=vera4cast/duration=P1D/daily-insitu-targets.csv.gz"
)


def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Dictionary containing configuration parameters

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    logger.info(f"Loaded configuration from {config_path}")
    return config


def _read_targets(buffer, compression: Optional[str]) -> pd.DataFrame:
    df = pd.read_csv(buffer, compression=compression)
    if 'datetime' in df.columns:
        df['datetime'] = pd.to_datetime(df['datetime'], utc=True).dt.tz_localize(None)
    return df


def fetch_targets(
    url: str = DEFAULT_TARGETS_URL,
    cache_path: Optional[str] = None,
    timeout: float = 60.0
) -> pd.DataFrame:
    """
    Download the long-format targets table.

    A single blocking request is made; network errors and non-2xx
    responses propagate to the caller.

    Args:
        url: HTTPS location of the (optionally gzipped) targets CSV
        cache_path: If given, the raw response body is also written here
        timeout: Request timeout in seconds

    Returns:
        DataFrame with the observations

    Raises:
        requests.HTTPError: If the server answers with an error status
    """
    logger.info(f"Fetching targets from {url}")
    response = requests.get(url, timeout=timeout)
    response.raise_for_status()

    content = response.content
    if cache_path:
        cache_path = Path(cache_path)
        cache_path.parent.mkdir(parents=True, exist_ok=True)
        cache_path.write_bytes(content)
        logger.info(f"Cached targets to {cache_path}")

    # gzip magic number, independent of the URL suffix
    compression = 'gzip' if content[:2] == b'\x1f\x8b' else None
    df = _read_targets(io.BytesIO(content), compression)
    logger.info(f"Fetched {len(df)} observations ({df.shape[1]} columns)")
    return df


def load_data(file_path: str) -> pd.DataFrame:
    """
    Load a targets CSV (plain or gzipped) from disk.

    Args:
        file_path: Path to the CSV file

    Returns:
        DataFrame containing the loaded data

    Raises:
        FileNotFoundError: If data file doesn't exist
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Data file not found: {file_path}")

    df = _read_targets(file_path, compression='infer')
    logger.info(f"Loaded data from {file_path}: {df.shape[0]} rows × {df.shape[1]} columns")

    return df


def validate_data(df: pd.DataFrame, strict: bool = True) -> Tuple[bool, Dict[str, Any]]:
    """
    Validate the long-format observation table.

    Checks:
        - Required columns are present
        - Datetimes parse and observations are numeric
        - Missing observations
        - Duplicate (site, datetime, variable, depth) records

    Args:
        df: DataFrame to validate
        strict: If True, raise errors on validation failure

    Returns:
        Tuple of (is_valid, validation_report)
    """
    report = {
        "total_rows": len(df),
        "column_names": list(df.columns),
        "issues": []
    }

    # Check 1: Required columns
    missing_cols = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing_cols:
        issue = f"Missing required columns: {missing_cols}"
        report["issues"].append(issue)
        logger.warning(issue)
        report["is_valid"] = False
        if strict:
            raise ValueError(f"Data validation failed: {report['issues']}")
        return False, report

    # Check 2: Types
    if not pd.api.types.is_datetime64_any_dtype(df['datetime']):
        bad_dates = pd.to_datetime(df['datetime'], errors='coerce').isna().sum()
        if bad_dates > 0:
            issue = f"Unparseable datetime values: {bad_dates}"
            report["issues"].append(issue)
            logger.warning(issue)

    if not pd.api.types.is_numeric_dtype(df['observation']):
        issue = f"Non-numeric observation column (dtype {df['observation'].dtype})"
        report["issues"].append(issue)
        logger.warning(issue)

    # Check 3: Missing values
    n_missing = int(df['observation'].isnull().sum())
    if n_missing > 0:
        issue = f"Missing observations: {n_missing} ({n_missing / max(len(df), 1) * 100:.2f}%)"
        report["issues"].append(issue)
        logger.warning(issue)

    # Check 4: Duplicate records
    key = [c for c in ['site_id', 'datetime', 'variable', 'depth_m'] if c in df.columns]
    duplicates = int(df.duplicated(subset=key).sum())
    if duplicates > 0:
        issue = f"Duplicate records found: {duplicates}"
        report["issues"].append(issue)
        logger.warning(issue)

    is_valid = len(report["issues"]) == 0
    report["is_valid"] = is_valid

    if strict and not is_valid:
        raise ValueError(f"Data validation failed: {report['issues']}")

    return is_valid, report


def filter_observations(
    df: pd.DataFrame,
    site: str,
    variable: str,
    depth: Optional[float] = None
) -> pd.DataFrame:
    """
    Select the observations of one variable at one site (and depth).

    Args:
        df: Long-format observation table
        site: Site identifier, e.g. 'fcre'
        variable: Variable name, e.g. 'Temp_C_mean'
        depth: Depth in metres; ignored when None or when the table has no depth

    Returns:
        Filtered copy sorted by datetime

    Raises:
        ValueError: If nothing matches
    """
    mask = (df['site_id'] == site) & (df['variable'] == variable)
    if depth is not None and 'depth_m' in df.columns:
        mask &= np.isclose(df['depth_m'].astype(float), float(depth))

    subset = df.loc[mask].sort_values('datetime').reset_index(drop=True)
    if subset.empty:
        raise ValueError(
            f"No observations for site={site!r}, variable={variable!r}, depth={depth!r}"
        )

    logger.info(
        f"Selected {len(subset)} observations for {variable} at {site}"
        + (f" ({depth} m)" if depth is not None else "")
    )
    return subset


def to_daily_series(df: pd.DataFrame, end_date: Optional[str] = None) -> pd.Series:
    """
    Collapse observations to a daily series on a contiguous date index.

    Duplicate observations on the same day are averaged; days without an
    observation become NaN.

    Args:
        df: Observations of a single variable
        end_date: Extend (or cut) the index to this date

    Returns:
        Series indexed by day
    """
    dates = pd.to_datetime(df['datetime']).dt.normalize()
    daily = df['observation'].astype(float).groupby(dates).mean()

    end = pd.Timestamp(end_date).normalize() if end_date else daily.index.max()
    full_index = pd.date_range(daily.index.min(), end, freq='D', name='datetime')
    series = daily.reindex(full_index)

    logger.debug(
        f"Daily series: {len(series)} days, {int(series.isna().sum())} without observations"
    )
    return series


def print_data_summary(df: pd.DataFrame) -> None:
    """
    Print a formatted summary of the observation table to console.

    Args:
        df: Long-format observation table
    """
    print("\n" + "=" * 60)
    print("DATASET SUMMARY")
    print("=" * 60)
    print(f"Shape: {df.shape[0]} rows × {df.shape[1]} columns")
    if 'datetime' in df.columns:
        print(f"Date range: {df['datetime'].min()} → {df['datetime'].max()}")
    print(f"Sites: {sorted(df['site_id'].unique().tolist())}")
    print("\nVariables:")
    print("-" * 40)

    for variable, group in df.groupby('variable'):
        non_null = group['observation'].count()
        print(f"  {variable}: {non_null} observations, "
              f"mean {group['observation'].mean():.3f}")

    print("=" * 60 + "\n")
