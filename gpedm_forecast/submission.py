"""
Submission Module - Phase 6
===========================

Checks a forecast file against the submission format and uploads it.

Functions:
    - validate_forecast: Format checks, returns (is_valid, report)
    - submit_forecast: Validate, then upload with a single HTTP PUT
"""

import logging
import re
from pathlib import Path
from typing import Dict, Any, Tuple

import pandas as pd
import requests

from .forecast import FORECAST_COLUMNS, PARAMETERS

logger = logging.getLogger(__name__)

FILENAME_PATTERN = re.compile(
    r'^(?P<theme>[A-Za-z0-9_]+)-(?P<date>\d{4}-\d{2}-\d{2})-(?P<model_id>[A-Za-z0-9_.]+)\.csv(\.gz)?$'
)
REQUIRED_COLUMNS = [
    'model_id', 'datetime', 'reference_datetime', 'site_id',
    'family', 'parameter', 'variable', 'prediction'
]


def validate_forecast(file_path: str, strict: bool = True) -> Tuple[bool, Dict[str, Any]]:
    """
    Validate a forecast file before submission.

    Checks:
        - File exists and is named <theme>-<YYYY-MM-DD>-<model_id>.csv[.gz]
        - Required columns are present
        - Parameters are mu/sigma, family is normal, sigma is non-negative
        - No missing predictions
        - Every forecast date has both mu and sigma
        - One reference date, matching the file name

    Args:
        file_path: Path to the forecast CSV
        strict: If True, raise errors on validation failure

    Returns:
        Tuple of (is_valid, validation_report)

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If strict and any check fails
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Forecast file not found: {file_path}")

    report = {"file": str(file_path), "issues": []}

    def add_issue(issue: str) -> None:
        report["issues"].append(issue)
        logger.warning(issue)

    match = FILENAME_PATTERN.match(file_path.name)
    if not match:
        add_issue(f"File name {file_path.name!r} does not follow <theme>-<YYYY-MM-DD>-<model_id>.csv")

    df = pd.read_csv(file_path)
    report["n_rows"] = len(df)

    missing_cols = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing_cols:
        add_issue(f"Missing required columns: {missing_cols}")
    else:
        bad_params = sorted(set(df['parameter'].dropna()) - set(PARAMETERS))
        if bad_params:
            add_issue(f"Unknown parameters: {bad_params}")

        bad_family = sorted(set(df['family'].dropna()) - {'normal'})
        if bad_family:
            add_issue(f"Unsupported distribution family: {bad_family}")

        n_missing = int(df['prediction'].isna().sum())
        if n_missing:
            add_issue(f"Missing predictions: {n_missing}")

        sigma = df.loc[df['parameter'] == 'sigma', 'prediction']
        if (sigma < 0).any():
            add_issue(f"Negative sigma values: {int((sigma < 0).sum())}")

        keys = [c for c in ['datetime', 'site_id', 'depth_m', 'variable'] if c in df.columns]
        counts = df.groupby(keys, dropna=False)['parameter'].nunique()
        incomplete = int((counts != len(PARAMETERS)).sum())
        if incomplete:
            add_issue(f"{incomplete} forecast dates without both mu and sigma")

        references = df['reference_datetime'].dropna().unique()
        if len(references) != 1:
            add_issue(f"Expected one reference_datetime, found {len(references)}")
        elif match and pd.Timestamp(references[0]).strftime('%Y-%m-%d') != match.group('date'):
            add_issue(
                f"reference_datetime {references[0]} does not match file date {match.group('date')}"
            )

        if match and set(df['model_id'].astype(str)) != {match.group('model_id')}:
            add_issue("model_id column does not match the file name")

    extra = [c for c in df.columns if c not in FORECAST_COLUMNS]
    if extra:
        logger.info(f"Extra columns will be ignored by the scorer: {extra}")

    is_valid = len(report["issues"]) == 0
    report["is_valid"] = is_valid

    if strict and not is_valid:
        raise ValueError(f"Forecast validation failed: {report['issues']}")

    logger.info(f"Forecast file {file_path.name} is valid" if is_valid
                else f"Forecast file {file_path.name} has {len(report['issues'])} issues")
    return is_valid, report


def submit_forecast(
    file_path: str,
    endpoint: str,
    timeout: float = 60.0
) -> Dict[str, Any]:
    """
    Validate a forecast file and upload it.

    The file is PUT to ``<endpoint>/<file name>`` in a single blocking
    request; there are no retries.

    Args:
        file_path: Path to the forecast CSV
        endpoint: Base URL of the submission bucket or service
        timeout: Request timeout in seconds

    Returns:
        Dictionary with the destination URL and HTTP status

    Raises:
        ValueError: If the file fails validation
        requests.HTTPError: If the upload is rejected
    """
    file_path = Path(file_path)
    validate_forecast(str(file_path), strict=True)

    destination = f"{endpoint.rstrip('/')}/{file_path.name}"
    content_type = 'application/gzip' if file_path.suffix == '.gz' else 'text/csv'

    logger.info(f"Submitting {file_path.name} to {destination}")
    with open(file_path, 'rb') as f:
        response = requests.put(
            destination,
            data=f,
            headers={'Content-Type': content_type},
            timeout=timeout
        )
    response.raise_for_status()

    logger.info(f"Submission accepted (HTTP {response.status_code})")
    return {'destination': destination, 'status_code': response.status_code}
