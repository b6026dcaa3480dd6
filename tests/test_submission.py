"""
Test Suite for Submission Module
================================
"""

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from gpedm_forecast import submission
from gpedm_forecast.forecast import build_forecast_table, export_forecast
from gpedm_forecast.submission import validate_forecast, submit_forecast


@pytest.fixture
def forecast_table():
    """Three-day forecast table for one variable."""
    predictions = pd.DataFrame({
        'datetime': pd.date_range('2024-01-31', periods=3, freq='D'),
        'mean': [15.0, 15.2, 15.4],
        'sd': [0.3, 0.4, 0.5],
    })
    metadata = {
        'project_id': 'vera4cast',
        'model_id': 'gpedm_test',
        'reference_datetime': '2024-01-31',
        'site_id': 'fcre',
        'depth_m': 1.6,
    }
    return build_forecast_table(predictions, 'Temp_C_mean', metadata)


@pytest.fixture
def forecast_file(forecast_table, tmp_path):
    """Valid forecast file on disk."""
    return export_forecast(forecast_table, str(tmp_path), 'daily', 'gpedm_test')


class FakeResponse:
    def __init__(self, status_code=200):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise submission.requests.HTTPError(f"HTTP {self.status_code}")


class TestValidateForecast:
    """Tests for validate_forecast."""

    def test_valid_file(self, forecast_file):
        """An exported forecast passes validation."""
        is_valid, report = validate_forecast(forecast_file)

        assert is_valid
        assert report['issues'] == []
        assert report['n_rows'] == 6

    def test_missing_file(self, tmp_path):
        """A missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            validate_forecast(str(tmp_path / 'daily-2024-01-31-x.csv'))

    def test_bad_filename(self, forecast_table, tmp_path):
        """Files not named by the convention are rejected."""
        path = tmp_path / 'forecast.csv'
        forecast_table.to_csv(path, index=False)

        is_valid, report = validate_forecast(str(path), strict=False)
        assert not is_valid
        assert any('File name' in issue for issue in report['issues'])

    def test_strict_raises(self, forecast_table, tmp_path):
        """strict=True turns issues into ValueError."""
        path = tmp_path / 'forecast.csv'
        forecast_table.to_csv(path, index=False)

        with pytest.raises(ValueError, match="validation failed"):
            validate_forecast(str(path))

    def test_missing_sigma(self, forecast_table, tmp_path):
        """Each date needs both parameters."""
        table = forecast_table.drop(forecast_table.index[1])
        path = export_forecast(table, str(tmp_path), 'daily', 'gpedm_test')

        is_valid, report = validate_forecast(path, strict=False)
        assert not is_valid
        assert any('both mu and sigma' in issue for issue in report['issues'])

    def test_missing_prediction(self, forecast_table, tmp_path):
        """Missing predictions are reported."""
        forecast_table.loc[0, 'prediction'] = np.nan
        path = export_forecast(forecast_table, str(tmp_path), 'daily', 'gpedm_test')

        is_valid, report = validate_forecast(path, strict=False)
        assert not is_valid
        assert any('Missing predictions' in issue for issue in report['issues'])

    def test_negative_sigma(self, forecast_table, tmp_path):
        """sigma must be non-negative."""
        forecast_table.loc[forecast_table['parameter'] == 'sigma', 'prediction'] = -1.0
        path = export_forecast(forecast_table, str(tmp_path), 'daily', 'gpedm_test')

        is_valid, report = validate_forecast(path, strict=False)
        assert not is_valid
        assert any('Negative sigma' in issue for issue in report['issues'])

    def test_unknown_parameter(self, forecast_table, tmp_path):
        """Only mu and sigma are accepted."""
        forecast_table['parameter'] = forecast_table['parameter'].replace({'sigma': 'sd'})
        path = export_forecast(forecast_table, str(tmp_path), 'daily', 'gpedm_test')

        is_valid, report = validate_forecast(path, strict=False)
        assert not is_valid
        assert any('Unknown parameters' in issue for issue in report['issues'])

    def test_model_id_mismatch(self, forecast_table, tmp_path):
        """The model_id column must match the file name."""
        path = export_forecast(forecast_table, str(tmp_path), 'daily', 'other_model')

        is_valid, report = validate_forecast(path, strict=False)
        assert not is_valid
        assert any('model_id' in issue for issue in report['issues'])


class TestSubmitForecast:
    """Tests for submit_forecast."""

    def test_submit_puts_file(self, forecast_file, monkeypatch):
        """The file body is PUT under the endpoint."""
        calls = []

        def fake_put(url, data=None, headers=None, timeout=None):
            calls.append({'url': url, 'body': data.read(), 'headers': headers, 'timeout': timeout})
            return FakeResponse(200)

        monkeypatch.setattr(submission.requests, 'put', fake_put)

        result = submit_forecast(forecast_file, 'https://example.org/forecasts/', timeout=5)

        assert len(calls) == 1
        assert calls[0]['url'] == 'https://example.org/forecasts/daily-2024-01-31-gpedm_test.csv'
        assert calls[0]['body'] == Path(forecast_file).read_bytes()
        assert calls[0]['headers']['Content-Type'] == 'text/csv'
        assert calls[0]['timeout'] == 5
        assert result['status_code'] == 200

    def test_submit_invalid_file(self, forecast_table, tmp_path, monkeypatch):
        """Invalid files are never uploaded."""
        path = tmp_path / 'forecast.csv'
        forecast_table.to_csv(path, index=False)

        def fake_put(*args, **kwargs):
            raise AssertionError("put should not be called")

        monkeypatch.setattr(submission.requests, 'put', fake_put)

        with pytest.raises(ValueError):
            submit_forecast(str(path), 'https://example.org/forecasts')

    def test_submit_http_error(self, forecast_file, monkeypatch):
        """A rejected upload raises HTTPError."""
        monkeypatch.setattr(
            submission.requests, 'put', lambda *args, **kwargs: FakeResponse(403)
        )

        with pytest.raises(submission.requests.HTTPError):
            submit_forecast(forecast_file, 'https://example.org/forecasts')


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
