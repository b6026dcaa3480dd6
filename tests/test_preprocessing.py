"""
Test Suite for Lag Feature Module
=================================

Tests for lag resolution, the LagEmbedder class and the train/future split.
"""

import pytest
import numpy as np
import pandas as pd
import tempfile
import os

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from gpedm_forecast.preprocessing import (
    LagEmbedder, resolve_lags, split_train_future, preprocess_pipeline
)


class TestResolveLags:
    """Tests for resolve_lags."""

    def test_explicit_lags_sorted(self):
        """Explicit lags are returned sorted."""
        assert resolve_lags({'variable': 'x', 'lags': [7, 1]}) == [1, 7]

    def test_embedding_and_tau(self):
        """E and tau expand to multiples of tau."""
        assert resolve_lags({'variable': 'x', 'embedding': 3, 'tau': 2}) == [2, 4, 6]

    def test_embedding_default_tau(self):
        """tau defaults to 1."""
        assert resolve_lags({'variable': 'x', 'embedding': 4}) == [1, 2, 3, 4]

    def test_missing_lag_config(self):
        """A target without lags or embedding is rejected."""
        with pytest.raises(ValueError, match="needs either"):
            resolve_lags({'variable': 'x'})

    def test_duplicate_lags(self):
        """Duplicate lags are rejected."""
        with pytest.raises(ValueError, match="Duplicate"):
            resolve_lags({'variable': 'x', 'lags': [1, 1]})

    def test_non_positive_lag(self):
        """Lag 0 would leak the target."""
        with pytest.raises(ValueError, match="positive"):
            resolve_lags({'variable': 'x', 'lags': [0, 1]})


class TestLagEmbedder:
    """Tests for LagEmbedder class."""

    @pytest.fixture
    def sample_series(self):
        """100 days of data with a two-day gap and three trailing missing days."""
        np.random.seed(42)
        index = pd.date_range('2023-01-01', periods=100, freq='D', name='datetime')
        values = 15 + 5 * np.sin(np.arange(100) * 2 * np.pi / 30) + np.random.randn(100) * 0.1
        values[40:42] = np.nan
        values[-3:] = np.nan
        return pd.Series(values, index=index, name='Temp_C_mean')

    @pytest.fixture
    def embedder(self):
        """Create an embedder with a short and a long lag."""
        return LagEmbedder('Temp_C_mean', lags=[1, 7])

    def test_init(self, embedder):
        """Test embedder initialization."""
        assert embedder.variable == 'Temp_C_mean'
        assert embedder.lags == [1, 7]
        assert embedder._is_fitted == False

    def test_requires_lags(self):
        """An embedder without lags is rejected."""
        with pytest.raises(ValueError):
            LagEmbedder('Temp_C_mean', lags=[])

    def test_lag_column_count(self, embedder, sample_series):
        """One lag column per configured offset."""
        table = embedder.fit_transform(sample_series)

        lag_columns = [c for c in table.columns if '_lag' in c]
        assert len(lag_columns) == 2
        assert list(table.columns) == [
            'datetime', 'time', 'Temp_C_mean', 'Temp_C_mean_lag1', 'Temp_C_mean_lag7'
        ]

    def test_embedding_column_count(self, sample_series):
        """E lags give E lag columns."""
        lags = resolve_lags({'variable': 'Temp_C_mean', 'embedding': 5, 'tau': 3})
        table = LagEmbedder('Temp_C_mean', lags).fit_transform(sample_series)

        assert len([c for c in table.columns if '_lag' in c]) == 5

    def test_lag_values_offset_aligned(self, embedder, sample_series):
        """Lag k at row i equals the target at row i-k."""
        table = embedder.fit_transform(sample_series)
        target = table['Temp_C_mean'].to_numpy()

        for lag, name in zip(embedder.lags, embedder.feature_names):
            lagged = table[name].to_numpy()
            assert np.isnan(lagged[:lag]).all()
            np.testing.assert_array_equal(lagged[lag:], target[:-lag])

    def test_time_index_contiguous(self, embedder, sample_series):
        """Time index starts at 1 and increases by one."""
        table = embedder.fit_transform(sample_series)

        assert table['time'].iloc[0] == 1
        assert (np.diff(table['time']) == 1).all()

    def test_non_contiguous_series(self, embedder, sample_series):
        """A series with missing dates in its index is rejected."""
        with pytest.raises(ValueError, match="contiguous"):
            embedder.fit_transform(sample_series.drop(sample_series.index[10]))

    def test_last_observed_date(self, embedder, sample_series):
        """Trailing missing days are not observations."""
        embedder.fit_transform(sample_series)
        assert embedder.last_observed_date == sample_series.index[-4]

    def test_extend_before_fit(self, embedder, sample_series):
        """extend_future raises before fit_transform."""
        with pytest.raises(ValueError, match="must be fitted"):
            embedder.extend_future(pd.DataFrame(), horizon=5)

    def test_extend_future_dates(self, embedder, sample_series):
        """Forecast rows start the day after the last observation."""
        table = embedder.fit_transform(sample_series)
        extended = embedder.extend_future(table, horizon=10)

        future = extended[extended['datetime'] > embedder.last_observed_date]
        assert len(future) == 10
        assert future['datetime'].iloc[0] == sample_series.index[-4] + pd.Timedelta(days=1)
        assert (future['datetime'].diff().dropna() == pd.Timedelta(days=1)).all()
        assert future['Temp_C_mean'].isna().all()
        assert (np.diff(extended['time']) == 1).all()

    def test_extend_future_prefills_known_lags(self, embedder, sample_series):
        """Lags pointing at observed days are filled, others left NaN."""
        table = embedder.fit_transform(sample_series)
        extended = embedder.extend_future(table, horizon=10)
        observed = sample_series.iloc[:-3]

        future = extended[extended['datetime'] > embedder.last_observed_date]
        first = future.iloc[0]
        assert first['Temp_C_mean_lag1'] == observed.iloc[-1]
        assert first['Temp_C_mean_lag7'] == observed.iloc[-7]
        assert np.isnan(future.iloc[1]['Temp_C_mean_lag1'])
        assert future.iloc[6]['Temp_C_mean_lag7'] == observed.iloc[-1]
        assert np.isnan(future.iloc[7]['Temp_C_mean_lag7'])

    def test_split_train_future(self, embedder, sample_series):
        """Training rows are complete and future rows are the horizon."""
        table = embedder.fit_transform(sample_series)
        extended = embedder.extend_future(table, horizon=10)
        train, future = split_train_future(
            extended, 'Temp_C_mean', embedder.feature_names, embedder.last_observed_date
        )

        assert len(future) == 10
        assert not train[['Temp_C_mean'] + embedder.feature_names].isna().any().any()
        assert train['datetime'].max() <= embedder.last_observed_date

    def test_save_load(self, embedder, sample_series):
        """Test saving and loading the embedder."""
        embedder.fit_transform(sample_series)

        with tempfile.NamedTemporaryFile(suffix='.joblib', delete=False) as f:
            temp_path = f.name

        try:
            embedder.save(temp_path)
            loaded = LagEmbedder.load(temp_path)

            assert loaded.variable == embedder.variable
            assert loaded.lags == embedder.lags
            assert loaded.last_observed_date == embedder.last_observed_date
            assert loaded._is_fitted == True
        finally:
            os.unlink(temp_path)


class TestPreprocessPipeline:
    """Tests for the preprocess_pipeline function."""

    @pytest.fixture
    def sample_series(self):
        """Create sample data."""
        np.random.seed(42)
        index = pd.date_range('2022-06-01', periods=200, freq='D')
        return pd.Series(np.random.randn(200).cumsum() + 10, index=index)

    def test_pipeline_returns_expected_keys(self, sample_series):
        """Test that pipeline returns all expected keys."""
        result = preprocess_pipeline(sample_series, 'DO_mgL_mean', [1, 2, 3], horizon=35)

        expected_keys = ['variable', 'table', 'train', 'future', 'embedder', 'feature_names']

        for key in expected_keys:
            assert key in result, f"Missing key: {key}"

    def test_pipeline_shapes(self, sample_series):
        """Test that pipeline outputs have correct shapes."""
        result = preprocess_pipeline(sample_series, 'DO_mgL_mean', [1, 14], horizon=35)

        # 200 observed days, first 14 lack the long lag
        assert len(result['train']) == 200 - 14
        assert len(result['future']) == 35
        assert len(result['table']) == 200 + 35
        assert result['feature_names'] == ['DO_mgL_mean_lag1', 'DO_mgL_mean_lag14']


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
