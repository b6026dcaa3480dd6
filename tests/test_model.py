"""
Test Suite for GP-EDM Model Module
==================================
"""

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from gpedm_forecast.model import GPEDMModel, train_model
from gpedm_forecast.preprocessing import LagEmbedder


@pytest.fixture
def lag_table():
    """Lag table of a noisy periodic series."""
    np.random.seed(0)
    index = pd.date_range('2023-03-01', periods=120, freq='D')
    values = 20 + 4 * np.sin(np.arange(120) * 2 * np.pi / 25) + np.random.randn(120) * 0.02
    embedder = LagEmbedder('Temp_C_mean', lags=[1, 2])
    table = embedder.fit_transform(pd.Series(values, index=index))
    return table, embedder.feature_names


@pytest.fixture
def fitted_model(lag_table):
    """GP-EDM fitted on the lag table."""
    table, predictors = lag_table
    return GPEDMModel(n_restarts_optimizer=0).fit(table, 'Temp_C_mean', predictors, time='time')


class TestGPEDMModel:
    """Tests for GPEDMModel class."""

    def test_init(self):
        """Test model initialization."""
        model = GPEDMModel(length_scale=2.0, noise_level=0.05)
        assert model.length_scale == 2.0
        assert model.noise_level == 0.05
        assert model._is_fitted == False

    def test_fit_drops_incomplete_rows(self, fitted_model):
        """The first two rows lack lag values and are not used."""
        assert fitted_model._is_fitted
        assert fitted_model.training_info['n_samples'] == 118
        assert fitted_model.predictors == ['Temp_C_mean_lag1', 'Temp_C_mean_lag2']

    def test_fit_too_few_rows(self, lag_table):
        """Fitting on fewer than 3 complete rows fails."""
        table, predictors = lag_table
        with pytest.raises(ValueError, match="at least 3"):
            GPEDMModel().fit(table.head(4), 'Temp_C_mean', predictors)

    def test_predict_before_fit(self, lag_table):
        """Test that predict raises error before fit."""
        table, _ = lag_table
        with pytest.raises(ValueError, match="must be fitted"):
            GPEDMModel().predict(table)

    def test_predict_columns(self, fitted_model, lag_table):
        """Predictions carry time, mean and sd for every input row."""
        table, _ = lag_table
        pred = fitted_model.predict(table.tail(10))

        assert list(pred.columns) == ['time', 'mean', 'sd']
        assert len(pred) == 10
        assert (pred['sd'] > 0).all()
        np.testing.assert_array_equal(pred['time'], table['time'].tail(10))

    def test_predict_accuracy(self, fitted_model, lag_table):
        """A smooth periodic series is predicted closely in sample."""
        table, _ = lag_table
        rows = table.iloc[50:60]
        pred = fitted_model.predict(rows)

        np.testing.assert_allclose(pred['mean'], rows['Temp_C_mean'], atol=0.5)

    def test_predict_missing_predictor(self, fitted_model, lag_table):
        """Rows with a missing predictor give NaN mean and sd."""
        table, _ = lag_table
        pred = fitted_model.predict(table.head(3))

        assert pred['mean'].iloc[:2].isna().all()
        assert pred['sd'].iloc[:2].isna().all()
        assert not np.isnan(pred['mean'].iloc[2])

    def test_predict_missing_column(self, fitted_model, lag_table):
        """Missing predictor columns are an error."""
        table, _ = lag_table
        with pytest.raises(ValueError, match="Missing predictor"):
            fitted_model.predict(table.drop(columns=['Temp_C_mean_lag2']))

    def test_leave_one_out(self, fitted_model):
        """LOO predictions cover every training row and track the data."""
        loo = fitted_model.leave_one_out()

        assert list(loo.columns) == ['time', 'observed', 'mean', 'sd']
        assert len(loo) == 118
        assert (loo['sd'] > 0).all()

        residuals = loo['observed'] - loo['mean']
        r2 = 1 - (residuals ** 2).sum() / ((loo['observed'] - loo['observed'].mean()) ** 2).sum()
        assert r2 > 0.9

    def test_length_scales(self, fitted_model):
        """One length scale per predictor."""
        scales = fitted_model.get_length_scales()

        assert list(scales) == fitted_model.predictors
        assert all(scale > 0 for scale in scales.values())

    def test_save_load(self, fitted_model, lag_table, tmp_path):
        """A reloaded model predicts the same values."""
        table, _ = lag_table
        path = tmp_path / "models" / "gpedm.joblib"

        fitted_model.save(str(path))
        loaded = GPEDMModel.load(str(path))

        pd.testing.assert_frame_equal(
            loaded.predict(table.tail(5)), fitted_model.predict(table.tail(5))
        )
        assert loaded.target == 'Temp_C_mean'

    def test_save_unfitted(self, tmp_path):
        """Saving an unfitted model fails."""
        with pytest.raises(ValueError, match="unfitted"):
            GPEDMModel().save(str(tmp_path / "m.joblib"))


class TestTrainModel:
    """Tests for the train_model function."""

    def test_uses_config(self, lag_table):
        """Hyperparameters are read from the model section."""
        table, predictors = lag_table
        config = {'model': {'length_scale': 3.0, 'n_restarts_optimizer': 0, 'random_state': 1}}

        model = train_model(table, 'Temp_C_mean', predictors, config)

        assert model.length_scale == 3.0
        assert model.random_state == 1
        assert model._is_fitted


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
