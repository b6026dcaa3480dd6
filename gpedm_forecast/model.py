"""
GP-EDM Model Module - Phase 3
=============================

Gaussian-process empirical dynamic modeling on lag-embedded predictors.

Features:
    - One inverse length scale per predictor (ARD squared-exponential kernel)
    - Estimated observation noise (WhiteKernel)
    - Predictive mean and standard deviation in original units
    - Closed-form leave-one-out predictions
    - Model persistence (save/load)
"""

import logging
from pathlib import Path
from typing import Dict, Any, Optional, List
from datetime import datetime

import numpy as np
import pandas as pd
import joblib
from scipy.linalg import cho_solve
from sklearn.gaussian_process import GaussianProcessRegressor
from sklearn.gaussian_process.kernels import ConstantKernel, RBF, WhiteKernel
from sklearn.preprocessing import StandardScaler

logger = logging.getLogger(__name__)


class GPEDMModel:
    """
    GP-EDM regression of a target on its lagged copies.

    Predictors and target are standardized before fitting; predictions are
    returned on the target's original scale.
    """

    def __init__(
        self,
        length_scale: float = 1.0,
        length_scale_bounds: tuple = (1e-2, 1e3),
        noise_level: float = 0.1,
        noise_level_bounds: tuple = (1e-6, 1.0),
        n_restarts_optimizer: int = 2,
        random_state: int = 42
    ):
        """
        Initialize the model with kernel hyperparameters.

        Args:
            length_scale: Initial length scale for every predictor
            length_scale_bounds: Optimizer bounds of the length scales
            noise_level: Initial observation noise variance (standardized units)
            noise_level_bounds: Optimizer bounds of the noise variance
            n_restarts_optimizer: Extra optimizer restarts from random starts
            random_state: Random seed for reproducibility
        """
        self.length_scale = length_scale
        self.length_scale_bounds = tuple(length_scale_bounds)
        self.noise_level = noise_level
        self.noise_level_bounds = tuple(noise_level_bounds)
        self.n_restarts_optimizer = n_restarts_optimizer
        self.random_state = random_state

        self.gp: Optional[GaussianProcessRegressor] = None
        self.x_scaler: Optional[StandardScaler] = None
        self.y_mean_: Optional[float] = None
        self.y_std_: Optional[float] = None
        self.target: Optional[str] = None
        self.predictors: Optional[List[str]] = None
        self.time: Optional[str] = None
        self.training_info: Dict[str, Any] = {}
        self._train_time: Optional[np.ndarray] = None
        self._train_y: Optional[np.ndarray] = None
        self._is_fitted = False

    def _create_kernel(self, n_predictors: int):
        return (
            ConstantKernel(1.0, (1e-3, 1e3))
            * RBF(length_scale=np.full(n_predictors, self.length_scale),
                  length_scale_bounds=self.length_scale_bounds)
            + WhiteKernel(noise_level=self.noise_level,
                          noise_level_bounds=self.noise_level_bounds)
        )

    def fit(
        self,
        data: pd.DataFrame,
        target: str,
        predictors: List[str],
        time: str = 'time'
    ) -> 'GPEDMModel':
        """
        Fit the GP to the rows of ``data`` with a complete target and predictors.

        Args:
            data: Lag table
            target: Target column name
            predictors: Predictor (lag) column names
            time: Time index column name

        Returns:
            Self for method chaining
        """
        start_time = datetime.now()

        complete = data.dropna(subset=[target] + list(predictors))
        if len(complete) < 3:
            raise ValueError(
                f"Need at least 3 complete rows to fit {target}, got {len(complete)}"
            )

        logger.info("=" * 60)
        logger.info(f"FITTING GP-EDM (Phase 3): {target}")
        logger.info("=" * 60)
        logger.info(f"Training rows: {len(complete)} (dropped {len(data) - len(complete)} incomplete)")
        logger.info(f"Predictors: {list(predictors)}")

        X = complete[list(predictors)].to_numpy(dtype=float)
        y = complete[target].to_numpy(dtype=float)

        self.x_scaler = StandardScaler().fit(X)
        self.y_mean_ = float(y.mean())
        self.y_std_ = float(y.std()) or 1.0

        self.gp = GaussianProcessRegressor(
            kernel=self._create_kernel(len(predictors)),
            normalize_y=False,
            n_restarts_optimizer=self.n_restarts_optimizer,
            random_state=self.random_state
        )
        self.gp.fit(self.x_scaler.transform(X), (y - self.y_mean_) / self.y_std_)

        self.target = target
        self.predictors = list(predictors)
        self.time = time
        self._train_time = complete[time].to_numpy() if time in complete.columns else None
        self._train_y = y
        self._is_fitted = True

        duration = (datetime.now() - start_time).total_seconds()
        self.training_info = {
            'training_duration_seconds': duration,
            'n_samples': len(complete),
            'n_predictors': len(predictors),
            'trained_at': datetime.now().isoformat(),
            'kernel': str(self.gp.kernel_),
            'log_marginal_likelihood': float(self.gp.log_marginal_likelihood_value_),
        }

        logger.info(f"Fitted kernel: {self.gp.kernel_}")
        logger.info(f"GP-EDM FIT COMPLETE in {duration:.2f} seconds")

        return self

    def predict(self, new_rows: pd.DataFrame) -> pd.DataFrame:
        """
        Predict mean and standard deviation for new rows.

        Rows with a missing predictor get NaN mean and sd.

        Args:
            new_rows: Rows containing the predictor columns

        Returns:
            DataFrame with columns time, mean, sd (one row per input row)
        """
        if not self._is_fitted:
            raise ValueError("Model must be fitted before prediction. Call fit() first.")

        missing = [c for c in self.predictors if c not in new_rows.columns]
        if missing:
            raise ValueError(f"Missing predictor columns: {missing}")

        X = new_rows[self.predictors].to_numpy(dtype=float)
        complete = ~np.isnan(X).any(axis=1)

        mean = np.full(len(X), np.nan)
        sd = np.full(len(X), np.nan)
        if complete.any():
            mu, sigma = self.gp.predict(self.x_scaler.transform(X[complete]), return_std=True)
            mean[complete] = mu * self.y_std_ + self.y_mean_
            sd[complete] = sigma * self.y_std_

        result = pd.DataFrame({'mean': mean, 'sd': sd}, index=new_rows.index)
        if self.time in new_rows.columns:
            result.insert(0, 'time', new_rows[self.time].to_numpy())
        return result

    def leave_one_out(self) -> pd.DataFrame:
        """
        Leave-one-out predictions on the training rows.

        Uses the closed form for GP regression with fixed hyperparameters:
        the held-out mean is ``y_i - alpha_i / [K^-1]_ii`` and the variance
        is ``1 / [K^-1]_ii``.

        Returns:
            DataFrame with columns time, observed, mean, sd
        """
        if not self._is_fitted:
            raise ValueError("Model must be fitted first.")

        n = len(self._train_y)
        K_inv = cho_solve((self.gp.L_, True), np.eye(n))
        K_inv_diag = np.diag(K_inv)

        y_scaled = (self._train_y - self.y_mean_) / self.y_std_
        loo_mean = y_scaled - self.gp.alpha_ / K_inv_diag
        loo_sd = np.sqrt(1.0 / K_inv_diag)

        result = pd.DataFrame({
            'observed': self._train_y,
            'mean': loo_mean * self.y_std_ + self.y_mean_,
            'sd': loo_sd * self.y_std_,
        })
        if self._train_time is not None:
            result.insert(0, 'time', self._train_time)
        return result

    def get_length_scales(self) -> Dict[str, float]:
        """
        Fitted length scale of each predictor (small = influential).

        Returns:
            Mapping predictor name -> length scale
        """
        if not self._is_fitted:
            raise ValueError("Model must be fitted first.")

        rbf = self.gp.kernel_.k1.k2
        scales = np.atleast_1d(rbf.length_scale)
        return {name: float(scale) for name, scale in zip(self.predictors, scales)}

    def save(self, filepath: str) -> None:
        """
        Save the fitted model to disk.

        Args:
            filepath: Path to save the model
        """
        if not self._is_fitted:
            raise ValueError("Cannot save unfitted model.")

        state = {
            'gp': self.gp,
            'x_scaler': self.x_scaler,
            'hyperparameters': {
                'length_scale': self.length_scale,
                'length_scale_bounds': self.length_scale_bounds,
                'noise_level': self.noise_level,
                'noise_level_bounds': self.noise_level_bounds,
                'n_restarts_optimizer': self.n_restarts_optimizer,
                'random_state': self.random_state
            },
            'y_mean_': self.y_mean_,
            'y_std_': self.y_std_,
            'target': self.target,
            'predictors': self.predictors,
            'time': self.time,
            'training_info': self.training_info,
            '_train_time': self._train_time,
            '_train_y': self._train_y,
            '_is_fitted': self._is_fitted
        }

        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(state, filepath)
        logger.info(f"Model saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'GPEDMModel':
        """
        Load a fitted model from disk.

        Args:
            filepath: Path to the saved model

        Returns:
            Loaded GPEDMModel instance
        """
        state = joblib.load(filepath)

        model = cls(**state['hyperparameters'])
        model.gp = state['gp']
        model.x_scaler = state['x_scaler']
        model.y_mean_ = state['y_mean_']
        model.y_std_ = state['y_std_']
        model.target = state['target']
        model.predictors = state['predictors']
        model.time = state['time']
        model.training_info = state['training_info']
        model._train_time = state['_train_time']
        model._train_y = state['_train_y']
        model._is_fitted = state['_is_fitted']

        logger.info(f"Model loaded from {filepath}")
        return model


def train_model(
    train: pd.DataFrame,
    target: str,
    predictors: List[str],
    config: Dict[str, Any],
    save_path: Optional[str] = None
) -> GPEDMModel:
    """
    Fit a GP-EDM model using configuration parameters.

    Args:
        train: Training rows of the lag table
        target: Target column name
        predictors: Lag column names
        config: Configuration dictionary (reads the 'model' section)
        save_path: Path to save the fitted model (optional)

    Returns:
        Fitted GPEDMModel
    """
    model_config = config.get('model', {})

    model = GPEDMModel(
        length_scale=model_config.get('length_scale', 1.0),
        length_scale_bounds=tuple(model_config.get('length_scale_bounds', (1e-2, 1e3))),
        noise_level=model_config.get('noise_level', 0.1),
        noise_level_bounds=tuple(model_config.get('noise_level_bounds', (1e-6, 1.0))),
        n_restarts_optimizer=model_config.get('n_restarts_optimizer', 2),
        random_state=model_config.get('random_state', 42)
    )

    model.fit(train, target, predictors, time='time')

    if save_path:
        model.save(save_path)

    return model


def print_model_summary(model: GPEDMModel) -> None:
    """
    Print a summary of the fitted model.

    Args:
        model: Fitted model instance
    """
    print("\n" + "=" * 50)
    print(f"GP-EDM MODEL SUMMARY: {model.target}")
    print("=" * 50)
    print(f"Predictors: {model.predictors}")
    print(f"Kernel: {model.training_info.get('kernel', 'N/A')}")

    print("\nLength scales:")
    for name, scale in model.get_length_scales().items():
        print(f"  - {name}: {scale:.4f}")

    if model.training_info:
        print("\nTraining Info:")
        print(f"  - Duration: {model.training_info.get('training_duration_seconds', 0.0):.2f}s")
        print(f"  - Samples: {model.training_info.get('n_samples', 'N/A')}")
        print(f"  - Log marginal likelihood: "
              f"{model.training_info.get('log_marginal_likelihood', float('nan')):.3f}")

    print("=" * 50 + "\n")
