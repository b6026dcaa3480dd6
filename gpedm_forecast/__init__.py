"""
GP-EDM Reservoir Forecasting
============================

Iterative multi-day-ahead water-quality forecasts with Gaussian-process
empirical dynamic modeling.

Modules:
    - data_loader: Target download, filtering and validation
    - eda: Autocorrelation analysis for lag selection (Phase 1)
    - preprocessing: Lag-feature tables and future rows (Phase 2)
    - model: GP-EDM regression (Phase 3)
    - forecast: Iterative forecasting and forecast file export (Phase 4)
    - evaluation: In-sample skill and CRPS scoring (Phase 5)
    - submission: Forecast file validation and upload (Phase 6)
"""

__version__ = "1.0.0"
__author__ = "Reservoir Forecasting Team"
