"""
statlearn
=========

Split, fit, predict and score pipeline for tabular statistical-learning
analyses (logistic and multinomial regression, k-nearest-neighbors,
k-means, linear regression).

Modules:
    - data_loader: Configuration and CSV ingestion
    - eda: Exploratory summaries, PCA and the elbow diagnostic
    - splitting: Random and cutoff train/evaluation splits
    - preprocessing: Missing values, one-hot encoding, standardization
    - model: Model variants, fitting and prediction
    - evaluation: Confusion matrix and error metrics
    - pipeline: Scenario configuration and end-to-end runs
"""

__version__ = "1.0.0"
