"""
Model Training Module
=====================

Fits and applies the model families used across the analyses:

    - binary-logit: logistic regression for a two-class label
    - multinomial-logit: softmax regression for a K-class label
    - knn: k-nearest-neighbors majority vote
    - kmeans: k-means clustering with multiple restarts
    - linear: ordinary least squares for a continuous label

A variant is selected by its ModelVariant tag; fitting and prediction are
dispatched through per-variant function tables. Every fit returns an
immutable TrainedModel.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional, Tuple, Callable, Mapping, Union

import numpy as np
import pandas as pd
from sklearn.cluster import KMeans
from sklearn.linear_model import LinearRegression, LogisticRegression
from sklearn.neighbors import NearestNeighbors

from .exceptions import (
    ConfigurationError,
    DimensionMismatchError,
    EmptyTrainingSetError,
    InvalidKError,
    InvalidLabelError,
)

logger = logging.getLogger(__name__)

# Large C leaves the fit effectively unpenalised (maximum likelihood)
DEFAULT_C = 1e4
DEFAULT_MAX_ITER = 1000
DEFAULT_THRESHOLD = 0.5
DEFAULT_RESTARTS = 20

Features = Union[pd.DataFrame, np.ndarray]
Labels = Union[pd.Series, np.ndarray, list]


class ModelVariant(str, Enum):
    BINARY_LOGIT = 'binary-logit'
    MULTINOMIAL_LOGIT = 'multinomial-logit'
    KNN = 'knn'
    KMEANS = 'kmeans'
    LINEAR = 'linear'

    @property
    def supervised(self) -> bool:
        return self is not ModelVariant.KMEANS

    @property
    def classifier(self) -> bool:
        return self in (ModelVariant.BINARY_LOGIT, ModelVariant.MULTINOMIAL_LOGIT, ModelVariant.KNN)


@dataclass(frozen=True)
class TrainedModel:
    """Fitted parameters of one model variant. Never modified after fitting."""

    variant: ModelVariant
    estimator: Any
    feature_names: Tuple[str, ...]
    classes: Tuple[Any, ...] = ()
    params: Mapping[str, Any] = field(default_factory=dict)
    state: Mapping[str, Any] = field(default_factory=dict)
    training_info: Mapping[str, Any] = field(default_factory=dict)

    @property
    def n_features_in_(self) -> int:
        return len(self.feature_names)


@dataclass(frozen=True)
class Prediction:
    """Predicted labels (and class probabilities where defined), one per record."""

    labels: pd.Series
    probabilities: Optional[pd.DataFrame] = None

    def __len__(self) -> int:
        return len(self.labels)


def _as_matrix(X: Features) -> Tuple[np.ndarray, Tuple[str, ...], pd.Index]:
    if isinstance(X, pd.DataFrame):
        return X.to_numpy(dtype=float), tuple(str(c) for c in X.columns), X.index
    matrix = np.asarray(X, dtype=float)
    if matrix.ndim == 1:
        matrix = matrix.reshape(-1, 1)
    names = tuple(f"x{i + 1}" for i in range(matrix.shape[1]))
    return matrix, names, pd.RangeIndex(len(matrix))


def _as_labels(y: Optional[Labels], n_records: int, variant: ModelVariant) -> np.ndarray:
    if y is None:
        raise InvalidLabelError(f"Variant '{variant.value}' needs training labels")
    labels = y.to_numpy() if isinstance(y, pd.Series) else np.asarray(y)
    if labels.shape[0] != n_records:
        raise InvalidLabelError(f"Got {labels.shape[0]} labels for {n_records} training records")
    return labels


def _check_k(k: Any, n_records: int) -> int:
    if isinstance(k, bool) or not isinstance(k, (int, np.integer)) or not 1 <= k <= n_records:
        raise InvalidKError(k, n_records)
    return int(k)


def check_threshold(threshold: float) -> float:
    if not 0.0 <= threshold <= 1.0:
        raise ConfigurationError(f"Probability threshold must lie in [0, 1], got {threshold!r}",
                                 stage="predict", parameter="threshold")
    return float(threshold)


# ---------------------------------------------------------------------------
# Fitters
# ---------------------------------------------------------------------------

def _fit_binary_logit(X: np.ndarray, y: np.ndarray, params: Dict[str, Any]) -> Dict[str, Any]:
    classes = np.unique(y)
    if len(classes) != 2:
        raise InvalidLabelError(
            f"Binary logit needs exactly two label classes in the training set, got {list(classes)}"
        )
    positive = params.get('positive_class', classes[1])
    if positive not in classes:
        raise InvalidLabelError(f"Positive class {positive!r} not among training labels {list(classes)}",
                                parameter="positive_class")
    negative = classes[0] if classes[1] == positive else classes[1]

    estimator = LogisticRegression(
        C=params.get('C', DEFAULT_C),
        max_iter=params.get('max_iter', DEFAULT_MAX_ITER)
    )
    estimator.fit(X, (y == positive).astype(int))

    return {
        'estimator': estimator,
        'classes': (negative, positive),
        'params': {'positive_class': positive, 'C': estimator.C, 'max_iter': estimator.max_iter},
    }


def _fit_multinomial_logit(X: np.ndarray, y: np.ndarray, params: Dict[str, Any]) -> Dict[str, Any]:
    classes = np.unique(y)
    if len(classes) < 2:
        raise InvalidLabelError(f"Multinomial logit needs at least two label classes, got {list(classes)}")
    reference = params.get('reference_class', classes[0])
    if reference not in classes:
        raise InvalidLabelError(f"Reference class {reference!r} not among training labels {list(classes)}",
                                parameter="reference_class")

    estimator = LogisticRegression(
        C=params.get('C', DEFAULT_C),
        max_iter=params.get('max_iter', DEFAULT_MAX_ITER)
    )
    estimator.fit(X, y)

    return {
        'estimator': estimator,
        'classes': tuple(estimator.classes_),
        'params': {'reference_class': reference, 'C': estimator.C, 'max_iter': estimator.max_iter},
    }


def _fit_knn(X: np.ndarray, y: np.ndarray, params: Dict[str, Any]) -> Dict[str, Any]:
    k = _check_k(params.get('k'), len(X))
    classes, codes = np.unique(y, return_inverse=True)

    # Lazy learner: the fitted index is the training set itself
    estimator = NearestNeighbors(n_neighbors=k, metric='euclidean')
    estimator.fit(X)

    return {
        'estimator': estimator,
        'classes': tuple(classes),
        'params': {'k': k},
        'state': {'codes': codes},
    }


def _fit_kmeans(X: np.ndarray, y: Optional[np.ndarray], params: Dict[str, Any]) -> Dict[str, Any]:
    k = _check_k(params.get('k'), len(X))
    restarts = params.get('restarts', DEFAULT_RESTARTS)
    if isinstance(restarts, bool) or not isinstance(restarts, (int, np.integer)) or restarts < 1:
        raise ConfigurationError(f"restarts must be an integer >= 1, got {restarts!r}",
                                 stage="fit", parameter="restarts")
    seed = params.get('seed')

    estimator = KMeans(n_clusters=k, n_init=int(restarts), random_state=seed)
    estimator.fit(X)
    logger.info(f"Best of {restarts} restarts: within-cluster SS = {estimator.inertia_:.4f}")

    return {
        'estimator': estimator,
        'classes': tuple(range(k)),
        'params': {'k': k, 'restarts': int(restarts), 'seed': seed},
    }


def _fit_linear(X: np.ndarray, y: np.ndarray, params: Dict[str, Any]) -> Dict[str, Any]:
    if not np.issubdtype(y.dtype, np.number):
        raise InvalidLabelError(f"Linear regression needs a numeric label, got dtype {y.dtype}")
    estimator = LinearRegression()
    estimator.fit(X, y.astype(float))
    return {'estimator': estimator, 'params': {}}


# ---------------------------------------------------------------------------
# Predictors
# ---------------------------------------------------------------------------

def _proba_binary_logit(model: TrainedModel, X: np.ndarray) -> np.ndarray:
    # column 1 of the estimator is P(positive)
    return model.estimator.predict_proba(X)


def _proba_multinomial_logit(model: TrainedModel, X: np.ndarray) -> np.ndarray:
    return model.estimator.predict_proba(X)


def _knn_votes(model: TrainedModel, X: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    distances, neighbors = model.estimator.kneighbors(X)
    codes = model.state['codes'][neighbors]
    hits = codes[:, :, None] == np.arange(len(model.classes))
    votes = hits.sum(axis=1)
    total_distance = (hits * distances[:, :, None]).sum(axis=1)
    return votes, total_distance


def _proba_knn(model: TrainedModel, X: np.ndarray) -> np.ndarray:
    votes, _ = _knn_votes(model, X)
    return votes / model.params['k']


def _predict_binary_logit(model: TrainedModel, X: np.ndarray, threshold: float) -> np.ndarray:
    negative, positive = model.classes
    p = _proba_binary_logit(model, X)[:, 1]
    return np.where(p > threshold, positive, negative)


def _predict_multinomial_logit(model: TrainedModel, X: np.ndarray, threshold: float) -> np.ndarray:
    proba = _proba_multinomial_logit(model, X)
    return np.asarray(model.classes)[proba.argmax(axis=1)]


def _predict_knn(model: TrainedModel, X: np.ndarray, threshold: float) -> np.ndarray:
    votes, total_distance = _knn_votes(model, X)
    # Majority vote; ties go to the smallest total distance, then the lowest class index
    is_top = votes == votes.max(axis=1, keepdims=True)
    ranked = np.where(is_top, total_distance, np.inf)
    return np.asarray(model.classes)[ranked.argmin(axis=1)]


def _predict_kmeans(model: TrainedModel, X: np.ndarray, threshold: float) -> np.ndarray:
    return model.estimator.predict(X)


def _predict_linear(model: TrainedModel, X: np.ndarray, threshold: float) -> np.ndarray:
    return model.estimator.predict(X)


_FITTERS: Dict[ModelVariant, Callable[..., Dict[str, Any]]] = {
    ModelVariant.BINARY_LOGIT: _fit_binary_logit,
    ModelVariant.MULTINOMIAL_LOGIT: _fit_multinomial_logit,
    ModelVariant.KNN: _fit_knn,
    ModelVariant.KMEANS: _fit_kmeans,
    ModelVariant.LINEAR: _fit_linear,
}

_PREDICTORS: Dict[ModelVariant, Callable[[TrainedModel, np.ndarray, float], np.ndarray]] = {
    ModelVariant.BINARY_LOGIT: _predict_binary_logit,
    ModelVariant.MULTINOMIAL_LOGIT: _predict_multinomial_logit,
    ModelVariant.KNN: _predict_knn,
    ModelVariant.KMEANS: _predict_kmeans,
    ModelVariant.LINEAR: _predict_linear,
}

_PROBABILITIES: Dict[ModelVariant, Callable[[TrainedModel, np.ndarray], np.ndarray]] = {
    ModelVariant.BINARY_LOGIT: _proba_binary_logit,
    ModelVariant.MULTINOMIAL_LOGIT: _proba_multinomial_logit,
    ModelVariant.KNN: _proba_knn,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def fit_model(
    variant: Union[ModelVariant, str],
    X: Features,
    y: Optional[Labels] = None,
    **params: Any
) -> TrainedModel:
    """
    Fit one model variant on training data.

    Args:
        variant: ModelVariant or its string tag (e.g. 'knn')
        X: Training features of shape (n_records, n_features)
        y: Training labels (ignored by 'kmeans')
        **params: Variant hyperparameters:
            binary-logit: positive_class, C, max_iter
            multinomial-logit: reference_class, C, max_iter
            knn: k (X should hold standardized numeric predictors)
            kmeans: k, restarts, seed

    Returns:
        Immutable TrainedModel
    """
    variant = ModelVariant(variant)
    matrix, feature_names, _ = _as_matrix(X)

    if matrix.shape[0] == 0:
        raise EmptyTrainingSetError(variant.value)

    labels = _as_labels(y, len(matrix), variant) if variant.supervised else None

    start_time = datetime.now()
    logger.info("=" * 60)
    logger.info(f"FITTING MODEL: {variant.value}")
    logger.info("=" * 60)
    logger.info(f"Training data shape: X={matrix.shape}")
    if params:
        logger.info("Hyperparameters:")
        for name, value in params.items():
            logger.info(f"  - {name}: {value}")

    fitted = _FITTERS[variant](matrix, labels, params)

    end_time = datetime.now()
    training_duration = (end_time - start_time).total_seconds()
    training_info = {
        'training_duration_seconds': training_duration,
        'n_samples': int(matrix.shape[0]),
        'n_features': int(matrix.shape[1]),
        'trained_at': end_time.isoformat(),
    }

    logger.info(f"MODEL FIT COMPLETE in {training_duration:.2f} seconds")

    return TrainedModel(
        variant=variant,
        estimator=fitted['estimator'],
        feature_names=feature_names,
        classes=fitted.get('classes', ()),
        params=fitted.get('params', {}),
        state=fitted.get('state', {}),
        training_info=training_info
    )


def _check_features(model: TrainedModel, X: Features) -> Tuple[np.ndarray, pd.Index]:
    matrix, _, index = _as_matrix(X)
    if matrix.shape[1] != model.n_features_in_:
        raise DimensionMismatchError(model.n_features_in_, matrix.shape[1])
    return matrix, index


def predict_proba(model: TrainedModel, X: Features) -> pd.DataFrame:
    """
    Class probabilities per record.

    For 'binary-logit' the columns are (negative, positive); for the other
    classifiers one column per training class. Rows sum to 1.
    """
    if model.variant not in _PROBABILITIES:
        raise ConfigurationError(f"Variant '{model.variant.value}' does not produce class probabilities",
                                 stage="predict", parameter="variant")
    matrix, index = _check_features(model, X)
    proba = _PROBABILITIES[model.variant](model, matrix)
    return pd.DataFrame(proba, columns=list(model.classes), index=index)


def predict(model: TrainedModel, X: Features, threshold: float = DEFAULT_THRESHOLD) -> pd.Series:
    """
    Labels per record: class labels, cluster numbers or fitted values.

    Args:
        model: Fitted model
        X: Features with the same columns as the training features
        threshold: 'binary-logit' only; a record is positive when
            P(positive) > threshold

    Returns:
        Series aligned with the rows of X
    """
    threshold = check_threshold(threshold)
    matrix, index = _check_features(model, X)
    labels = _PREDICTORS[model.variant](model, matrix, threshold)
    return pd.Series(labels, index=index, name='predicted')


def make_prediction(model: TrainedModel, X: Features, threshold: float = DEFAULT_THRESHOLD) -> Prediction:
    """Labels plus, for classifiers, their class probabilities."""
    labels = predict(model, X, threshold=threshold)
    probabilities = predict_proba(model, X) if model.variant in _PROBABILITIES else None
    return Prediction(labels=labels, probabilities=probabilities)


def coefficients(model: TrainedModel) -> pd.DataFrame:
    """
    Fitted intercept and slopes.

    binary-logit: one row, log-odds of the positive class.
    multinomial-logit: one row per non-reference class, log-odds against
    the reference class.
    linear: one row for the label.
    """
    columns = ['intercept'] + list(model.feature_names)

    if model.variant is ModelVariant.BINARY_LOGIT:
        est = model.estimator
        row = np.concatenate([est.intercept_, est.coef_[0]])
        return pd.DataFrame([row], columns=columns, index=[model.classes[1]])

    if model.variant is ModelVariant.MULTINOMIAL_LOGIT:
        est = model.estimator
        coef = np.column_stack([est.intercept_, est.coef_])
        if coef.shape[0] == 1:
            # Two classes: sklearn stores only the second class against the first
            coef = np.vstack([np.zeros_like(coef), coef])
        classes = list(model.classes)
        ref = classes.index(model.params['reference_class'])
        relative = coef - coef[ref]
        others = [i for i in range(len(classes)) if i != ref]
        return pd.DataFrame(relative[others], columns=columns, index=[classes[i] for i in others])

    if model.variant is ModelVariant.LINEAR:
        est = model.estimator
        row = np.concatenate([[est.intercept_], np.ravel(est.coef_)])
        return pd.DataFrame([row], columns=columns, index=['estimate'])

    raise ConfigurationError(f"Variant '{model.variant.value}' has no coefficients",
                             stage="report", parameter="variant")


def centroids(model: TrainedModel) -> pd.DataFrame:
    """Cluster centres of a k-means model, one row per cluster."""
    if model.variant is not ModelVariant.KMEANS:
        raise ConfigurationError(f"Variant '{model.variant.value}' has no centroids",
                                 stage="report", parameter="variant")
    return pd.DataFrame(model.estimator.cluster_centers_, columns=list(model.feature_names))


def within_cluster_ss(model: TrainedModel) -> float:
    """Total within-cluster sum of squared distances of the kept k-means restart."""
    if model.variant is not ModelVariant.KMEANS:
        raise ConfigurationError(f"Variant '{model.variant.value}' is not a clustering",
                                 stage="report", parameter="variant")
    return float(model.estimator.inertia_)


def print_model_summary(model: TrainedModel) -> None:
    """
    Print a summary of the trained model.

    Args:
        model: Trained model instance
    """
    print("\n" + "=" * 50)
    print("MODEL SUMMARY")
    print("=" * 50)
    print(f"Variant: {model.variant.value}")
    print(f"Number of input features: {model.n_features_in_}")
    if model.classes:
        print(f"Classes: {list(model.classes)}")

    if model.params:
        print("\nHyperparameters:")
        for name, value in model.params.items():
            print(f"  - {name}: {value}")

    if model.variant in (ModelVariant.BINARY_LOGIT, ModelVariant.MULTINOMIAL_LOGIT, ModelVariant.LINEAR):
        print("\nCoefficients:")
        print(coefficients(model).round(4).to_string())
    elif model.variant is ModelVariant.KMEANS:
        print(f"\nWithin-cluster SS: {within_cluster_ss(model):.4f}")

    if model.training_info:
        print("\nTraining Info:")
        print(f"  - Duration: {model.training_info.get('training_duration_seconds', 0.0):.2f}s")
        print(f"  - Samples: {model.training_info.get('n_samples', 'N/A')}")

    print("=" * 50 + "\n")
