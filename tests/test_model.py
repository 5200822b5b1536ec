"""
Test Suite for Model Module
============================

Tests for fitting and prediction across all model variants.
"""

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from statlearn.exceptions import (
    ConfigurationError,
    DimensionMismatchError,
    EmptyTrainingSetError,
    InvalidKError,
    InvalidLabelError,
)
from statlearn.evaluation import evaluate
from statlearn.model import (
    ModelVariant,
    centroids,
    coefficients,
    fit_model,
    make_prediction,
    predict,
    predict_proba,
    within_cluster_ss,
)


@pytest.fixture
def threshold_data():
    """Label is 1 exactly when the feature exceeds 0.5."""
    rng = np.random.default_rng(42)
    x = rng.uniform(0, 1, 1200)
    df = pd.DataFrame({'feature': x, 'label': (x > 0.5).astype(int)})
    return df.iloc[:1000], df.iloc[1000:]


@pytest.fixture
def three_blobs():
    """Three well separated classes in the plane."""
    rng = np.random.default_rng(0)
    centres = {'a': (0.0, 0.0), 'b': (10.0, 0.0), 'c': (0.0, 10.0)}
    frames = []
    for label, (cx, cy) in centres.items():
        frames.append(pd.DataFrame({
            'x1': rng.normal(cx, 0.5, 50),
            'x2': rng.normal(cy, 0.5, 50),
            'label': label
        }))
    return pd.concat(frames, ignore_index=True)


class TestBinaryLogit:
    """Tests for the binary-logit variant."""

    def test_separable_accuracy(self, threshold_data):
        """Test held-out accuracy on a threshold-separable label."""
        train, test = threshold_data
        model = fit_model('binary-logit', train[['feature']], train['label'])
        predicted = predict(model, test[['feature']], threshold=0.5)

        result = evaluate(predicted, test['label'], positive_class=1)
        assert len(predicted) == 200
        assert result.accuracy >= 0.9

    def test_probabilities(self, threshold_data):
        """Test probabilities lie in [0, 1] and rows sum to 1."""
        train, test = threshold_data
        model = fit_model(ModelVariant.BINARY_LOGIT, train[['feature']], train['label'])
        proba = predict_proba(model, test[['feature']])

        assert list(proba.columns) == [0, 1]
        assert ((proba >= 0) & (proba <= 1)).all().all()
        np.testing.assert_allclose(proba.sum(axis=1), 1.0)
        assert list(proba.index) == list(test.index)

    def test_positive_class_and_threshold(self):
        """Test string labels with an explicit positive class and threshold."""
        rng = np.random.default_rng(3)
        x = rng.normal(0, 1, 300)
        direction = np.where(x + rng.normal(0, 1, 300) > 0, 'Up', 'Down')
        X = pd.DataFrame({'Lag1': x})

        model = fit_model('binary-logit', X, direction, positive_class='Up')
        assert model.classes == ('Down', 'Up')

        labels = predict(model, X, threshold=0.5)
        assert set(labels) <= {'Down', 'Up'}

        # nothing can have a probability above 1
        assert (predict(model, X, threshold=1.0) == 'Down').all()

    def test_coefficients(self, threshold_data):
        """Test the slope sign matches the direction of the effect."""
        train, _ = threshold_data
        model = fit_model('binary-logit', train[['feature']], train['label'])
        coef = coefficients(model)

        assert list(coef.columns) == ['intercept', 'feature']
        assert coef.loc[1, 'feature'] > 0
        assert coef.loc[1, 'intercept'] < 0

    def test_needs_two_classes(self, three_blobs):
        with pytest.raises(InvalidLabelError, match="exactly two"):
            fit_model('binary-logit', three_blobs[['x1', 'x2']], three_blobs['label'])

    def test_unknown_positive_class(self, threshold_data):
        train, _ = threshold_data
        with pytest.raises(InvalidLabelError):
            fit_model('binary-logit', train[['feature']], train['label'], positive_class=7)

    def test_invalid_threshold(self, threshold_data):
        train, test = threshold_data
        model = fit_model('binary-logit', train[['feature']], train['label'])
        with pytest.raises(ConfigurationError, match="threshold"):
            predict(model, test[['feature']], threshold=1.5)


class TestMultinomialLogit:
    """Tests for the multinomial-logit variant."""

    def test_separable_training_accuracy(self, three_blobs):
        """Test a perfectly separable 3-class problem is fitted exactly."""
        X = three_blobs[['x1', 'x2']]
        model = fit_model('multinomial-logit', X, three_blobs['label'])
        predicted = predict(model, X)

        assert (predicted.values == three_blobs['label'].values).all()

    def test_probabilities_sum_to_one(self, three_blobs):
        X = three_blobs[['x1', 'x2']]
        model = fit_model('multinomial-logit', X, three_blobs['label'])
        proba = predict_proba(model, X)

        assert list(proba.columns) == ['a', 'b', 'c']
        np.testing.assert_allclose(proba.sum(axis=1), 1.0)

    def test_reference_class_coefficients(self, three_blobs):
        """Test K-1 coefficient rows against the reference class."""
        X = three_blobs[['x1', 'x2']]
        model = fit_model('multinomial-logit', X, three_blobs['label'])
        coef = coefficients(model)

        assert list(coef.index) == ['b', 'c']
        assert list(coef.columns) == ['intercept', 'x1', 'x2']
        # class b sits to the right of the reference, class c above it
        assert coef.loc['b', 'x1'] > 0
        assert coef.loc['c', 'x2'] > 0

    def test_custom_reference(self, three_blobs):
        X = three_blobs[['x1', 'x2']]
        model = fit_model('multinomial-logit', X, three_blobs['label'], reference_class='c')
        assert list(coefficients(model).index) == ['a', 'b']


class TestKNearestNeighbors:
    """Tests for the knn variant."""

    def test_k_larger_than_training_set(self):
        """Test k above the number of training records fails."""
        X = np.array([[0.0], [1.0], [2.0]])
        with pytest.raises(InvalidKError):
            fit_model('knn', X, ['a', 'b', 'a'], k=4)

    @pytest.mark.parametrize("k", [0, -1, 2.5, None, True])
    def test_invalid_k(self, k):
        X = np.array([[0.0], [1.0], [2.0]])
        with pytest.raises(InvalidKError):
            fit_model('knn', X, ['a', 'b', 'a'], k=k)

    def test_k1_reproduces_training_labels(self, three_blobs):
        X = three_blobs[['x1', 'x2']]
        model = fit_model('knn', X, three_blobs['label'], k=1)
        assert (predict(model, X).values == three_blobs['label'].values).all()

    def test_majority_vote(self):
        """Test the most common label among the k nearest wins."""
        X = np.array([[0.1], [2.0], [2.1]])
        model = fit_model('knn', X, ['a', 'b', 'b'], k=3)
        assert predict(model, np.array([[0.0]])).iloc[0] == 'b'

    def test_tie_broken_by_total_distance(self):
        """Test equal votes go to the class with the smaller total distance."""
        X = np.array([[1.0], [-2.0]])
        model = fit_model('knn', X, ['b', 'a'], k=2)
        assert predict(model, np.array([[0.0]])).iloc[0] == 'b'

    def test_tie_broken_by_class_order(self):
        """Test equal votes and distances go to the lowest class."""
        X = np.array([[1.0], [-1.0]])
        model = fit_model('knn', X, ['b', 'a'], k=2)
        assert predict(model, np.array([[0.0]])).iloc[0] == 'a'

    def test_vote_shares(self, three_blobs):
        X = three_blobs[['x1', 'x2']]
        model = fit_model('knn', X, three_blobs['label'], k=5)
        proba = predict_proba(model, X)
        np.testing.assert_allclose(proba.sum(axis=1), 1.0)


class TestKMeans:
    """Tests for the kmeans variant."""

    def test_single_cluster(self, three_blobs):
        """Test k=1 puts every record in one cluster with SS equal to the total SS."""
        X = three_blobs[['x1', 'x2']]
        model = fit_model('kmeans', X, k=1, restarts=5, seed=0)
        assignments = predict(model, X)

        total_ss = ((X - X.mean()) ** 2).to_numpy().sum()
        assert set(assignments) == {0}
        assert within_cluster_ss(model) == pytest.approx(total_ss, rel=1e-6)

    def test_recovers_blobs(self, three_blobs):
        X = three_blobs[['x1', 'x2']]
        model = fit_model('kmeans', X, k=3, restarts=10, seed=1)
        assignments = predict(model, X)

        # each true class maps onto exactly one cluster
        table = pd.crosstab(assignments.values, three_blobs['label'].values)
        assert ((table > 0).sum(axis=0) == 1).all()
        assert centroids(model).shape == (3, 2)

    def test_seed_reproducible(self, three_blobs):
        X = three_blobs[['x1', 'x2']]
        first = fit_model('kmeans', X, k=3, restarts=3, seed=5)
        second = fit_model('kmeans', X, k=3, restarts=3, seed=5)
        pd.testing.assert_frame_equal(centroids(first), centroids(second))

    def test_invalid_restarts(self, three_blobs):
        with pytest.raises(ConfigurationError, match="restarts"):
            fit_model('kmeans', three_blobs[['x1', 'x2']], k=2, restarts=0)

    def test_too_many_clusters(self):
        with pytest.raises(InvalidKError):
            fit_model('kmeans', np.zeros((3, 2)), k=4)


class TestLinear:
    """Tests for the linear variant."""

    def test_exact_fit(self):
        x = np.linspace(0, 10, 50)
        X = pd.DataFrame({'lstat': x})
        model = fit_model('linear', X, 2.0 + 3.0 * x)
        coef = coefficients(model)

        assert coef.loc['estimate', 'intercept'] == pytest.approx(2.0)
        assert coef.loc['estimate', 'lstat'] == pytest.approx(3.0)
        np.testing.assert_allclose(predict(model, X).values, 2.0 + 3.0 * x)

    def test_text_label_rejected(self):
        with pytest.raises(InvalidLabelError):
            fit_model('linear', np.zeros((3, 1)), ['a', 'b', 'c'])


class TestSharedContract:
    """Checks that hold for every variant."""

    @pytest.mark.parametrize("variant,params", [
        ('binary-logit', {}),
        ('multinomial-logit', {}),
        ('knn', {'k': 1}),
        ('kmeans', {'k': 1}),
        ('linear', {}),
    ])
    def test_empty_training_set(self, variant, params):
        with pytest.raises(EmptyTrainingSetError):
            fit_model(variant, np.empty((0, 2)), np.array([]), **params)

    @pytest.mark.parametrize("variant,params", [
        ('multinomial-logit', {}),
        ('knn', {'k': 3}),
        ('kmeans', {'k': 3}),
    ])
    def test_dimension_mismatch(self, three_blobs, variant, params):
        model = fit_model(variant, three_blobs[['x1', 'x2']], three_blobs['label'], **params)
        with pytest.raises(DimensionMismatchError):
            predict(model, np.zeros((4, 3)))

    def test_unknown_variant(self):
        with pytest.raises(ValueError):
            fit_model('random-forest', np.zeros((2, 1)), [0, 1])

    def test_prediction_length(self, three_blobs):
        X = three_blobs[['x1', 'x2']]
        model = fit_model('knn', X, three_blobs['label'], k=3)
        prediction = make_prediction(model, X.iloc[:17])

        assert len(prediction) == 17
        assert prediction.probabilities.shape == (17, 3)

    def test_trained_model_is_frozen(self, three_blobs):
        model = fit_model('knn', three_blobs[['x1', 'x2']], three_blobs['label'], k=3)
        with pytest.raises(AttributeError):
            model.classes = ('x',)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
