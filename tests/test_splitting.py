"""
Test Suite for Splitting Module
================================

Tests for random and predicate train/evaluation splits.
"""

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from statlearn.exceptions import (
    ConfigurationError,
    EmptyPartitionError,
    InvalidFractionError,
    UnknownColumnError,
)
from statlearn.splitting import after, before, split_dataset


@pytest.fixture
def market_data():
    """Create a small daily market table spanning five years."""
    rng = np.random.default_rng(7)
    years = np.repeat([2001, 2002, 2003, 2004, 2005], 40)
    return pd.DataFrame({
        'Year': years,
        'Lag1': rng.normal(0, 1, len(years)),
        'Direction': rng.choice(['Down', 'Up'], len(years))
    })


class TestFractionSplit:
    """Tests for the random fraction mode."""

    def test_sizes(self, market_data):
        """Test the training side gets floor(fraction * n) records."""
        train, test = split_dataset(market_data, fraction=0.7, seed=1)
        assert len(train) == 140
        assert len(test) == 60

    def test_partition_complete_and_disjoint(self, market_data):
        """Test every record lands on exactly one side."""
        split = split_dataset(market_data, fraction=0.75, seed=11)
        train_idx = set(split.train.index)
        eval_idx = set(split.eval.index)

        assert len(split.train) + len(split.eval) == len(market_data)
        assert train_idx.isdisjoint(eval_idx)
        assert train_idx | eval_idx == set(market_data.index)

    def test_deterministic(self, market_data):
        """Test the same seed always gives the same partition."""
        first = split_dataset(market_data, fraction=0.7, seed=42)
        second = split_dataset(market_data, fraction=0.7, seed=42)

        pd.testing.assert_frame_equal(first.train, second.train)
        pd.testing.assert_frame_equal(first.eval, second.eval)

    def test_seed_changes_partition(self, market_data):
        """Test different seeds give different partitions."""
        first = split_dataset(market_data, fraction=0.7, seed=1)
        second = split_dataset(market_data, fraction=0.7, seed=2)
        assert list(first.train.index) != list(second.train.index)

    def test_order_preserved(self, market_data):
        """Test records keep their original order within each side."""
        split = split_dataset(market_data, fraction=0.5, seed=3)
        assert split.train.index.is_monotonic_increasing
        assert split.eval.index.is_monotonic_increasing

    def test_input_not_modified(self, market_data):
        """Test splitting leaves the dataset untouched."""
        before_split = market_data.copy()
        split_dataset(market_data, fraction=0.5, seed=3)
        pd.testing.assert_frame_equal(market_data, before_split)

    @pytest.mark.parametrize("fraction", [0, 1, 1.5, -0.2, 0.0, 1.0])
    def test_invalid_fraction(self, market_data, fraction):
        """Test fractions outside (0, 1) are rejected."""
        with pytest.raises(InvalidFractionError):
            split_dataset(market_data, fraction=fraction, seed=1)

    def test_seed_required(self, market_data):
        """Test a random split needs an explicit seed."""
        with pytest.raises(ConfigurationError, match="seed"):
            split_dataset(market_data, fraction=0.5)

    def test_empty_train_partition(self):
        """Test a split leaving no training records fails."""
        with pytest.raises(EmptyPartitionError, match="train"):
            split_dataset(pd.DataFrame({'x': [1.0]}), fraction=0.5, seed=1)


class TestPredicateSplit:
    """Tests for the predicate mode."""

    def test_cutoff(self, market_data):
        """Test a year cutoff trains on earlier years and evaluates on the rest."""
        split = split_dataset(market_data, predicate=before('Year', 2005))

        assert (split.train['Year'] < 2005).all()
        assert (split.eval['Year'] == 2005).all()
        assert len(split.train) == 160
        assert len(split.eval) == 40

    def test_after(self, market_data):
        split = split_dataset(market_data, predicate=after('Year', 2004))
        assert set(split.train['Year']) == {2004, 2005}

    def test_custom_predicate(self, market_data):
        split = split_dataset(market_data, predicate=lambda df: df['Lag1'] > 0)
        assert (split.train['Lag1'] > 0).all()
        assert (split.eval['Lag1'] <= 0).all()

    def test_empty_eval_partition(self, market_data):
        """Test a predicate selecting every record fails."""
        with pytest.raises(EmptyPartitionError, match="eval"):
            split_dataset(market_data, predicate=before('Year', 3000))

    def test_unknown_column(self, market_data):
        with pytest.raises(UnknownColumnError, match="Day"):
            split_dataset(market_data, predicate=before('Day', 10))


class TestModeSelection:
    """Tests that exactly one split mode is used."""

    def test_both_modes(self, market_data):
        with pytest.raises(ConfigurationError, match="Exactly one"):
            split_dataset(market_data, fraction=0.5, predicate=before('Year', 2005), seed=1)

    def test_no_mode(self, market_data):
        with pytest.raises(ConfigurationError, match="Exactly one"):
            split_dataset(market_data)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
