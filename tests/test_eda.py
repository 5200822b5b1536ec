"""
Test Suite for EDA Module
==========================

Tests for summaries, PCA and the elbow diagnostic.
"""

import pytest
import numpy as np
import pandas as pd
import matplotlib
matplotlib.use("Agg")

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from statlearn.eda import (
    generate_eda_report,
    plot_correlation_matrix,
    plot_elbow,
    principal_components,
    print_eda_insights,
    strong_correlations,
    summarize_columns,
    within_cluster_ss_curve,
)
from statlearn.exceptions import ConfigurationError


@pytest.fixture
def sample_data():
    rng = np.random.default_rng(5)
    base = rng.normal(0, 1, 150)
    return pd.DataFrame({
        'a': base + rng.normal(0, 0.1, 150),
        'b': 2 * base + rng.normal(0, 0.1, 150),
        'c': rng.normal(0, 1, 150),
        'group': rng.choice(['x', 'y'], 150)
    })


class TestSummaries:

    def test_summarize_columns(self, sample_data):
        summary = summarize_columns(sample_data)

        assert list(summary.index) == ['a', 'b', 'c']
        assert (summary['missing_pct'] == 0).all()

    def test_generate_report(self, sample_data, tmp_path):
        report = generate_eda_report(sample_data, output_dir=str(tmp_path), restarts=2, seed=0)

        assert report['figures'] == [
            '01_distributions.png',
            '02_correlation_matrix.png',
            '03_pca_explained_variance.png',
            '04_elbow.png',
        ]
        for name in report['figures']:
            assert (tmp_path / name).exists()
        assert set(report['statistics']) == {'a', 'b', 'c'}
        assert sum(report['explained_variance_ratio'].values()) == pytest.approx(1.0)
        assert list(report['within_cluster_ss']) == [1, 2, 3, 4, 5, 6]

    def test_report_restricted_to_columns(self, sample_data, tmp_path):
        """Test the report only covers the requested predictor columns."""
        report = generate_eda_report(sample_data, output_dir=str(tmp_path), columns=['a', 'c'],
                                     ks=[1, 2], restarts=2, seed=0)

        assert set(report['statistics']) == {'a', 'c'}
        assert list(report['explained_variance_ratio']) == ['PC1', 'PC2']
        assert set(report['correlation_matrix']) == {'a', 'c'}

    def test_report_with_one_complete_record(self, tmp_path):
        """Test PCA and the elbow are skipped without two complete records."""
        df = pd.DataFrame({'a': [1.0, 2.0, 3.0], 'b': [2.0, 1.0, np.nan], 'c': [np.nan, 5.0, 4.0]})
        report = generate_eda_report(df, output_dir=str(tmp_path))

        assert len(report['figures']) == 2
        assert report['within_cluster_ss'] == {}

    def test_print_insights(self, sample_data, tmp_path, capsys):
        report = generate_eda_report(sample_data, output_dir=str(tmp_path), ks=[1, 2], restarts=2, seed=0)
        print_eda_insights(report)
        out = capsys.readouterr().out

        assert "a ↔ b" in out
        assert "PC1" in out
        assert "k=2" in out


class TestCorrelations:

    def test_strong_pairs(self, sample_data):
        corr = sample_data[['a', 'b', 'c']].corr()
        pairs = strong_correlations(corr)

        assert [(first, second) for first, second, _ in pairs] == [('a', 'b')]
        assert pairs[0][2] > 0.9

    def test_heatmap_uses_given_columns(self, sample_data, tmp_path):
        path = tmp_path / "corr.png"
        _, corr = plot_correlation_matrix(sample_data, columns=['a', 'c'], save_path=str(path))

        assert list(corr.columns) == ['a', 'c']
        assert path.exists()


class TestPrincipalComponents:

    def test_all_components_explain_everything(self, sample_data):
        pca = principal_components(sample_data)

        assert list(pca['scores'].columns) == ['PC1', 'PC2', 'PC3']
        assert pca['explained_variance_ratio'].sum() == pytest.approx(1.0)

    def test_correlated_columns_share_first_component(self, sample_data):
        pca = principal_components(sample_data, n_components=2)

        assert pca['explained_variance_ratio']['PC1'] > 0.6
        assert pca['loadings'].shape == (3, 2)
        assert len(pca['scores']) == 150

    def test_too_many_components(self, sample_data):
        with pytest.raises(ConfigurationError):
            principal_components(sample_data, n_components=4)


class TestElbow:

    def test_curve(self, sample_data):
        X = sample_data[['a', 'c']]
        curve = within_cluster_ss_curve(X, ks=[1, 2, 3, 4], restarts=5, seed=0)

        total_ss = ((X - X.mean()) ** 2).to_numpy().sum()
        assert list(curve.index) == [1, 2, 3, 4]
        assert curve[1] == pytest.approx(total_ss, rel=1e-6)
        assert curve[4] < curve[1]

    def test_plot(self, sample_data, tmp_path):
        curve = within_cluster_ss_curve(sample_data[['a', 'c']], ks=[1, 2], restarts=2, seed=0)
        path = tmp_path / "elbow.png"
        plot_elbow(curve, save_path=str(path))
        assert path.exists()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
