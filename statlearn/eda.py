"""
Exploratory Data Analysis (EDA) Module
======================================

Summaries and figures used before modelling.

Functions:
    - summarize_columns: Moments and missingness per numeric column
    - plot_distributions: Histograms with a normality test
    - plot_correlation_matrix: Correlation heatmap of predictor columns
    - strong_correlations: Predictor pairs above a correlation threshold
    - principal_components: PCA scores on standardized columns
    - within_cluster_ss_curve: Within-cluster SS against k (elbow diagnostic)
    - plot_elbow: Draw the elbow curve
    - plot_explained_variance: Variance share per principal component
    - generate_eda_report: All of the above in one call
    - print_eda_insights: Console summary of a report
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple, Iterable

import pandas as pd
import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns
from scipy import stats
from sklearn.decomposition import PCA
from sklearn.preprocessing import StandardScaler

from .exceptions import ConfigurationError, DataQualityError
from .model import ModelVariant, fit_model, within_cluster_ss

logger = logging.getLogger(__name__)

sns.set_palette("husl")

# Wider matrices are drawn without cell labels
MAX_ANNOTATED_COLUMNS = 12


def summarize_columns(df: pd.DataFrame) -> pd.DataFrame:
    """
    Per-column summary of the numeric columns.

    Returns:
        DataFrame indexed by column with mean, std, min, max, skew,
        kurtosis and missing share
    """
    numeric = df.select_dtypes(include=[np.number])
    summary = pd.DataFrame({
        'mean': numeric.mean(),
        'std': numeric.std(),
        'min': numeric.min(),
        'max': numeric.max(),
        'skew': numeric.skew(),
        'kurtosis': numeric.kurtosis(),
        'missing_pct': numeric.isna().mean() * 100,
    })
    return summary


def plot_distributions(
    df: pd.DataFrame,
    columns: Optional[List[str]] = None,
    figsize: Tuple[int, int] = (14, 10),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Create distribution plots (histogram + KDE) for numeric columns.

    Args:
        df: DataFrame to plot
        columns: Columns to plot (default: all numeric)
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    if columns is None:
        columns = df.select_dtypes(include=[np.number]).columns.tolist()
    n_cols = len(columns)
    n_rows = max((n_cols + 1) // 2, 1)

    fig, axes = plt.subplots(n_rows, 2, figsize=figsize, squeeze=False)
    axes = axes.flatten()

    for idx, col in enumerate(columns):
        ax = axes[idx]
        values = df[col].dropna()

        sns.histplot(values, kde=True, ax=ax, bins=30, alpha=0.7)

        mean_val = values.mean()
        median_val = values.median()
        ax.axvline(mean_val, color='red', linestyle='--', label=f'Mean: {mean_val:.2f}')
        ax.axvline(median_val, color='green', linestyle='--', label=f'Median: {median_val:.2f}')

        # D'Agostino-Pearson needs at least 8 observations
        if len(values) >= 8:
            _, p_value = stats.normaltest(values)
            normality = "Normal" if p_value > 0.05 else "Non-Normal"
            ax.set_title(f'{col} ({normality}, p={p_value:.3f})', fontsize=10, fontweight='bold')
        else:
            ax.set_title(col, fontsize=10, fontweight='bold')
        ax.legend(fontsize=8)

    for idx in range(n_cols, len(axes)):
        axes[idx].set_visible(False)

    plt.suptitle('Distribution Analysis', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Distribution plots saved to {save_path}")

    return fig


def plot_correlation_matrix(
    df: pd.DataFrame,
    columns: Optional[List[str]] = None,
    method: str = 'pearson',
    figsize: Tuple[int, int] = (10, 8),
    save_path: Optional[str] = None
) -> Tuple[plt.Figure, pd.DataFrame]:
    """
    Heatmap of pairwise correlations between predictor columns.

    Cells are only annotated while the matrix stays readable.

    Args:
        df: Dataset
        columns: Columns to correlate (default: all numeric)
        method: 'pearson', 'spearman' or 'kendall'
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Tuple of (Figure, correlation matrix)
    """
    if columns is None:
        columns = df.select_dtypes(include=[np.number]).columns.tolist()
    corr_matrix = df[columns].corr(method=method)
    n_complete = len(df[columns].dropna())

    fig, ax = plt.subplots(figsize=figsize)
    sns.heatmap(
        corr_matrix,
        annot=len(columns) <= MAX_ANNOTATED_COLUMNS,
        fmt='.2f',
        cmap='vlag',
        center=0,
        vmin=-1,
        vmax=1,
        square=True,
        ax=ax
    )
    ax.set_title(f'{method.capitalize()} correlation ({n_complete} complete records)',
                 fontsize=14, fontweight='bold')
    fig.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Correlation matrix saved to {save_path}")

    return fig, corr_matrix


def strong_correlations(corr_matrix: pd.DataFrame, threshold: float = 0.5) -> List[Tuple[str, str, float]]:
    """Column pairs with |r| >= threshold, strongest first."""
    pairs = []
    names = list(corr_matrix.columns)
    for i, first in enumerate(names):
        for second in names[i + 1:]:
            r = corr_matrix.loc[first, second]
            if abs(r) >= threshold:
                pairs.append((first, second, float(r)))
    return sorted(pairs, key=lambda pair: abs(pair[2]), reverse=True)


def principal_components(
    df: pd.DataFrame,
    n_components: Optional[int] = None,
    columns: Optional[List[str]] = None
) -> Dict[str, Any]:
    """
    Project standardized numeric columns onto their principal components.

    Records with a missing value in any used column are left out.

    Args:
        df: Dataset
        n_components: Number of components to keep (default: all)
        columns: Columns to use (default: all numeric)

    Returns:
        Dictionary containing:
            - scores: DataFrame of PC1..PCn per record
            - loadings: DataFrame of component weights per column
            - explained_variance_ratio: Series per component
    """
    if columns is None:
        columns = df.select_dtypes(include=[np.number]).columns.tolist()
    data = df[columns].dropna()
    if len(data) < 2:
        raise DataQualityError("PCA needs at least two complete records", stage="pca")

    max_components = min(data.shape)
    if n_components is None:
        n_components = max_components
    if not 1 <= n_components <= max_components:
        raise ConfigurationError(
            f"n_components must lie in [1, {max_components}], got {n_components}",
            stage="pca",
            parameter="n_components"
        )

    scaled = StandardScaler().fit_transform(data.to_numpy(dtype=float))
    pca = PCA(n_components=n_components)
    scores = pca.fit_transform(scaled)
    names = [f"PC{i + 1}" for i in range(n_components)]

    logger.info(
        f"PCA on {len(data)} records × {len(columns)} columns: "
        f"{pca.explained_variance_ratio_.sum():.1%} variance in {n_components} components"
    )

    return {
        'scores': pd.DataFrame(scores, columns=names, index=data.index),
        'loadings': pd.DataFrame(pca.components_.T, index=columns, columns=names),
        'explained_variance_ratio': pd.Series(pca.explained_variance_ratio_, index=names),
    }


def within_cluster_ss_curve(
    X: pd.DataFrame,
    ks: Iterable[int],
    restarts: int = 20,
    seed: Optional[int] = None
) -> pd.Series:
    """
    Total within-cluster sum of squares for each candidate k.

    Picking k from this curve is a manual judgement; nothing here
    chooses it.
    """
    curve = {}
    for k in ks:
        model = fit_model(ModelVariant.KMEANS, X, k=k, restarts=restarts, seed=seed)
        curve[k] = within_cluster_ss(model)
    return pd.Series(curve, name='within_cluster_ss').rename_axis('k')


def plot_elbow(
    curve: pd.Series,
    figsize: Tuple[int, int] = (8, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """Plot within-cluster SS against k."""
    fig, ax = plt.subplots(figsize=figsize)
    ax.plot(curve.index, curve.values, 'o-', linewidth=2)
    ax.set_xlabel('Number of clusters (k)')
    ax.set_ylabel('Within-cluster sum of squares')
    ax.set_title('Elbow Diagnostic', fontsize=14, fontweight='bold')
    ax.set_xticks(list(curve.index))
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Elbow plot saved to {save_path}")

    return fig


def plot_explained_variance(
    explained_variance_ratio: pd.Series,
    figsize: Tuple[int, int] = (8, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """Bar chart of variance explained per component with the cumulative share."""
    fig, ax = plt.subplots(figsize=figsize)
    positions = np.arange(1, len(explained_variance_ratio) + 1)
    ax.bar(positions, explained_variance_ratio.values, alpha=0.7, label='Per component')
    ax.plot(positions, explained_variance_ratio.cumsum().values, 'o-', color='black', label='Cumulative')
    ax.set_xticks(positions)
    ax.set_xticklabels(explained_variance_ratio.index)
    ax.set_ylim(0, 1.05)
    ax.set_ylabel('Share of variance')
    ax.set_title('PCA Explained Variance', fontsize=14, fontweight='bold')
    ax.legend()
    fig.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Explained variance plot saved to {save_path}")

    return fig


def generate_eda_report(
    df: pd.DataFrame,
    output_dir: str = "reports/figures/",
    show_plots: bool = False,
    columns: Optional[List[str]] = None,
    ks: Iterable[int] = range(1, 7),
    restarts: int = 20,
    seed: Optional[int] = None
) -> Dict[str, Any]:
    """
    Run the exploratory summaries and save their figures.

    Figures:
        01_distributions.png, 02_correlation_matrix.png and, when at least
        two complete records exist, 03_pca_explained_variance.png and
        04_elbow.png (k-means on the standardized columns).

    Args:
        df: Dataset
        output_dir: Directory for figures
        show_plots: Whether to display plots interactively
        columns: Numeric columns to analyse (default: all numeric)
        ks: Candidate cluster counts for the elbow diagnostic
        restarts: k-means restarts per k
        seed: k-means seed

    Returns:
        Dictionary with statistics, correlations, PCA shares, the elbow
        curve and figure names
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    if columns is None:
        columns = df.select_dtypes(include=[np.number]).columns.tolist()

    report = {
        "data_shape": df.shape,
        "columns": list(columns),
        "figures": [],
        "correlation_matrix": None,
        "strong_correlations": [],
        "explained_variance_ratio": {},
        "within_cluster_ss": {},
        "statistics": {}
    }

    logger.info("=" * 60)
    logger.info("STARTING EXPLORATORY DATA ANALYSIS")
    logger.info("=" * 60)

    logger.info("Plotting distributions...")
    plot_distributions(df, columns=columns, save_path=str(output_dir / "01_distributions.png"))
    report["figures"].append("01_distributions.png")

    logger.info("Computing correlation matrix...")
    _, corr_matrix = plot_correlation_matrix(df, columns=columns,
                                             save_path=str(output_dir / "02_correlation_matrix.png"))
    report["figures"].append("02_correlation_matrix.png")
    report["correlation_matrix"] = corr_matrix.to_dict()
    report["strong_correlations"] = strong_correlations(corr_matrix)

    report["statistics"] = summarize_columns(df[columns]).to_dict(orient='index')

    complete = df[columns].dropna()
    if columns and len(complete) >= 2:
        logger.info("Running PCA...")
        pca = principal_components(complete, columns=columns)
        plot_explained_variance(pca['explained_variance_ratio'],
                                save_path=str(output_dir / "03_pca_explained_variance.png"))
        report["figures"].append("03_pca_explained_variance.png")
        report["explained_variance_ratio"] = pca['explained_variance_ratio'].to_dict()

        ks = [k for k in ks if k <= len(complete)]
        logger.info(f"Computing elbow curve for k in {ks}...")
        scaled = pd.DataFrame(StandardScaler().fit_transform(complete.to_numpy(dtype=float)), columns=columns)
        curve = within_cluster_ss_curve(scaled, ks, restarts=restarts, seed=seed)
        plot_elbow(curve, save_path=str(output_dir / "04_elbow.png"))
        report["figures"].append("04_elbow.png")
        report["within_cluster_ss"] = curve.to_dict()
    else:
        logger.warning(f"Skipping PCA and elbow diagnostic: {len(complete)} complete records")

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info("=" * 60)
    logger.info("EDA COMPLETE - All figures saved to: %s", output_dir)
    logger.info("=" * 60)

    return report


def print_eda_insights(report: Dict[str, Any]) -> None:
    """
    Print correlations, PCA shares and the elbow curve from an EDA report.

    Args:
        report: Output of generate_eda_report
    """
    print("\n" + "=" * 50)
    print("EDA INSIGHTS")
    print("=" * 50)

    if report["strong_correlations"]:
        print("\nStrongly correlated predictors (|r| >= 0.5):")
        for first, second, r in report["strong_correlations"]:
            print(f"  • {first} ↔ {second}: {r:.3f}")
    else:
        print("\nNo predictor pair has |r| >= 0.5")

    if report["explained_variance_ratio"]:
        print("\nPCA explained variance:")
        cumulative = 0.0
        for component, share in report["explained_variance_ratio"].items():
            cumulative += share
            print(f"  • {component}: {share:.3f} (cumulative {cumulative:.3f})")

    if report["within_cluster_ss"]:
        print("\nWithin-cluster SS by k:")
        for k, ss in report["within_cluster_ss"].items():
            print(f"  • k={k}: {ss:.2f}")

    print("=" * 50 + "\n")
