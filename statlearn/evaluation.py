"""
Model Evaluation Module
=======================

Scores predictions against held-out labels.

Features:
    - Confusion matrix over the union of observed classes
    - Accuracy, error rate and, for a positive class, sensitivity,
      specificity, precision and F1
    - MSE, RMSE, MAE and R² for continuous predictions
    - Cluster-vs-label cross tabulation
    - Console report and confusion matrix heatmap
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Tuple, Sequence

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from sklearn.metrics import confusion_matrix, mean_squared_error, mean_absolute_error, r2_score

from .exceptions import LengthMismatchError, UndefinedMetricError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfusionMatrix:
    """
    Counts of (predicted class, actual class) pairs.

    `table` is indexed by predicted class (rows) and actual class
    (columns), both in the same class order.
    """

    table: pd.DataFrame

    @property
    def classes(self) -> List[Any]:
        return list(self.table.index)

    @property
    def total(self) -> int:
        return int(self.table.to_numpy().sum())

    def count(self, predicted: Any, actual: Any) -> int:
        return int(self.table.loc[predicted, actual])

    def to_dict(self) -> Dict[Tuple[Any, Any], int]:
        return {
            (predicted, actual): int(self.table.loc[predicted, actual])
            for predicted in self.table.index
            for actual in self.table.columns
        }


@dataclass(frozen=True)
class EvaluationResult:
    confusion: ConfusionMatrix
    metrics: Dict[str, float]
    positive_class: Any = None
    undefined: Tuple[UndefinedMetricError, ...] = field(default_factory=tuple)

    @property
    def accuracy(self) -> float:
        return self.metrics['accuracy']


def _as_array(values: Sequence[Any]) -> np.ndarray:
    if isinstance(values, (pd.Series, pd.Index)):
        return values.to_numpy()
    return np.asarray(values)


def _check_lengths(predicted: np.ndarray, actual: np.ndarray) -> None:
    if len(predicted) != len(actual):
        raise LengthMismatchError(len(predicted), len(actual))


def _ordered_classes(predicted: np.ndarray, actual: np.ndarray) -> List[Any]:
    observed = set(predicted.tolist()) | set(actual.tolist())
    try:
        return sorted(observed)
    except TypeError:
        # mixed label types have no natural order
        return sorted(observed, key=repr)


def build_confusion_matrix(predicted: Sequence[Any], actual: Sequence[Any]) -> ConfusionMatrix:
    """
    Cross-tabulate predicted against actual labels.

    Args:
        predicted: Predicted labels
        actual: True labels, same length and order

    Returns:
        ConfusionMatrix whose cells sum to the number of records
    """
    predicted = _as_array(predicted)
    actual = _as_array(actual)
    _check_lengths(predicted, actual)

    classes = _ordered_classes(predicted, actual)
    if not classes:
        return ConfusionMatrix(table=pd.DataFrame(dtype=int))

    # sklearn puts actual classes on rows; transpose to predicted-by-actual
    counts = confusion_matrix(actual.tolist(), predicted.tolist(), labels=classes).T
    table = pd.DataFrame(
        counts,
        index=pd.Index(classes, name='predicted'),
        columns=pd.Index(classes, name='actual')
    )
    return ConfusionMatrix(table=table)


def _ratio(numerator: float, denominator: float, metric: str, denominator_name: str,
           undefined: List[UndefinedMetricError]) -> float:
    if denominator == 0:
        undefined.append(UndefinedMetricError(metric, denominator_name))
        return float('nan')
    return float(numerator) / float(denominator)


def evaluate(
    predicted: Sequence[Any],
    actual: Sequence[Any],
    positive_class: Any = None
) -> EvaluationResult:
    """
    Score predicted labels against actual labels.

    Args:
        predicted: Predicted labels
        actual: True labels, same length and order
        positive_class: Class treated as "positive" for sensitivity,
            specificity, precision and F1 (one-vs-rest)

    Returns:
        EvaluationResult; metrics with a zero denominator are NaN and
        listed in `undefined`
    """
    confusion = build_confusion_matrix(predicted, actual)
    total = confusion.total
    undefined: List[UndefinedMetricError] = []

    correct = int(np.trace(confusion.table.to_numpy())) if total else 0
    accuracy = _ratio(correct, total, 'accuracy', 'number of records', undefined)
    metrics = {
        'accuracy': accuracy,
        'error_rate': 1.0 - accuracy,
        'n_records': float(total),
    }

    if positive_class is not None:
        if positive_class in confusion.classes:
            tp = confusion.count(positive_class, positive_class)
            predicted_pos = int(confusion.table.loc[positive_class].sum())
            actual_pos = int(confusion.table[positive_class].sum())
        else:
            tp = predicted_pos = actual_pos = 0
        fp = predicted_pos - tp
        fn = actual_pos - tp
        tn = total - tp - fp - fn

        metrics.update({
            'true_positives': float(tp),
            'false_positives': float(fp),
            'false_negatives': float(fn),
            'true_negatives': float(tn),
        })
        metrics['sensitivity'] = _ratio(tp, tp + fn, 'sensitivity', 'TP+FN', undefined)
        metrics['specificity'] = _ratio(tn, tn + fp, 'specificity', 'TN+FP', undefined)
        metrics['precision'] = _ratio(tp, tp + fp, 'precision', 'TP+FP', undefined)
        metrics['f1'] = _ratio(2 * tp, 2 * tp + fp + fn, 'f1', '2TP+FP+FN', undefined)

    for problem in undefined:
        logger.warning(str(problem))

    return EvaluationResult(
        confusion=confusion,
        metrics=metrics,
        positive_class=positive_class,
        undefined=tuple(undefined)
    )


def regression_metrics(actual: Sequence[float], predicted: Sequence[float]) -> Dict[str, float]:
    """
    Error metrics for continuous predictions.

    Args:
        actual: True values
        predicted: Predicted values, same length and order

    Returns:
        Dictionary with mse, rmse, mae, r2 and n_records
    """
    actual = _as_array(actual).astype(float)
    predicted = _as_array(predicted).astype(float)
    _check_lengths(predicted, actual)

    if len(actual) == 0:
        logger.warning(str(UndefinedMetricError('mse', 'number of records')))
        nan = float('nan')
        return {'mse': nan, 'rmse': nan, 'mae': nan, 'r2': nan, 'n_records': 0.0}

    mse = mean_squared_error(actual, predicted)
    return {
        'mse': float(mse),
        'rmse': float(np.sqrt(mse)),
        'mae': float(mean_absolute_error(actual, predicted)),
        'r2': float(r2_score(actual, predicted)) if len(actual) > 1 else float('nan'),
        'n_records': float(len(actual)),
    }


def cluster_table(assignments: Sequence[Any], labels: Sequence[Any]) -> pd.DataFrame:
    """Cross-tabulate cluster assignments (rows) against known labels (columns)."""
    assignments = _as_array(assignments)
    labels = _as_array(labels)
    _check_lengths(assignments, labels)
    return pd.crosstab(
        pd.Series(assignments, name='cluster'),
        pd.Series(labels, name='actual')
    )


def plot_confusion_matrix(
    confusion: ConfusionMatrix,
    title: str = 'Confusion Matrix',
    figsize: Tuple[int, int] = (6, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Draw the confusion matrix as an annotated heatmap.

    Args:
        confusion: ConfusionMatrix to draw
        title: Figure title
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    fig, ax = plt.subplots(figsize=figsize)

    sns.heatmap(
        confusion.table,
        annot=True,
        fmt='d',
        cmap='Blues',
        cbar=False,
        linewidths=0.5,
        ax=ax
    )
    ax.set_xlabel('Actual')
    ax.set_ylabel('Predicted')
    ax.set_title(title, fontsize=12, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Confusion matrix saved to {save_path}")

    return fig


def _format_metric(value: float) -> str:
    return "undefined" if np.isnan(value) else f"{value:.4f}"


def print_evaluation_report(result: EvaluationResult) -> None:
    """
    Print a formatted classification report to console.

    Args:
        result: EvaluationResult from evaluate
    """
    print("\n" + "=" * 60)
    print("MODEL EVALUATION REPORT")
    print("=" * 60)
    print("\nConfusion Matrix (rows: predicted, columns: actual):")
    print(result.confusion.table.to_string())

    print("\nMetrics:")
    print(f"  • Accuracy: {_format_metric(result.metrics['accuracy'])}")
    print(f"  • Error rate: {_format_metric(result.metrics['error_rate'])}")
    if result.positive_class is not None:
        print(f"  Positive class: {result.positive_class!r}")
        for name in ('sensitivity', 'specificity', 'precision', 'f1'):
            print(f"  • {name.capitalize()}: {_format_metric(result.metrics[name])}")
    print(f"  • Records evaluated: {int(result.metrics['n_records'])}")

    if result.undefined:
        print("\nUndefined metrics:")
        for problem in result.undefined:
            print(f"  ⚠ {problem}")

    print("=" * 60 + "\n")


def print_regression_report(metrics: Dict[str, float]) -> None:
    """Print continuous-prediction error metrics to console."""
    print("\n" + "=" * 60)
    print("MODEL EVALUATION REPORT")
    print("=" * 60)
    print(f"  • MSE: {_format_metric(metrics['mse'])}")
    print(f"  • RMSE: {_format_metric(metrics['rmse'])}")
    print(f"  • MAE: {_format_metric(metrics['mae'])}")
    print(f"  • R²: {_format_metric(metrics['r2'])}")
    print(f"  • Records evaluated: {int(metrics['n_records'])}")
    print("=" * 60 + "\n")
