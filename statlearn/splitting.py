"""
Dataset Splitting Module
========================

Partitions a labeled table into a training set and a held-out evaluation set.

Two mutually exclusive modes:
    - fraction: a seeded uniform random sample without replacement
    - predicate: rows satisfying a condition (e.g. Year < 2005) train,
      the others evaluate

Both partitions keep the original row order and index labels.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Optional

import numpy as np
import pandas as pd
from sklearn.model_selection import train_test_split

from .exceptions import ConfigurationError, EmptyPartitionError, InvalidFractionError, UnknownColumnError

logger = logging.getLogger(__name__)

Predicate = Callable[[pd.DataFrame], Any]


@dataclass(frozen=True)
class Split:
    """A training/evaluation partition of one dataset."""

    train: pd.DataFrame
    eval: pd.DataFrame

    def __iter__(self):
        # allows `train, test = split_dataset(...)`
        return iter((self.train, self.eval))


def before(column: str, cutoff: Any) -> Predicate:
    """Predicate selecting rows whose `column` is strictly below `cutoff`."""
    def predicate(df: pd.DataFrame) -> pd.Series:
        if column not in df.columns:
            raise UnknownColumnError(column, stage="split")
        return df[column] < cutoff
    predicate.__name__ = f"{column} < {cutoff!r}"
    return predicate


def after(column: str, cutoff: Any) -> Predicate:
    """Predicate selecting rows whose `column` is at or above `cutoff`."""
    def predicate(df: pd.DataFrame) -> pd.Series:
        if column not in df.columns:
            raise UnknownColumnError(column, stage="split")
        return df[column] >= cutoff
    predicate.__name__ = f"{column} >= {cutoff!r}"
    return predicate


def _check_partitions(n_train: int, n_eval: int, n_records: int) -> None:
    if n_train == 0:
        raise EmptyPartitionError("train", n_records)
    if n_eval == 0:
        raise EmptyPartitionError("eval", n_records)


def split_by_fraction(df: pd.DataFrame, fraction: float, seed: int) -> Split:
    """
    Sample `fraction` of the rows into the training set.

    Args:
        df: Dataset to partition
        fraction: Share of rows used for training, strictly between 0 and 1
        seed: Random seed; the same seed and data always give the same split

    Returns:
        Split with the sampled rows as `train` and the rest as `eval`
    """
    if isinstance(fraction, bool) or not isinstance(fraction, (int, float)) \
            or not 0 < fraction < 1:
        raise InvalidFractionError(fraction)
    if seed is None:
        raise ConfigurationError("A fraction split requires an explicit seed", stage="split", parameter="seed")

    n_records = len(df)
    n_train = int(math.floor(fraction * n_records))
    _check_partitions(n_train, n_records - n_train, n_records)

    positions = np.arange(n_records)
    train_pos, eval_pos = train_test_split(
        positions,
        train_size=n_train,
        random_state=seed,
        shuffle=True
    )

    train = df.iloc[np.sort(train_pos)].copy()
    test = df.iloc[np.sort(eval_pos)].copy()

    logger.info(
        f"Random split (fraction={fraction}, seed={seed}): "
        f"{len(train)} train records, {len(test)} eval records"
    )
    return Split(train=train, eval=test)


def split_by_predicate(df: pd.DataFrame, predicate: Predicate) -> Split:
    """
    Rows satisfying `predicate` train, the remaining rows evaluate.

    Args:
        df: Dataset to partition
        predicate: Callable returning one boolean per row

    Returns:
        Split partitioning the rows by the predicate
    """
    mask = np.asarray(predicate(df), dtype=bool)
    if mask.shape != (len(df),):
        raise ConfigurationError(
            f"Predicate returned {mask.shape[0] if mask.ndim else 0} values for {len(df)} records",
            stage="split",
            parameter="predicate"
        )

    n_train = int(mask.sum())
    _check_partitions(n_train, len(df) - n_train, len(df))

    train = df.loc[mask].copy()
    test = df.loc[~mask].copy()

    name = getattr(predicate, "__name__", "predicate")
    logger.info(f"Predicate split ({name}): {len(train)} train records, {len(test)} eval records")
    return Split(train=train, eval=test)


def split_dataset(
    df: pd.DataFrame,
    fraction: Optional[float] = None,
    predicate: Optional[Predicate] = None,
    seed: Optional[int] = None
) -> Split:
    """
    Partition a dataset in exactly one of the two split modes.

    Args:
        df: Dataset to partition
        fraction: Training share for a random split
        predicate: Row condition for a deterministic split
        seed: Random seed, required with `fraction`

    Returns:
        Split(train, eval) with no overlap and no omission
    """
    if (fraction is None) == (predicate is None):
        raise ConfigurationError(
            "Exactly one of 'fraction' or 'predicate' must be given",
            stage="split",
            parameter="mode"
        )

    if fraction is not None:
        return split_by_fraction(df, fraction, seed)
    return split_by_predicate(df, predicate)
