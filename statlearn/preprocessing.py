"""
Data Preprocessing Module
=========================

Turns a raw table into model-ready features.

Every transform (imputation values, one-hot categories, standardization
statistics) is learned from the training partition only and then applied
unchanged to any other partition.

Functions:
    - derive_binary_label: Add a 0/1 label column from a continuous column
    - prepare: Fit and transform a single dataset
    - prepare_split: Fit on the training side of a split, transform both sides
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Any, Tuple, Optional, List, Iterable, Union

import pandas as pd
import numpy as np
from sklearn.impute import SimpleImputer
from sklearn.preprocessing import OneHotEncoder, StandardScaler

from .exceptions import (
    AllMissingColumnError,
    ConfigurationError,
    EmptyPartitionError,
    UnknownColumnError,
    UnseenCategoryError,
)
from .splitting import Split

logger = logging.getLogger(__name__)

ROLES = ('predictor', 'label', 'identifier', 'ignored')
ENCODINGS = ('numeric', 'onehot', 'standardize')
MISSING_POLICIES = ('drop', 'median', 'mode')


@dataclass(frozen=True)
class ColumnSpec:
    """How one dataset column takes part in modelling."""

    name: str
    role: str = 'predictor'
    encoding: str = 'numeric'
    missing: str = 'drop'
    reference_level: bool = False

    def __post_init__(self):
        if self.role not in ROLES:
            raise ConfigurationError(f"Unknown role '{self.role}', choose from {ROLES}",
                                     stage="prepare", parameter=self.name)
        if self.encoding not in ENCODINGS:
            raise ConfigurationError(f"Unknown encoding '{self.encoding}', choose from {ENCODINGS}",
                                     stage="prepare", parameter=self.name)
        if self.missing not in MISSING_POLICIES:
            raise ConfigurationError(f"Unknown missing-value policy '{self.missing}', choose from {MISSING_POLICIES}",
                                     stage="prepare", parameter=self.name)
        if self.encoding == 'onehot' and self.missing == 'median':
            raise ConfigurationError("A categorical column cannot be median-filled",
                                     stage="prepare", parameter=self.name)
        if self.role == 'label' and self.missing != 'drop':
            raise ConfigurationError("Records with a missing label can only be dropped",
                                     stage="prepare", parameter=self.name)

    @classmethod
    def from_dict(cls, spec: Dict[str, Any]) -> 'ColumnSpec':
        if 'name' not in spec:
            raise ConfigurationError(f"Column spec without a name: {spec!r}", stage="prepare", parameter="columns")
        return cls(
            name=spec['name'],
            role=spec.get('role', 'predictor'),
            encoding=spec.get('encoding', 'numeric'),
            missing=spec.get('missing', 'drop'),
            reference_level=bool(spec.get('reference_level', False))
        )


ColumnSpecLike = Union[ColumnSpec, Dict[str, Any]]


def parse_column_spec(specs: Iterable[ColumnSpecLike]) -> List[ColumnSpec]:
    """Normalize a list of ColumnSpec objects or config dicts and check it is consistent."""
    parsed = [s if isinstance(s, ColumnSpec) else ColumnSpec.from_dict(s) for s in specs]

    names = [s.name for s in parsed]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigurationError(f"Columns listed more than once: {duplicates}", stage="prepare", parameter="columns")

    labels = [s.name for s in parsed if s.role == 'label']
    if len(labels) > 1:
        raise ConfigurationError(f"At most one label column is allowed, got {labels}",
                                 stage="prepare", parameter="columns")

    if not any(s.role == 'predictor' for s in parsed):
        raise ConfigurationError("No predictor columns given", stage="prepare", parameter="columns")

    return parsed


@dataclass(frozen=True)
class FeatureTable:
    """Predictor matrix with its (optional) labels and identifiers, row-aligned."""

    X: pd.DataFrame
    y: Optional[pd.Series] = None
    ids: Optional[pd.Series] = None

    def __len__(self) -> int:
        return len(self.X)

    @property
    def feature_names(self) -> List[str]:
        return list(self.X.columns)


@dataclass
class _ColumnTransform:
    spec: ColumnSpec
    imputer: Optional[SimpleImputer] = None
    encoder: Optional[OneHotEncoder] = None
    scaler: Optional[StandardScaler] = None
    output_columns: List[str] = field(default_factory=list)


class FeaturePreparer:
    """
    Column-wise feature preparation with training-only fitting.

    Handles missing values, one-hot encoding and standardization
    according to a list of ColumnSpec entries.
    """

    def __init__(self, column_spec: Iterable[ColumnSpecLike]):
        """
        Initialize the preparer.

        Args:
            column_spec: ColumnSpec objects (or dicts) naming role, encoding
                and missing-value policy per column
        """
        self.column_spec = parse_column_spec(column_spec)
        self.transforms: Dict[str, _ColumnTransform] = {}
        self._is_fitted = False

    @property
    def label_column(self) -> Optional[str]:
        return next((s.name for s in self.column_spec if s.role == 'label'), None)

    @property
    def identifier_columns(self) -> List[str]:
        return [s.name for s in self.column_spec if s.role == 'identifier']

    @property
    def predictor_specs(self) -> List[ColumnSpec]:
        return [s for s in self.column_spec if s.role == 'predictor']

    @property
    def feature_names(self) -> List[str]:
        if not self._is_fitted:
            raise ValueError("Preparer must be fitted first.")
        names = []
        for spec in self.predictor_specs:
            names.extend(self.transforms[spec.name].output_columns)
        return names

    def _check_columns(self, df: pd.DataFrame) -> None:
        for spec in self.column_spec:
            if spec.name not in df.columns:
                raise UnknownColumnError(spec.name)

    def _drop_missing(self, df: pd.DataFrame) -> pd.DataFrame:
        """Remove rows with a missing value in any drop-policy column."""
        drop_cols = [s.name for s in self.column_spec
                     if s.role in ('predictor', 'label') and s.missing == 'drop']
        if not drop_cols:
            return df
        keep = df[drop_cols].notna().all(axis=1)
        n_dropped = int((~keep).sum())
        if n_dropped:
            logger.info(f"Dropped {n_dropped} records with missing values in {drop_cols}")
        return df.loc[keep.to_numpy()]

    def _column_values(self, df: pd.DataFrame, spec: ColumnSpec) -> pd.DataFrame:
        """Single-column frame: floats for numeric encodings, objects with NaN gaps for categories."""
        values = df[[spec.name]]
        if spec.encoding == 'onehot':
            values = values.astype(object)
            return values.where(values.notna(), np.nan)

        col = df[spec.name]
        if not (pd.api.types.is_numeric_dtype(col) or pd.api.types.is_bool_dtype(col)):
            raise ConfigurationError(
                f"Encoding '{spec.encoding}' needs a numeric column, got dtype {col.dtype}",
                stage="prepare",
                parameter=spec.name
            )
        return values.astype(float)

    def fit(self, df: pd.DataFrame) -> 'FeaturePreparer':
        """
        Learn all column transforms from training records.

        Args:
            df: Training partition

        Returns:
            Self for method chaining
        """
        self._check_columns(df)
        data = self._drop_missing(df)
        if len(data) == 0:
            raise EmptyPartitionError("train", len(df), stage="prepare")

        self.transforms = {}
        for spec in self.predictor_specs:
            transform = _ColumnTransform(spec=spec)
            values = self._column_values(data, spec)

            if spec.missing in ('median', 'mode'):
                if values[spec.name].notna().sum() == 0:
                    raise AllMissingColumnError(spec.name, spec.missing)
                strategy = 'median' if spec.missing == 'median' else 'most_frequent'
                transform.imputer = SimpleImputer(strategy=strategy)
                values = pd.DataFrame(
                    transform.imputer.fit_transform(values),
                    columns=[spec.name],
                    index=values.index
                )

            if spec.encoding == 'onehot':
                transform.encoder = OneHotEncoder(
                    drop='first' if spec.reference_level else None,
                    handle_unknown='error',
                    sparse_output=False
                )
                transform.encoder.fit(values.astype(str))
                transform.output_columns = list(transform.encoder.get_feature_names_out([spec.name]))
                logger.info(
                    f"One-hot encoded '{spec.name}': {len(transform.encoder.categories_[0])} levels "
                    f"-> {len(transform.output_columns)} indicator columns"
                )
            else:
                if spec.encoding == 'standardize':
                    transform.scaler = StandardScaler()
                    transform.scaler.fit(values.to_numpy())
                transform.output_columns = [spec.name]

            self.transforms[spec.name] = transform

        self._is_fitted = True
        logger.info(f"Fitted feature preparer on {len(data)} records: {len(self.feature_names)} features")
        return self

    def _transform_column(self, data: pd.DataFrame, transform: _ColumnTransform) -> pd.DataFrame:
        spec = transform.spec
        values = self._column_values(data, spec)

        if transform.imputer is not None:
            values = pd.DataFrame(
                transform.imputer.transform(values),
                columns=[spec.name],
                index=values.index
            )

        if transform.encoder is not None:
            values = values.astype(str)
            known = set(transform.encoder.categories_[0])
            unseen = sorted(set(values[spec.name]) - known)
            if unseen:
                raise UnseenCategoryError(spec.name, unseen)
            encoded = transform.encoder.transform(values)
            return pd.DataFrame(encoded, columns=transform.output_columns, index=values.index)

        if transform.scaler is not None:
            scaled = transform.scaler.transform(values.to_numpy())
            return pd.DataFrame(scaled, columns=transform.output_columns, index=values.index)

        return values

    def transform(self, df: pd.DataFrame) -> FeatureTable:
        """
        Apply the fitted transforms to any partition.

        Args:
            df: Partition to transform (training or evaluation)

        Returns:
            FeatureTable with predictors, labels and identifiers aligned
        """
        if not self._is_fitted:
            raise ValueError("Preparer must be fitted before transform. Call fit() first.")

        self._check_columns(df)
        data = self._drop_missing(df)

        if len(data) == 0:
            X = pd.DataFrame(columns=self.feature_names, index=data.index, dtype=float)
        else:
            blocks = [self._transform_column(data, self.transforms[spec.name]) for spec in self.predictor_specs]
            X = pd.concat(blocks, axis=1)

        label = self.label_column
        y = data[label].copy() if label is not None else None

        ids = None
        if self.identifier_columns:
            # Multiple identifiers are joined into one key per record
            ids = data[self.identifier_columns].astype(str).agg('|'.join, axis=1)
            ids.name = '|'.join(self.identifier_columns)

        return FeatureTable(X=X, y=y, ids=ids)

    def fit_transform(self, df: pd.DataFrame) -> FeatureTable:
        """Fit and transform in one step."""
        self.fit(df)
        return self.transform(df)


def derive_binary_label(
    df: pd.DataFrame,
    source: str,
    name: str,
    threshold: Optional[float] = None,
    quantile: Optional[float] = None
) -> pd.DataFrame:
    """
    Return a copy of `df` with a 0/1 column marking high values of `source`.

    A record is labelled 1 when `source` is strictly above the cut point,
    which is either `threshold` or the given `quantile` of `source`.
    Records with a missing `source` get a missing label.

    Args:
        df: Dataset
        source: Continuous column to threshold
        name: Name of the new label column
        threshold: Absolute cut point
        quantile: Quantile of `source` used as cut point, in (0, 1)

    Returns:
        New DataFrame with the derived column appended
    """
    if source not in df.columns:
        raise UnknownColumnError(source, stage="derive")
    if (threshold is None) == (quantile is None):
        raise ConfigurationError("Give exactly one of 'threshold' or 'quantile'", stage="derive", parameter=name)

    if quantile is not None:
        if not 0 < quantile < 1:
            raise ConfigurationError(f"Quantile must lie in (0, 1), got {quantile!r}",
                                     stage="derive", parameter=name)
        cut = float(df[source].quantile(quantile))
    else:
        cut = float(threshold)

    values = df[source]
    label = (values > cut).astype(int)
    if values.isna().any():
        label = label.astype(float).where(values.notna())

    logger.info(f"Derived '{name}' = {source} > {cut:.4g}: {int((label == 1).sum())} positive of {len(df)}")
    return df.assign(**{name: label})


def prepare(dataset: pd.DataFrame, column_spec: Iterable[ColumnSpecLike]) -> FeatureTable:
    """
    Fit and apply a column spec to a single dataset.

    Used when every record is modelled at once (e.g. clustering).
    """
    return FeaturePreparer(column_spec).fit_transform(dataset)


def prepare_split(
    split: Split,
    column_spec: Iterable[ColumnSpecLike]
) -> Tuple[FeatureTable, FeatureTable, FeaturePreparer]:
    """
    Fit the preparer on the training partition and transform both partitions.

    Args:
        split: Training/evaluation partition
        column_spec: Column roles, encodings and missing-value policies

    Returns:
        Tuple of (train_table, eval_table, fitted preparer)
    """
    logger.info("=" * 60)
    logger.info("PREPARING FEATURES")
    logger.info("=" * 60)

    preparer = FeaturePreparer(column_spec)
    train_table = preparer.fit_transform(split.train)
    eval_table = preparer.transform(split.eval)
    if len(eval_table) == 0:
        raise EmptyPartitionError("eval", len(split.eval), stage="prepare")

    logger.info(f"  Training records: {len(train_table)}")
    logger.info(f"  Evaluation records: {len(eval_table)}")
    logger.info(f"  Features per record: {train_table.X.shape[1]}")

    return train_table, eval_table, preparer
