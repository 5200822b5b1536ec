"""
Exceptions
==========

Errors raised by the pipeline stages. Every error carries the stage that
raised it and the offending parameter or column so the caller can report
exactly what went wrong.

All errors derive from ValueError: they signal bad input, not a crashed
library call.
"""

from typing import Any, Optional


class StatlearnError(ValueError):
    """Base class for every pipeline error."""

    def __init__(self, message: str, stage: str, parameter: Optional[str] = None):
        self.stage = stage
        self.parameter = parameter
        location = f"[{stage}]" if parameter is None else f"[{stage}:{parameter}]"
        super().__init__(f"{location} {message}")


# Configuration errors: raised before any fitting happens

class ConfigurationError(StatlearnError):
    """A caller-supplied parameter is inconsistent with the data or method."""


class InvalidFractionError(ConfigurationError):
    def __init__(self, fraction: Any):
        self.fraction = fraction
        super().__init__(
            f"Split fraction must lie strictly between 0 and 1, got {fraction!r}",
            stage="split",
            parameter="fraction",
        )


class InvalidKError(ConfigurationError):
    def __init__(self, k: Any, n_records: int, stage: str = "fit"):
        self.k = k
        self.n_records = n_records
        super().__init__(
            f"k must be a positive integer no larger than the number of "
            f"training records ({n_records}), got {k!r}",
            stage=stage,
            parameter="k",
        )


class UnknownColumnError(ConfigurationError):
    def __init__(self, column: str, stage: str = "prepare"):
        self.column = column
        super().__init__(f"Column '{column}' is not present in the dataset", stage=stage, parameter=column)


# Data-quality errors: the data makes the requested operation meaningless

class DataQualityError(StatlearnError):
    """The dataset state makes the requested operation meaningless."""


class AllMissingColumnError(DataQualityError):
    def __init__(self, column: str, policy: str):
        self.column = column
        self.policy = policy
        super().__init__(
            f"Column '{column}' has no non-missing values to compute a {policy} fill from",
            stage="prepare",
            parameter=column,
        )


class EmptyPartitionError(DataQualityError):
    def __init__(self, side: str, n_records: int, stage: str = "split"):
        self.side = side
        super().__init__(
            f"The {side} partition is empty ({n_records} records before filtering)",
            stage=stage,
            parameter=side,
        )


class EmptyTrainingSetError(DataQualityError):
    def __init__(self, variant: str):
        super().__init__("Cannot fit a model on zero training records", stage="fit", parameter=variant)


class UnseenCategoryError(DataQualityError):
    def __init__(self, column: str, values: Any):
        self.column = column
        self.values = values
        super().__init__(
            f"Column '{column}' contains categories not seen during fitting: {values!r}",
            stage="prepare",
            parameter=column,
        )


class InvalidLabelError(DataQualityError):
    def __init__(self, message: str, parameter: Optional[str] = "label"):
        super().__init__(message, stage="fit", parameter=parameter)


# Shape errors: contract violations between stages

class ShapeError(StatlearnError):
    """Two stages disagree about the shape of the data."""


class DimensionMismatchError(ShapeError):
    def __init__(self, expected: int, got: int):
        self.expected = expected
        self.got = got
        super().__init__(
            f"Expected {expected} feature columns, but got {got}",
            stage="predict",
            parameter="features",
        )


class LengthMismatchError(ShapeError):
    def __init__(self, n_predicted: int, n_actual: int):
        self.n_predicted = n_predicted
        self.n_actual = n_actual
        super().__init__(
            f"Predicted ({n_predicted}) and actual ({n_actual}) sequences differ in length",
            stage="evaluate",
            parameter="labels",
        )


class UndefinedMetricError(StatlearnError):
    """
    A derived metric has a zero denominator.

    The evaluator records these instead of raising them, so the remaining
    metrics of the same call stay available.
    """

    def __init__(self, metric: str, denominator: str):
        self.metric = metric
        self.denominator = denominator
        super().__init__(f"{metric} is undefined: {denominator} is zero", stage="evaluate", parameter=metric)
