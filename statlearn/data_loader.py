"""
Data Loader Module
==================

Handles configuration loading, CSV ingestion and basic data quality checks.

Functions:
    - load_config: Load YAML configuration file
    - load_data: Load a tabular dataset from CSV
    - validate_data: Report data quality issues
    - get_data_summary: Generate basic statistics
"""

import logging
from pathlib import Path
from typing import Dict, Any, Optional, Tuple, List

import pandas as pd
import numpy as np
import yaml

from .exceptions import UnknownColumnError

logger = logging.getLogger(__name__)


def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Dictionary containing configuration parameters

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    logger.info(f"Loaded configuration from {config_path}")
    return config


def load_data(
    file_path: str,
    required_columns: Optional[List[str]] = None,
    na_values: Optional[List[str]] = None,
    index_col: Optional[int] = None
) -> pd.DataFrame:
    """
    Load a CSV dataset, one row per record and one column per variable.

    Args:
        file_path: Path to the CSV file
        required_columns: Columns that must be present (optional validation)
        na_values: Extra strings to interpret as missing (e.g. '?' or '.')
        index_col: Column to use as index (optional)

    Returns:
        DataFrame containing the loaded data

    Raises:
        FileNotFoundError: If data file doesn't exist
        UnknownColumnError: If a required column is absent
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Data file not found: {file_path}")

    df = pd.read_csv(file_path, index_col=index_col, na_values=na_values)
    logger.info(f"Loaded data from {file_path}: {df.shape[0]} rows × {df.shape[1]} columns")

    for column in required_columns or []:
        if column not in df.columns:
            raise UnknownColumnError(column, stage="load")

    return df


def validate_data(df: pd.DataFrame, strict: bool = False) -> Tuple[bool, Dict[str, Any]]:
    """
    Check a dataset for issues worth knowing about before modelling.

    Checks:
        - Missing values per column
        - Constant columns (carry no information)
        - Duplicate rows

    Args:
        df: DataFrame to validate
        strict: If True, raise ValueError when any issue is found

    Returns:
        Tuple of (is_valid, validation_report)
    """
    report = {
        "total_rows": len(df),
        "total_columns": len(df.columns),
        "column_names": list(df.columns),
        "issues": []
    }

    missing_counts = df.isnull().sum()
    total_missing = missing_counts.sum()
    if total_missing > 0:
        missing_pct = (total_missing / (df.shape[0] * df.shape[1])) * 100
        issue = f"Missing values: {total_missing} ({missing_pct:.2f}%)"
        report["issues"].append(issue)
        report["missing_by_column"] = {
            col: int(count) for col, count in missing_counts[missing_counts > 0].items()
        }
        logger.warning(issue)

    constant = [col for col in df.columns if df[col].nunique(dropna=True) <= 1]
    if constant:
        issue = f"Constant columns found: {constant}"
        report["issues"].append(issue)
        logger.warning(issue)

    duplicates = int(df.duplicated().sum())
    if duplicates > 0:
        issue = f"Duplicate rows found: {duplicates}"
        report["issues"].append(issue)
        logger.warning(issue)

    is_valid = len(report["issues"]) == 0
    report["is_valid"] = is_valid

    if strict and not is_valid:
        raise ValueError(f"Data validation failed: {report['issues']}")

    return is_valid, report


def get_data_summary(df: pd.DataFrame) -> Dict[str, Any]:
    """
    Generate summary statistics for the dataset.

    Numeric columns get moments and quantiles, the remaining columns get
    their level counts.
    """
    summary = {
        "shape": df.shape,
        "columns": list(df.columns),
        "dtypes": df.dtypes.astype(str).to_dict(),
        "missing": {col: int(n) for col, n in df.isna().sum().items()},
        "statistics": {},
        "levels": {}
    }

    for col in df.select_dtypes(include=[np.number]).columns:
        summary["statistics"][col] = {
            "count": int(df[col].count()),
            "mean": float(df[col].mean()),
            "std": float(df[col].std()),
            "min": float(df[col].min()),
            "50%": float(df[col].quantile(0.50)),
            "max": float(df[col].max()),
        }

    for col in df.select_dtypes(exclude=[np.number]).columns:
        summary["levels"][col] = {str(k): int(v) for k, v in df[col].value_counts().items()}

    return summary


def print_data_summary(df: pd.DataFrame, max_levels: int = 8) -> None:
    """
    Print a formatted summary of the dataset to console.

    Args:
        df: DataFrame to summarize
        max_levels: Most frequent levels shown per categorical column
    """
    summary = get_data_summary(df)
    n_rows, n_cols = summary["shape"]

    print("\n" + "=" * 60)
    print("DATASET SUMMARY")
    print("=" * 60)
    print(f"Shape: {n_rows} rows × {n_cols} columns")
    print("\nColumn Information:")
    print("-" * 40)

    for col in summary["columns"]:
        missing = summary["missing"][col]
        missing_pct = missing / n_rows * 100 if n_rows else 0.0
        print(f"  {col}: {summary['dtypes'][col]} | {n_rows - missing} non-null ({missing_pct:.1f}% missing)")

    if summary["statistics"]:
        print("\nNumeric Columns:")
        print("-" * 40)
        print(pd.DataFrame(summary["statistics"]).T.round(4).to_string())

    if summary["levels"]:
        print("\nCategorical Columns:")
        print("-" * 40)
        for col, levels in summary["levels"].items():
            shown = list(levels.items())[:max_levels]
            more = f", ... ({len(levels) - max_levels} more)" if len(levels) > max_levels else ""
            print(f"  {col}: " + ", ".join(f"{level}={count}" for level, count in shown) + more)
    print("=" * 60 + "\n")
