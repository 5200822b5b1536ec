#!/usr/bin/env python3
"""
statlearn - Main Pipeline
=========================

Runs one configured analysis scenario on a CSV dataset.

Stages:
    1. Load - read the dataset (and optionally run EDA)
    2. Split - random fraction or time cutoff
    3. Prepare - encode, standardize and impute using training data only
    4. Fit - the scenario's model variant
    5. Score - confusion matrix / error metrics on held-out records

Usage:
    # Run a scenario
    python main.py --data data/Smarket.csv --scenario smarket_logit

    # Override hyperparameters
    python main.py --data data/Smarket.csv --scenario smarket_knn --k 5

    # Try several k
    python main.py --data data/Smarket.csv --scenario smarket_knn --sweep 1 3 5 7 9
"""

import argparse
import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, List, Optional

import matplotlib.pyplot as plt
import pandas as pd

from statlearn.data_loader import load_config, load_data, validate_data, print_data_summary
from statlearn.eda import generate_eda_report, print_eda_insights
from statlearn.evaluation import plot_confusion_matrix, print_evaluation_report, print_regression_report
from statlearn.exceptions import ConfigurationError
from statlearn.model import ModelVariant, print_model_summary
from statlearn.pipeline import ScenarioConfig, PipelineResult, run_scenario, sweep_k, print_scenario_summary


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the pipeline."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(f'pipeline_{datetime.now().strftime("%Y%m%d_%H%M%S")}.log')
        ]
    )


def get_scenario(config: Dict[str, Any], name: str) -> ScenarioConfig:
    """
    Look up and validate a scenario from the configuration.

    Args:
        config: Configuration dictionary
        name: Scenario name

    Returns:
        Validated ScenarioConfig
    """
    scenarios = config.get('scenarios', {})
    if name not in scenarios:
        raise ConfigurationError(
            f"Unknown scenario '{name}'. Available: {sorted(scenarios)}",
            stage="config",
            parameter="scenario"
        )
    return ScenarioConfig.from_dict(name, scenarios[name])


def eda_columns(df: pd.DataFrame, scenario: ScenarioConfig) -> Optional[List[str]]:
    """Numeric predictor columns of the scenario, or None to use every numeric column."""
    names = [
        spec.name for spec in scenario.columns
        if spec.role == 'predictor' and spec.name in df.columns and pd.api.types.is_numeric_dtype(df[spec.name])
    ]
    return names or None


def report_result(result: PipelineResult, figures_dir: Optional[str] = None) -> None:
    """Print the scenario outcome and optionally save the confusion matrix figure."""
    print_scenario_summary(result)
    print_model_summary(result.model)

    if result.evaluation is not None:
        print_evaluation_report(result.evaluation)
        if figures_dir:
            path = Path(figures_dir)
            path.mkdir(parents=True, exist_ok=True)
            plot_confusion_matrix(
                result.evaluation.confusion,
                title=f'{result.scenario.name} - held-out records',
                save_path=str(path / f"{result.scenario.name}_confusion_matrix.png")
            )
            plt.close('all')
    elif result.scenario.variant is ModelVariant.LINEAR:
        print_regression_report(result.metrics)


def run(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    setup_logging(config.get('logging', {}).get('level', 'INFO'))

    scenario = get_scenario(config, args.scenario).with_overrides(
        k=args.k,
        restarts=args.restarts,
        threshold=args.threshold,
        seed=args.seed
    )

    print("\n" + "=" * 70)
    print(f"STATLEARN PIPELINE - {scenario.name}")
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    df = load_data(args.data)
    print_data_summary(df)
    is_valid, _ = validate_data(df, strict=False)
    if not is_valid:
        print("⚠️  Data validation warnings detected. Proceeding anyway...")

    figures_dir = config.get('output', {}).get('figures_path', 'reports/figures/') if args.figures else None

    if args.eda:
        report = generate_eda_report(
            df,
            output_dir=figures_dir or 'reports/figures/',
            columns=eda_columns(df, scenario),
            seed=scenario.model_params.get('seed', scenario.seed)
        )
        print_eda_insights(report)

    if args.sweep:
        table = sweep_k(df, scenario, args.sweep, n_jobs=args.n_jobs)
        print("\n" + "=" * 60)
        print(f"K SWEEP - {scenario.name}")
        print("=" * 60)
        print(table.round(4).to_string())
        print("=" * 60 + "\n")
        return 0

    result = run_scenario(df, scenario)
    report_result(result, figures_dir)

    print(f"Completed at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Split / fit / predict / score pipeline for tabular datasets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --data data/Default.csv --scenario default_logit
  python main.py --data data/Smarket.csv --scenario smarket_knn --k 5
  python main.py --data data/diabetes.csv --scenario pima_kmeans --sweep 1 2 3 4 5 6
        """
    )

    parser.add_argument('--data', '-d', type=str, required=True,
                        help='Path to the input CSV file')
    parser.add_argument('--config', '-c', type=str, default='config/config.yaml',
                        help='Path to configuration file (default: config/config.yaml)')
    parser.add_argument('--scenario', '-s', type=str, required=True,
                        help='Scenario name from the configuration file')
    parser.add_argument('--k', type=int, default=None,
                        help='Override k (k-NN neighbours or k-means clusters)')
    parser.add_argument('--restarts', type=int, default=None,
                        help='Override the number of k-means restarts')
    parser.add_argument('--threshold', type=float, default=None,
                        help='Override the probability threshold for binary logit')
    parser.add_argument('--seed', type=int, default=None,
                        help='Override the random seed')
    parser.add_argument('--sweep', type=int, nargs='+', default=None, metavar='K',
                        help='Run once per k and print a comparison table')
    parser.add_argument('--n-jobs', type=int, default=1,
                        help='Parallel jobs for --sweep (-1 for all cores)')
    parser.add_argument('--eda', action='store_true',
                        help='Also generate exploratory figures')
    parser.add_argument('--figures', action='store_true',
                        help='Save figures to the configured output path')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point with argument parsing."""
    args = build_parser().parse_args(argv)

    if not Path(args.data).exists():
        print(f"Error: Data file not found: {args.data}")
        return 1

    if not Path(args.config).exists():
        print(f"Error: Config file not found: {args.config}")
        return 1

    try:
        return run(args)
    except Exception as e:
        logging.error(f"Pipeline failed: {e}", exc_info=True)
        print(f"\n❌ Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
