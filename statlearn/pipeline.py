"""
Pipeline Module
===============

Runs one analysis scenario as a single forward pass:

    Split -> Prepare -> Fit -> Predict -> Score

Each stage returns new objects; no stage modifies its input. A failing
stage raises and the run stops, nothing is retried.

Functions:
    - ScenarioConfig.from_dict: Validate a scenario block from the config file
    - run_scenario: Execute a scenario on a dataset
    - sweep_k: Re-run a k-NN or k-means scenario for several k
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, Tuple, List, Iterable

import pandas as pd
from joblib import Parallel, delayed

from .evaluation import EvaluationResult, cluster_table, evaluate, regression_metrics
from .exceptions import ConfigurationError
from .model import (
    DEFAULT_RESTARTS,
    DEFAULT_THRESHOLD,
    ModelVariant,
    Prediction,
    TrainedModel,
    check_threshold,
    fit_model,
    make_prediction,
    within_cluster_ss,
)
from .preprocessing import ColumnSpec, FeatureTable, derive_binary_label, parse_column_spec, prepare, prepare_split
from .splitting import Predicate, Split, after, before, split_dataset

logger = logging.getLogger(__name__)

MODEL_PARAM_KEYS = ('k', 'restarts', 'C', 'max_iter', 'reference_class')


@dataclass(frozen=True)
class ScenarioConfig:
    """Everything needed to run one analysis, with no hidden defaults."""

    name: str
    variant: ModelVariant
    columns: Tuple[ColumnSpec, ...]
    fraction: Optional[float] = None
    seed: Optional[int] = None
    cutoff: Optional[Dict[str, Any]] = None
    derive: Tuple[Dict[str, Any], ...] = ()
    model_params: Dict[str, Any] = field(default_factory=dict)
    threshold: float = DEFAULT_THRESHOLD
    positive_class: Any = None

    @classmethod
    def from_dict(cls, name: str, config: Dict[str, Any]) -> 'ScenarioConfig':
        """
        Build a scenario from its configuration block.

        Args:
            name: Scenario name
            config: Mapping with 'split', 'derive', 'columns' and 'model' keys

        Returns:
            Validated ScenarioConfig
        """
        model_cfg = config.get('model') or {}
        if 'variant' not in model_cfg:
            raise ConfigurationError("Scenario has no model variant", stage="config", parameter=name)
        try:
            variant = ModelVariant(model_cfg['variant'])
        except ValueError:
            choices = [v.value for v in ModelVariant]
            raise ConfigurationError(
                f"Unknown model variant '{model_cfg['variant']}', choose from {choices}",
                stage="config",
                parameter="variant"
            ) from None

        split_cfg = config.get('split')
        fraction = seed = cutoff = None
        if split_cfg is None:
            if variant is not ModelVariant.KMEANS:
                raise ConfigurationError("Only k-means scenarios may omit the split",
                                         stage="config", parameter="split")
        elif 'fraction' in split_cfg and 'cutoff' in split_cfg:
            raise ConfigurationError("Give either 'fraction' or 'cutoff', not both",
                                     stage="config", parameter="split")
        elif 'fraction' in split_cfg:
            fraction = split_cfg['fraction']
            seed = split_cfg.get('seed')
        elif 'cutoff' in split_cfg:
            cutoff = dict(split_cfg['cutoff'])
            if 'column' not in cutoff or ('before' in cutoff) == ('after' in cutoff):
                raise ConfigurationError("A cutoff needs a 'column' and exactly one of 'before'/'after'",
                                         stage="config", parameter="cutoff")
        else:
            raise ConfigurationError("Split must give 'fraction' or 'cutoff'", stage="config", parameter="split")

        columns = tuple(parse_column_spec(config.get('columns') or []))
        if variant is ModelVariant.KNN:
            # k-NN distances are taken in standardized feature space
            for spec in columns:
                if spec.role == 'predictor' and spec.encoding != 'standardize':
                    raise ConfigurationError(
                        f"k-NN predictor '{spec.name}' must use encoding 'standardize', got '{spec.encoding}'",
                        stage="config",
                        parameter=spec.name
                    )

        params = {key: model_cfg[key] for key in MODEL_PARAM_KEYS if key in model_cfg}
        if variant is ModelVariant.KMEANS:
            params.setdefault('restarts', DEFAULT_RESTARTS)
            params['seed'] = model_cfg.get('seed', seed)

        return cls(
            name=name,
            variant=variant,
            columns=columns,
            fraction=fraction,
            seed=seed,
            cutoff=cutoff,
            derive=tuple(config.get('derive') or ()),
            model_params=params,
            threshold=check_threshold(model_cfg.get('threshold', DEFAULT_THRESHOLD)),
            positive_class=model_cfg.get('positive_class')
        )

    @property
    def label_column(self) -> Optional[str]:
        return next((c.name for c in self.columns if c.role == 'label'), None)

    def predicate(self) -> Optional[Predicate]:
        if self.cutoff is None:
            return None
        if 'before' in self.cutoff:
            return before(self.cutoff['column'], self.cutoff['before'])
        return after(self.cutoff['column'], self.cutoff['after'])

    def with_overrides(self, **overrides: Any) -> 'ScenarioConfig':
        """
        Copy of the scenario with some values replaced.

        Model hyperparameters (k, restarts, ...) are merged into
        `model_params`; None values are ignored.
        """
        overrides = {key: value for key, value in overrides.items() if value is not None}
        params = dict(self.model_params)
        for key in MODEL_PARAM_KEYS:
            if key in overrides:
                params[key] = overrides.pop(key)
        if 'threshold' in overrides:
            check_threshold(overrides['threshold'])
        if 'seed' in overrides and self.variant is ModelVariant.KMEANS:
            params['seed'] = overrides['seed']
        return dataclasses.replace(self, model_params=params, **overrides)


@dataclass(frozen=True)
class PipelineResult:
    scenario: ScenarioConfig
    train: FeatureTable
    eval: FeatureTable
    model: TrainedModel
    prediction: Prediction
    split: Optional[Split] = None
    evaluation: Optional[EvaluationResult] = None
    metrics: Dict[str, float] = field(default_factory=dict)
    clusters: Optional[pd.DataFrame] = None


def apply_derivations(df: pd.DataFrame, derive: Iterable[Dict[str, Any]]) -> pd.DataFrame:
    """Add every derived label column listed in a scenario."""
    for spec in derive:
        df = derive_binary_label(
            df,
            source=spec['source'],
            name=spec['name'],
            threshold=spec.get('threshold'),
            quantile=spec.get('quantile')
        )
    return df


def _score(
    scenario: ScenarioConfig,
    model: TrainedModel,
    eval_table: FeatureTable,
    prediction: Prediction
) -> Tuple[Optional[EvaluationResult], Dict[str, float], Optional[pd.DataFrame]]:
    variant = scenario.variant

    if variant.classifier:
        positive = scenario.positive_class
        if positive is None and variant is ModelVariant.BINARY_LOGIT:
            positive = model.classes[1]
        result = evaluate(prediction.labels, eval_table.y, positive_class=positive)
        return result, result.metrics, None

    if variant is ModelVariant.LINEAR:
        return None, regression_metrics(eval_table.y, prediction.labels), None

    metrics = {'within_cluster_ss': within_cluster_ss(model), 'n_records': float(len(prediction))}
    clusters = None
    if eval_table.y is not None:
        clusters = cluster_table(prediction.labels, eval_table.y)
    return None, metrics, clusters


def run_scenario(df: pd.DataFrame, scenario: ScenarioConfig) -> PipelineResult:
    """
    Execute one scenario end to end.

    Args:
        df: Raw dataset, left unmodified
        scenario: Validated scenario

    Returns:
        PipelineResult with the fitted model, held-out predictions and scores
    """
    logger.info("=" * 60)
    logger.info(f"RUNNING SCENARIO: {scenario.name} ({scenario.variant.value})")
    logger.info("=" * 60)

    data = apply_derivations(df, scenario.derive)

    split = None
    if scenario.fraction is None and scenario.cutoff is None:
        train_table = eval_table = prepare(data, scenario.columns)
    else:
        split = split_dataset(
            data,
            fraction=scenario.fraction,
            predicate=scenario.predicate(),
            seed=scenario.seed
        )
        train_table, eval_table, _ = prepare_split(split, scenario.columns)

    if scenario.variant.supervised and train_table.y is None:
        raise ConfigurationError(f"Variant '{scenario.variant.value}' needs a label column",
                                 stage="config", parameter="columns")

    params = dict(scenario.model_params)
    if scenario.variant is ModelVariant.BINARY_LOGIT and scenario.positive_class is not None:
        params['positive_class'] = scenario.positive_class

    model = fit_model(scenario.variant, train_table.X, train_table.y, **params)

    # Score on the model's own held-out predictions only
    prediction = make_prediction(model, eval_table.X, threshold=scenario.threshold)
    evaluation, metrics, clusters = _score(scenario, model, eval_table, prediction)

    logger.info("=" * 60)
    logger.info(f"SCENARIO COMPLETE: {scenario.name}")
    for name, value in metrics.items():
        logger.info(f"  {name}: {value:.4f}")
    logger.info("=" * 60)

    return PipelineResult(
        scenario=scenario,
        train=train_table,
        eval=eval_table,
        model=model,
        prediction=prediction,
        split=split,
        evaluation=evaluation,
        metrics=metrics,
        clusters=clusters
    )


def _run_for_k(df: pd.DataFrame, scenario: ScenarioConfig, k: int) -> Dict[str, float]:
    result = run_scenario(df, scenario.with_overrides(k=k))
    return {'k': k, **result.metrics}


def sweep_k(
    df: pd.DataFrame,
    scenario: ScenarioConfig,
    ks: Iterable[int],
    n_jobs: int = 1
) -> pd.DataFrame:
    """
    Run a k-NN or k-means scenario once per k.

    Runs are independent, so they may execute in parallel.

    Args:
        df: Raw dataset
        scenario: k-NN or k-means scenario
        ks: Values of k to try
        n_jobs: Number of parallel jobs (-1 for all cores)

    Returns:
        DataFrame indexed by k with each run's metrics
    """
    if scenario.variant not in (ModelVariant.KNN, ModelVariant.KMEANS):
        raise ConfigurationError(f"Cannot sweep k for variant '{scenario.variant.value}'",
                                 stage="config", parameter="variant")

    ks = list(ks)
    logger.info(f"Sweeping k over {ks} ({scenario.name})")
    rows: List[Dict[str, float]] = Parallel(n_jobs=n_jobs)(
        delayed(_run_for_k)(df, scenario, k) for k in ks
    )
    return pd.DataFrame(rows).set_index('k')


def print_scenario_summary(result: PipelineResult) -> None:
    """Print the outcome of one scenario run."""
    scenario = result.scenario
    print("\n" + "=" * 60)
    print(f"SCENARIO: {scenario.name}")
    print("=" * 60)
    print(f"Variant: {scenario.variant.value}")
    if scenario.fraction is not None:
        print(f"Split: random, fraction={scenario.fraction}, seed={scenario.seed}")
    elif scenario.cutoff is not None:
        print(f"Split: {scenario.predicate().__name__}")
    else:
        print("Split: none (all records)")
    print(f"Training records: {len(result.train)}")
    print(f"Evaluation records: {len(result.eval)}")
    print(f"Features: {result.train.X.shape[1]}")
    if result.clusters is not None:
        print("\nClusters vs. labels:")
        print(result.clusters.to_string())
    print("=" * 60 + "\n")
