"""
Experiments Module for Pitch-Plunge GP Regression

Experiment framework for the regression studies:
- Noisy-input regression comparison (exact GP, FITC, NIGP, SONIG)
- Value function regression for linear state feedback
- State transition regression for the pitch-plunge system
- Metrics, trimmed summaries and results export
- Publication-quality visualization

Usage:
    >>> from pitchplunge_gp.experiments import ComparisonConfig, run_comparison
    >>>
    >>> results = run_comparison(ComparisonConfig(n_iterations=10))
    >>> print(results.summary())
    >>>
    >>> # Value function of a single controller, all four parts
    >>> cost = run_cost_approximation(CostApproximationConfig())
"""

from .analysis import (
    RegressionMetrics,
    ResultsExporter,
    format_method_table,
    format_weight_report,
    trimmed_best_mean,
    weight_error_percentages,
)
from .comparison import (
    METHOD_NAMES,
    THESIS_CASES,
    ComparisonData,
    ComparisonExperiment,
    ComparisonResults,
    ComparisonSample,
    run_comparison,
)
from .config import (
    ComparisonConfig,
    CostApproximationConfig,
    ExperimentConfig,
    StatePredictionConfig,
    load_experiment_config,
    make_rng,
)
from .cost_approximation import (
    ControllerValueResult,
    CostApproximationExperiment,
    CostApproximationResults,
    RewardData,
    ValueRegressionResult,
    ValueSurface,
    run_cost_approximation,
    summarize,
    weight_space_negative_log_likelihood,
)
from .state_prediction import (
    StatePredictionExperiment,
    StatePredictionResults,
    StatePredictionRun,
    TransitionData,
    run_state_prediction,
)
from .visualization import (
    COLORS,
    COLORS_BW,
    FigureConfig,
    GPVisualizer,
    SurfaceVisualizer,
    get_palette,
    save_figure,
)

__all__ = [
    "COLORS",
    "COLORS_BW",
    "METHOD_NAMES",
    "THESIS_CASES",
    # Comparison
    "ComparisonConfig",
    "ComparisonData",
    "ComparisonExperiment",
    "ComparisonResults",
    "ComparisonSample",
    "ControllerValueResult",
    # Value function
    "CostApproximationConfig",
    "CostApproximationExperiment",
    "CostApproximationResults",
    "ExperimentConfig",
    # Visualization
    "FigureConfig",
    "GPVisualizer",
    # Analysis
    "RegressionMetrics",
    "ResultsExporter",
    "RewardData",
    # State prediction
    "StatePredictionConfig",
    "StatePredictionExperiment",
    "StatePredictionResults",
    "StatePredictionRun",
    "SurfaceVisualizer",
    "TransitionData",
    "ValueRegressionResult",
    "ValueSurface",
    "format_method_table",
    "format_weight_report",
    "get_palette",
    "load_experiment_config",
    "make_rng",
    "run_comparison",
    "run_cost_approximation",
    "run_state_prediction",
    "save_figure",
    "summarize",
    "trimmed_best_mean",
    "weight_error_percentages",
    "weight_space_negative_log_likelihood",
]
