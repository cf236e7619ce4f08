#!/usr/bin/env python3
"""
Main Experiment Runner for Pitch-Plunge GP Regression

Runs the experiment suite:
1. Noisy-input regression comparison (exact GP, FITC, NIGP, SONIG)
2. Value function regression (four parts)
3. State transition regression
4. Export results and figures

Usage:
    python scripts/run_experiments.py --quick                  # Small sizes, all experiments
    python scripts/run_experiments.py --experiment comparison  # One experiment, thesis sizes
    python scripts/run_experiments.py --experiment cost --parts 1 2
    python scripts/run_experiments.py --config configs/experiments.yaml
"""

import argparse
import dataclasses
import sys
from datetime import datetime
from pathlib import Path

# Add repository root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pitchplunge_gp.experiments import (
    METHOD_NAMES,
    ComparisonConfig,
    CostApproximationConfig,
    ResultsExporter,
    StatePredictionConfig,
    run_comparison,
    run_cost_approximation,
    run_state_prediction,
    summarize,
)
from pitchplunge_gp.utils import load_config

EXPERIMENTS = ("comparison", "cost", "state")
SECTIONS = {
    "comparison": ("comparison", ComparisonConfig),
    "cost": ("cost_approximation", CostApproximationConfig),
    "state": ("state_prediction", StatePredictionConfig),
}
QUICK = {
    "comparison": {"n_iterations": 2, "n_measurements": 200, "n_subset": 50, "n_nigp_init": 30},
    "cost": {"n_measurements": 20, "n_controllers": 50},
    "state": {"n_measurements": 15},
}


def make_run_dirs(base_dir: str = "results") -> dict:
    """results/<timestamp>/ with figures/ and tables/ below it."""
    run_dir = Path(base_dir) / datetime.now().strftime("%Y%m%d_%H%M%S")
    dirs = {"base": run_dir, "figures": run_dir / "figures", "tables": run_dir / "tables"}
    for path in dirs.values():
        path.mkdir(parents=True, exist_ok=True)
    return dirs


def section(title: str) -> None:
    rule = "=" * 60
    print(f"\n{rule}\n{title}\n{rule}")


def banner(*lines: str) -> None:
    rule = "#" * 60
    print("\n" + "\n".join([rule, *(f"#  {line}" for line in lines), rule]))


def build_config(name: str, args, figures_dir: Path):
    key, cls = SECTIONS[name]
    config = load_config(cls, args.config, section=key)
    overrides = {"make_plots": not args.skip_figures, "output_dir": str(figures_dir)}
    if args.quick:
        overrides.update(QUICK[name])
    return dataclasses.replace(config, **overrides)


def run_comparison_experiment(config: ComparisonConfig, exporter: ResultsExporter) -> None:
    section(f"Noisy-Input Regression Comparison ({config.n_iterations} iterations)")

    results = run_comparison(config)
    exporter.to_csv(METHOD_NAMES, results.summary_table(), "comparison.csv")
    exporter.to_json(
        {"metrics": results.metrics, "n_discarded": results.n_discarded, "timing": results.timing},
        "comparison.json",
    )


def run_cost_experiment(config: CostApproximationConfig, parts, exporter: ResultsExporter) -> None:
    section(f"Value Function Regression (parts {', '.join(str(p) for p in parts)})")

    results = run_cost_approximation(config, parts)
    exporter.to_json(summarize(results), "cost_approximation.json")


def run_state_experiment(config: StatePredictionConfig, exporter: ResultsExporter) -> None:
    section("State Transition Regression")

    results = run_state_prediction(config)
    exporter.to_json(
        {
            "true_system_matrix": results.true_system_matrix,
            **{f"{key}_system_matrix": run.system_matrix for key, run in results.runs.items() if run.system_matrix is not None},
            **{f"{key}_log_likelihoods": run.log_likelihoods for key, run in results.runs.items()},
        },
        "state_prediction.json",
    )


def main():
    """Main experiment runner."""
    parser = argparse.ArgumentParser(description="Run Pitch-Plunge GP Regression Experiments")
    parser.add_argument(
        "--experiment", choices=(*EXPERIMENTS, "all"), default="all", help="Experiment to run (default: all)"
    )
    parser.add_argument("--config", type=str, default=None, help="YAML file with per-experiment sections")
    parser.add_argument("--quick", action="store_true", help="Quick test with small sizes")
    parser.add_argument("--parts", type=int, nargs="+", default=[1, 2, 3, 4], help="Value function parts to run")
    parser.add_argument("--output", type=str, default="results", help="Output directory")
    parser.add_argument("--skip-figures", action="store_true", help="Skip figure generation")

    args = parser.parse_args()
    selected = EXPERIMENTS if args.experiment == "all" else (args.experiment,)

    banner(
        "Pitch-Plunge GP Regression Experiments",
        f"Experiments: {', '.join(selected)}",
        f"Started: {datetime.now():%Y-%m-%d %H:%M:%S}",
    )

    # Setup
    dirs = make_run_dirs(args.output)
    exporter = ResultsExporter(str(dirs["tables"]))
    print(f"\nOutput directory: {dirs['base']}")

    if "comparison" in selected:
        run_comparison_experiment(build_config("comparison", args, dirs["figures"]), exporter)
    if "cost" in selected:
        run_cost_experiment(build_config("cost", args, dirs["figures"]), tuple(args.parts), exporter)
    if "state" in selected:
        run_state_experiment(build_config("state", args, dirs["figures"]), exporter)

    banner("Experiments Complete", f"Results saved to: {dirs['base']}", f"Finished: {datetime.now():%Y-%m-%d %H:%M:%S}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
