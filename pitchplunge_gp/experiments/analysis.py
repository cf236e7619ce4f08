"""
Regression Metrics and Results Export

Analysis tools for the regression experiments:
1. Prediction quality (MSE, mean variance, normalized error)
2. Trimmed averaging over repeated experiments
3. Weight errors relative to analytic values
4. Results export (CSV, JSON)
"""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Sequence

import numpy as np
from numpy.typing import NDArray


@dataclass
class RegressionMetrics:
    """Quality of a prediction against the true function values."""

    mse: float  # Mean squared error of the mean
    mean_variance: float  # Mean predictive variance
    mean_normalized_error: float  # Mean of ((μ - f) / σ)²

    @classmethod
    def from_prediction(cls, mean: NDArray, std: NDArray, truth: NDArray) -> "RegressionMetrics":
        error = np.asarray(mean) - np.asarray(truth)
        std = np.asarray(std)
        with np.errstate(divide="ignore", invalid="ignore"):
            normalized = np.where(std > 0, error / std, np.inf)
        return cls(
            mse=float(np.mean(error**2)),
            mean_variance=float(np.mean(std**2)),
            mean_normalized_error=float(np.mean(normalized**2)),
        )

    @property
    def ratio(self) -> float:
        """MSE over mean variance; about 1 for a well-calibrated posterior."""
        return self.mse / self.mean_variance if self.mean_variance > 0 else np.inf

    def as_array(self) -> NDArray:
        return np.array([self.mse, self.mean_variance, self.mean_normalized_error])


def trimmed_best_mean(values: NDArray, part_used: float = 0.9) -> NDArray:
    """
    Mean of the best (smallest) fraction of values along the first axis.

    Every column is sorted independently, so the best MSEs and the best
    variances may come from different iterations.

    Args:
        values: Results (n_iterations, ...)
        part_used: Fraction of iterations kept, in (0, 1]

    Returns:
        Averages with the first axis removed
    """
    if not 0.0 < part_used <= 1.0:
        raise ValueError("part_used must lie in (0, 1]")
    values = np.asarray(values, dtype=float)
    n_used = max(1, int(np.floor(part_used * values.shape[0] + 1e-9)))
    return np.mean(np.sort(values, axis=0)[:n_used], axis=0)


def weight_error_percentages(estimate: NDArray, std: NDArray, truth: NDArray):
    """
    Errors and uncertainties of estimated weights in percent of the true ones.

    Returns:
        error: (μ - w) / w · 100
        spread: σ / |w| · 100
    """
    truth = np.asarray(truth, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        error = (np.asarray(estimate) - truth) / truth * 100
        spread = np.asarray(std) / np.abs(truth) * 100
    return error, spread


def format_weight_report(estimate: NDArray, std: NDArray, truth: NDArray, title: str = "") -> str:
    """Per-element weight comparison, one line per weight."""
    error, spread = weight_error_percentages(estimate, std, truth)
    lines = [title] if title else []
    for i, (e, s, w) in enumerate(zip(error, spread, truth)):
        lines.append(f"  w[{i:2d}]: error {e:9.3f}% of {w:11.4g}, std {s:9.3f}%")
    return "\n".join(lines)


def format_method_table(method_names: Sequence[str], summary: NDArray, scale: float = 1e3) -> str:
    """
    Table of trimmed MSE, mean variance and their ratio per method.

    Args:
        method_names: Names (n_methods,)
        summary: Trimmed [mse, mean_variance, ...] per method (n_methods, >=2)
        scale: Multiplier applied to MSE and variance for readability
    """
    lines = [
        "=" * 60,
        f"{'Method':24s} {'MSE':>10s} {'Mean var.':>10s} {'Ratio':>8s}",
        f"(MSE and mean variance multiplied by {scale:g})",
        "-" * 60,
    ]
    for name, row in zip(method_names, summary):
        ratio = row[0] / row[1] if row[1] > 0 else np.inf
        lines.append(f"{name:24s} {row[0] * scale:10.4f} {row[1] * scale:10.4f} {ratio:8.3f}")
    lines.append("=" * 60)
    return "\n".join(lines)


class ResultsExporter:
    """
    Export method summaries to CSV and JSON.
    """

    def __init__(self, output_dir: str = "results"):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def to_csv(
        self,
        method_names: Sequence[str],
        summary: NDArray,
        filename: str = "comparison.csv",
    ) -> str:
        """
        Export a method summary to CSV.

        Args:
            method_names: Names (n_methods,)
            summary: Trimmed [mse, mean_variance, mean_normalized_error] per method
            filename: Output filename

        Returns:
            Path to saved file
        """
        filepath = self.output_dir / filename

        with open(filepath, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(["Method", "MSE", "Mean_Variance", "Mean_Normalized_Error", "Ratio"])
            for name, row in zip(method_names, summary):
                writer.writerow([name, row[0], row[1], row[2], row[0] / row[1] if row[1] > 0 else np.inf])

        return str(filepath)

    def to_json(self, data: Dict, filename: str = "results.json") -> str:
        """
        Export a results dictionary to JSON. Arrays become nested lists.

        Returns:
            Path to saved file
        """
        filepath = self.output_dir / filename

        def convert(value):
            if isinstance(value, np.ndarray):
                return value.tolist()
            if isinstance(value, (np.floating, np.integer)):
                return value.item()
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            if isinstance(value, (list, tuple)):
                return [convert(v) for v in value]
            return value

        with open(filepath, "w") as f:
            json.dump(convert(data), f, indent=2)

        return str(filepath)
