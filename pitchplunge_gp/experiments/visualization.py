"""
Visualization Module for the Regression Experiments

Generates the figures of the experiments:
1. 1-D GP predictions with ±1σ/±2σ bands, measurements and inducing points
2. 3-D value/state surfaces with ±2σ sheets and an analytic reference
3. PNG export with transparent background

Colour and black-and-white palettes are both available.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np
from mpl_toolkits.mplot3d import Axes3D  # noqa: F401
from numpy.typing import NDArray

# Publication-quality settings
plt.rcParams.update(
    {
        "font.family": "serif",
        "font.size": 10,
        "axes.labelsize": 11,
        "axes.titlesize": 12,
        "legend.fontsize": 9,
        "xtick.labelsize": 9,
        "ytick.labelsize": 9,
        "figure.dpi": 150,
        "savefig.dpi": 300,
        "savefig.bbox": "tight",
        "axes.grid": True,
        "grid.alpha": 0.3,
        "lines.linewidth": 1.5,
    }
)

# Colour scheme (RGB)
COLORS = {
    "black": (0.0, 0.0, 0.0),
    "white": (1.0, 1.0, 1.0),
    "red": (0.8, 0.0, 0.0),  # Measurements
    "green": (0.0, 0.4, 0.0),  # Reference surfaces
    "blue": (0.0, 0.0, 0.8),  # Posterior mean
    "yellow": (0.6, 0.6, 0.0),  # Inducing points
    "grey": (0.8, 0.8, 1.0),  # Uncertainty bands
}

# Black-and-white printing
COLORS_BW = {
    "black": (0.0, 0.0, 0.0),
    "white": (1.0, 1.0, 1.0),
    "red": (0.0, 0.0, 0.0),
    "green": (0.6, 0.6, 0.6),
    "blue": (0.2, 0.2, 0.2),
    "yellow": (0.4, 0.4, 0.4),
    "grey": (0.8, 0.8, 0.8),
}


def get_palette(use_color: bool = True) -> Dict[str, Tuple[float, float, float]]:
    return COLORS if use_color else COLORS_BW


def _mix(c1, c2) -> Tuple[float, ...]:
    return tuple((a + b) / 2 for a, b in zip(c1, c2))


@dataclass
class FigureConfig:
    """Configuration for figure generation."""

    figsize: Tuple[float, float] = (6.0, 4.5)
    use_color: bool = True

    # File output
    save_format: str = "png"
    transparent: bool = True

    @property
    def palette(self) -> Dict[str, Tuple[float, float, float]]:
        return get_palette(self.use_color)


def save_figure(fig: plt.Figure, output_dir: str, name: str, config: Optional[FigureConfig] = None) -> str:
    """
    Save a figure as <output_dir>/<name>.<format>.

    Returns:
        Path to saved file
    """
    config = config or FigureConfig()
    directory = Path(output_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{name}.{config.save_format}"
    fig.savefig(path, transparent=config.transparent)
    return str(path)


class GPVisualizer:
    """
    Visualize 1-D GP predictions and uncertainty.
    """

    def __init__(self, config: Optional[FigureConfig] = None):
        self.config = config or FigureConfig()

    def plot_prediction_1d(
        self,
        x_test: NDArray,
        mean: NDArray,
        std: NDArray,
        x_train: Optional[NDArray] = None,
        y_train: Optional[NDArray] = None,
        truth: Optional[NDArray] = None,
        inducing: Optional[Tuple[NDArray, NDArray, NDArray]] = None,
        ylim: Optional[Tuple[float, float]] = None,
        ax: Optional[plt.Axes] = None,
    ) -> plt.Axes:
        """
        Plot a 1-D GP prediction with uncertainty.

        Args:
            x_test: Trial inputs (P,)
            mean: Predictive mean (P,)
            std: Predictive std (P,)
            x_train: Measurement inputs
            y_train: Measurement outputs
            truth: True function at the trial inputs (P,)
            inducing: (inputs, means, stds) of inducing points, drawn with
                ±2σ error bars
            ylim: Output axis limits
            ax: Matplotlib axes

        Returns:
            Axes
        """
        if ax is None:
            fig, ax = plt.subplots(figsize=self.config.figsize)
        colors = self.config.palette

        x_test = np.asarray(x_test).flatten()
        order = np.argsort(x_test)
        x_plot, mean_plot, std_plot = x_test[order], np.asarray(mean)[order], np.asarray(std)[order]

        ax.fill_between(
            x_plot,
            mean_plot - 2 * std_plot,
            mean_plot + 2 * std_plot,
            color=_mix(colors["grey"], colors["white"]),
            linewidth=0,
            label="±2σ",  # noqa: RUF001
        )
        ax.fill_between(
            x_plot,
            mean_plot - std_plot,
            mean_plot + std_plot,
            color=colors["grey"],
            linewidth=0,
            label="±1σ",  # noqa: RUF001
        )
        ax.set_axisbelow(False)
        ax.plot(x_plot, mean_plot, "-", color=colors["blue"], linewidth=1, label="Mean")

        if x_train is not None and y_train is not None:
            ax.plot(np.asarray(x_train).flatten(), y_train, "o", color=colors["red"], fillstyle="none", label="Measurements")
        if truth is not None:
            ax.plot(x_plot, np.asarray(truth)[order], "-", color=colors["black"], label="True function")
        if inducing is not None:
            X_u, mu_u, std_u = inducing
            ax.errorbar(
                np.asarray(X_u).flatten(), mu_u, yerr=2 * np.asarray(std_u), fmt="*", color=colors["yellow"], label="Inducing points"
            )

        ax.set_xlim(x_plot[0], x_plot[-1])
        if ylim is not None:
            ax.set_ylim(*ylim)
        ax.set_xlabel("Input")
        ax.set_ylabel("Output")

        return ax


class SurfaceVisualizer:
    """
    Visualize predictions over a 2-D grid as 3-D surfaces.
    """

    def __init__(self, config: Optional[FigureConfig] = None):
        self.config = config or FigureConfig()

    def plot_surface(
        self,
        X1: NDArray,
        X2: NDArray,
        mean: NDArray,
        std: Optional[NDArray] = None,
        reference: Optional[NDArray] = None,
        labels: Tuple[str, str, str] = ("x₁", "x₂", "f"),
        view: Optional[Tuple[float, float]] = None,
        zlim: Optional[Tuple[float, float]] = None,
        ax=None,
    ):
        """
        Plot the posterior mean with ±2σ sheets.

        Args:
            X1, X2: Meshgrid arrays (n, n)
            mean: Posterior mean on the grid (n, n)
            std: Posterior std on the grid (n, n)
            reference: Reference surface, e.g. the analytic value (n, n)
            labels: Axis labels
            view: (elevation, azimuth)
            zlim: Output axis limits
            ax: 3-D axes

        Returns:
            Axes
        """
        if ax is None:
            fig = plt.figure(figsize=self.config.figsize)
            ax = fig.add_subplot(111, projection="3d")
        colors = self.config.palette
        face = colors["blue"] if self.config.use_color else (0.5, 0.5, 0.5)
        reference_face = colors["green"] if self.config.use_color else (0.8, 0.8, 0.8)

        if std is not None:
            for sheet in (mean - 2 * std, mean + 2 * std):
                ax.plot_surface(X1, X2, sheet, color=face, alpha=0.3, linewidth=0)
        ax.plot_surface(X1, X2, mean, color=face, alpha=0.8, edgecolor="k", linewidth=0.2)
        if reference is not None:
            ax.plot_surface(X1, X2, reference, color=reference_face, alpha=0.8, edgecolor="k", linewidth=0.2)

        ax.set_xlabel(labels[0])
        ax.set_ylabel(labels[1])
        ax.set_zlabel(labels[2])
        if zlim is not None:
            ax.set_zlim(*zlim)
        if view is not None:
            ax.view_init(elev=view[0], azim=view[1])

        return ax
