"""Visualization functions for fixelcfe.

This module provides plotting functions for the run diagnostics: the
design matrix and the permutation null distributions.
"""

import logging
from pathlib import Path
from typing import Optional, Tuple

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
import seaborn as sns  # noqa: E402

logger = logging.getLogger(__name__)


def plot_design_matrix(
    design_matrix: np.ndarray,
    output_path: Optional[Path] = None,
    title: str = "Design Matrix",
    figsize: Tuple[float, float] = (6, 8),
    cmap: str = "RdBu_r",
) -> plt.Figure:
    """Plot design matrix as a heatmap.

    Visualizes the design matrix with subjects as rows and regressors as columns.

    Args:
        design_matrix: Design matrix, shape (n_subjects, n_regressors).
        output_path: Path to save figure. If None, figure is not saved.
        title: Plot title.
        figsize: Figure size (width, height) in inches.
        cmap: Colormap for heatmap.

    Returns:
        Matplotlib Figure object.

    Example:
        >>> fig = plot_design_matrix(design, output_path="design.svg")
    """
    design_matrix = np.atleast_2d(design_matrix)
    fig, ax = plt.subplots(figsize=figsize)

    sns.heatmap(
        design_matrix,
        ax=ax,
        cmap=cmap,
        center=0,
        xticklabels=[f"x{i}" for i in range(design_matrix.shape[1])],
        yticklabels=design_matrix.shape[0] <= 50,
        cbar_kws={"label": "Value"},
    )

    ax.set_title(title, fontsize=14, fontweight="bold")
    ax.set_xlabel("Regressors", fontsize=12)
    ax.set_ylabel("Subjects", fontsize=12)

    plt.tight_layout()

    if output_path:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, bbox_inches="tight")
        logger.info(f"Saved design matrix plot: {output_path}")

    plt.close(fig)
    return fig


def plot_null_distribution(
    null_distribution: np.ndarray,
    output_path: Optional[Path] = None,
    title: str = "Permutation null distribution",
    figsize: Tuple[float, float] = (8, 5),
    percentile: float = 95.0,
) -> plt.Figure:
    """Plot the histogram of a maximum-statistic null distribution.

    The FWE threshold at ``percentile`` is marked with a vertical line.

    Args:
        null_distribution: Maximum statistic of each permutation.
        output_path: Path to save figure. If None, figure is not saved.
        title: Plot title.
        figsize: Figure size (width, height) in inches.
        percentile: Percentile marked on the plot.

    Returns:
        Matplotlib Figure object.
    """
    null_distribution = np.asarray(null_distribution, dtype=np.float64)
    threshold = np.percentile(null_distribution, percentile)

    fig, ax = plt.subplots(figsize=figsize)
    sns.histplot(null_distribution, ax=ax, bins="auto", color="steelblue")
    ax.axvline(threshold, color="crimson", linestyle="--",
               label=f"{percentile:g}th percentile = {threshold:.3g}")

    ax.set_title(title, fontsize=14, fontweight="bold")
    ax.set_xlabel("Maximum enhanced statistic", fontsize=12)
    ax.set_ylabel("Permutations", fontsize=12)
    ax.legend()

    plt.tight_layout()

    if output_path:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, bbox_inches="tight")
        logger.debug(f"Saved null distribution plot: {output_path}")

    plt.close(fig)
    return fig
