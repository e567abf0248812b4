"""Normalisation and thresholding of fixel-fixel connectivity.

Turns symmetric streamline counts into:

- the connectivity graph used by the enhancement, holding the fraction of
  shared streamlines raised to the connectivity exponent C, and
- the smoothing weights, combining that fraction with a Gaussian of the
  distance between fixels, normalised to sum to one per fixel.
"""

import logging
import math
from typing import Tuple

import numpy as np
from scipy import sparse

from fixelcfe.connectivity.graph import FixelGraph

logger = logging.getLogger(__name__)

ROW_SUM_TOLERANCE = 1e-6


def gaussian(distance, sigma: float):
    """Gaussian kernel ``exp(-d^2 / (2 sigma^2)) / (sigma sqrt(2 pi))``."""
    distance = np.asarray(distance, dtype=np.float64)
    return np.exp(-distance ** 2 / (2.0 * sigma ** 2)) / (sigma * math.sqrt(2.0 * math.pi))


def connectivity_fractions(
    counts: sparse.spmatrix,
    density: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Fraction of shared streamlines for every recorded fixel pair.

    The fraction of fixel ``f``'s streamlines that also visit ``g`` is
    ``count(f, g) / density(f)``. The value kept for the pair is the smaller
    of its two directional fractions, ``count / max(density(f),
    density(g))``, so that the graph stays symmetric.

    Args:
        counts: Symmetric streamline counts, zero diagonal.
        density: Number of streamline visits per fixel.

    Returns:
        Tuple of (rows, columns, fractions) for every off-diagonal entry.
    """
    coo = sparse.coo_matrix(counts)
    off_diagonal = coo.row != coo.col
    rows = coo.row[off_diagonal].astype(np.int64)
    columns = coo.col[off_diagonal].astype(np.int64)
    values = coo.data[off_diagonal]

    denominator = np.maximum(density[rows], density[columns]).astype(np.float64)
    assert np.all(denominator > 0), "connected fixels must have a non-zero density"

    return rows, columns, values / denominator


def normalise_connectivity(
    counts: sparse.spmatrix,
    density: np.ndarray,
    positions: np.ndarray,
    connectivity_threshold: float = 0.01,
    smooth_sigma: float = 10.0 / 2.3548,
    cfe_c: float = 0.1,
) -> Tuple[FixelGraph, FixelGraph]:
    """Build the connectivity graph and the smoothing weights.

    Args:
        counts: Symmetric streamline counts from
            :meth:`RawConnectivity.symmetrise`.
        density: Number of streamline visits per fixel.
        positions: Scanner-space position of every fixel, shape (N, 3).
        connectivity_threshold: Connections whose fraction (and smoothing
            weight) do not exceed this value are dropped.
        smooth_sigma: Standard deviation (mm) of the smoothing Gaussian.
            0 disables smoothing (the weights reduce to the identity).
        cfe_c: Connectivity exponent applied to every retained fraction.

    Returns:
        Tuple of (connectivity, smoothing weights).
    """
    n_fixels = len(density)
    shape = (n_fixels, n_fixels)
    diagonal = np.arange(n_fixels)

    rows, columns, fractions = connectivity_fractions(counts, density)
    keep = fractions > connectivity_threshold
    rows, columns, fractions = rows[keep], columns[keep], fractions[keep]

    # Every fixel is fully connected to itself
    connectivity = FixelGraph(sparse.coo_matrix(
        (np.concatenate([fractions ** cfe_c, np.ones(n_fixels)]),
         (np.concatenate([rows, diagonal]), np.concatenate([columns, diagonal]))),
        shape=shape,
    ))

    if smooth_sigma > 0:
        distances = np.linalg.norm(positions[rows] - positions[columns], axis=1)
        weights = fractions * gaussian(distances, smooth_sigma)
        keep_weights = weights > connectivity_threshold
        smooth_rows = rows[keep_weights]
        smooth_columns = columns[keep_weights]
        weights = weights[keep_weights]
        self_weight = float(gaussian(0.0, smooth_sigma))
    else:
        smooth_rows = smooth_columns = np.zeros(0, dtype=np.int64)
        weights = np.zeros(0)
        self_weight = 1.0

    unnormalised = sparse.coo_matrix(
        (np.concatenate([weights, np.full(n_fixels, self_weight)]),
         (np.concatenate([smooth_rows, diagonal]), np.concatenate([smooth_columns, diagonal]))),
        shape=shape,
    ).tocsr()
    row_sums = np.asarray(unnormalised.sum(axis=1)).reshape(-1)
    smoothing = FixelGraph(sparse.diags(1.0 / row_sums) @ unnormalised)

    assert connectivity.is_symmetric(), "connectivity graph failed to symmetrise"
    assert connectivity.has_self_entries() and smoothing.has_self_entries(), \
        "missing fixel self-connection"
    assert np.allclose(smoothing.row_sums(), 1.0, atol=ROW_SUM_TOLERANCE), \
        "smoothing weights do not sum to one"

    logger.info(
        f"Connectivity: {(connectivity.nnz - n_fixels) / max(n_fixels, 1):.1f} "
        f"connections per fixel on average "
        f"(threshold {connectivity_threshold}, C = {cfe_c})"
    )
    logger.debug(f"Smoothing weights: {smoothing.nnz} entries (sigma = {smooth_sigma:.3f} mm)")

    return connectivity, smoothing
