"""Assembly of the subject data matrix.

Each subject's fixels are matched onto the template fixels voxel by voxel
through the closest direction, then smoothed with the connectivity-based
smoothing weights.
"""

import logging
import math
from pathlib import Path
from typing import List, Union

import numpy as np

from fixelcfe.connectivity.graph import FixelGraph
from fixelcfe.fixels.index import FixelIndex
from fixelcfe.io.fixels import FixelDirectory, load_fixel_data, load_fixel_directory
from fixelcfe.utils.exceptions import FixelDataError

logger = logging.getLogger(__name__)


def match_subject_fixels(
    fixel_index: FixelIndex,
    subject_fixels: FixelDirectory,
    subject_values: np.ndarray,
    angular_threshold: float = 30.0,
) -> np.ndarray:
    """Map a subject's fixel values onto the template fixels.

    For every template fixel, the subject fixel of the same voxel with the
    largest absolute dot product is selected; its value is used if the
    angle between them is below ``angular_threshold``, otherwise the
    template fixel gets 0.

    Args:
        fixel_index: Template fixels.
        subject_fixels: Fixel layout of the subject image.
        subject_values: One value per subject fixel.
        angular_threshold: Maximum angle in degrees.

    Returns:
        Array of shape (n_template_fixels,).

    Raises:
        FixelDataError: If the subject grid differs from the template grid.
    """
    if tuple(subject_fixels.shape) != tuple(fixel_index.shape):
        raise FixelDataError(
            f"Subject fixel image {subject_fixels.path} has dimensions "
            f"{subject_fixels.shape}, expected {fixel_index.shape}"
        )

    voxels = tuple(fixel_index.voxels.T)
    counts = subject_fixels.counts[voxels]
    offsets = subject_fixels.offsets[voxels]
    values = np.zeros(len(fixel_index))

    max_count = int(counts.max()) if len(counts) else 0
    if max_count == 0:
        return values

    # Candidate subject fixels of each template fixel, padded to max_count
    slots = np.arange(max_count)
    valid = slots[None, :] < counts[:, None]
    candidates = np.where(valid, offsets[:, None] + slots[None, :], 0)

    dot_products = np.abs(np.einsum(
        "nkd,nd->nk", subject_fixels.directions[candidates], fixel_index.directions
    ))
    dot_products[~valid] = -1.0

    closest = np.argmax(dot_products, axis=1)
    rows = np.arange(len(fixel_index))
    matched = dot_products[rows, closest] > math.cos(math.radians(angular_threshold))
    values[matched] = subject_values[candidates[rows, closest]][matched]

    logger.debug(
        f"Matched {int(matched.sum())}/{len(fixel_index)} template fixels "
        f"in {subject_fixels.path}"
    )
    return values


def smooth_fixel_data(values: np.ndarray, smoothing: FixelGraph) -> np.ndarray:
    """Weighted average of each fixel's value over its smoothing neighbours."""
    return smoothing.matrix @ np.asarray(values, dtype=np.float64)


def load_subject_data(
    fixel_index: FixelIndex,
    subject_files: List[Union[str, Path]],
    smoothing: FixelGraph,
    angular_threshold: float = 30.0,
) -> np.ndarray:
    """Build the (n_fixels, n_subjects) data matrix.

    Args:
        fixel_index: Template fixels.
        subject_files: One fixel data file per subject; the index and
            directions images are read from the same directory.
        smoothing: Smoothing weights.
        angular_threshold: Maximum angle for fixel correspondence.

    Returns:
        Read-only data matrix.
    """
    data = np.zeros((len(fixel_index), len(subject_files)))

    for subject, subject_file in enumerate(subject_files):
        subject_file = Path(subject_file)
        subject_fixels = load_fixel_directory(subject_file.parent)
        subject_values = load_fixel_data(subject_file, subject_fixels.n_fixels)

        matched = match_subject_fixels(
            fixel_index, subject_fixels, subject_values, angular_threshold
        )
        data[:, subject] = smooth_fixel_data(matched, smoothing)

    logger.info(f"Loaded data for {len(subject_files)} subjects")

    data.setflags(write=False)
    return data
