"""Mapping of streamlines to voxel/tangent samples.

This is the stateless middle stage of the connectivity pipeline: any number
of threads may call the same :class:`TrackMapper` concurrently.
"""

from typing import List, Tuple

import numpy as np
from nibabel.affines import apply_affine, voxel_sizes

Sample = Tuple[Tuple[int, int, int], np.ndarray]


class TrackMapper:
    """Convert a streamline into the ordered set of voxels it visits.

    Each visited voxel is reported once, in order of first visit, with the
    unit mean tangent of the streamline inside that voxel (tangents are
    sign-aligned before averaging).

    Args:
        affine: Voxel to scanner transform of the fixel grid.
        shape: Spatial shape (X, Y, Z) of the fixel grid.
        upsample_ratio: The streamline is resampled so that consecutive
            points are at most ``min(voxel_size) / upsample_ratio`` apart.
    """

    def __init__(self, affine: np.ndarray, shape, upsample_ratio: float = 3.0):
        self.inverse_affine = np.linalg.inv(np.asarray(affine, dtype=np.float64))
        self.shape = np.asarray(shape[:3], dtype=np.int64)
        self.step = float(np.min(voxel_sizes(affine))) / upsample_ratio

    def upsample(self, points: np.ndarray) -> np.ndarray:
        """Linearly resample ``points`` to a step no larger than ``self.step``."""
        segments = np.diff(points, axis=0)
        lengths = np.linalg.norm(segments, axis=1)
        n_sub = np.maximum(1, np.ceil(lengths / self.step)).astype(np.int64)

        segment_ids = np.repeat(np.arange(len(segments)), n_sub)
        starts = np.repeat(np.cumsum(n_sub) - n_sub, n_sub)
        fractions = (np.arange(n_sub.sum()) - starts) / np.repeat(n_sub, n_sub)

        upsampled = points[segment_ids] + segments[segment_ids] * fractions[:, None]
        return np.vstack([upsampled, points[-1:]])

    def __call__(self, streamline) -> List[Sample]:
        points = np.asarray(streamline, dtype=np.float64)
        if points.ndim != 2 or len(points) < 2:
            return []

        points = self.upsample(points)
        tangents = np.gradient(points, axis=0)
        voxels = np.rint(apply_affine(self.inverse_affine, points)).astype(np.int64)

        inside = np.all((voxels >= 0) & (voxels < self.shape), axis=1)
        voxels = voxels[inside]
        tangents = tangents[inside]
        if len(voxels) == 0:
            return []

        flat = np.ravel_multi_index(tuple(voxels.T), tuple(self.shape))
        unique_flat, first_visit, inverse = np.unique(
            flat, return_index=True, return_inverse=True
        )
        inverse = inverse.reshape(-1)

        # Orientation is irrelevant: flip tangents onto the voxel's first one
        reference = tangents[first_visit[inverse]]
        signs = np.where(np.einsum("ij,ij->i", tangents, reference) < 0, -1.0, 1.0)
        summed = np.zeros((len(unique_flat), 3))
        np.add.at(summed, inverse, tangents * signs[:, None])

        samples = []
        for i in np.argsort(first_visit, kind="stable"):
            norm = np.linalg.norm(summed[i])
            if norm == 0:
                continue
            voxel = tuple(int(v) for v in voxels[first_visit[i]])
            samples.append((voxel, summed[i] / norm))
        return samples
