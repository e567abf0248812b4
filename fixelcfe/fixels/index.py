"""Enumeration of the fixels of interest.

The fixel index assigns every fixel of the template (optionally restricted
by a fixel mask) a contiguous integer id, voxel by voxel in C order, and
keeps, for every voxel, the range of ids it owns.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from nibabel.affines import apply_affine

from fixelcfe.io.fixels import FixelDirectory
from fixelcfe.utils.exceptions import FixelDataError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Fixel:
    """A single fixel of the index."""
    id: int
    position: np.ndarray
    direction: np.ndarray
    voxel: Tuple[int, int, int]


class FixelIndex:
    """Immutable set of fixels with per-voxel id ranges.

    Attributes:
        affine: Voxel to scanner transform.
        counts: Number of fixels per voxel, shape (X, Y, Z).
        offsets: First fixel id of each voxel, -1 where the voxel is empty.
        directions: Unit direction per fixel, shape (N, 3).
        voxels: Owning voxel per fixel, shape (N, 3).
        positions: Scanner-space position (voxel centre) per fixel, shape (N, 3).
    """

    def __init__(
        self,
        affine: np.ndarray,
        counts: np.ndarray,
        offsets: np.ndarray,
        directions: np.ndarray,
        voxels: np.ndarray,
    ):
        self.affine = np.asarray(affine, dtype=np.float64)
        self.counts = counts
        self.offsets = offsets
        self.directions = directions
        self.voxels = voxels
        self.positions = apply_affine(self.affine, voxels)

        for array in (self.counts, self.offsets, self.directions,
                      self.voxels, self.positions):
            array.setflags(write=False)

    @classmethod
    def from_fixel_directory(
        cls,
        fixel_dir: FixelDirectory,
        mask: Optional[np.ndarray] = None,
    ) -> "FixelIndex":
        """Build the index from a template fixel directory.

        Args:
            fixel_dir: Template fixel layout.
            mask: Optional per-fixel values of the template; fixels with a
                zero value are left out.

        Returns:
            The fixel index.

        Raises:
            FixelDataError: If the mask size does not match the template or
                no fixel is left.
        """
        counts = fixel_dir.counts
        occupied = np.argwhere(counts > 0)
        voxel_counts = counts[tuple(occupied.T)]
        voxel_offsets = fixel_dir.offsets[tuple(occupied.T)]

        # Template ids of all fixels, grouped voxel by voxel in C order
        total = int(voxel_counts.sum())
        starts = np.repeat(np.cumsum(voxel_counts) - voxel_counts, voxel_counts)
        source_ids = np.repeat(voxel_offsets, voxel_counts) + (np.arange(total) - starts)
        voxels = np.repeat(occupied, voxel_counts, axis=0)

        if mask is not None:
            mask = np.asarray(mask).reshape(-1)
            if len(mask) != fixel_dir.n_fixels:
                raise FixelDataError(
                    f"Fixel mask holds {len(mask)} values but the template "
                    f"has {fixel_dir.n_fixels} fixels"
                )
            keep = mask[source_ids] != 0
            source_ids = source_ids[keep]
            voxels = voxels[keep]

        if len(source_ids) == 0:
            raise FixelDataError("No fixels found in the template fixel mask")

        shape = counts.shape
        new_counts = np.zeros(shape, dtype=np.int64)
        np.add.at(new_counts, tuple(voxels.T), 1)

        new_offsets = np.full(shape, -1, dtype=np.int64)
        flat_voxels = np.ravel_multi_index(tuple(voxels.T), shape)
        unique_voxels, first_ids = np.unique(flat_voxels, return_index=True)
        new_offsets.flat[unique_voxels] = first_ids

        index = cls(
            affine=fixel_dir.affine,
            counts=new_counts,
            offsets=new_offsets,
            directions=np.array(fixel_dir.directions[source_ids], dtype=np.float64),
            voxels=voxels.astype(np.int64),
        )
        logger.info(f"Number of fixels: {len(index)}")
        return index

    def __len__(self) -> int:
        return len(self.directions)

    @property
    def n_fixels(self) -> int:
        return len(self.directions)

    @property
    def shape(self) -> Tuple[int, int, int]:
        return self.counts.shape

    def __getitem__(self, fixel_id: int) -> Fixel:
        assert 0 <= fixel_id < len(self), f"fixel id {fixel_id} out of range"
        return Fixel(
            id=int(fixel_id),
            position=self.positions[fixel_id],
            direction=self.directions[fixel_id],
            voxel=tuple(int(v) for v in self.voxels[fixel_id]),
        )

    def contains_voxel(self, voxel) -> bool:
        """Whether ``voxel`` lies inside the image grid."""
        return all(0 <= int(v) < s for v, s in zip(voxel, self.shape))

    def voxel_range(self, voxel) -> Tuple[int, int]:
        """Return ``(start, count)`` of the fixel ids owned by ``voxel``.

        ``start`` is -1 and ``count`` 0 for voxels without fixels or outside
        the grid.
        """
        if not self.contains_voxel(voxel):
            return -1, 0
        voxel = tuple(int(v) for v in voxel)
        return int(self.offsets[voxel]), int(self.counts[voxel])

    def to_fixel_directory(self) -> FixelDirectory:
        """Layout of the indexed fixels, suitable for writing outputs."""
        return FixelDirectory(
            path=None,
            affine=self.affine,
            counts=np.array(self.counts),
            offsets=np.where(self.counts > 0, self.offsets, 0),
            directions=np.array(self.directions),
        )
