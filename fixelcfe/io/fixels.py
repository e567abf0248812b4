"""Readers and writers for fixel directories.

A fixel directory holds:

- ``index.nii[.gz]``: 4D image of shape (X, Y, Z, 2). Volume 0 is the
  number of fixels in each voxel, volume 1 the id of the first of them.
- ``directions.nii[.gz]``: image of shape (N, 3, 1) holding one unit
  direction per fixel, in scanner space.
- any number of data files of shape (N, 1, 1), one value per fixel.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

import nibabel as nib
import numpy as np

from fixelcfe.config.loader import make_serializable
from fixelcfe.utils.exceptions import FixelDataError

logger = logging.getLogger(__name__)

INDEX_STEM = "index"
DIRECTIONS_STEM = "directions"
NIFTI_EXTENSIONS = (".nii.gz", ".nii")


@dataclass
class FixelDirectory:
    """Fixel layout of an image: per-voxel counts, offsets and directions.

    Attributes:
        path: Directory the layout was read from (None if built in memory).
        affine: Voxel to scanner transform of the spatial grid.
        counts: Number of fixels per voxel, shape (X, Y, Z).
        offsets: Id of the first fixel of each voxel, shape (X, Y, Z).
        directions: Unit fixel directions, shape (N, 3).
    """
    path: Optional[Path]
    affine: np.ndarray
    counts: np.ndarray
    offsets: np.ndarray
    directions: np.ndarray

    @property
    def shape(self):
        return self.counts.shape

    @property
    def n_fixels(self) -> int:
        return len(self.directions)


def find_fixel_file(directory: Union[str, Path], stem: str) -> Path:
    """Locate ``<stem>.nii.gz`` or ``<stem>.nii`` inside a fixel directory.

    Raises:
        FixelDataError: If neither file exists.
    """
    directory = Path(directory)
    for extension in NIFTI_EXTENSIONS:
        candidate = directory / f"{stem}{extension}"
        if candidate.is_file():
            return candidate
    raise FixelDataError(
        f"No '{stem}' image found in fixel directory {directory}. "
        f"Expected one of: {[stem + ext for ext in NIFTI_EXTENSIONS]}"
    )


def load_fixel_directory(path: Union[str, Path]) -> FixelDirectory:
    """Read the index and directions images of a fixel directory.

    Args:
        path: Fixel directory, or any file inside it.

    Returns:
        The fixel layout.

    Raises:
        FixelDataError: If the directory or its images are missing or
            inconsistent.
    """
    path = Path(path)
    directory = path if path.is_dir() else path.parent
    if not directory.is_dir():
        raise FixelDataError(f"Fixel directory not found: {directory}")

    index_img = nib.load(str(find_fixel_file(directory, INDEX_STEM)))
    index = np.asanyarray(index_img.dataobj)
    if index.ndim != 4 or index.shape[3] != 2:
        raise FixelDataError(
            f"Fixel index image in {directory} must have shape (X, Y, Z, 2), "
            f"got {index.shape}"
        )

    directions_img = nib.load(str(find_fixel_file(directory, DIRECTIONS_STEM)))
    directions = np.asanyarray(directions_img.dataobj, dtype=np.float64)
    directions = directions.reshape(directions.shape[0], -1)
    if directions.shape[1] != 3:
        raise FixelDataError(
            f"Fixel directions image in {directory} must have shape (N, 3, 1), "
            f"got {directions_img.shape}"
        )

    counts = np.asarray(index[..., 0], dtype=np.int64)
    offsets = np.asarray(index[..., 1], dtype=np.int64)
    occupied = counts > 0
    if occupied.any() and (offsets[occupied] + counts[occupied]).max() > len(directions):
        raise FixelDataError(
            f"Fixel index in {directory} refers to more fixels than the "
            f"{len(directions)} directions available"
        )

    norms = np.linalg.norm(directions, axis=1, keepdims=True)
    directions = np.divide(directions, norms, out=np.zeros_like(directions), where=norms > 0)

    logger.debug(f"Loaded fixel directory {directory}: {len(directions)} fixels")

    return FixelDirectory(
        path=directory,
        affine=index_img.affine,
        counts=counts,
        offsets=offsets,
        directions=directions,
    )


def load_fixel_data(path: Union[str, Path], n_fixels: Optional[int] = None) -> np.ndarray:
    """Read a fixel data file as a 1D array.

    Args:
        path: Fixel data image of shape (N, 1, 1).
        n_fixels: Expected number of fixels, checked if given.

    Returns:
        Array of shape (N,).

    Raises:
        FixelDataError: If the file is missing or has the wrong size.
    """
    path = Path(path)
    if not path.is_file():
        raise FixelDataError(f"Fixel data file not found: {path}")

    values = np.asanyarray(nib.load(str(path)).dataobj, dtype=np.float64).reshape(-1)
    if n_fixels is not None and len(values) != n_fixels:
        raise FixelDataError(
            f"Fixel data file {path} holds {len(values)} values, "
            f"expected {n_fixels} (one per fixel)"
        )
    return values


def save_fixel_directory(
    output_dir: Union[str, Path],
    affine: np.ndarray,
    counts: np.ndarray,
    offsets: np.ndarray,
    directions: np.ndarray,
) -> Path:
    """Write the index and directions images of a fixel directory.

    Returns:
        The output directory.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    index = np.stack([counts, offsets], axis=-1).astype(np.int32)
    nib.save(nib.Nifti1Image(index, affine), str(output_dir / f"{INDEX_STEM}.nii.gz"))

    directions = np.asarray(directions, dtype=np.float32).reshape(-1, 3, 1)
    nib.save(nib.Nifti1Image(directions, np.eye(4)),
             str(output_dir / f"{DIRECTIONS_STEM}.nii.gz"))

    return output_dir


def save_fixel_data(
    values: np.ndarray,
    output_path: Union[str, Path],
    metadata: Optional[Dict[str, Any]] = None,
) -> Path:
    """Save one value per fixel, with a JSON sidecar.

    Args:
        values: Array of shape (N,).
        output_path: Path of the output data file (.nii or .nii.gz).
        metadata: Provenance written to the JSON sidecar.

    Returns:
        Path to the saved data file.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    data = np.asarray(values, dtype=np.float32).reshape(-1, 1, 1)
    nib.save(nib.Nifti1Image(data, np.eye(4)), str(output_path))

    sidecar = dict(metadata or {})
    sidecar['NumberOfFixels'] = int(data.shape[0])
    sidecar['CreationTime'] = datetime.now().isoformat()

    sidecar_path = output_path.with_suffix('').with_suffix('.json')
    with sidecar_path.open('w') as f:
        json.dump(make_serializable(sidecar), f, indent=2)

    logger.debug(f"Saved {output_path}")

    return output_path
