"""File writers for outputs."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np

from fixelcfe.config.loader import make_serializable
from fixelcfe.io.fixels import save_fixel_data, save_fixel_directory
from fixelcfe.utils.visualization import plot_null_distribution

logger = logging.getLogger(__name__)

FIXEL_DATA_EXTENSION = ".nii.gz"


def save_fixel_template(fixel_index, output_dir: Path) -> None:
    """Write the index and directions of the analysed fixels.

    Output data files are only meaningful alongside this layout, which
    differs from the input template when a mask was applied.

    Args:
        fixel_index: FixelIndex of the analysed fixels
        output_dir: Output fixel directory
    """
    fixel_dir = fixel_index.to_fixel_directory()
    save_fixel_directory(
        output_dir,
        fixel_dir.affine,
        fixel_dir.counts,
        fixel_dir.offsets,
        fixel_dir.directions,
    )


def save_fixel_outputs(
    outputs: Dict[str, np.ndarray],
    output_dir: Path,
    metadata: Dict[str, Any],
) -> Dict[str, Path]:
    """Save a set of fixel data files, each with its JSON sidecar.

    Args:
        outputs: Mapping from output name (file stem) to one value per fixel
        output_dir: Output fixel directory
        metadata: Provenance copied into every sidecar

    Returns:
        Mapping from output name to saved path
    """
    saved = {}
    for name, values in outputs.items():
        sidecar = metadata.copy()
        sidecar['Description'] = name
        saved[name] = save_fixel_data(
            values, Path(output_dir) / f"{name}{FIXEL_DATA_EXTENSION}", sidecar
        )
    logger.info(f"Saved {len(saved)} fixel data files to {output_dir}")
    return saved


def save_null_distribution(
    null_distribution: np.ndarray,
    output_path: Path,
    metadata: Optional[Dict[str, Any]] = None,
    plot: bool = True,
) -> Path:
    """Save a permutation null distribution as a plain text list.

    One value per line, in permutation order. A JSON sidecar with summary
    values and, optionally, an SVG histogram are written next to it.

    Args:
        null_distribution: Maximum statistic of each permutation
        output_path: Path for the output .txt file
        metadata: Optional provenance for the sidecar
        plot: Also save a histogram

    Returns:
        Path to the saved text file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    null_distribution = np.asarray(null_distribution, dtype=np.float64)
    np.savetxt(output_path, null_distribution, fmt='%.10g')

    sidecar = dict(metadata or {})
    sidecar['NumberOfPermutations'] = int(len(null_distribution))
    sidecar['Max'] = float(null_distribution.max()) if len(null_distribution) else None
    sidecar['Percentile95'] = (
        float(np.percentile(null_distribution, 95)) if len(null_distribution) else None
    )
    sidecar['CreationTime'] = datetime.now().isoformat()

    with output_path.with_suffix('.json').open('w') as f:
        json.dump(make_serializable(sidecar), f, indent=2)

    if plot and len(null_distribution):
        plot_null_distribution(
            null_distribution,
            output_path=output_path.with_suffix('.svg'),
            title=output_path.stem,
        )

    logger.debug(f"Saved null distribution: {output_path}")
    return output_path
