"""File readers for various formats."""

import logging
from pathlib import Path
from typing import Iterator, List, Tuple

import nibabel as nib
import numpy as np
import pandas as pd

from fixelcfe.utils.exceptions import ConfigurationError, ConnectivityError, FixelDataError

logger = logging.getLogger(__name__)

TABLE_EXTENSIONS = {'.tsv': '\t', '.csv': ','}


def read_subject_list(list_path: Path) -> List[Path]:
    """Read the list of subject fixel data files.

    One file per line; relative paths are resolved against the folder
    containing the list. Blank lines and lines starting with '#' are
    ignored.

    Args:
        list_path: Path to the text file

    Returns:
        List of absolute paths, in listed order

    Raises:
        FixelDataError: If the list or any listed file does not exist, or
            the list is empty

    Example:
        >>> read_subject_list(Path("subjects.txt"))
        [PosixPath('/data/fd/sub-01.nii.gz'), PosixPath('/data/fd/sub-02.nii.gz')]
    """
    list_path = Path(list_path)
    if not list_path.exists():
        raise FixelDataError(f"Subject list not found: {list_path}")

    subject_files = []
    missing = []
    for line in list_path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        subject_file = Path(line)
        if not subject_file.is_absolute():
            subject_file = list_path.parent / subject_file
        if not subject_file.exists():
            missing.append(str(subject_file))
        subject_files.append(subject_file.resolve())

    if missing:
        raise FixelDataError(
            f"{len(missing)} input fixel file(s) not found:\n  " + "\n  ".join(missing[:10])
        )
    if not subject_files:
        raise FixelDataError(f"No subject files listed in {list_path}")

    logger.info(f"Number of subjects: {len(subject_files)}")
    return subject_files


def load_matrix_file(matrix_path: Path) -> np.ndarray:
    """Load a numeric matrix from a text file.

    Plain text files are whitespace-separated without header. TSV and CSV
    files may carry a header row of column names, which is skipped.

    Args:
        matrix_path: Path to the matrix file

    Returns:
        2D float array; a single line gives one row

    Raises:
        ConfigurationError: If the file is missing or not numeric
    """
    matrix_path = Path(matrix_path)
    if not matrix_path.exists():
        raise ConfigurationError(f"Matrix file not found: {matrix_path}")

    suffix = matrix_path.suffix.lower()
    try:
        if suffix in TABLE_EXTENSIONS:
            df = pd.read_csv(matrix_path, sep=TABLE_EXTENSIONS[suffix], header=None)
            # Drop a header row of column names
            if not pd.to_numeric(df.iloc[0], errors='coerce').notna().all():
                df = df.iloc[1:]
            matrix = df.apply(pd.to_numeric).to_numpy(dtype=np.float64)
        else:
            matrix = np.loadtxt(matrix_path, dtype=np.float64, ndmin=2)
    except ValueError as e:
        raise ConfigurationError(f"Could not read numeric matrix from {matrix_path}: {e}") from e

    if matrix.size == 0:
        raise ConfigurationError(f"Matrix file is empty: {matrix_path}")

    return np.atleast_2d(matrix)


def load_exchangeability_blocks(blocks_path: Path, n_subjects: int) -> np.ndarray:
    """Load one exchangeability block label per subject.

    Args:
        blocks_path: Text file with one integer per line (or per column)
        n_subjects: Expected number of labels

    Returns:
        Integer array of shape (n_subjects,)

    Raises:
        ConfigurationError: If the file is missing or has the wrong length
    """
    blocks = load_matrix_file(blocks_path).reshape(-1)
    if len(blocks) != n_subjects:
        raise ConfigurationError(
            f"Exchangeability blocks file {blocks_path} has {len(blocks)} entries, "
            f"expected one per subject ({n_subjects})"
        )
    if not np.all(blocks == np.round(blocks)):
        raise ConfigurationError(f"Exchangeability blocks must be integers: {blocks_path}")

    labels = blocks.astype(np.int64)
    logger.info(f"Exchangeability blocks: {len(np.unique(labels))}")
    return labels


def load_tracks(tracks_path: Path) -> Tuple[Iterator[np.ndarray], int]:
    """Open a tractogram for streaming.

    Streamlines are read lazily in world coordinates, so the whole
    tractogram never needs to fit in memory.

    Args:
        tracks_path: Path to a .tck or .trk file

    Returns:
        Tuple of (streamlines, count):
        - streamlines: Iterator over (n_points, 3) arrays
        - count: Number of streamlines declared in the header

    Raises:
        ConnectivityError: If the file is missing or not a tractogram
    """
    tracks_path = Path(tracks_path)
    if not tracks_path.exists():
        raise ConnectivityError(f"Tractogram not found: {tracks_path}")

    try:
        tractogram_file = nib.streamlines.load(str(tracks_path), lazy_load=True)
    except Exception as e:
        raise ConnectivityError(f"Could not read tractogram {tracks_path}: {e}") from e

    count = _declared_count(tractogram_file.header)
    logger.info(f"Tractogram {tracks_path.name}: {count} streamlines declared")

    return iter(tractogram_file.streamlines), count


def _declared_count(header) -> int:
    """Streamline count stored in a .trk or .tck header, 0 when absent.

    TRK headers hold it under ``nb_streamlines``, TCK headers under
    ``count`` as a zero-padded string.
    """
    count = header.get(nib.streamlines.Field.NB_STREAMLINES, header.get('count'))
    try:
        return int(count)
    except (TypeError, ValueError):
        return 0
