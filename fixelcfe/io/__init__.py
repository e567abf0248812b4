"""Fixel directory, tractogram and matrix file I/O for fixelcfe."""

from fixelcfe.io.fixels import (
    FixelDirectory,
    load_fixel_data,
    load_fixel_directory,
    save_fixel_data,
    save_fixel_directory,
)
from fixelcfe.io.readers import (
    load_exchangeability_blocks,
    load_matrix_file,
    load_tracks,
    read_subject_list,
)

__all__ = [
    "FixelDirectory",
    "load_fixel_data",
    "load_fixel_directory",
    "save_fixel_data",
    "save_fixel_directory",
    "load_exchangeability_blocks",
    "load_matrix_file",
    "load_tracks",
    "read_subject_list",
]
