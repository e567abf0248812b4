"""Fixel index and subject data assembly."""

from fixelcfe.fixels.index import Fixel, FixelIndex
from fixelcfe.fixels.subject_data import (
    load_subject_data,
    match_subject_fixels,
    smooth_fixel_data,
)

__all__ = [
    "Fixel",
    "FixelIndex",
    "load_subject_data",
    "match_subject_fixels",
    "smooth_fixel_data",
]
