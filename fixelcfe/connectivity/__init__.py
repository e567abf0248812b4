"""Fixel-fixel connectivity from tractography.

This module provides:
- Streamline to voxel/tangent mapping
- The concurrent connectivity pipeline (counts and fixel density)
- Normalisation into the CFE connectivity graph and smoothing weights
"""

from fixelcfe.connectivity.graph import FixelGraph
from fixelcfe.connectivity.mapping import TrackMapper
from fixelcfe.connectivity.builder import (
    MIN_ROBUST_TRACK_COUNT,
    RawConnectivity,
    TrackPipeline,
    TrackProcessor,
    build_connectivity,
)
from fixelcfe.connectivity.normalization import (
    connectivity_fractions,
    gaussian,
    normalise_connectivity,
)

__all__ = [
    "FixelGraph",
    "TrackMapper",
    "MIN_ROBUST_TRACK_COUNT",
    "RawConnectivity",
    "TrackPipeline",
    "TrackProcessor",
    "build_connectivity",
    "connectivity_fractions",
    "gaussian",
    "normalise_connectivity",
]
