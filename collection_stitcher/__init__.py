"""Collection Stitcher Package.

This package aligns a collection of overlapping microscope image tiles into
one globally consistent layout, starting from approximate tile positions.

Main functionality:
- Intensity normalization: Median-based per-channel correction across tiles
- Overlap detection: Exhaustive bounding-box or sequential tile pairing
- Pairwise registration: Phase correlation within the expected overlap
- Global optimization: Consistent tile positions from all pairwise shifts

The package exposes the main entry points at the top level for convenience.
"""

from .errors import (
    StitchingError,
    TileLoadError,
    DimensionMismatch,
    RegistrationFailure,
    NoOverlapFound,
    GlobalOptimizationError,
    LayoutFormatError,
)
from .geometry import Roi, bounding_boxes_overlap, compute_roi
from .normalization import normalize_intensity
from .overlap import find_overlapping_tiles
from .parameters import CpuMemChoice, StitchingParameters
from .placement import TranslationModel2D, TranslationModel3D, translation_model
from .stitcher import CollectionStitcher, ProgressCallbacks, stitch_collection
from .tiles import ComparePair, Tile, TilePlacement

__all__ = [
    'StitchingError',
    'TileLoadError',
    'DimensionMismatch',
    'RegistrationFailure',
    'NoOverlapFound',
    'GlobalOptimizationError',
    'LayoutFormatError',
    'Roi',
    'bounding_boxes_overlap',
    'compute_roi',
    'normalize_intensity',
    'find_overlapping_tiles',
    'CpuMemChoice',
    'StitchingParameters',
    'TranslationModel2D',
    'TranslationModel3D',
    'translation_model',
    'CollectionStitcher',
    'ProgressCallbacks',
    'stitch_collection',
    'ComparePair',
    'Tile',
    'TilePlacement',
]
