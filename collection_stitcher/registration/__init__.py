"""Registration module for collection stitching.

This module provides the pairwise registration of tile pairs, the parallel
scheduling of those registrations and the global optimization of the
resulting shifts.
"""

from ._global_optimization import optimize
from .pairwise import PairwiseStitchingResult, stitch_pairwise
from .scheduler import compute_pair_shifts, register_pair

__all__ = [
    'optimize',
    'PairwiseStitchingResult',
    'stitch_pairwise',
    'compute_pair_shifts',
    'register_pair',
]
