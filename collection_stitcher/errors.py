"""Failures that abort a collection stitching run.

Every error raised by the orchestration layer derives from StitchingError, so
callers can tell a failed run apart from a successful one with a single
except clause.
"""
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from .tiles import ComparePair


class StitchingError(RuntimeError):
    """Base class for fatal stitching failures."""


class TileLoadError(StitchingError):
    """A tile's pixel data could not be made available."""


class DimensionMismatch(StitchingError):
    """Tiles disagree on raster dimensions or channel/slice counts."""


class RegistrationFailure(StitchingError):
    """The pairwise registration produced no result for at least one pair."""

    def __init__(self, message: str, failed_pairs: Sequence["ComparePair"] = ()):
        super().__init__(message)
        self.failed_pairs = list(failed_pairs)


class NoOverlapFound(StitchingError):
    """Overlap graph construction yielded no pair to register."""


class GlobalOptimizationError(StitchingError):
    """The global optimizer could not place the tiles."""


class LayoutFormatError(StitchingError, ValueError):
    """A tile layout file could not be parsed."""
