"""Bounding box overlap and overlap ROI computation between tiles.

All vectors are ordered (x, y[, z]) in the shared mosaic frame.
"""
import math
from typing import NamedTuple

import numpy as np

from ._typing_utils import Float, Vector

NO_OVERLAP = -1


class Roi(NamedTuple):
    """Axis-aligned region in a tile's local frame, integer pixels.

    An axis whose start and end are both NO_OVERLAP is unrestricted: the
    pairwise registration uses the whole raster extent along it.
    """

    start: tuple[int, ...]
    end: tuple[int, ...]

    @property
    def size(self) -> tuple[int, ...]:
        return tuple(e - s for s, e in zip(self.start, self.end))

    def is_unrestricted(self, axis: int) -> bool:
        return self.start[axis] == NO_OVERLAP and self.end[axis] == NO_OVERLAP


def _round_half_up(value: Float) -> int:
    return int(math.floor(value + 0.5))


def intervals_overlap(start1: Float, end1: Float, start2: Float, end2: Float) -> bool:
    """Closed interval intersection test; touching endpoints count as overlap."""
    return start2 <= end1 and start1 <= end2


def bounding_boxes_overlap(
    offset1: Vector, size1: Vector, offset2: Vector, size2: Vector, dimensionality: int
) -> bool:
    """Whether two boxes intersect on each of the first `dimensionality` axes."""
    for d in range(dimensionality):
        if not intervals_overlap(
            offset1[d], offset1[d] + size1[d], offset2[d], offset2[d] + size2[d]
        ):
            return False
    return True


def compute_roi(
    offset1: Vector, size1: Vector, offset2: Vector, size2: Vector, dimensionality: int
) -> Roi:
    """Region of box 1, in box 1's local frame, covered by box 2."""
    start = []
    end = []
    for d in range(dimensionality):
        start1, end1 = offset1[d], offset1[d] + size1[d]
        start2, end2 = offset2[d], offset2[d] + size2[d]

        if start1 <= start2 <= end1:
            start.append(_round_half_up(start2 - start1))
            end.append(_round_half_up(min(end2, end1) - start1))
        elif start1 <= end2 <= end1:
            start.append(0)
            end.append(_round_half_up(end2 - start1))
        elif start2 < start1 and end2 > end1:
            # box 2 covers the whole axis of box 1
            start.append(0)
            end.append(_round_half_up(size1[d]))
        else:
            start.append(NO_OVERLAP)
            end.append(NO_OVERLAP)
    return Roi(tuple(start), tuple(end))


def tile_roi(tile1, tile2, dimensionality: int) -> Roi:
    """ROI of tile1 that is expected to overlap tile2."""
    return compute_roi(
        np.asarray(tile1.offset), np.asarray(tile1.size),
        np.asarray(tile2.offset), np.asarray(tile2.size),
        dimensionality,
    )
