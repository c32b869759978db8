"""Construction of the overlap graph: the tile pairs that get registered."""
import logging
from typing import Sequence

from .geometry import bounding_boxes_overlap
from .parameters import StitchingParameters
from .tiles import ComparePair, Tile

logger = logging.getLogger(__name__)


def open_all_tiles(tiles: Sequence[Tile], virtual: bool) -> None:
    """Open every tile, raising TileLoadError on the first one that fails."""
    for tile in tiles:
        tile.open(virtual)


def sequential_pairs(tiles: Sequence[Tile], seq_range: int) -> list[ComparePair]:
    """Pair every tile with the `seq_range` tiles that follow it."""
    pairs = []
    for i in range(len(tiles)):
        for j in range(1, seq_range + 1):
            if i + j >= len(tiles):
                break
            pairs.append(ComparePair(tiles[i], tiles[i + j]))
    return pairs


def exhaustive_pairs(tiles: Sequence[Tile], dimensionality: int) -> list[ComparePair]:
    """All tile pairs whose bounding boxes touch or intersect on every axis."""
    pairs = []
    for i in range(len(tiles) - 1):
        for j in range(i + 1, len(tiles)):
            t1, t2 = tiles[i], tiles[j]
            if bounding_boxes_overlap(t1.offset, t1.size, t2.offset, t2.size, dimensionality):
                pairs.append(ComparePair(t1, t2))
    return pairs


def find_overlapping_tiles(
    tiles: Sequence[Tile], params: StitchingParameters
) -> list[ComparePair]:
    """Open all tiles and build the list of pairs to register.

    Raises:
        TileLoadError: If any tile cannot be opened. No pair is built then.
    """
    open_all_tiles(tiles, params.virtual)

    if params.sequential:
        pairs = sequential_pairs(tiles, params.sequential_range)
        logger.info(
            f"Sequential pairing with range {params.sequential_range}: {len(pairs)} pairs"
        )
    else:
        pairs = exhaustive_pairs(tiles, params.dimensionality)
        logger.info(f"Found {len(pairs)} overlapping pairs among {len(tiles)} tiles")
    return pairs
