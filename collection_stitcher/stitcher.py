import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from . import normalization, overlap
from .benchmarking_util import debug_timing
from .errors import NoOverlapFound
from .parameters import StitchingParameters
from .placement import translation_model
from .registration import _global_optimization
from .registration.scheduler import PairwiseRegistration, compute_pair_shifts
from .registration.pairwise import stitch_pairwise
from .tiles import ComparePair, Tile, TilePlacement

GlobalOptimizer = Callable[[Sequence[ComparePair], Tile, StitchingParameters], List[TilePlacement]]


@dataclass
class ProgressCallbacks:
    update_progress: Callable[[int, int], None]
    normalizing: Callable[[], None]
    starting_registration: Callable[[int], None]
    starting_optimization: Callable[[], None]

    @classmethod
    def no_op(cls):
        return cls(
            update_progress=lambda _a, _b: None,
            normalizing=lambda: None,
            starting_registration=lambda _n: None,
            starting_optimization=lambda: None,
        )


class CollectionStitcher:
    """Registers a collection of tiles and places them in one mosaic frame.

    The pairwise registration and the global optimizer are pluggable; the
    defaults are phase correlation and weighted least squares.
    """

    def __init__(
        self,
        params: StitchingParameters,
        callbacks: Optional[ProgressCallbacks] = None,
        pairwise: PairwiseRegistration = stitch_pairwise,
        optimizer: GlobalOptimizer = _global_optimization.optimize,
        num_workers: Optional[int] = None,
        show_progress: bool = False,
    ):
        self.params = params
        self.callbacks = callbacks or ProgressCallbacks.no_op()
        self.pairwise = pairwise
        self.optimizer = optimizer
        self.num_workers = num_workers
        self.show_progress = show_progress
        self.pairs: list[ComparePair] = []

    def run(self, tiles: Sequence[Tile]) -> list[TilePlacement]:
        """Stitch the tiles and return one placement per tile, in input order.

        Each tile's `model` is set to its placement model as well.

        Raises:
            TileLoadError, DimensionMismatch, RegistrationFailure,
            NoOverlapFound, GlobalOptimizationError
        """
        if self.params.normalize_intensity:
            self.callbacks.normalizing()
            with debug_timing("intensity normalization"):
                normalization.normalize_intensity(tiles, self.params, self.num_workers)

        if self.params.compute_overlap:
            placements = self.register_and_optimize(tiles)
        else:
            placements = self.place_from_offsets(tiles)

        for placement in placements:
            placement.tile.model = placement.model
        return placements

    def register_and_optimize(self, tiles: Sequence[Tile]) -> list[TilePlacement]:
        with debug_timing("overlap detection"):
            self.pairs = overlap.find_overlapping_tiles(tiles, self.params)

        if not self.pairs:
            logging.error("No overlapping tiles could be found given the approximate layout.")
            raise NoOverlapFound(
                "No overlapping tiles could be found: the approximate layout has no overlaps"
            )

        self.callbacks.starting_registration(len(self.pairs))
        start_time = time.time()
        compute_pair_shifts(
            self.pairs,
            self.params,
            pairwise=self.pairwise,
            num_workers=self.num_workers,
            show_progress=self.show_progress,
            progress_callback=self.callbacks.update_progress,
        )

        # the first tile of the first pair is the reference frame
        self.callbacks.starting_optimization()
        with debug_timing("global optimization"):
            optimized = self.optimizer(self.pairs, self.pairs[0].tile1, self.params)
        logging.info(
            f"Finished registration process ({(time.time() - start_time) * 1000:.0f} ms)."
        )
        return self._in_input_order(tiles, optimized)

    def place_from_offsets(self, tiles: Sequence[Tile]) -> list[TilePlacement]:
        """Trust the approximate offsets: every tile gets a translation to its offset."""
        placements = []
        for tile in tiles:
            tile.open(self.params.virtual)
            placements.append(
                TilePlacement(tile, translation_model(self.params.dimensionality, tile.offset))
            )
        logging.info(f"Placed {len(placements)} tiles at their given offsets")
        return placements

    def _in_input_order(
        self, tiles: Sequence[Tile], optimized: Sequence[TilePlacement]
    ) -> list[TilePlacement]:
        by_tile = {id(p.tile): p for p in optimized}
        placements = []
        for tile in tiles:
            placement = by_tile.get(id(tile))
            if placement is None:
                logging.warning(
                    f"{tile.title} overlaps no other tile; keeping its approximate offset"
                )
                placement = TilePlacement(
                    tile, translation_model(self.params.dimensionality, tile.offset)
                )
            placements.append(placement)
        return placements


def stitch_collection(
    tiles: Sequence[Tile],
    params: StitchingParameters,
    pairwise: PairwiseRegistration = stitch_pairwise,
    optimizer: GlobalOptimizer = _global_optimization.optimize,
    num_workers: Optional[int] = None,
) -> list[TilePlacement]:
    """Register and globally place a tile collection. See CollectionStitcher.run."""
    return CollectionStitcher(
        params, pairwise=pairwise, optimizer=optimizer, num_workers=num_workers
    ).run(tiles)
