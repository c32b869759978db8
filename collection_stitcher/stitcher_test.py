import unittest

import numpy as np

from .errors import NoOverlapFound, RegistrationFailure
from .parameters import StitchingParameters
from .registration import PairwiseStitchingResult, optimize
from .stitcher import CollectionStitcher, ProgressCallbacks, stitch_collection
from .testutil import blank_tiles, grid_tiles, textured_image


class RecordingPairwise:
    """Pairwise registration stub returning a fixed result and counting calls."""

    def __init__(self, offset, correlation: float = 0.95, fail: bool = False):
        self.offset = np.asarray(offset, dtype=np.float64)
        self.correlation = correlation
        self.fail = fail
        self.calls = 0

    def __call__(self, raster1, raster2, roi1, roi2, t1, t2, params):
        self.calls += 1
        if self.fail:
            return None
        return PairwiseStitchingResult(offset=self.offset, cross_correlation=self.correlation)


class CollectionStitcherTest(unittest.TestCase):
    def test_pair_results_are_recorded(self) -> None:
        tiles = blank_tiles([(0, 0), (50, 0)], (100, 100))
        pairwise = RecordingPairwise((50.0, 1.0), 0.95)
        seen = []

        def optimizer(pairs, reference, params):
            seen.extend(pairs)
            self.assertIs(reference, tiles[0])
            return optimize(pairs, reference, params)

        placements = stitch_collection(
            tiles, StitchingParameters(), pairwise=pairwise, optimizer=optimizer
        )

        self.assertEqual(pairwise.calls, 1)
        self.assertEqual(len(seen), 1)
        np.testing.assert_array_equal(seen[0].relative_shift, [50.0, 1.0])
        self.assertEqual(seen[0].cross_correlation, 0.95)
        self.assertEqual([p.tile for p in placements], tiles)
        np.testing.assert_allclose(placements[0].model.translation, [0.0, 0.0])
        np.testing.assert_allclose(placements[1].model.translation, [50.0, 1.0])
        self.assertIs(tiles[1].model, placements[1].model)

    def test_offsets_used_without_overlap_computation(self) -> None:
        tiles = blank_tiles([(0, 0), (12.5, 3), (400, 400)], (100, 100))
        pairwise = RecordingPairwise((0.0, 0.0))
        placements = stitch_collection(
            tiles, StitchingParameters(compute_overlap=False), pairwise=pairwise
        )
        self.assertEqual(pairwise.calls, 0)
        for tile, placement in zip(tiles, placements):
            np.testing.assert_array_equal(placement.model.translation, tile.offset)
            self.assertTrue(tile.is_open)

    def test_no_overlap_stops_before_optimization(self) -> None:
        tiles = blank_tiles([(0, 0), (500, 0)], (100, 100))
        optimizer_calls = []

        def optimizer(pairs, reference, params):
            optimizer_calls.append(pairs)
            return []

        with self.assertRaises(NoOverlapFound):
            stitch_collection(
                tiles,
                StitchingParameters(),
                pairwise=RecordingPairwise((0.0, 0.0)),
                optimizer=optimizer,
            )
        self.assertEqual(optimizer_calls, [])

    def test_failed_pair_aborts_the_run(self) -> None:
        tiles = blank_tiles([(0, 0), (50, 0)], (100, 100))
        with self.assertRaises(RegistrationFailure) as cm:
            stitch_collection(
                tiles, StitchingParameters(), pairwise=RecordingPairwise((0, 0), fail=True)
            )
        self.assertEqual([p.indices for p in cm.exception.failed_pairs], [(0, 1)])

    def test_tile_without_pairs_keeps_its_offset(self) -> None:
        tiles = blank_tiles([(0, 0), (50, 0), (900, 900)], (100, 100))
        placements = stitch_collection(
            tiles, StitchingParameters(), pairwise=RecordingPairwise((48.0, 0.0))
        )
        self.assertEqual(len(placements), 3)
        np.testing.assert_allclose(placements[1].model.translation, [48.0, 0.0])
        np.testing.assert_array_equal(placements[2].model.translation, [900.0, 900.0])

    def test_callbacks(self) -> None:
        events = []
        callbacks = ProgressCallbacks(
            update_progress=lambda done, total: events.append(("progress", done, total)),
            normalizing=lambda: events.append(("normalizing",)),
            starting_registration=lambda n: events.append(("registration", n)),
            starting_optimization=lambda: events.append(("optimization",)),
        )
        rasters = [np.full((8, 8), 2.0) for _ in range(3)]
        tiles = blank_tiles([(0, 0), (50, 0), (100, 0)], (100, 100))
        for tile, raster in zip(tiles, rasters):
            tile.loader = lambda _virtual, raster=raster: raster
        stitcher = CollectionStitcher(
            StitchingParameters(normalize_intensity=True),
            callbacks=callbacks,
            pairwise=RecordingPairwise((50.0, 0.0)),
            num_workers=1,
        )
        stitcher.run(tiles)
        self.assertEqual(
            events,
            [
                ("normalizing",),
                ("registration", 3),
                ("progress", 1, 3),
                ("progress", 2, 3),
                ("progress", 3, 3),
                ("optimization",),
            ],
        )
        self.assertEqual(len(stitcher.pairs), 3)


class EndToEndRegistrationTest(unittest.TestCase):
    def test_grid_positions_are_recovered(self) -> None:
        canvas = textured_image((260, 260), seed=4)
        offset_error = np.array([[0.0, 0.0], [3.0, -2.0], [-2.0, 3.0], [2.0, 2.0]])
        tiles, true_origins = grid_tiles(
            canvas, n_rows=2, n_cols=2, tile_size=128, step=96, offset_error=offset_error
        )

        placements = stitch_collection(tiles, StitchingParameters(), num_workers=2)

        positions = np.array([p.model.translation for p in placements])
        np.testing.assert_allclose(positions, true_origins, atol=0.5)

    def test_jittered_tiles(self) -> None:
        canvas = textured_image((300, 300), seed=9)
        jitter = np.array([[0, 0], [5, -4], [-3, 6], [4, 3]])
        tiles, true_origins = grid_tiles(
            canvas, n_rows=2, n_cols=2, tile_size=128, step=100, jitter=jitter + 10
        )
        # reported offsets ignore the jitter; tile 0 is exact
        for tile in tiles:
            tile.offset = tile.offset - jitter[tile.index]

        placements = stitch_collection(
            tiles, StitchingParameters(subpixel_accuracy=False), num_workers=1
        )

        positions = np.array([p.model.translation for p in placements])
        np.testing.assert_allclose(positions, true_origins, atol=1e-6)

    def test_exact_crops_give_integer_positions(self) -> None:
        canvas = textured_image((260, 260), seed=11)
        offset_error = np.array([[0.0, 0.0], [2.0, -1.0], [-1.0, 2.0], [1.0, 1.0]])
        tiles, true_origins = grid_tiles(
            canvas, n_rows=2, n_cols=2, tile_size=128, step=96, offset_error=offset_error
        )

        placements = stitch_collection(
            tiles, StitchingParameters(subpixel_accuracy=False), num_workers=2
        )

        positions = np.array([p.model.translation for p in placements])
        np.testing.assert_allclose(positions, true_origins, atol=1e-9)
        np.testing.assert_array_equal(np.round(positions), true_origins)
