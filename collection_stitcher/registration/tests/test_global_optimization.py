"""Tests for the global optimization of tile positions."""
import numpy as np
import pytest

from ...errors import GlobalOptimizationError
from ...parameters import StitchingParameters
from ...placement import TranslationModel2D, TranslationModel3D
from ...testutil import blank_tiles
from ...tiles import ComparePair
from .._global_optimization import build_pair_graph, optimize


def registered_pair(tile1, tile2, shift, correlation=0.99):
    pair = ComparePair(tile1, tile2)
    pair.relative_shift = np.asarray(shift, dtype=np.float64)
    pair.cross_correlation = correlation
    return pair


def positions_by_index(placements):
    return {p.tile.index: p.model.translation for p in placements}


@pytest.fixture
def params():
    return StitchingParameters()


@pytest.fixture
def triangle():
    return blank_tiles([(0, 0), (98, 2), (103, 97)], (128, 128))


def test_consistent_shifts_are_reproduced(triangle, params):
    pairs = [
        registered_pair(triangle[0], triangle[1], (100, 0)),
        registered_pair(triangle[1], triangle[2], (0, 100)),
        registered_pair(triangle[0], triangle[2], (100, 100)),
    ]
    placements = optimize(pairs, triangle[0], params)
    positions = positions_by_index(placements)
    np.testing.assert_allclose(positions[0], [0, 0])
    np.testing.assert_allclose(positions[1], [100, 0], atol=1e-9)
    np.testing.assert_allclose(positions[2], [100, 100], atol=1e-9)
    assert all(p.valid_overlap for p in pairs)
    assert all(isinstance(p.model, TranslationModel2D) for p in placements)
    assert [p.tile.index for p in placements] == [0, 1, 2]


def test_reference_tile_keeps_its_offset(triangle, params):
    pairs = [
        registered_pair(triangle[0], triangle[1], (100, 0)),
        registered_pair(triangle[1], triangle[2], (0, 100)),
    ]
    positions = positions_by_index(optimize(pairs, triangle[1], params))
    np.testing.assert_allclose(positions[1], [98, 2])
    np.testing.assert_allclose(positions[0], [-2, 2], atol=1e-9)
    np.testing.assert_allclose(positions[2], [98, 102], atol=1e-9)


def test_outlier_link_is_removed(triangle, params):
    outlier = registered_pair(triangle[0], triangle[2], (130, 100), correlation=0.5)
    pairs = [
        registered_pair(triangle[0], triangle[1], (100, 0)),
        registered_pair(triangle[1], triangle[2], (0, 100)),
        outlier,
    ]
    positions = positions_by_index(optimize(pairs, triangle[0], params))
    np.testing.assert_allclose(positions[1], [100, 0], atol=1e-9)
    np.testing.assert_allclose(positions[2], [100, 100], atol=1e-9)
    assert not outlier.valid_overlap
    assert pairs[0].valid_overlap and pairs[1].valid_overlap


def test_small_inconsistencies_are_kept(triangle, params):
    pairs = [
        registered_pair(triangle[0], triangle[1], (100, 0)),
        registered_pair(triangle[1], triangle[2], (0, 100)),
        registered_pair(triangle[0], triangle[2], (100.3, 100)),
    ]
    positions = positions_by_index(optimize(pairs, triangle[0], params))
    assert all(p.valid_overlap for p in pairs)
    assert 100 < positions[2][0] < 100.3


def test_low_correlation_pairs_are_discarded(triangle, params):
    weak = registered_pair(triangle[0], triangle[2], (500, 500), correlation=0.1)
    pairs = [
        registered_pair(triangle[0], triangle[1], (100, 0)),
        registered_pair(triangle[1], triangle[2], (0, 100)),
        weak,
    ]
    positions = positions_by_index(optimize(pairs, triangle[0], params))
    assert not weak.valid_overlap
    np.testing.assert_allclose(positions[2], [100, 100], atol=1e-9)


def test_tile_without_valid_pair_keeps_offset(triangle, params):
    pairs = [
        registered_pair(triangle[0], triangle[1], (100, 0)),
        registered_pair(triangle[1], triangle[2], (0, 100), correlation=0.05),
    ]
    positions = positions_by_index(optimize(pairs, triangle[0], params))
    np.testing.assert_allclose(positions[1], [100, 0])
    np.testing.assert_array_equal(positions[2], [103, 97])


def test_disconnected_components_use_their_own_anchor(params):
    tiles = blank_tiles([(0, 0), (90, 0), (1000, 0), (1090, 0)], (100, 100))
    pairs = [
        registered_pair(tiles[0], tiles[1], (95, 1)),
        registered_pair(tiles[2], tiles[3], (93, -2)),
    ]
    positions = positions_by_index(optimize(pairs, tiles[0], params))
    np.testing.assert_allclose(positions[1], [95, 1], atol=1e-9)
    np.testing.assert_allclose(positions[2], [1000, 0])
    np.testing.assert_allclose(positions[3], [1093, -2], atol=1e-9)


def test_three_dimensional_positions():
    tiles = blank_tiles([(0, 0, 0), (90, 0, 5)], (100, 100, 20))
    pairs = [registered_pair(tiles[0], tiles[1], (92, 1, 4))]
    placements = optimize(pairs, tiles[0], StitchingParameters(dimensionality=3))
    assert isinstance(placements[1].model, TranslationModel3D)
    np.testing.assert_allclose(placements[1].model.translation, [92, 1, 4], atol=1e-9)


def test_no_valid_pair(triangle, params):
    pairs = [registered_pair(triangle[0], triangle[1], (100, 0), correlation=0.1)]
    with pytest.raises(GlobalOptimizationError):
        optimize(pairs, triangle[0], params)


def test_unregistered_pair(triangle, params):
    with pytest.raises(GlobalOptimizationError):
        optimize([ComparePair(triangle[0], triangle[1])], triangle[0], params)


def test_best_of_duplicate_pairs_is_used(triangle, params):
    pairs = [
        registered_pair(triangle[0], triangle[1], (100, 0), correlation=0.6),
        registered_pair(triangle[0], triangle[1], (101, 0), correlation=0.9),
    ]
    graph = build_pair_graph(pairs, params)
    assert graph.number_of_edges() == 1
    assert graph.edges[0, 1]["pair"] is pairs[1]
