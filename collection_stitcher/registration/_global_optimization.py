"""Global optimization of tile positions from pairwise shifts.

Pairwise shifts are over-determined and may contradict each other. This
module reconciles them into one position per tile:

- Pairs below the correlation threshold are discarded
- Each connected component of the remaining pair graph is solved by
  correlation-weighted linear least squares, with one tile held fixed
- The worst link is removed while its error is out of bounds, then the
  component is solved again
- Tiles without any usable pair keep their approximate offsets
"""
import logging
from typing import Dict, List, Sequence

import networkx as nx
import numpy as np

from ..errors import GlobalOptimizationError
from ..parameters import StitchingParameters
from ..placement import translation_model
from ..tiles import ComparePair, Tile, TilePlacement
from .._typing_utils import FloatArray

# Configure logger
logger = logging.getLogger(__name__)

# Keep every link weight strictly positive
MIN_LINK_WEIGHT = 1e-3
# Links with a smaller error are never removed for being relatively worse
MIN_REMOVABLE_ERROR = 0.95


def build_pair_graph(pairs: Sequence[ComparePair], params: StitchingParameters) -> nx.Graph:
    """Graph of tile indices with one edge per pair above the regression threshold.

    Pairs below the threshold are marked invalid. If two pairs connect the
    same tiles, the one with the higher correlation is kept.
    """
    graph = nx.Graph()
    for pair in pairs:
        if pair.relative_shift is None:
            raise GlobalOptimizationError(f"Pair {pair} was never registered")
        if not np.isfinite(pair.cross_correlation) or pair.cross_correlation < params.regression_threshold:
            pair.valid_overlap = False
            logger.info(
                f"Removing {pair} (R={pair.cross_correlation:.4f} "
                f"< {params.regression_threshold})"
            )
            continue

        u, v = pair.indices
        if graph.has_edge(u, v) and graph.edges[u, v]["pair"].cross_correlation >= pair.cross_correlation:
            continue
        graph.add_edge(
            u,
            v,
            pair=pair,
            weight=max(pair.cross_correlation, MIN_LINK_WEIGHT),
        )
    return graph


def _edge_shift(data: dict, u: int) -> FloatArray:
    """Shift from the tile at `u` to the other end of the edge."""
    pair: ComparePair = data["pair"]
    shift = pair.relative_shift
    return shift if pair.tile1.index == u else -shift


def solve_component(
    graph: nx.Graph, anchor: int, anchor_position: FloatArray
) -> Dict[int, FloatArray]:
    """Weighted least squares positions for one connected component.

    Every edge (u, v) contributes the residual p[v] - p[u] - shift(u -> v);
    the anchor tile is held at `anchor_position`.
    """
    nodes = sorted(graph.nodes)
    free = [n for n in nodes if n != anchor]
    if not free:
        return {anchor: anchor_position.copy()}

    column = {n: i for i, n in enumerate(free)}
    edges = list(graph.edges(data=True))
    A = np.zeros((len(edges), len(free)))
    b = np.zeros((len(edges), len(anchor_position)))
    for row, (u, v, data) in enumerate(edges):
        w = np.sqrt(data["weight"])
        shift = _edge_shift(data, u)
        target = shift.copy()
        if v == anchor:
            target = target - anchor_position
        else:
            A[row, column[v]] = w
        if u == anchor:
            target = target + anchor_position
        else:
            A[row, column[u]] = -w
        b[row] = w * target

    solution, *_ = np.linalg.lstsq(A, b, rcond=None)
    positions = {anchor: anchor_position.copy()}
    for n in free:
        positions[n] = solution[column[n]]
    return positions


def link_errors(graph: nx.Graph, positions: Dict[int, FloatArray]) -> Dict[tuple, float]:
    """Euclidean error of every link under the given positions."""
    return {
        (u, v): float(np.linalg.norm(positions[v] - positions[u] - _edge_shift(data, u)))
        for u, v, data in graph.edges(data=True)
    }


def optimize_component(
    graph: nx.Graph,
    anchor: int,
    anchor_position: FloatArray,
    params: StitchingParameters,
) -> Dict[int, FloatArray]:
    """Solve a component, dropping the worst link while its error is out of bounds.

    Tiles cut off by link removal are solved as their own components.
    """
    graph = graph.copy()
    while True:
        positions = solve_component(graph, anchor, anchor_position)
        errors = link_errors(graph, positions)
        if not errors:
            return positions

        (u, v), max_error = max(errors.items(), key=lambda item: item[1])
        avg_error = float(np.mean(list(errors.values())))
        logger.debug(
            f"Component of tile {anchor}: avg error {avg_error:.3f}px, max {max_error:.3f}px"
        )
        relatively_bad = (
            max_error > params.relative_threshold * avg_error and max_error > MIN_REMOVABLE_ERROR
        )
        if not relatively_bad and avg_error <= params.absolute_threshold:
            return positions

        pair = graph.edges[u, v]["pair"]
        pair.valid_overlap = False
        logger.info(f"Removing link {pair} with error {max_error:.3f}px (avg {avg_error:.3f}px)")
        graph.remove_edge(u, v)

        if not nx.is_connected(graph):
            result: Dict[int, FloatArray] = {}
            for component in nx.connected_components(graph):
                sub = graph.subgraph(component)
                sub_anchor = anchor if anchor in component else min(component)
                sub_position = anchor_position if sub_anchor == anchor else positions[sub_anchor]
                result.update(optimize_component(sub, sub_anchor, sub_position, params))
            return result


def optimize(
    pairs: Sequence[ComparePair], reference_tile: Tile, params: StitchingParameters
) -> List[TilePlacement]:
    """Compute globally consistent placements for every tile referenced by `pairs`.

    The reference tile, and the lowest-index tile of every component that does
    not contain it, stays at its approximate offset.

    Raises:
        GlobalOptimizationError: If no pair passes the regression threshold.
    """
    dims = params.dimensionality
    tiles: Dict[int, Tile] = {}
    for pair in pairs:
        tiles.setdefault(pair.tile1.index, pair.tile1)
        tiles.setdefault(pair.tile2.index, pair.tile2)

    graph = build_pair_graph(pairs, params)
    if graph.number_of_edges() == 0:
        raise GlobalOptimizationError(
            f"No pair has a cross-correlation above {params.regression_threshold}"
        )

    components = list(nx.connected_components(graph))
    if len(components) > 1:
        logger.warning(
            f"Pair graph has {len(components)} disconnected components with sizes "
            f"{[len(c) for c in components]}; each is placed from its own anchor tile"
        )

    positions: Dict[int, FloatArray] = {}
    for component in components:
        anchor = reference_tile.index if reference_tile.index in component else min(component)
        anchor_position = np.asarray(tiles[anchor].offset, dtype=np.float64)[:dims]
        positions.update(
            optimize_component(graph.subgraph(component), anchor, anchor_position, params)
        )

    isolated = sorted(set(tiles) - set(positions))
    if isolated:
        logger.warning(
            f"{len(isolated)} tiles have no valid pair and keep their approximate offsets: {isolated}"
        )
        for index in isolated:
            positions[index] = np.asarray(tiles[index].offset, dtype=np.float64)[:dims]

    logger.info(f"Computed final positions for {len(positions)} tiles")
    return [
        TilePlacement(tile=tiles[index], model=translation_model(dims, positions[index]))
        for index in sorted(tiles)
    ]
