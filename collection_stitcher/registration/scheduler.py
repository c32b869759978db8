"""Parallel registration of all compare pairs of a run.

Pairs are split statically across a fixed pool of worker threads: worker w
handles every pair whose index is congruent to w modulo the worker count.
Each worker writes only the shift and correlation fields of its own pairs and
never touches pixel data, so no locking is needed around the pairs.
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional, Sequence

import numpy as np
from tqdm import tqdm

from ..benchmarking_util import debug_timing
from ..errors import RegistrationFailure
from ..geometry import Roi, tile_roi
from ..parameters import StitchingParameters
from ..tiles import ComparePair
from .._typing_utils import NumArray
from .pairwise import PairwiseStitchingResult, stitch_pairwise

logger = logging.getLogger(__name__)

PairwiseRegistration = Callable[
    [NumArray, NumArray, Roi, Roi, int, int, StitchingParameters],
    Optional[PairwiseStitchingResult],
]


def partition_pairs(num_pairs: int, num_workers: int) -> list[list[int]]:
    """Round-robin assignment of pair indices to workers."""
    return [list(range(w, num_pairs, num_workers)) for w in range(num_workers)]


def register_pair(
    pair: ComparePair,
    params: StitchingParameters,
    pairwise: PairwiseRegistration = stitch_pairwise,
) -> bool:
    """Register one pair and store its shift and correlation.

    Returns False when the pairwise registration produced no result.
    """
    start = time.time()
    dims = params.dimensionality

    # where do the two tiles approximately overlap?
    roi1 = tile_roi(pair.tile1, pair.tile2, dims)
    roi2 = tile_roi(pair.tile2, pair.tile1, dims)

    result = pairwise(
        pair.tile1.open(params.virtual),
        pair.tile2.open(params.virtual),
        roi1,
        roi2,
        pair.tile1.time_point,
        pair.tile2.time_point,
        params,
    )
    if result is None:
        logger.error(f"Pairwise registration failed for {pair}")
        return False

    pair.relative_shift = np.asarray(result.offset, dtype=np.float64)[:dims].copy()
    pair.cross_correlation = float(result.cross_correlation)
    elapsed_ms = (time.time() - start) * 1000
    logger.info(
        f"{pair}: {np.array2string(pair.relative_shift, precision=3)} "
        f"correlation (R)={pair.cross_correlation:.4f} ({elapsed_ms:.0f} ms)"
    )
    return True


def compute_pair_shifts(
    pairs: Sequence[ComparePair],
    params: StitchingParameters,
    pairwise: PairwiseRegistration = stitch_pairwise,
    num_workers: Optional[int] = None,
    show_progress: bool = False,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> None:
    """Register every pair in parallel, filling in shifts and correlations.

    Args:
        pairs: The overlap set; order fixes the worker assignment.
        params: Run configuration.
        pairwise: The pairwise registration to call for each pair.
        num_workers: Pool size, defaults to params.num_workers.
        show_progress: Display a tqdm progress bar.
        progress_callback: Called with (done, total) after each pair.

    Raises:
        RegistrationFailure: If any pair gets no result. Workers stop taking
            new pairs once a failure is seen and the error is raised after
            all of them have returned.
    """
    if not pairs:
        return

    workers = max(1, min(num_workers or params.num_workers, len(pairs)))
    partitions = partition_pairs(len(pairs), workers)
    abort = threading.Event()
    progress_lock = threading.Lock()
    failed: list[ComparePair] = []
    done = 0

    with tqdm(total=len(pairs), desc="Registering pairs", disable=not show_progress) as bar:

        def run_worker(indices: list[int]) -> None:
            nonlocal done
            for i in indices:
                if abort.is_set():
                    return
                pair = pairs[i]
                try:
                    ok = register_pair(pair, params, pairwise)
                except Exception:
                    abort.set()
                    raise
                with progress_lock:
                    if not ok:
                        failed.append(pair)
                    done += 1
                    bar.update(1)
                    if progress_callback is not None:
                        progress_callback(done, len(pairs))
                if not ok:
                    abort.set()
                    return

        with debug_timing(f"registering {len(pairs)} pairs on {workers} threads", logger):
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = [executor.submit(run_worker, indices) for indices in partitions]
        # the executor has joined all workers here
        errors = [f.exception() for f in futures if f.exception() is not None]

    if errors:
        raise errors[0]
    if failed:
        failed_names = ", ".join(str(p) for p in failed)
        raise RegistrationFailure(
            f"Collection stitching failed: no registration result for {failed_names}",
            failed,
        )
