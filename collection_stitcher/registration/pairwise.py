"""Default pairwise registration: phase correlation restricted to the overlap ROIs.

Both crops are mean subtracted and Hann windowed before the FFT. The highest
peaks of the peak correlation matrix are each expanded into all their periodic
shift interpretations, every interpretation covering enough of the crops is
verified by the normalized cross-correlation of the overlapping (unwindowed)
pixels, and the best one wins.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from ..geometry import Roi
from ..parameters import StitchingParameters
from ._phase_correlation import (
    apodize,
    min_overlap_size,
    multi_peak_max,
    ncc,
    overlap_slices,
    pad_to_common_shape,
    parabolic_refinement,
    pcm,
    shift_candidates,
)
from .._typing_utils import FloatArray, NumArray

logger = logging.getLogger(__name__)

# fraction of the largest cross-power magnitude added to the PCM normalization
PCM_REGULARIZATION = 1e-2


@dataclass
class PairwiseStitchingResult:
    """Shift of image2's origin in image1's frame, ordered (x, y[, z])."""

    offset: FloatArray
    cross_correlation: float
    phase_correlation: float = 0.0


def registration_image(raster: NumArray, dimensionality: int, channel: Optional[int]) -> FloatArray:
    """Reduce a (C, Z, Y, X) raster to the (Y, X) or (Z, Y, X) image that is registered.

    A 2-D run registers the first plane; channels are averaged unless one is chosen.
    """
    if channel is not None:
        if channel >= raster.shape[0]:
            raise ValueError(
                f"registration_channel {channel} out of range for {raster.shape[0]} channels"
            )
        volume = np.asarray(raster[channel], dtype=np.float64)
    else:
        volume = np.asarray(raster, dtype=np.float64).mean(axis=0)
    if dimensionality == 2:
        return volume[0]
    return volume


def roi_slices(roi: Roi, shape: tuple[int, ...]) -> tuple[slice, ...]:
    """numpy slices for a ROI; `shape` is in numpy axis order, the ROI in (x, y[, z])."""
    ndim = len(shape)
    slices = []
    for axis in range(ndim):
        d = ndim - 1 - axis
        if roi.is_unrestricted(d):
            slices.append(slice(0, shape[axis]))
        else:
            start = min(max(roi.start[d], 0), shape[axis])
            end = min(max(roi.end[d], start), shape[axis])
            slices.append(slice(start, end))
    return tuple(slices)


def _roi_origin(roi: Roi, ndim: int) -> FloatArray:
    """Start of the ROI crop in (x, y[, z]) order; unrestricted axes start at 0."""
    return np.array(
        [0 if roi.is_unrestricted(d) else max(roi.start[d], 0) for d in range(ndim)],
        dtype=np.float64,
    )


def stitch_pairwise(
    raster1: NumArray,
    raster2: NumArray,
    roi1: Roi,
    roi2: Roi,
    time_point1: int,
    time_point2: int,
    params: StitchingParameters,
) -> Optional[PairwiseStitchingResult]:
    """Register raster2 against raster1 within their overlap ROIs.

    Returns:
        The shift of raster2's origin in raster1's frame and the cross
        correlation of the overlap, or None when no peak yields a usable
        overlap.
    """
    ndim = params.dimensionality
    image1 = registration_image(raster1, ndim, params.registration_channel)
    image2 = registration_image(raster2, ndim, params.registration_channel)

    crop1 = image1[roi_slices(roi1, image1.shape)]
    crop2 = image2[roi_slices(roi2, image2.shape)]
    if crop1.size == 0 or crop2.size == 0:
        logger.warning(
            f"Empty overlap region for time points {time_point1}/{time_point2}: "
            f"{crop1.shape} vs {crop2.shape}"
        )
        return None

    padded1, padded2 = pad_to_common_shape(apodize(crop1), apodize(crop2))
    PCM = pcm(padded1, padded2, PCM_REGULARIZATION)
    min_overlap = min_overlap_size(crop1.shape, crop2.shape)
    peaks, values = multi_peak_max(PCM, params.check_peaks, local_maxima_only=True)

    best_shift = None
    best_peak = None
    best_r = float("-inf")
    best_phase = 0.0
    for peak, value in zip(peaks, values):
        for shift in shift_candidates(peak, PCM.shape):
            slices = overlap_slices(shift, crop1.shape, crop2.shape)
            if slices is None:
                continue
            r = ncc(crop1[slices[0]], crop2[slices[1]], min_overlap)
            if r > best_r:
                best_r, best_shift, best_peak, best_phase = r, shift, peak, float(value)

    if best_shift is None or not np.isfinite(best_r):
        return None

    shift = best_shift.astype(np.float64)
    if params.subpixel_accuracy:
        shift += parabolic_refinement(PCM, best_peak)

    # numpy axis order (z, y, x) -> mosaic order (x, y, z)
    shift_xyz = shift[::-1]
    offset = _roi_origin(roi1, ndim) + shift_xyz - _roi_origin(roi2, ndim)
    return PairwiseStitchingResult(
        offset=offset, cross_correlation=best_r, phase_correlation=best_phase
    )
