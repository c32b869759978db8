"""Phase correlation primitives for N-dimensional image pairs.

Arrays here are in numpy axis order (Z, Y, X) or (Y, X); conversion to the
(x, y[, z]) order of mosaic coordinates happens in the pairwise module.
"""
import itertools
import warnings
from typing import Optional, Tuple

import numpy as np

from .._typing_utils import BoolArray, FloatArray, IntArray, NumArray

MIN_OVERLAP_PIXELS = 25
MIN_OVERLAP_FRACTION = 0.1


def validate_image_pair(image1: NumArray, image2: NumArray) -> None:
    """Validate that two images can be phase correlated.

    Raises:
        ValueError: If the images are empty or have different shapes
    """
    if image1.shape != image2.shape:
        raise ValueError(f"Image shapes differ: {image1.shape} vs {image2.shape}")
    if image1.size == 0:
        raise ValueError("Cannot correlate empty images")


def pad_to_common_shape(image1: NumArray, image2: NumArray) -> Tuple[FloatArray, FloatArray]:
    """Zero pad both images at their far edges to the per-axis maximum shape."""
    shape = tuple(max(a, b) for a, b in zip(image1.shape, image2.shape))

    def pad(image: NumArray) -> FloatArray:
        padded = np.zeros(shape, dtype=np.float64)
        padded[tuple(slice(0, s) for s in image.shape)] = image
        return padded

    return pad(image1), pad(image2)


def apodize(image: NumArray) -> FloatArray:
    """Subtract the mean and fade the image to zero at its borders with a Hann window.

    Axes shorter than three pixels are left unwindowed.
    """
    result = np.asarray(image, dtype=np.float64) - float(np.mean(image))
    for axis, size in enumerate(result.shape):
        if size < 3:
            continue
        shape = [1] * result.ndim
        shape[axis] = size
        result = result * np.hanning(size).reshape(shape)
    return result


def pcm(image1: NumArray, image2: NumArray, regularization: float = 0.0) -> FloatArray:
    """Compute peak correlation matrix for two images.

    The PCM is computed using the normalized cross-power spectrum method:
    PCM = IFFT(F1 * conj(F2) / (|F1 * conj(F2)| + λ))

    With `regularization` zero, λ is a tiny epsilon and the spectrum is fully
    whitened. A positive value sets λ to that fraction of the largest
    cross-power magnitude, so weak frequencies keep their relative weight
    instead of being raised to unit magnitude.

    A peak at index p means image2 is found at position p (modulo the shape)
    inside image1; see `shift_candidates`.
    """
    validate_image_pair(image1, image2)

    F1 = np.fft.fftn(np.asarray(image1, dtype=np.float64))
    F2 = np.fft.fftn(np.asarray(image2, dtype=np.float64))
    FC = F1 * np.conjugate(F2)
    magnitude = np.abs(FC)

    # Normalize with epsilon for numerical stability
    epsilon = max(np.finfo(np.float64).eps * 100, regularization * float(magnitude.max()))
    result = np.fft.ifftn(FC / (magnitude + epsilon))

    max_imag = np.max(np.abs(result.imag))
    if max_imag > 1e-6:
        warnings.warn(f"Large imaginary component in PCM result: {max_imag:.2e}")
    return result.real


def local_maxima(PCM: FloatArray) -> BoolArray:
    """Mask of the entries not exceeded by any neighbor; neighborhoods wrap around like the PCM."""
    mask = np.ones(PCM.shape, dtype=bool)
    axes = tuple(range(PCM.ndim))
    for step in itertools.product((-1, 0, 1), repeat=PCM.ndim):
        if any(step):
            mask &= PCM >= np.roll(PCM, step, axis=axes)
    return mask


def multi_peak_max(
    PCM: FloatArray, max_peaks: Optional[int] = None, local_maxima_only: bool = False
) -> Tuple[IntArray, FloatArray]:
    """Find the largest peaks in a peak correlation matrix.

    With `local_maxima_only`, the neighbors of a peak are not reported as
    peaks of their own.

    Returns:
        (positions, values): positions has shape (n_peaks, ndim), both sorted
        by descending peak value.
    """
    if PCM.size == 0:
        raise ValueError("PCM cannot be empty")
    flat = PCM.ravel()
    if local_maxima_only:
        indices = np.flatnonzero(local_maxima(PCM))
    else:
        indices = np.arange(flat.size)
    # stable sort on the negated values keeps equal peaks in index order
    order = indices[np.argsort(-flat[indices], kind="stable")]
    if max_peaks is not None:
        order = order[:max_peaks]
    positions = np.stack(np.unravel_index(order, PCM.shape), axis=1).astype(np.int64)
    return positions, flat[order].astype(np.float64)


def shift_candidates(peak: IntArray, shape: Tuple[int, ...]) -> list[IntArray]:
    """All shifts of image2 inside image1 consistent with one PCM peak.

    The PCM is periodic, so every axis admits the shift p and the wrapped
    shift p - size.
    """
    per_axis = []
    for p, size in zip(peak, shape):
        options = {int(p) % size, (int(p) % size) - size}
        per_axis.append(sorted(options))
    return [np.array(c, dtype=np.int64) for c in itertools.product(*per_axis)]


def overlap_slices(
    shift: IntArray, shape1: Tuple[int, ...], shape2: Tuple[int, ...]
) -> Optional[Tuple[Tuple[slice, ...], Tuple[slice, ...]]]:
    """Slices of image1 and image2 covering their overlap when image2 sits at `shift`.

    Returns None when the images do not overlap.
    """
    s1 = []
    s2 = []
    for s, n1, n2 in zip(shift, shape1, shape2):
        start1 = max(0, s)
        end1 = min(n1, s + n2)
        if end1 <= start1:
            return None
        s1.append(slice(start1, end1))
        s2.append(slice(start1 - s, end1 - s))
    return tuple(s1), tuple(s2)


def min_overlap_size(
    shape1: Tuple[int, ...], shape2: Tuple[int, ...], fraction: float = MIN_OVERLAP_FRACTION
) -> int:
    """Smallest overlap, in pixels, accepted between images of the given shapes.

    The overlap must cover `fraction` of the smaller image and never less than
    MIN_OVERLAP_PIXELS.
    """
    smaller = min(int(np.prod(shape1)), int(np.prod(shape2)))
    return max(MIN_OVERLAP_PIXELS, int(np.ceil(fraction * smaller)))


def ncc(image1: NumArray, image2: NumArray, min_overlap_pixels: int = MIN_OVERLAP_PIXELS) -> float:
    """Compute normalized cross-correlation between two equally shaped images.

    Uses the standard NCC formula: NCC = Σ((I1 - μ1)(I2 - μ2)) / √(Σ(I1 - μ1)² × Σ(I2 - μ2)²)

    Returns:
        NCC value between -1 and 1, or -inf when the overlap is too small or
        one of the images is constant
    """
    if image1.shape != image2.shape or image1.size < min_overlap_pixels:
        return float("-inf")

    centered1 = image1.astype(np.float64) - image1.mean()
    centered2 = image2.astype(np.float64) - image2.mean()
    numerator = float(np.sum(centered1 * centered2))
    denominator = float(np.sqrt(np.sum(centered1 ** 2) * np.sum(centered2 ** 2)))

    if denominator == 0.0 or not np.isfinite(denominator):
        return float("-inf")
    return float(np.clip(numerator / denominator, -1.0, 1.0))


def parabolic_refinement(PCM: FloatArray, peak: IntArray) -> FloatArray:
    """Sub-pixel offset of a PCM peak from a 3-point parabola fit along each axis."""
    offsets = np.zeros(len(peak), dtype=np.float64)
    for axis, p in enumerate(peak):
        size = PCM.shape[axis]
        if size < 3:
            continue
        index = list(peak)
        index[axis] = (p - 1) % size
        left = PCM[tuple(index)]
        index[axis] = (p + 1) % size
        right = PCM[tuple(index)]
        center = PCM[tuple(peak)]
        denominator = left - 2 * center + right
        if denominator < 0:
            offsets[axis] = float(np.clip(0.5 * (left - right) / denominator, -0.5, 0.5))
    return offsets
