"""Tiles, compare pairs and raster loading.

Rasters are numpy arrays in (C, Z, Y, X) order. Image files are reordered by
their axis labels; other loaders may return (Y, X) or (Z, Y, X) data, which is
promoted with views so in-place edits (intensity normalization) reach the
loader's own array.
"""
import logging
import pathlib
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

import numpy as np
import skimage.io
import tifffile

from .errors import TileLoadError
from .placement import TranslationModel
from ._typing_utils import FloatArray, NumArray, Vector

logger = logging.getLogger(__name__)

# A loader receives the `virtual` flag and returns the raw pixel array.
RasterLoader = Callable[[bool], NumArray]

TIFF_SUFFIXES = (".tif", ".tiff")

# Axis order of every raster
RASTER_AXES = "CZYX"

# tifffile axis codes read as a raster axis when the file lacks that axis
AXIS_ALIASES = {"S": "C", "I": "Z", "Q": "Z"}


def to_czyx(raster: NumArray) -> NumArray:
    """Promote a (Y, X), (Z, Y, X) or (C, Z, Y, X) array to (C, Z, Y, X)."""
    if raster.ndim == 2:
        return raster[np.newaxis, np.newaxis]
    elif raster.ndim == 3:
        return raster[np.newaxis]
    elif raster.ndim == 4:
        return raster
    raise ValueError(f"Unsupported raster shape {raster.shape}")


def axes_to_czyx(data: NumArray, axes: str) -> NumArray:
    """Reorder an array labelled with tifffile axis codes into (C, Z, Y, X).

    Samples ('S') count as channels and image sequences ('I', 'Q') as Z when
    the file has no axis of that name. Missing axes get length one; any other
    axis must already have length one. The result is a view of `data`.
    """
    axes = axes.upper()
    if len(axes) != data.ndim:
        raise ValueError(f"Axes '{axes}' do not match data of shape {data.shape}")
    labels = []
    for axis in axes:
        alias = AXIS_ALIASES.get(axis)
        if alias is not None and alias not in axes and alias not in labels:
            axis = alias
        labels.append(axis)
    if "Y" not in labels or "X" not in labels:
        raise ValueError(f"Axes '{axes}' lack a Y or X axis")

    index = []
    for axis, length in zip(labels, data.shape):
        if axis in RASTER_AXES:
            index.append(slice(None))
        elif length == 1:
            index.append(0)
        else:
            raise ValueError(f"Cannot load axis '{axis}' of length {length} (axes '{axes}')")
    data = data[tuple(index)]
    labels = [axis for axis in labels if axis in RASTER_AXES]
    if len(set(labels)) != len(labels):
        raise ValueError(f"Duplicate axes in '{axes}'")

    for axis in RASTER_AXES:
        if axis not in labels:
            data = data[..., np.newaxis]
            labels.append(axis)
    return np.transpose(data, [labels.index(axis) for axis in RASTER_AXES])


def load_image_file(path: Union[str, pathlib.Path], virtual: bool = False) -> NumArray:
    """Read an image file as a (C, Z, Y, X) array.

    TIFF files are ordered by the axes tifffile reports for their first
    series and are memory-mapped when `virtual` is set. Other formats are
    read with scikit-image as a (Y, X) plane or a (Y, X, S) color image.
    """
    path = pathlib.Path(path)
    if path.suffix.lower() not in TIFF_SUFFIXES:
        data = skimage.io.imread(path)
        return axes_to_czyx(data, "YXS" if data.ndim == 3 else "YX")

    with tifffile.TiffFile(path) as tif:
        series = tif.series[0]
        axes = series.axes
        data = None
        if virtual:
            try:
                data = tifffile.memmap(path, mode="r").reshape(series.shape)
            except ValueError as e:
                # compressed or tiled data cannot be mapped
                logger.debug(f"{path.name} is not memory-mappable ({e}), reading it instead")
        if data is None:
            data = series.asarray()
    logger.debug(f"{path.name}: axes '{axes}', shape {data.shape}")
    return axes_to_czyx(data, axes)


@dataclass(eq=False)
class Tile:
    """One image of the collection with its approximate place in the mosaic.

    `offset` and `size` are ordered (x, y[, z]). When no size is given it is
    derived from the raster the first time the tile is opened.
    """

    index: int
    offset: Vector
    loader: RasterLoader = field(repr=False)
    size: Optional[Vector] = None
    time_point: int = 1
    title: str = ""
    model: Optional[TranslationModel] = None

    _raster: Optional[NumArray] = field(default=None, init=False, repr=False)
    _raster_is_virtual: bool = field(default=False, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        self.offset = np.asarray(self.offset, dtype=np.float64)
        if self.size is not None:
            self.size = np.asarray(self.size, dtype=np.float64)
            if np.any(self.size < 0):
                raise ValueError(f"Tile {self.index} has a negative size: {self.size}")
        if not self.title:
            self.title = f"tile_{self.index}"

    @classmethod
    def from_array(cls, index: int, offset: Vector, raster: NumArray, **kwargs) -> "Tile":
        return cls(index=index, offset=offset, loader=lambda _virtual: raster, **kwargs)

    @classmethod
    def from_file(cls, index: int, offset: Vector, path: Union[str, pathlib.Path], **kwargs) -> "Tile":
        path = pathlib.Path(path)
        kwargs.setdefault("title", path.name)
        return cls(
            index=index,
            offset=offset,
            loader=lambda virtual: load_image_file(path, virtual),
            **kwargs,
        )

    @property
    def is_open(self) -> bool:
        return self._raster is not None

    @property
    def end(self) -> FloatArray:
        return self.offset + self.size

    def open(self, virtual: bool = False) -> NumArray:
        """Make the pixel data available and return it as a (C, Z, Y, X) array.

        Repeated calls return the same array. A raster opened virtually is
        replaced by an in-memory copy when a non-virtual open is requested.
        """
        with self._lock:
            if self._raster is not None and (virtual or not self._raster_is_virtual):
                return self._raster
            try:
                raw = self.loader(virtual)
            except Exception as e:
                raise TileLoadError(f"Could not open {self.title}: {e}") from e
            if raw is None:
                raise TileLoadError(f"Could not open {self.title}: loader returned nothing")
            if not virtual and isinstance(raw, np.memmap):
                raw = np.array(raw)
            raw = np.asarray(raw)
            try:
                raster = to_czyx(raw)
            except ValueError as e:
                raise TileLoadError(f"Could not open {self.title}: {e}") from e
            self._raster = raster
            self._raster_is_virtual = virtual
            if self.size is None:
                _, z, y, x = raster.shape
                self.size = np.array([x, y, z][: len(self.offset)], dtype=np.float64)
            return raster

    def close(self) -> None:
        with self._lock:
            self._raster = None


@dataclass(eq=False)
class ComparePair:
    """Two tiles expected to overlap and the registration result between them.

    `relative_shift` is the origin of tile2 expressed in tile1's frame.
    """

    tile1: Tile
    tile2: Tile
    relative_shift: Optional[FloatArray] = None
    cross_correlation: float = 0.0
    valid_overlap: bool = True

    @property
    def indices(self) -> tuple[int, int]:
        return self.tile1.index, self.tile2.index

    def __str__(self) -> str:
        return (
            f"{self.tile1.title}[{self.tile1.time_point}] <- "
            f"{self.tile2.title}[{self.tile2.time_point}]"
        )


@dataclass
class TilePlacement:
    """A tile with its final placement model."""

    tile: Tile
    model: TranslationModel
