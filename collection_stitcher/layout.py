"""Reading approximate tile layouts and writing registered ones.

Two input formats are understood:

- tile configuration text files::

    dim = 2
    tile_000.tif; ; (0.0, 0.0)
    tile_001.tif; ; (900.0, 0.0)

- coordinates CSV files with `file`, `x`, `y` and optionally `z` and `t`
  columns.

Image paths are resolved relative to the layout file.
"""
import logging
import pathlib
import re
from typing import Optional, Sequence, Union

import pandas as pd

from .errors import LayoutFormatError
from .tiles import Tile, TilePlacement

logger = logging.getLogger(__name__)

DIM_RE = re.compile(r"^dim\s*=\s*(?P<dim>\d+)\s*$", re.I)
COORDINATES_RE = re.compile(r"^\(\s*(?P<coords>[^()]*)\)$")

REQUIRED_CSV_COLUMNS = ("file", "x", "y")


def _parse_coordinates(text: str, line_no: int) -> list[float]:
    match = COORDINATES_RE.match(text.strip())
    if match is None:
        raise LayoutFormatError(f"line {line_no}: malformed coordinates {text!r}")
    try:
        return [float(v) for v in match.group("coords").split(",")]
    except ValueError as e:
        raise LayoutFormatError(f"line {line_no}: malformed coordinates {text!r}") from e


def read_tile_configuration(path: Union[str, pathlib.Path]) -> tuple[int, list[Tile]]:
    """Parse a tile configuration file into (dimensionality, tiles)."""
    path = pathlib.Path(path)
    base_dir = path.parent
    dimensionality: Optional[int] = None
    tiles = []

    for line_no, raw_line in enumerate(path.read_text().splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        dim_match = DIM_RE.match(line)
        if dim_match:
            dimensionality = int(dim_match.group("dim"))
            continue

        fields = [f.strip() for f in line.split(";")]
        if len(fields) != 3:
            raise LayoutFormatError(
                f"line {line_no}: expected 'file; series; (coordinates)', got {raw_line!r}"
            )
        if dimensionality is None:
            raise LayoutFormatError(f"line {line_no}: tile entry before the 'dim = N' header")
        offset = _parse_coordinates(fields[2], line_no)
        if len(offset) != dimensionality:
            raise LayoutFormatError(
                f"line {line_no}: expected {dimensionality} coordinates, got {len(offset)}"
            )
        tiles.append(Tile.from_file(len(tiles), offset, base_dir / fields[0], title=fields[0]))

    if dimensionality not in (2, 3):
        raise LayoutFormatError(f"{path}: missing or unsupported 'dim' header ({dimensionality})")
    logger.info(f"Read {len(tiles)} tiles from {path}")
    return dimensionality, tiles


def read_coordinates_csv(path: Union[str, pathlib.Path]) -> tuple[int, list[Tile]]:
    """Parse a coordinates CSV into (dimensionality, tiles)."""
    path = pathlib.Path(path)
    df = pd.read_csv(path)
    missing = [c for c in REQUIRED_CSV_COLUMNS if c not in df.columns]
    if missing:
        raise LayoutFormatError(f"{path}: missing columns {missing}")

    axes = ["x", "y", "z"] if "z" in df.columns else ["x", "y"]
    if df[axes].isna().any().any():
        raise LayoutFormatError(f"{path}: empty coordinate values")

    tiles = []
    for i, row in enumerate(df.itertuples(index=False)):
        offset = [float(getattr(row, axis)) for axis in axes]
        time_point = int(row.t) if "t" in df.columns else 1
        tiles.append(
            Tile.from_file(
                i, offset, path.parent / str(row.file), title=str(row.file), time_point=time_point
            )
        )
    logger.info(f"Read {len(tiles)} tiles from {path}")
    return len(axes), tiles


def read_layout(path: Union[str, pathlib.Path]) -> tuple[int, list[Tile]]:
    if pathlib.Path(path).suffix.lower() == ".csv":
        return read_coordinates_csv(path)
    return read_tile_configuration(path)


def write_tile_configuration(
    path: Union[str, pathlib.Path],
    placements: Sequence[TilePlacement],
    dimensionality: int,
) -> None:
    """Write the placements in the tile configuration format."""
    lines = [
        "# Define the number of dimensions we are working on",
        f"dim = {dimensionality}",
        "",
        "# Define the image coordinates",
    ]
    for placement in placements:
        coords = ", ".join(repr(float(v)) for v in placement.model.translation)
        lines.append(f"{placement.tile.title}; ; ({coords})")
    pathlib.Path(path).write_text("\n".join(lines) + "\n")
    logger.info(f"Wrote registered layout of {len(placements)} tiles to {path}")
