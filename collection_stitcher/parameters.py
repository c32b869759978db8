import enum
import os
from multiprocessing import cpu_count
from typing import Annotated, Literal, Optional

from pydantic import AfterValidator, BaseModel, Field


class CpuMemChoice(enum.Enum):
    """Trade-off between memory use and throughput during a run."""

    low_memory = "low_memory"
    high_throughput = "high_throughput"


def input_path_exists(path: str) -> str:
    """Pydantic validator to check the path exists."""
    if not os.path.exists(path):
        raise ValueError(f"Input file does not exist: {path}")

    return path


class StitchingParameters(
    BaseModel,
    use_attribute_docstrings=True,
):
    """Parameters for collection stitching runs."""

    dimensionality: Literal[2, 3] = 2
    """Number of spatial axes the tiles are placed in."""

    compute_overlap: bool = True
    """Register overlapping tiles and optimize their positions.

    When false, the approximate offsets are trusted as they are and every tile
    simply receives a translation model built from its offset.
    """

    normalize_intensity: bool = False
    """Divide every tile by a per-channel median reference before registration.

    This mutates the tile rasters in place.
    """

    sequential: bool = False
    """Pair each tile with the next `sequential_range` tiles instead of testing all pairs."""

    sequential_range: int = Field(default=1, ge=1)
    """How many following tiles each tile is paired with in sequential mode."""

    virtual: bool = False
    """Open tile rasters memory-mapped instead of reading them into memory."""

    cpu_mem_choice: CpuMemChoice = CpuMemChoice.high_throughput
    """low_memory runs everything on a single worker thread; high_throughput
    uses one worker per available CPU."""

    check_peaks: int = Field(default=5, ge=1)
    """Number of phase correlation peaks verified by cross-correlation per pair."""

    subpixel_accuracy: bool = True
    """Refine the chosen shift to sub-pixel accuracy."""

    registration_channel: Optional[int] = Field(default=None, ge=0)
    """Channel used for pairwise registration. None averages all channels."""

    regression_threshold: float = 0.3
    """Pairs with a lower cross-correlation are discarded by the global optimizer."""

    relative_threshold: float = Field(default=2.5, gt=0)
    """The worst link is removed when its error exceeds this multiple of the average error."""

    absolute_threshold: float = Field(default=3.5, gt=0)
    """The worst link is removed while the average link error exceeds this many pixels."""

    verbose: bool = False
    """Show debug-level logging."""

    @property
    def num_workers(self) -> int:
        """Size of the worker pool used for normalization and registration."""
        if self.cpu_mem_choice == CpuMemChoice.low_memory:
            return 1
        return cpu_count()

    @classmethod
    def from_json_file(cls, json_path: str) -> "StitchingParameters":
        """Create parameters from a JSON file.

        Args:
            json_path: Path to JSON file containing parameters

        Returns:
            StitchingParameters: New instance with values from JSON
        """
        with open(json_path) as f:
            return cls.model_validate_json(f.read())

    def to_json_file(self, json_path: str) -> None:
        """Save parameters to a JSON file.

        Args:
            json_path: Path where JSON file should be saved
        """
        with open(json_path, "w") as f:
            f.write(self.model_dump_json(indent=2))


class CollectionStitchingParameters(StitchingParameters):
    """Parameters for stitching a tile collection described by a layout file."""

    layout_file: Annotated[str, AfterValidator(input_path_exists)]
    """A tile configuration (.txt) or coordinates (.csv) file with approximate tile offsets."""

    output_file: Optional[str] = None
    """Where to write the registered layout. Defaults to `<layout>.registered.txt`."""

    show_progress: bool = True
    """Display a progress bar while pairs are registered."""

    @property
    def registered_layout_file(self) -> str:
        if self.output_file is not None:
            return self.output_file
        base, _ext = os.path.splitext(self.layout_file)
        return base + ".registered.txt"
