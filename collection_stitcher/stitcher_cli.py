import logging
import sys

from pydantic_settings import CliApp

from collection_stitcher.layout import read_layout, write_tile_configuration
from collection_stitcher.parameters import CollectionStitchingParameters
from collection_stitcher.stitcher import CollectionStitcher
from collection_stitcher.tiles import TilePlacement


def main(args: list[str]) -> list[TilePlacement]:
    """Register the tiles of a layout file and write the registered layout.

    Options are kebab-case and booleans are flags, e.g.
    `--layout-file TileConfiguration.txt --no-compute-overlap`.
    """
    params = CliApp.run(CollectionStitchingParameters, cli_args=args)
    log_level = logging.DEBUG if params.verbose else logging.INFO
    logging.basicConfig(level=log_level)

    dimensionality, tiles = read_layout(params.layout_file)
    if dimensionality != params.dimensionality:
        logging.info(
            f"Layout file is {dimensionality}-D, overriding dimensionality={params.dimensionality}"
        )
        params = params.model_copy(update={"dimensionality": dimensionality})

    try:
        placements = CollectionStitcher(params, show_progress=params.show_progress).run(tiles)
        write_tile_configuration(params.registered_layout_file, placements, params.dimensionality)
    finally:
        for tile in tiles:
            tile.close()
    return placements


def run() -> None:
    main(sys.argv[1:])


if __name__ == "__main__":
    run()
