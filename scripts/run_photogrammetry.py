#!/usr/bin/env python3
"""
Photogrammetry Generator

Reconstructs a 3D mesh from a folder of images by handing them to a
reconstruction engine and writing the resulting model to disk.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from photogen.colmap_engine import ColmapSession
from photogen.config import load_config, resolve_export_path, setup_logging
from photogen.controller import EXIT_FAILURE, SessionController
from photogen.observer import EventObserver
from photogen.options import (
    IllegalOptionError,
    make_configuration,
    parse_detail,
    parse_feature_sensitivity,
    parse_sample_ordering,
)

logger = logging.getLogger("photogrammetry")

ENGINES = {
    "colmap": ColmapSession,
}


def _option_type(parse):
    # Re-raise as ArgumentTypeError so argparse names the offending option
    def convert(raw: str):
        try:
            return parse(raw)
        except IllegalOptionError as e:
            raise argparse.ArgumentTypeError(str(e))
    return convert


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Reconstructs 3D mesh from a folder of images."
    )
    parser.add_argument(
        "input_folder",
        help="The local input file folder of images."
    )
    parser.add_argument(
        "output_filename",
        help="Full path to the output file."
    )
    parser.add_argument(
        "--detail", "-d", dest="detail", default=None,
        type=_option_type(parse_detail),
        help="detail {preview, reduced, medium, full, raw}  Detail level of the output."
    )
    parser.add_argument(
        "--sampleOrdering", "-o", dest="sample_ordering", default=None,
        type=_option_type(parse_sample_ordering),
        help="sampleOrdering {unordered, sequential}  Set to sequential if the input "
             "images are captured specifically in sequential order."
    )
    parser.add_argument(
        "--featureSensitivity", "-f", dest="feature_sensitivity", default=None,
        type=_option_type(parse_feature_sensitivity),
        help="featureSensitivity {normal, high}  Set to high if the scanned object does "
             "not contain a lot of discernible structures, edges or textures."
    )
    parser.add_argument(
        "--config", "-c", dest="config_path", default=None,
        help="Path to configuration file"
    )
    parser.add_argument(
        "--verbose", "-v", dest="verbose", action="store_true",
        help="Enable debug logging"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Parse arguments, run the reconstruction and return the exit code."""
    args = build_parser().parse_args(argv)

    config = load_config(args.config_path)
    setup_logging(config, verbose=args.verbose)

    engine_name = config["engine"]["name"]
    if engine_name not in ENGINES:
        logger.error(f"Unknown reconstruction engine: {engine_name}")
        return EXIT_FAILURE

    configuration = make_configuration(args.sample_ordering, args.feature_sensitivity)
    observer = EventObserver(
        export_path=resolve_export_path(config, args.output_filename),
        logger=logger.getChild("observer"),
        show_progress=config["progress"]["show_bar"]
    )
    controller = SessionController(ENGINES[engine_name], config, logger=logger.getChild("controller"))

    return controller.run(
        args.input_folder,
        args.output_filename,
        args.detail,
        configuration,
        observer
    )


if __name__ == "__main__":
    try:
        sys.exit(main())
    except Exception as e:
        logger.exception(f"Error running photogrammetry: {e}")
        sys.exit(1)
