import argparse
import sys
import logging
import os
import traceback

from dataset_converter import ConversionOptions, convert_directory


def build_parser():
    parser = argparse.ArgumentParser(description="Convert a nuScenes dataset into one ROS bag per scene.")
    parser.add_argument("-d", "--dataroot", required=True,
                        help="Path to the dataset root containing the samples/ and sweeps/ folders.")
    parser.add_argument("-v", "--version", default="v1.0-mini",
                        help="Metadata folder name inside the dataset root (default: v1.0-mini).")
    parser.add_argument("-m", "--metadata", default=None,
                        help="Explicit path to the metadata JSON tables (overrides --version).")
    parser.add_argument("-o", "--out", default=".",
                        help="Output directory for the bag files.")
    parser.add_argument("-j", "--jobs", type=int, default=1,
                        help="Number of scenes converted in parallel.")
    parser.add_argument("-s", "--scene_number", type=int, default=None,
                        help="Only convert the scene with this number (e.g. 61 for scene-0061).")
    parser.add_argument("--decode_workers", type=int, default=4,
                        help="File decoding threads per scene.")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable debug logging.")
    return parser


def options_from_args(args) -> ConversionOptions:
    metadata_path = args.metadata or os.path.join(args.dataroot, args.version)
    return ConversionOptions(
        metadata_path=metadata_path,
        dataset_path=args.dataroot,
        output_path=args.out,
        jobs=args.jobs,
        scene_number=args.scene_number,
        decode_workers=args.decode_workers,
    )


def main(argv=None):
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='[%(asctime)s] %(levelname)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )
    log = logging.getLogger(__name__)

    options = options_from_args(args)

    log.info("=" * 70)
    log.info("Starting nuScenes to bag conversion")
    log.info("=" * 70)
    log.info(f"Metadata:   {options.metadata_path}")
    log.info(f"Dataset:    {options.dataset_path}")
    log.info(f"Output Dir: {options.output_path}")
    log.info(f"Jobs:       {options.jobs}")
    if options.scene_number is not None:
        log.info(f"Scene:      {options.scene_number}")
    log.info("-" * 70)

    if not os.path.isdir(options.dataset_path):
        log.error(f"Dataset path is not a valid directory: {options.dataset_path}")
        sys.exit(1)

    try:
        result = convert_directory(options)
    except Exception as e:
        log.error("=" * 70)
        log.error("--- A FATAL ERROR OCCURRED ---")
        log.error(f"Error: {e}")
        log.error("=" * 70)
        log.error(traceback.format_exc())
        log.error("Conversion FAILED.")
        sys.exit(1)

    if not result.ok:
        log.error(f"{len(result.failed)} scenes failed to convert.")
        sys.exit(1)

    log.info("All scenes converted successfully!")


if __name__ == "__main__":
    main()
