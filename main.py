#!/usr/bin/env python3
"""
Landmark Retarget - Main Entry Point

Replays a recording of holistic landmark results (JSON Lines, one results
mapping per frame) through the retargeting engine and writes the per-frame
bone rotations as JSON Lines.
"""

import argparse
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

from retarget.core import (
    Config,
    ConfigurationError,
    FrameClock,
    BoneNode,
    default_humanoid_tree,
    setup_logging,
    get_logger,
)
from retarget.motion import BoneOptions, FrameProcessor
from retarget.export import FrameOutputWriter


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Retarget holistic landmarks onto a humanoid skeleton"
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        default="config.yaml",
        help="Path to configuration file"
    )
    parser.add_argument(
        "--input", "-i",
        type=str,
        required=True,
        help="Landmark recording (JSON Lines of results mappings)"
    )
    parser.add_argument(
        "--skeleton", "-s",
        type=str,
        help="Bone tree as JSON ({name, children}), defaults to the built-in humanoid"
    )
    parser.add_argument(
        "--output", "-o",
        type=str,
        help="Output directory (overrides config)"
    )
    parser.add_argument(
        "--landmarks",
        action="store_true",
        help="Also write the filtered pose and hand landmarks"
    )
    parser.add_argument(
        "--realtime",
        type=float,
        metavar="FPS",
        help="Pace playback at this frame rate"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging"
    )
    return parser.parse_args()


def load_skeleton(path: str) -> BoneNode:
    """Load a bone tree from a JSON file."""
    with open(path, "r") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ConfigurationError(f"Skeleton file {path} must hold a single root node")
    return BoneNode.from_dict(data)


def main() -> int:
    """Main application entry point."""
    args = parse_args()

    config_path = Path(args.config)
    if not config_path.is_absolute():
        config_path = Path(__file__).parent / config_path

    try:
        config = Config(str(config_path))
    except FileNotFoundError:
        print(f"Error: Config file not found: {config_path}")
        return 1
    except ConfigurationError as e:
        print(f"Error: Invalid config {config_path}: {e}")
        return 1

    log_level = "DEBUG" if args.debug else config.get("app.log_level", "INFO")
    setup_logging(level=log_level, log_file="retarget")
    logger = get_logger("main")

    logger.info("=" * 50)
    logger.info(f"Landmark Retarget v{config.get('app.version', '0.1.0')}")
    logger.info("=" * 50)

    if args.output:
        config.set("export.output_dir", args.output)
        logger.info(f"Output override: {args.output}")

    try:
        options = BoneOptions.from_config(config)
        tree = load_skeleton(args.skeleton) if args.skeleton else default_humanoid_tree()
    except (ConfigurationError, OSError, json.JSONDecodeError) as e:
        logger.error(f"Setup failed: {e}")
        return 1

    return run(config, options, tree, args)


def run(config: Config, options: BoneOptions, tree: BoneNode, args: argparse.Namespace) -> int:
    """Replay the recording frame by frame."""
    logger = get_logger("main")

    processor = FrameProcessor(config, options)
    if not processor.bind(tree):
        logger.error("Could not bind skeleton")
        return 1

    clock = FrameClock(target_fps=args.realtime) if args.realtime else None
    if clock is not None:
        clock.start()

    input_path = Path(args.input)
    if not input_path.exists():
        logger.error(f"Input not found: {input_path}")
        return 1

    with FrameOutputWriter(include_landmarks=args.landmarks, config=config) as writer, \
            open(input_path, "r") as recording:
        for line_number, line in enumerate(recording, start=1):
            line = line.strip()
            if not line:
                continue

            if clock is not None:
                clock.wait_for_next_frame()
                clock.tick()

            try:
                output = processor.process(json.loads(line))
            except (ConfigurationError, json.JSONDecodeError) as e:
                logger.error(f"Line {line_number}: {e}")
                continue

            if output is not None:
                writer.write(output)

    stats = processor.get_stats()
    if clock is not None and clock.late_frames:
        logger.warning(f"Replay fell behind {args.realtime} fps on {clock.late_frames} frames")
    logger.info(
        f"Done: {stats['processed']}/{stats['frames']} frames, "
        f"{stats['skipped']} skipped, {stats['avg_ms']:.2f} ms avg"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
