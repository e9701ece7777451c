"""Command-line interface for gerberforge."""

import argparse
import logging
import os
import warnings
from pathlib import Path
from typing import List, Optional

from .config import Config
from .errors import GerberForgeError
from .pipeline import build


def build_command(args: argparse.Namespace) -> int:
    global_config = Config.load_or_default(args.config)

    forge_file = args.forge_file
    if not forge_file.exists():
        print(f"Error: Forge file '{forge_file}' not found")
        return 1

    target_directory = args.target_directory or forge_file.resolve().parent
    jobs = args.jobs if args.jobs is not None else 1

    print(f"Building: {forge_file}")
    print(f"  Target directory: {target_directory}")
    if args.debug:
        print(f"  Debug renders: {target_directory / 'debug'}")

    try:
        written = build(forge_file, target_directory, global_config, debug=args.debug, jobs=jobs)
    except (GerberForgeError, OSError) as e:
        print(f"Error: {e}")
        return 1

    if not written:
        print("\nNothing to write: no engraving stages")
    for path in written:
        print(f"\n✓ G-code saved to: {path}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="gerberforge",
        description="Generate laser or spindle G-code from Gerber copper layers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Build every stage of a forge file next to it
  gerberforge build board.forge.yaml

  # Write output elsewhere, with debug renders, four stages at a time
  gerberforge build board.forge.yaml -t out/ --debug -j 4
        """
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show debug logging and Gerber parser warnings (geometry warnings are always logged)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Global config file (default: $GERBERFORGE_CONFIG or ~/.config/gerberforge/config.yaml)",
    )

    subparsers = parser.add_subparsers(dest="command")
    build_parser = subparsers.add_parser("build", help="Build the G-code files described by a forge file")
    build_parser.add_argument(
        "forge_file",
        type=Path,
        help="Forge file (YAML or JSON) listing the stages to build",
    )
    build_parser.add_argument(
        "-t", "--target-directory",
        type=Path,
        help="Directory for the generated files (default: next to the forge file)",
    )
    build_parser.add_argument(
        "--debug",
        action="store_true",
        help="Write debug SVG renders to <target>/debug/stage<N>/",
    )
    build_parser.add_argument(
        "-j", "--jobs",
        type=int,
        default=None,
        help=f"Number of stages processed in parallel (default: 1, max useful: {os.cpu_count() or 1})",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    # gerbonara reports recoverable syntax problems as Python warnings
    if not args.verbose:
        warnings.filterwarnings('ignore')

    if args.command == "build":
        if args.jobs is not None and args.jobs < 1:
            print("Error: --jobs must be at least 1")
            return 1
        return build_command(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    exit(main())
