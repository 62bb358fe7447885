"""
Command line entry point.

Usage:
    skelgraft hero.glb                      # writes hero.retarget.glb
    skelgraft hero.glb -o out.glb --merge   # single draw call with atlases
    skelgraft hero.glb --inspect            # dump per-entity statistics
"""

import argparse
import logging
import sys
import warnings
from typing import List, Optional

from .core.errors import RetargetWarning, SkelgraftError
from .pipeline import convert, default_output_path, format_report
from .utils.config import RetargetConfig, load_config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='skelgraft',
        description='Retarget a glTF character onto the donor skeleton.',
    )
    parser.add_argument('file', help='Input .glb or .gltf file')
    parser.add_argument('-o', '--output', help='Output file (default: <input>.retarget.glb)')
    parser.add_argument('--merge', action='store_true', help='Merge all meshes into one with texture atlases')
    parser.add_argument('--silent', action='store_true', help='Do not print the size report')
    parser.add_argument('--inspect', action='store_true', help='Print per-entity statistics as JSON')
    parser.add_argument('--config', help='JSON file with RetargetConfig fields')
    parser.add_argument('--data-dir', help='Directory with skeleton.glb and the joint tables')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.verbose:
        level = logging.DEBUG
    elif args.silent:
        level = logging.ERROR
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format='%(levelname)s %(name)s: %(message)s')
    # Retarget warnings are already logged
    warnings.simplefilter('ignore', RetargetWarning)

    try:
        config = load_config(args.config) if args.config else RetargetConfig()
        if args.data_dir:
            config = config.update(data_dir=args.data_dir)
        output = args.output or default_output_path(args.file)
        report = convert(args.file, output, config=config, merge=args.merge, progress=not args.silent)
    except (SkelgraftError, FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not args.silent:
        print(format_report(report, include_data=args.inspect))
    return 0


if __name__ == '__main__':
    sys.exit(main())
