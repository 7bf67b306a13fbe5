"""Command-line interface for md2tracker."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from .version import __version__


def _get_usage() -> str:
    return (
        f"md2tracker {__version__}\n"
        "Usage:\n"
        "  md2tracker [--help] [--version|--ver]\n"
        "  md2tracker --target {adf,linear,markdown} [--input PATH] [--output PATH] [options]\n\n"
        "Targets:\n"
        "  adf                          Markdown -> ADF JSON document\n"
        "  linear                       Markdown -> text with +++ collapsible fences\n"
        "  markdown                     ADF JSON document -> Markdown\n\n"
        "Options:\n"
        "  --input PATH                 Read source from PATH (default: stdin)\n"
        "  --output PATH                Write result to PATH (default: stdout)\n"
        "  --sanitize-wiki              Convert unambiguous Jira wiki markup first\n"
        "  --log-file PATH              Append conversion records (fallback: MD2TRACKER_LOG_FILE)\n"
        "  --verbose                    Verbose progress logs\n"
        "  --debug                      Debug logs"
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--help", action="store_true")
    parser.add_argument("--version", action="store_true")
    parser.add_argument("--ver", action="store_true")
    parser.add_argument("--target", help="Conversion target: adf, linear or markdown")
    parser.add_argument("--input", help="Source file (default: stdin)")
    parser.add_argument("--output", help="Output file (default: stdout)")
    parser.add_argument(
        "--sanitize-wiki",
        action="store_true",
        help="Convert unambiguous Jira wiki markup to Markdown before converting",
    )
    parser.add_argument(
        "--log-file",
        help="Append timestamped input/output records to this path (fallback: MD2TRACKER_LOG_FILE env var)",
    )
    parser.add_argument("--verbose", action="store_true", help="Verbose progress logs")
    parser.add_argument("--debug", action="store_true", help="Debug logs")
    return parser


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parser = _build_parser()
    args, unknown = parser.parse_known_args(argv)
    if unknown:
        print(_get_usage())
        return 2

    if not argv or args.help:
        print(_get_usage())
        return 0

    if args.version or args.ver:
        print(__version__)
        return 0

    try:
        from md2tracker import core
    except Exception as exc:
        print(f"Unable to import md2tracker core: {exc}", file=sys.stderr)
        return 6

    if args.target not in core.TARGETS:
        print(_get_usage())
        print(f"Option --target must be one of: {', '.join(core.TARGETS)}", file=sys.stderr)
        return core.EXIT_INVALID_ARGS

    core.setup_logging(args.verbose, args.debug)

    if args.input:
        input_path = Path(args.input).expanduser().resolve()
        if not input_path.exists() or not input_path.is_file():
            print(f"Input file not found: {input_path}", file=sys.stderr)
            return core.EXIT_INVALID_ARGS
        try:
            text = input_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            print(f"Unable to read input file {input_path}: {exc}", file=sys.stderr)
            return core.EXIT_INVALID_ARGS
    else:
        text = sys.stdin.read()

    config = core.ConversionConfig(
        target=args.target,
        sanitize_wiki=bool(args.sanitize_wiki),
        log_file=Path(args.log_file) if args.log_file else None,
        verbose=bool(args.verbose),
        debug=bool(args.debug),
    )

    try:
        result = core.run_conversion(text, config)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return core.EXIT_INVALID_ARGS

    if not args.output:
        sys.stdout.write(result)
        return 0

    output_path = Path(args.output).expanduser().resolve()
    if output_path.exists() and output_path.is_dir():
        print(f"Output path is a directory: {output_path}", file=sys.stderr)
        return core.EXIT_OUTPUT
    try:
        core.write_output_text(output_path, result)
    except OSError as exc:
        print(f"Unable to write output file {output_path}: {exc}", file=sys.stderr)
        return core.EXIT_OUTPUT
    if args.verbose:
        print(f"Output written to {output_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
