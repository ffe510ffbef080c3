#!/usr/bin/env python3
"""Command-line front end for V8 coverage capture logs.

setup prepares an empty capture log before a browser test run, report
turns the log into coverage reports afterwards, list and clean inspect
and remove it.
"""

import argparse
import os
import shutil
import sys
from pathlib import Path

from v8_coverage.capture import resolve_session, setup_coverage
from v8_coverage.config import load_config, merge_configs
from v8_coverage.errors import CoverageError
from v8_coverage.report import RENDERERS, create_coverage_report


def _load(args, **overrides):
    config = load_config(Path(args.root))
    return merge_configs(config, **overrides)


def cmd_setup(args):
    """Execute 'setup' subcommand — create an empty capture log."""
    config = _load(args)
    session = setup_coverage(config, directory=args.dir, file=args.file)
    print(f"Capture log ready: {session.log_path}")
    print(f"Export V8_COVERAGE_FILE={session.log_path} for test workers to append to it.")
    return 0


def cmd_report(args):
    """Execute 'report' subcommand — merge the log and generate reports."""
    config = _load(
        args,
        reporters=args.reporters,
        url=args.url,
        out_dir=args.out_dir,
        src_dir=args.src_dir,
        include=args.include,
        exclude=args.exclude,
        report_dir=args.output_dir,
        show_missing=args.show_missing or None,
    )
    session = resolve_session(None, config)
    if not os.path.isfile(session.log_path):
        print(f"No capture log found at {session.log_path}", file=sys.stderr)
        return 1

    create_coverage_report(config, session)
    return 0


def cmd_list(args):
    """Execute 'list' subcommand — show the batches in the capture log."""
    from v8_coverage.loader import flatten_batch, split_batches

    session = resolve_session(None, _load(args))
    if not os.path.isfile(session.log_path):
        print(f"No capture log at {session.log_path}")
        return 0

    batches = split_batches(session.read_text())
    if not batches:
        print(f"Capture log {session.log_path} is empty")
        return 0

    print(f"Capture log {session.log_path}:")
    for index, batch in enumerate(batches):
        samples = list(flatten_batch(batch))
        urls = {sample.get("url") for sample in samples if sample.get("url")}
        print(f"  batch {index}  ({len(samples)} samples, {len(urls)} scripts)")
    return 0


def cmd_clean(args):
    """Execute 'clean' subcommand — remove the capture log and reports."""
    session = resolve_session(None, _load(args))
    targets = [p for p in (session.log_path, session.report_dir) if os.path.exists(p)]

    if not targets:
        print(f"No coverage data in {session.directory}")
        return 0

    if not args.yes:
        answer = input(f"Remove {', '.join(targets)}? [y/N] ")
        if answer.lower() not in ("y", "yes"):
            print("Cancelled.")
            return 0

    for path in targets:
        if os.path.isdir(path):
            shutil.rmtree(path)
        else:
            os.unlink(path)
    print(f"Removed {len(targets)} path(s).")

    # Remove capture dir if empty
    try:
        os.rmdir(session.directory)
    except OSError:
        pass
    return 0


def _run(args):
    try:
        return args.func(args)
    except (CoverageError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="v8-coverage",
        description="V8 JavaScript coverage capture and reporting",
    )
    parser.add_argument(
        "--root",
        default=".",
        help="Directory containing pyproject.toml with [tool.v8-coverage] (default: .)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- setup ---
    p_setup = subparsers.add_parser("setup", help="Create an empty capture log")
    p_setup.add_argument("--dir", default=None, help="Capture directory")
    p_setup.add_argument("--file", default=None, help="Capture log file name")
    p_setup.set_defaults(func=cmd_setup)

    # --- report ---
    p_report = subparsers.add_parser("report", help="Generate coverage reports from the log")
    p_report.add_argument(
        "--reporter",
        dest="reporters",
        action="append",
        default=[],
        choices=list(RENDERERS),
        help="Report format (repeatable, default: text)",
    )
    p_report.add_argument("--url", default=None, help="Base URL the tests were served from")
    p_report.add_argument("--out-dir", default=None, help="Root of the compiled output")
    p_report.add_argument("--src-dir", default=None, help="Root of the original sources")
    p_report.add_argument(
        "--include",
        action="append",
        default=[],
        help="Glob of compiled files to report on (repeatable)",
    )
    p_report.add_argument(
        "--exclude",
        action="append",
        default=[],
        help="Glob of compiled files to leave out (repeatable)",
    )
    p_report.add_argument(
        "--output-dir", default=None, help="Report directory, relative to the capture directory"
    )
    p_report.add_argument(
        "--show-missing", action="store_true", help="Show missing line numbers in text report"
    )
    p_report.set_defaults(func=cmd_report)

    # --- list ---
    p_list = subparsers.add_parser("list", help="List batches in the capture log")
    p_list.set_defaults(func=cmd_list)

    # --- clean ---
    p_clean = subparsers.add_parser("clean", help="Remove the capture log and reports")
    p_clean.add_argument("--yes", "-y", action="store_true", help="Skip confirmation prompt")
    p_clean.set_defaults(func=cmd_clean)

    args = parser.parse_args(argv)
    sys.exit(_run(args))


if __name__ == "__main__":
    main()
