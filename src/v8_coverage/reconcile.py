"""Reconcile captured samples and untested files into one CoverageMap."""

import glob
import os
import sys
from urllib.parse import urlsplit

from v8_coverage.capture import resolve_session
from v8_coverage.config import CoverageConfig
from v8_coverage.convert import convert_functions
from v8_coverage.loader import base_url_is_path, load_coverage
from v8_coverage.model import CoverageMap
from v8_coverage.sourcemaps import PositionMap
from v8_coverage.untested import untested_file_coverage


def _expand(patterns):
    found = set()
    for pattern in patterns:
        for path in glob.glob(pattern, recursive=True):
            if os.path.isfile(path):
                found.add(os.path.abspath(path))
    return found


def resolve_working_set(config):
    """Expand include globs minus exclude globs.

    Returns:
        (working_set, excluded): sorted absolute paths of included files and
        the set of absolute paths matched by the exclude globs.
    """
    excluded = _expand(config.exclude)
    return sorted(_expand(config.include) - excluded), excluded


def compiled_path_for(url):
    """Absolute local path for a rewritten sample URL, or None for remote URLs."""
    if not url or not base_url_is_path(url):
        return None
    if urlsplit(url).scheme == "data":
        return None
    return os.path.abspath(url)


def _sample_coverage(sample, compiled_path):
    source = sample.get("source")
    if source is None:
        with open(compiled_path, encoding="utf-8") as f:
            source = f.read()
    position_map = PositionMap.from_script(compiled_path, source)
    return convert_functions(sample.get("functions", []), position_map)


def build_coverage_map(config=None, session=None):
    """Load the capture log and build the aggregate CoverageMap.

    Samples are kept only for compiled files in the working set. When no
    include globs are configured, every sample whose file exists locally
    and is not excluded is used instead. Working-set files without any
    sample are added with zero counts.
    """
    config = config or CoverageConfig()
    session = resolve_session(session, config)

    working_set, excluded = resolve_working_set(config)
    included = set(working_set)
    samples = load_coverage(session.log_path, config.url)

    coverage_map = CoverageMap()
    covered = set()
    skipped = 0

    for sample in samples:
        compiled_path = compiled_path_for(sample.get("url"))
        if compiled_path is None:
            skipped += 1
            continue
        if config.include:
            if compiled_path not in included:
                skipped += 1
                continue
        elif compiled_path in excluded or not os.path.isfile(compiled_path):
            skipped += 1
            continue

        coverage_map.merge(_sample_coverage(sample, compiled_path).values())
        covered.add(compiled_path)

    for compiled_path in working_set:
        if compiled_path in covered:
            continue
        coverage_map.merge(untested_file_coverage(compiled_path, config).values())

    print(
        f"Merged {len(samples) - skipped} sample(s) from {session.log_path}, "
        f"{len(set(working_set) - covered)} untested file(s), {skipped} skipped",
        file=sys.stderr,
    )
    return coverage_map
