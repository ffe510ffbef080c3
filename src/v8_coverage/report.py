# Report rendering for aggregated V8 coverage.
# Exposes a CoverageMap to coverage.py through FileReporters and lets
# coverage.py's reporters write text, html, lcov, json and xml output.

import os
import sys

import coverage
from coverage.plugin import CodeRegion, FileReporter
from coverage.results import analysis_from_file_reporter

from v8_coverage.capture import resolve_session
from v8_coverage.config import CoverageConfig
from v8_coverage.errors import ConfigurationError
from v8_coverage.reconcile import build_coverage_map


class V8FileReporter(FileReporter):
    """FileReporter backed by one FileCoverage.

    Each V8 block is a branch line with two exits, "entered" and
    "skipped". coverage.py only needs distinct destinations for them, so
    they are numbered with negative ids that never collide with lines.
    """

    def __init__(self, file_coverage):
        super().__init__(file_coverage.path)
        self._coverage = file_coverage
        self._exits = {}  # (line, dest) -> (branch key, exit index)
        for number, key in enumerate(sorted(file_coverage.branches)):
            line = key[0]
            self._exits[(line, -(2 * number + 1))] = (key, 0)
            self._exits[(line, -(2 * number + 2))] = (key, 1)

    def lines(self):
        return set(self._coverage.statements)

    def arcs(self):
        return set(self._exits)

    def exit_counts(self):
        counts = {}
        for line, _ in self._exits:
            counts[line] = counts.get(line, 0) + 1
        return counts

    def executed_arcs(self):
        executed = {(-1, line) for line, count in self._coverage.statements.items() if count > 0}
        for arc, (key, index) in self._exits.items():
            if self._coverage.branches[key][index] > 0:
                executed.add(arc)
        return executed

    def arc_description(self, start, end):
        (_, column), index = self._exits[(start, end)]
        return f"{'enter' if index == 0 else 'skip'}@{column}"

    def missing_arc_description(self, start, end, executed_arcs=None):
        (_, column), index = self._exits[(start, end)]
        if index == 0:
            return f"line {start} didn't enter the block at column {column}"
        return f"line {start} always entered the block at column {column}"

    def code_regions(self):
        regions = []
        spans = set()
        statements = self._coverage.statements
        for key, end_line in sorted(self._coverage.function_ends.items()):
            line, _, name = key
            body = {n for n in statements if line < n <= end_line} or {line}
            # coverage.py orders regions by their line span, so keep one per span
            span = (min(body | {line}), max(body))
            if span in spans:
                continue
            spans.add(span)
            regions.append(CodeRegion(kind="function", name=name, start=line, lines=body))
        return regions

    def source(self):
        if self._coverage.source is not None:
            return self._coverage.source
        with open(self.filename, encoding="utf-8") as f:
            return f.read()

    def relative_filename(self):
        try:
            return os.path.relpath(self.filename)
        except ValueError:
            return self.filename


class V8Coverage(coverage.Coverage):
    """Coverage subclass that reports on V8FileReporters instead of measured files."""

    def __init__(self, file_reporters, **kwargs):
        super().__init__(**kwargs)
        self._v8_reporters = file_reporters  # {filename: V8FileReporter}

    def _get_file_reporter(self, morf):
        if isinstance(morf, FileReporter):
            return morf
        if isinstance(morf, str) and morf in self._v8_reporters:
            return self._v8_reporters[morf]
        return super()._get_file_reporter(morf)

    def _get_file_reporters(self, morfs=None):
        if morfs is None:
            morfs = self._v8_reporters.keys()
        result = []
        for morf in morfs:
            fr = self._get_file_reporter(morf)
            result.append((fr, morf))
        return result

    def _analyze(self, morf, file_reporter=None):
        data = self.get_data()
        fr = file_reporter or self._get_file_reporter(morf)
        filename = fr.filename
        return analysis_from_file_reporter(data, self.config.precision, fr, filename)


def _render_text(cov, output_dir, show_missing):
    return cov.report(show_missing=show_missing)


def _render_html(cov, output_dir, show_missing):
    total = cov.html_report(directory=output_dir)
    print(f"HTML report written to {output_dir}/", file=sys.stderr)
    return total


def _file_renderer(method, filename, label):
    def render(cov, output_dir, show_missing):
        outfile = os.path.join(output_dir, filename)
        total = getattr(cov, method)(outfile=outfile)
        print(f"{label} report written to {outfile}", file=sys.stderr)
        return total
    return render


RENDERERS = {
    "text": _render_text,
    "html": _render_html,
    "lcov": _file_renderer("lcov_report", "coverage.lcov", "LCOV"),
    "json": _file_renderer("json_report", "coverage.json", "JSON"),
    "xml": _file_renderer("xml_report", "coverage.xml", "XML"),
}


def _check_reporters(reporters):
    unknown = [name for name in reporters if name not in RENDERERS]
    if unknown:
        raise ConfigurationError(
            f"Unknown reporter(s): {', '.join(unknown)} (choose from {', '.join(RENDERERS)})"
        )


def run_report(coverage_map, reporters=None, output_dir=".", show_missing=False):
    """Render a CoverageMap with the named reporters.

    Returns the total coverage percentage.
    """
    if reporters is None:
        reporters = ["text"]
    _check_reporters(reporters)

    file_reporters = {}
    for file_coverage in coverage_map.values():
        if file_coverage.source is None and not os.path.exists(file_coverage.path):
            print(f"Warning: source not found: {file_coverage.path}", file=sys.stderr)
            continue
        file_reporters[file_coverage.path] = V8FileReporter(file_coverage)

    if not file_reporters:
        print("No files to report on.", file=sys.stderr)
        return 0.0

    cov_obj = V8Coverage(file_reporters, data_file=None, branch=True, config_file=False)
    cov_obj._init()
    cov_obj._post_init()

    data = cov_obj.get_data()
    arc_data = {}
    for filename, fr in file_reporters.items():
        executed = fr.executed_arcs()
        if executed:
            arc_data[filename] = executed
    data.add_arcs(arc_data)

    os.makedirs(output_dir, exist_ok=True)
    total = 0.0
    for name in reporters:
        total = RENDERERS[name](cov_obj, output_dir, show_missing)
    return total


def create_coverage_report(config=None, session=None):
    """Build the aggregate from the capture log and render every configured report.

    Reports are written under ``<capture dir>/<report_dir>``. Renderer
    failures propagate to the caller.

    The capture log is chosen by resolve_session(): an explicit session,
    then the log published by setup_coverage() in this or a parent
    process, and only then config.dir/config.file. Pass session to read
    a different log than the published one.
    """
    config = config or CoverageConfig()
    _check_reporters(config.reporters)
    session = resolve_session(session, config)

    coverage_map = build_coverage_map(config, session)
    return run_report(
        coverage_map,
        reporters=config.reporters,
        output_dir=os.path.join(session.directory, config.report_dir),
        show_missing=config.show_missing,
    )
