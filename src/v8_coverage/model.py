"""Aggregate coverage model keyed by original source file.

Counts are keyed by source location rather than by position in a list, so
merging is plain addition: the same location seen in several capture
batches sums, and merge order never changes the result.
"""


def _merge_hit_counters(base, overlay):
    for key, value in overlay.items():
        base[key] = base.get(key, 0) + value


def _merge_branch_counters(base, overlay):
    for key, counts in overlay.items():
        current = base.get(key, [])
        width = max(len(current), len(counts))
        current = list(current) + [0] * (width - len(current))
        base[key] = [a + b for a, b in zip(current, list(counts) + [0] * (width - len(counts)))]


class FileCoverage:
    """Statement, function and branch counts for one original source file.

    statements: {line: count}
    functions:  {(line, column, name): count}, with end lines in function_ends
    branches:   {(line, column): [taken, skipped]}
    """

    def __init__(self, path, source=None):
        self.path = path
        self.source = source
        self.statements = {}
        self.functions = {}
        self.function_ends = {}
        self.branches = {}

    def add_statement(self, line, count):
        """Record a point on line. Within one sample a line keeps its highest count."""
        self.statements[line] = max(self.statements.get(line, 0), count)

    def add_function(self, name, line, column, end_line, count):
        key = (line, column, name)
        self.functions[key] = self.functions.get(key, 0) + count
        self.function_ends[key] = max(self.function_ends.get(key, line), end_line)

    def add_branch(self, line, column, counts):
        _merge_branch_counters(self.branches, {(line, column): counts})

    def merge(self, other):
        """Add other's counts into this file. other is left untouched."""
        _merge_hit_counters(self.statements, other.statements)
        _merge_hit_counters(self.functions, other.functions)
        for key, end_line in other.function_ends.items():
            self.function_ends[key] = max(self.function_ends.get(key, end_line), end_line)
        _merge_branch_counters(self.branches, other.branches)
        if self.source is None:
            self.source = other.source

    def copy(self):
        clone = FileCoverage(self.path, self.source)
        clone.merge(self)
        return clone

    def summary(self):
        """Return {"lines"|"functions"|"branches": (found, hit)}."""
        branch_counts = [count for counts in self.branches.values() for count in counts]
        return {
            "lines": (len(self.statements), sum(1 for c in self.statements.values() if c > 0)),
            "functions": (len(self.functions), sum(1 for c in self.functions.values() if c > 0)),
            "branches": (len(branch_counts), sum(1 for c in branch_counts if c > 0)),
        }

    def __repr__(self):
        return f"FileCoverage({self.path!r}, {self.summary()!r})"


class CoverageMap:
    """Mapping of original file path to FileCoverage."""

    def __init__(self, files=None):
        self._files = {}
        for file_coverage in files or ():
            self.add_file_coverage(file_coverage)

    def add_file_coverage(self, file_coverage):
        existing = self._files.get(file_coverage.path)
        if existing is None:
            self._files[file_coverage.path] = file_coverage.copy()
        else:
            existing.merge(file_coverage)

    def merge(self, other):
        """Merge a CoverageMap or an iterable of FileCoverage into this map."""
        items = other.values() if isinstance(other, CoverageMap) else other
        for file_coverage in items:
            self.add_file_coverage(file_coverage)

    def files(self):
        return sorted(self._files)

    def file_coverage_for(self, path):
        return self._files[path]

    def values(self):
        return [self._files[path] for path in self.files()]

    def __contains__(self, path):
        return path in self._files

    def __len__(self):
        return len(self._files)

    def __iter__(self):
        return iter(self.files())
