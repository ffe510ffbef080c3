"""Convert V8 function/range coverage into FileCoverage entries.

V8 reports, per function, a list of (startOffset, endOffset, count) ranges.
The first range spans the function; later ranges mark blocks whose count
differs from their parent. The count that applies at an offset is the
count of the innermost range containing it.
"""

from v8_coverage.model import FileCoverage

ANONYMOUS = "(anonymous)"


class _Range:
    __slots__ = ("start", "end", "count", "order")

    def __init__(self, start, end, count, order):
        self.start = start
        self.end = end
        self.count = count
        self.order = order

    def contains(self, offset):
        return self.start <= offset < self.end


def _ranges(functions, position_map):
    """Per-function lists of _Range with offsets converted to str indices."""
    order = 0
    result = []
    for function in functions:
        converted = []
        for raw in function.get("ranges", []):
            converted.append(_Range(
                position_map.char_offset(raw["startOffset"]),
                position_map.char_offset(raw["endOffset"]),
                raw["count"],
                order,
            ))
            order += 1
        result.append(converted)
    return result


def _innermost(ranges, offset):
    best = None
    for candidate in ranges:
        if not candidate.contains(offset):
            continue
        if best is None or (candidate.end - candidate.start, -candidate.order) <= (
            best.end - best.start, -best.order
        ):
            best = candidate
    return best


def _sweep(ranges, offsets):
    """Innermost range for each of the ascending offsets, in one pass.

    V8 ranges nest, so the most recently opened range that still contains
    an offset is the innermost one.
    """
    ordered = sorted(ranges, key=lambda r: (r.start, r.start - r.end, r.order))
    stack = []
    index = 0
    for offset in offsets:
        while index < len(ordered) and ordered[index].start <= offset:
            stack.append(ordered[index])
            index += 1
        while stack and not stack[-1].contains(offset):
            stack.pop()
        yield stack[-1] if stack else None


def convert_functions(functions, position_map):
    """Build FileCoverage entries for one script's V8 coverage.

    Args:
        functions: The sample's FunctionCoverage list.
        position_map: PositionMap of the compiled script.

    Returns:
        Dict of original path to FileCoverage.
    """
    results = {}

    def file_for(path):
        if path not in results:
            results[path] = FileCoverage(path, position_map.sources_content.get(path))
        return results[path]

    per_function = _ranges(functions, position_map)
    every_range = [r for ranges in per_function for r in ranges]

    points = position_map.points()
    enclosing_ranges = _sweep(every_range, [point.offset for point in points])
    for point, enclosing in zip(points, enclosing_ranges):
        file_for(point.path).add_statement(point.line, enclosing.count if enclosing else 0)

    for function, ranges in zip(functions, per_function):
        if not ranges:
            continue
        body = ranges[0]
        name = function.get("functionName") or ""

        if name or body.start > 0:
            start = position_map.locate(body.start)
            end = position_map.locate(max(body.start, body.end - 1))
            if start is not None:
                end_line = end.line if end is not None and end.path == start.path else start.line
                file_for(start.path).add_function(
                    name or ANONYMOUS, start.line, start.column, end_line, body.count
                )

        if not function.get("isBlockCoverage"):
            continue
        for i, block in enumerate(ranges[1:], 1):
            parent = _innermost(ranges[:i], block.start) or body
            location = position_map.locate(block.start, skip_blank_until=block.end)
            if location is None:
                continue
            skipped = max(parent.count - block.count, 0)
            file_for(location.path).add_branch(
                location.line, location.column, [block.count, skipped]
            )

    return results
