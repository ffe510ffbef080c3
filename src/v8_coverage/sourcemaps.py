"""Translate compiled-script offsets into original source positions.

A PositionMap is built once per compiled script. It holds the "points" of
the script: source map tokens (or, without a map, the first non-blank
character of each line), each tied to an original file, line and column.
Statements are counted per point, and block/function offsets are located
through the nearest point on the same compiled line.
"""

import base64
import json
import os
import re
from bisect import bisect_right
from collections import namedtuple
from urllib.parse import unquote

import sourcemap

from v8_coverage.errors import ParseError

SOURCE_MAP_COMMENT = re.compile(r"[#@]\s*sourceMappingURL=(\S+)")
_MAP_COMMENT_LINE = re.compile(r"//[#@]\s*sourceMappingURL=")

Point = namedtuple("Point", ["offset", "path", "line", "column"])


def _line_starts(source):
    starts = [0]
    for index, char in enumerate(source):
        if char == "\n":
            starts.append(index + 1)
    return starts


def _skip_blank(source, start, stop):
    """First non-whitespace index in [start, stop), or None."""
    for index in range(start, min(stop, len(source))):
        if not source[index].isspace():
            return index
    return None


def _utf16_table(source):
    """Map UTF-16 code unit offsets to str indices, or None if they coincide."""
    if all(ord(char) <= 0xFFFF for char in source):
        return None
    table = []
    for index, char in enumerate(source):
        table.append(index)
        if ord(char) > 0xFFFF:
            table.append(index)
    table.append(len(source))
    return table


def _decode_data_url(url):
    header, _, payload = url.partition(",")
    if header.endswith(";base64"):
        return base64.b64decode(payload).decode("utf-8")
    return unquote(payload)


def find_source_map(compiled_path, source):
    """Locate and read the source map for a compiled script.

    The sourceMappingURL comment wins; a relative reference is resolved
    against the script's directory. Falls back to the sibling
    ``<compiled>.map`` file.

    Returns:
        (map_text, map_path) or (None, None) if the script has no map.
    """
    script_dir = os.path.dirname(compiled_path)
    matches = SOURCE_MAP_COMMENT.findall(source)
    if matches:
        ref = matches[-1]
        if ref.startswith("data:"):
            return _decode_data_url(ref), compiled_path
        candidate = os.path.join(script_dir, unquote(ref))
        if os.path.isfile(candidate):
            with open(candidate, encoding="utf-8") as f:
                return f.read(), candidate

    sibling = compiled_path + ".map"
    if os.path.isfile(sibling):
        with open(sibling, encoding="utf-8") as f:
            return f.read(), sibling
    return None, None


def _resolve_source(map_dir, name):
    if "://" in name:
        return name
    return os.path.normpath(os.path.join(map_dir, name))


class PositionMap:
    """Points of one compiled script and offset lookup over them."""

    def __init__(self, source, points, sources_content=None):
        self.source = source
        self.sources_content = sources_content or {}
        self._line_starts = _line_starts(source)
        self._utf16 = _utf16_table(source)
        self._points = sorted(points)
        self._by_line = {}
        for point in self._points:
            line = bisect_right(self._line_starts, point.offset) - 1
            self._by_line.setdefault(line, []).append(point)

    @classmethod
    def identity(cls, source, path):
        """One point per non-blank line, mapping the script onto itself."""
        starts = _line_starts(source)
        points = []
        for index, start in enumerate(starts):
            stop = starts[index + 1] - 1 if index + 1 < len(starts) else len(source)
            offset = _skip_blank(source, start, stop)
            if offset is None or _MAP_COMMENT_LINE.match(source, offset):
                continue
            points.append(Point(offset, path, index + 1, offset - start))
        return cls(source, points, {path: source})

    @classmethod
    def from_source_map(cls, source, map_text, map_dir, path_override=None):
        """Build points from source map tokens.

        Args:
            source: Compiled script text.
            map_text: Source map JSON.
            map_dir: Directory that relative ``sources`` entries resolve against.
            path_override: Attribute every point to this path instead of the
                map's sources.

        Raises:
            ParseError: If the source map cannot be decoded.
        """
        try:
            index = sourcemap.loads(map_text)
        except (ValueError, KeyError, TypeError, IndexError) as e:
            raise ParseError(f"Invalid source map in {map_dir}: {e}") from e

        raw = index.raw
        root = raw.get("sourceRoot")
        contents = {}
        for name, text in zip(raw.get("sources", []), raw.get("sourcesContent") or []):
            if text is None:
                continue
            if root is not None:
                name = os.path.join(root, name)
            contents[path_override or _resolve_source(map_dir, name)] = text

        starts = _line_starts(source)
        by_line = {}
        for token in index:
            if token.src is None or token.dst_line >= len(starts):
                continue
            by_line.setdefault(token.dst_line, []).append(token)

        points = []
        for dst_line, tokens in by_line.items():
            tokens.sort(key=lambda t: t.dst_col)
            line_start = starts[dst_line]
            line_stop = starts[dst_line + 1] - 1 if dst_line + 1 < len(starts) else len(source)
            for i, token in enumerate(tokens):
                start = line_start + token.dst_col
                stop = line_start + tokens[i + 1].dst_col if i + 1 < len(tokens) else line_stop
                offset = _skip_blank(source, start, stop)
                if offset is None:
                    continue
                path = path_override or _resolve_source(map_dir, token.src)
                points.append(Point(offset, path, token.src_line + 1, token.src_col + offset - start))
        return cls(source, points, contents)

    @classmethod
    def from_script(cls, compiled_path, source, path_override=None):
        """Build the PositionMap for a compiled script, with or without a map."""
        map_text, map_path = find_source_map(compiled_path, source)
        if map_text is None:
            return cls.identity(source, path_override or compiled_path)
        return cls.from_source_map(source, map_text, os.path.dirname(map_path), path_override)

    def points(self):
        return list(self._points)

    def char_offset(self, offset):
        """Convert a V8 (UTF-16) offset into an index into self.source."""
        if self._utf16 is None:
            return min(offset, len(self.source))
        return self._utf16[min(offset, len(self._utf16) - 1)]

    def locate(self, offset, skip_blank_until=None):
        """Original position of a str offset, or None if its line is unmapped.

        With skip_blank_until, leading whitespace up to that offset is
        skipped first; an all-blank span yields None.
        """
        if skip_blank_until is not None:
            offset = _skip_blank(self.source, offset, skip_blank_until)
            if offset is None:
                return None
        line = bisect_right(self._line_starts, offset) - 1
        candidates = self._by_line.get(line)
        if not candidates:
            return None
        nearest = candidates[0]
        for point in candidates:
            if point.offset > offset:
                break
            nearest = point
        column = nearest.column + max(offset - nearest.offset, 0)
        return Point(offset, nearest.path, nearest.line, column)
