"""Tests for position maps and V8 range conversion."""

import json
import os

import pytest

from v8_coverage.convert import ANONYMOUS, convert_functions
from v8_coverage.errors import ParseError
from v8_coverage.model import CoverageMap, FileCoverage
from v8_coverage.sourcemaps import PositionMap, find_source_map

NESTED_JS = (
    "function f() {\n"  # line 1
    "  if (a) {\n"  # line 2 — outer block at column 9
    "    if (b) {\n"  # line 3 — inner block at column 11
    "      x();\n"  # line 4
    "    }\n"  # line 5
    "  }\n"  # line 6
    "}\n"  # line 7
)


def _nested_functions(outer, inner):
    return [{
        "functionName": "f",
        "isBlockCoverage": True,
        "ranges": [
            {"startOffset": 0, "endOffset": len(NESTED_JS), "count": 10},
            {
                "startOffset": NESTED_JS.index("{\n    if"),
                "endOffset": NESTED_JS.rindex("  }") + 3,
                "count": outer,
            },
            {
                "startOffset": NESTED_JS.index("{\n      x"),
                "endOffset": NESTED_JS.index("    }") + 5,
                "count": inner,
            },
        ],
    }]


def _map(mappings, sources=("a.ts",), **extra):
    return json.dumps({"version": 3, "sources": list(sources), "names": [], "mappings": mappings, **extra})


class TestPositionMap:

    def test_identity_skips_blank_and_map_comment(self):
        source = "a();\n\n  b();\n//# sourceMappingURL=x.js.map\n"
        points = PositionMap.identity(source, "x.js").points()
        assert [(p.line, p.column) for p in points] == [(1, 0), (3, 2)]
        assert {p.path for p in points} == {"x.js"}

    def test_source_map_tokens(self, tmp_path):
        position_map = PositionMap.from_source_map("a();b();", _map("AAAA,IAAI"), str(tmp_path))
        points = position_map.points()
        assert [(p.offset, p.line, p.column) for p in points] == [(0, 1, 0), (4, 1, 4)]
        assert points[0].path == str(tmp_path / "a.ts")

    def test_sources_content(self, tmp_path):
        text = _map("AAAA", sourcesContent=["const a = 1;\n"])
        position_map = PositionMap.from_source_map("var a = 1;", text, str(tmp_path))
        assert position_map.sources_content == {str(tmp_path / "a.ts"): "const a = 1;\n"}

    def test_path_override(self, tmp_path):
        position_map = PositionMap.from_source_map(
            "a();", _map("AAAA"), str(tmp_path), path_override="/src/x.ts"
        )
        assert position_map.points()[0].path == "/src/x.ts"

    def test_invalid_map(self, tmp_path):
        with pytest.raises(ParseError):
            PositionMap.from_source_map("a();", '{"version": 3}', str(tmp_path))

    def test_locate_column_offset(self):
        position_map = PositionMap.identity("  call(x);\n", "x.js")
        assert position_map.locate(7)[2:] == (1, 7)

    def test_locate_skips_leading_blank(self):
        source = "if (a) {\n  b();\n}\n"
        position_map = PositionMap.identity(source, "x.js")
        start = source.index("\n") + 1
        assert position_map.locate(start, skip_blank_until=len(source))[2:] == (2, 2)

    def test_locate_unmapped_line(self, tmp_path):
        position_map = PositionMap.from_source_map("a();\nb();", _map("AAAA"), str(tmp_path))
        assert position_map.locate(6) is None

    def test_utf16_offsets(self):
        source = 'var s = "\U0001F600";\nf();\n'
        position_map = PositionMap.identity(source, "x.js")
        index = source.index("f();")
        assert position_map.char_offset(index + 1) == index
        assert PositionMap.identity("f();", "x.js").char_offset(2) == 2


class TestFindSourceMap:

    def test_comment_reference(self, tmp_path):
        (tmp_path / "maps").mkdir()
        (tmp_path / "maps" / "a.map").write_text("{}")
        text, path = find_source_map(str(tmp_path / "a.js"), "a();\n//# sourceMappingURL=maps/a.map")
        assert text == "{}"
        assert path == str(tmp_path / "maps" / "a.map")

    def test_sibling_fallback(self, tmp_path):
        (tmp_path / "a.js.map").write_text("{}")
        assert find_source_map(str(tmp_path / "a.js"), "a();")[1] == str(tmp_path / "a.js.map")

    def test_inline_data_url(self, tmp_path):
        source = "a();\n//# sourceMappingURL=data:application/json;base64,e30="
        assert find_source_map(str(tmp_path / "a.js"), source) == ("{}", str(tmp_path / "a.js"))

    def test_no_map(self, tmp_path):
        assert find_source_map(str(tmp_path / "a.js"), "a();") == (None, None)


class TestConvertStatements:

    def test_innermost_range_count(self):
        results = convert_functions(_nested_functions(4, 1), PositionMap.identity(NESTED_JS, "f.js"))
        assert results["f.js"].statements == {1: 10, 2: 10, 3: 4, 4: 1, 5: 1, 6: 4, 7: 10}

    def test_line_keeps_highest_point(self, tmp_path):
        functions = [
            {"functionName": "", "ranges": [{"startOffset": 0, "endOffset": 8, "count": 1}]},
            {"functionName": "b", "ranges": [{"startOffset": 4, "endOffset": 8, "count": 5}]},
        ]
        position_map = PositionMap.from_source_map("a();b();", _map("AAAA,IAAI"), str(tmp_path))
        (file_coverage,) = convert_functions(functions, position_map).values()
        assert file_coverage.statements == {1: 5}

    def test_uncovered_points_count_zero(self):
        position_map = PositionMap.identity("a();\nb();\n", "x.js")
        functions = [{"functionName": "", "ranges": [{"startOffset": 0, "endOffset": 4, "count": 1}]}]
        assert convert_functions(functions, position_map)["x.js"].statements == {1: 1, 2: 0}

    def test_equal_ranges_later_wins(self):
        position_map = PositionMap.identity("a();\n", "x.js")
        functions = [
            {"functionName": "", "ranges": [{"startOffset": 0, "endOffset": 5, "count": 1}]},
            {"functionName": "", "ranges": [{"startOffset": 0, "endOffset": 5, "count": 7}]},
        ]
        assert convert_functions(functions, position_map)["x.js"].statements == {1: 7}

    def test_sibling_functions(self):
        source = "a();\nb();\nc();\n"  # c() starts at offset 10
        functions = [
            {"functionName": "", "ranges": [{"startOffset": 0, "endOffset": 15, "count": 1}]},
            {"functionName": "c", "ranges": [{"startOffset": 10, "endOffset": 15, "count": 4}]},
            {"functionName": "a", "ranges": [{"startOffset": 0, "endOffset": 5, "count": 3}]},
        ]
        results = convert_functions(functions, PositionMap.identity(source, "x.js"))
        assert results["x.js"].statements == {1: 3, 2: 1, 3: 4}


class TestConvertFunctions:

    def test_named_function(self):
        results = convert_functions(_nested_functions(4, 1), PositionMap.identity(NESTED_JS, "f.js"))
        assert results["f.js"].functions == {(1, 0, "f"): 10}
        assert results["f.js"].function_ends == {(1, 0, "f"): 7}

    def test_script_body_skipped_and_anonymous_named(self):
        source = "run(() => 1);\n"
        functions = [
            {"functionName": "", "ranges": [{"startOffset": 0, "endOffset": len(source), "count": 1}]},
            {"functionName": "", "ranges": [{"startOffset": 4, "endOffset": 11, "count": 3}]},
        ]
        results = convert_functions(functions, PositionMap.identity(source, "x.js"))
        assert results["x.js"].functions == {(1, 4, ANONYMOUS): 3}


class TestConvertBranches:

    def test_nested_blocks_use_parent_count(self):
        results = convert_functions(_nested_functions(4, 1), PositionMap.identity(NESTED_JS, "f.js"))
        assert results["f.js"].branches == {(2, 9): [4, 6], (3, 11): [1, 3]}

    def test_skipped_never_negative(self):
        results = convert_functions(_nested_functions(12, 1), PositionMap.identity(NESTED_JS, "f.js"))
        assert results["f.js"].branches[(2, 9)] == [12, 0]

    def test_function_coverage_only(self):
        functions = _nested_functions(4, 1)
        functions[0]["isBlockCoverage"] = False
        results = convert_functions(functions, PositionMap.identity(NESTED_JS, "f.js"))
        assert results["f.js"].branches == {}


class TestMerge:

    def _sample(self, outer, inner):
        return convert_functions(
            _nested_functions(outer, inner), PositionMap.identity(NESTED_JS, "f.js")
        )["f.js"]

    def test_counts_sum(self):
        merged = self._sample(4, 1)
        merged.merge(self._sample(2, 2))
        assert merged.statements[4] == 3
        assert merged.functions[(1, 0, "f")] == 20
        assert merged.branches[(2, 9)] == [6, 14]

    def test_order_independent(self):
        a, b, c = self._sample(4, 1), self._sample(2, 2), self._sample(0, 0)
        first = CoverageMap([a, b, c]).file_coverage_for("f.js")
        second = CoverageMap([c, b, a]).file_coverage_for("f.js")
        assert first.statements == second.statements
        assert first.functions == second.functions
        assert first.branches == second.branches

    def test_map_copies_on_insert(self):
        sample = self._sample(4, 1)
        coverage_map = CoverageMap([sample])
        coverage_map.merge([sample])
        assert sample.statements[4] == 1
        assert coverage_map.file_coverage_for("f.js").statements[4] == 2

    def test_summary(self):
        assert self._sample(4, 0).summary() == {
            "lines": (7, 5),
            "functions": (1, 1),
            "branches": (4, 3),
        }

    def test_disjoint_samples(self):
        source = "a();\nb();\nc();\nd();\n"
        position_map = PositionMap.identity(source, "x.js")

        def sample(start, end):
            return convert_functions([{"functionName": "", "ranges": [
                {"startOffset": 0, "endOffset": len(source), "count": 0},
                {"startOffset": start, "endOffset": end, "count": 1},
            ]}], position_map)["x.js"]

        first = sample(0, 10)  # lines 1-2
        second = sample(10, 20)  # lines 3-4
        assert first.statements == {1: 1, 2: 1, 3: 0, 4: 0}
        merged = CoverageMap([first, second]).file_coverage_for("x.js")
        assert merged.statements == {1: 1, 2: 1, 3: 1, 4: 1}

    def test_branch_widths_padded(self):
        file_coverage = FileCoverage("x.ts")
        file_coverage.add_branch(1, 0, [1])
        file_coverage.add_branch(1, 0, [0, 2])
        assert file_coverage.branches == {(1, 0): [1, 2]}


def test_sourcemapped_sample_attributed_to_original(tmp_path):
    script = tmp_path / "out" / "a.js"
    script.parent.mkdir()
    source = "a();\nb();\n//# sourceMappingURL=a.js.map\n"
    script.write_text(source)
    (tmp_path / "out" / "a.js.map").write_text(_map("AAAA;AACA", sources=["../src/a.ts"]))

    position_map = PositionMap.from_script(str(script), source)
    functions = [{"functionName": "", "ranges": [{"startOffset": 0, "endOffset": 5, "count": 2}]}]
    results = convert_functions(functions, position_map)
    assert list(results) == [os.path.normpath(str(tmp_path / "src" / "a.ts"))]
    assert next(iter(results.values())).statements == {1: 2, 2: 0}
