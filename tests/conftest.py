"""Shared fixtures: an isolated working directory and a small compiled JS project.

The JS project mirrors a TypeScript build: compiled scripts under out/,
originals under src/, and hand-written source maps between them. Offsets in
the captured samples are computed from the script text so the expected
counts below can be checked by reading the sources.
"""

import json
import os

import pytest

from v8_coverage.capture import ENV_DIR, ENV_FILE, setup_coverage
from v8_coverage.config import CoverageConfig

BASE_URL = "http://localhost:3000"

ADD_JS = (
    "export function add(a, b) {\n"  # line 1 — add() entered once
    "  if (!a) {\n"  # line 2 — branch: block at column 10 never taken
    "    return 0;\n"  # line 3 — inside untaken block
    "  }\n"  # line 4 — inside untaken block
    "  return a + b;\n"  # line 5
    "}\n"  # line 6
    "//# sourceMappingURL=add.js.map\n"
)

ADD_TS = (
    "export function add(a: number, b: number): number {\n"
    "  if (!a) {\n"
    "    return 0;\n"
    "  }\n"
    "  return a + b;\n"
    "}\n"
)

# One token per line, line N of the script maps to line N of ../src/add.ts.
ADD_MAP = {
    "version": 3,
    "file": "add.js",
    "sources": ["../src/add.ts"],
    "names": [],
    "mappings": "AAAA;AACA;AACA;AACA;AACA;AACA",
}

GREET_JS = (
    "export function greet(name) {\n"
    "  return 'hi ' + name;\n"
    "}\n"
)

UNTOUCHED_JS = (
    "export function divide(a, b) {\n"
    "  return b === 0 ? 0 : a / b;\n"
    "}\n"
)

SKIP_JS = "export const skipped = 1;\n"


def _whole(source, count):
    return {"startOffset": 0, "endOffset": len(source), "count": count}


def add_sample():
    fn_start = ADD_JS.index("function add")
    fn_end = ADD_JS.index("}\n//#") + 1
    block_start = ADD_JS.index("{\n    return 0")
    block_end = ADD_JS.index("  }\n") + 3
    return {
        "url": f"{BASE_URL}/out/add.js",
        "scriptId": "11",
        "source": ADD_JS,
        "functions": [
            {"functionName": "", "isBlockCoverage": True, "ranges": [_whole(ADD_JS, 1)]},
            {
                "functionName": "add",
                "isBlockCoverage": True,
                "ranges": [
                    {"startOffset": fn_start, "endOffset": fn_end, "count": 1},
                    {"startOffset": block_start, "endOffset": block_end, "count": 0},
                ],
            },
        ],
    }


def greet_sample(calls):
    fn_start = GREET_JS.index("function greet")
    return {
        "url": f"{BASE_URL}/out/greet.js",
        "scriptId": "12",
        "source": GREET_JS,
        "functions": [
            {"functionName": "", "isBlockCoverage": False, "ranges": [_whole(GREET_JS, 1)]},
            {
                "functionName": "greet",
                "isBlockCoverage": False,
                "ranges": [{"startOffset": fn_start, "endOffset": len(GREET_JS) - 1, "count": calls}],
            },
        ],
    }


def skip_sample():
    return {
        "url": f"{BASE_URL}/out/skip.js",
        "scriptId": "13",
        "source": SKIP_JS,
        "functions": [{"functionName": "", "isBlockCoverage": False, "ranges": [_whole(SKIP_JS, 1)]}],
    }


def vendor_sample():
    return {
        "url": "http://example.com/vendor.js",
        "scriptId": "14",
        "functions": [{"functionName": "", "isBlockCoverage": False, "ranges": [
            {"startOffset": 0, "endOffset": 10, "count": 1}
        ]}],
    }


def write_file(path, text):
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)


def parse_lcov(path):
    """Return {basename of SF: {LF|LH|BRF|BRH|FNF|FNH: int}}."""
    records = {}
    current = None
    with open(path, encoding="utf-8") as f:
        for line in f.read().splitlines():
            if line.startswith("SF:"):
                current = records.setdefault(os.path.basename(line[3:]), {})
            elif line == "end_of_record":
                current = None
            elif current is not None:
                key, _, value = line.partition(":")
                if key in ("LF", "LH", "BRF", "BRH", "FNF", "FNH"):
                    current[key] = int(value)
    return records


class FakePage:
    """Page exposing start_js_coverage()/stop_js_coverage() directly."""

    def __init__(self, batch=None):
        self.batch = batch if batch is not None else []
        self.calls = []

    def start_js_coverage(self):
        self.calls.append("start")

    def stop_js_coverage(self):
        self.calls.append("stop")
        return self.batch


@pytest.fixture(autouse=True)
def isolated_env():
    """Keep the published capture session from leaking between tests."""
    saved = {name: os.environ.pop(name) for name in (ENV_DIR, ENV_FILE) if name in os.environ}
    yield
    for name in (ENV_DIR, ENV_FILE):
        os.environ.pop(name, None)
    os.environ.update(saved)


@pytest.fixture
def project(tmp_path, monkeypatch):
    """Empty working directory; relative config paths resolve inside it."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def js_config():
    return CoverageConfig(
        url=BASE_URL,
        reporters=["lcov"],
        out_dir="out",
        src_dir="src",
        include=["out/**/*.js"],
        exclude=["out/skip.js"],
    )


@pytest.fixture
def js_project(project, js_config):
    """Compiled project plus a capture log holding two batches.

    Batch 1: add.js, greet.js (greet called twice), skip.js, a remote script.
    Batch 2: a raw DevTools result with greet.js (greet called once).
    out/five/untouched.js is never loaded.
    """
    write_file("out/add.js", ADD_JS)
    write_file("out/add.js.map", json.dumps(ADD_MAP))
    write_file("src/add.ts", ADD_TS)
    write_file("out/greet.js", GREET_JS)
    write_file("out/skip.js", SKIP_JS)
    write_file("out/five/untouched.js", UNTOUCHED_JS)
    write_file("src/five/untouched.ts", UNTOUCHED_JS)

    session = setup_coverage(js_config)
    session.append([add_sample(), greet_sample(2), skip_sample(), vendor_sample()])
    session.append({"result": [greet_sample(1)]})
    return session
