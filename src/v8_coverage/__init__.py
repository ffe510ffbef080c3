"""Aggregate V8 JavaScript coverage from browser tests into source-mapped reports."""

from v8_coverage._version import __version__  # noqa: F401

_EXPORTS = {
    "setup_coverage": "v8_coverage.capture",
    "do_coverage": "v8_coverage.capture",
    "CaptureSession": "v8_coverage.capture",
    "CoverageConfig": "v8_coverage.config",
    "load_config": "v8_coverage.config",
    "load_coverage": "v8_coverage.loader",
    "build_coverage_map": "v8_coverage.reconcile",
    "create_coverage_report": "v8_coverage.report",
    "run_report": "v8_coverage.report",
}


def __getattr__(name):
    if name in _EXPORTS:
        import importlib

        return getattr(importlib.import_module(_EXPORTS[name]), name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [*_EXPORTS, "__version__"]
