"""Exceptions raised by the v8_coverage pipeline.

Filesystem failures are not wrapped: they surface as the original
``OSError`` so the underlying cause is preserved for the caller.
"""


class CoverageError(RuntimeError):
    """Base class for coverage pipeline failures."""


class ConfigurationError(CoverageError):
    """A required path or option is missing or invalid."""


class ParseError(CoverageError, ValueError):
    """A capture batch or source map could not be decoded."""
