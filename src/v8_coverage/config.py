"""Configuration for v8-coverage.

Options can come from three places, in increasing precedence: built-in
defaults, the [tool.v8-coverage] section of pyproject.toml, and explicit
overrides (CLI flags or keyword arguments).
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
import tomllib
from typing import TYPE_CHECKING, Any

from v8_coverage.errors import ConfigurationError


if TYPE_CHECKING:
    from pathlib import Path


PYPROJECT_SECTION = "v8-coverage"

# Option spellings used by JavaScript tooling configs.
_ALIASES = {
    "outDir": "out_dir",
    "srcDir": "src_dir",
    "outExt": "out_ext",
    "srcExt": "src_ext",
    "reportDir": "report_dir",
    "showMissing": "show_missing",
}


@dataclass(frozen=True)
class CoverageConfig:
    """Settings shared by the setup, capture and report phases.

    Attributes:
        dir: Directory holding the capture log and the report output.
        file: Capture log file name, resolved relative to ``dir``.
        url: Base test-server URL. Sample URLs under it are made relative.
            A value without an http(s) scheme is treated as a filesystem path.
        reporters: Renderer names (text, html, lcov, json, xml).
        out_dir: Root directory of the compiled output.
        src_dir: Root directory of the original sources.
        include: Glob patterns selecting compiled files for the report.
        exclude: Glob patterns removing files from the included set.
        out_ext: Extension of compiled files.
        src_ext: Extension of original source files.
        report_dir: Report output directory, relative to ``dir``.
        show_missing: Show missing line numbers in the text report.
    """

    dir: str = "v8-coverage"
    file: str = "v8-coverage.json"
    url: str = "http://localhost:3000"
    reporters: list[str] = field(default_factory=lambda: ["text"])
    out_dir: str = "spec"
    src_dir: str = "src"
    include: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)
    out_ext: str = ".js"
    src_ext: str = ".ts"
    report_dir: str = "coverage-report"
    show_missing: bool = False

    def merged(self, **overrides: Any) -> CoverageConfig:
        """Return a copy with the given options replaced.

        ``None`` values are ignored so callers can pass optional arguments
        straight through.

        Raises:
            ConfigurationError: If an option name is not recognized.
        """
        changes = {}
        for key, value in overrides.items():
            if value is None:
                continue
            changes[_option_name(key)] = list(value) if isinstance(value, (list, tuple)) else value
        return replace(self, **changes)


def _option_name(key: str) -> str:
    name = _ALIASES.get(key, key.replace("-", "_"))
    if name not in {f.name for f in fields(CoverageConfig)}:
        raise ConfigurationError(f"Unknown coverage option: {key!r}")
    return name


def load_config(rootdir: Path) -> CoverageConfig:
    """Load configuration from pyproject.toml.

    Reads the [tool.v8-coverage] section from pyproject.toml in the given
    directory. Returns the default configuration if the file or section
    does not exist.

    Args:
        rootdir: Directory containing pyproject.toml.

    Returns:
        CoverageConfig with values from pyproject.toml or defaults.

    Raises:
        ConfigurationError: If the section contains an unknown option.
    """
    pyproject_path = rootdir / "pyproject.toml"

    if not pyproject_path.exists():
        return CoverageConfig()

    with pyproject_path.open("rb") as f:
        data = tomllib.load(f)

    tool_config = data.get("tool", {}).get(PYPROJECT_SECTION, {})

    return CoverageConfig().merged(**tool_config)


def merge_configs(file_config: CoverageConfig, **cli_options: Any) -> CoverageConfig:
    """Merge CLI arguments with file configuration.

    CLI arguments take precedence over pyproject.toml configuration.
    ``None`` and empty lists are treated as not provided.

    Args:
        file_config: Configuration loaded from pyproject.toml.
        **cli_options: Option values parsed from the command line.

    Returns:
        CoverageConfig with CLI values overriding file config where provided.
    """
    provided = {key: value for key, value in cli_options.items() if value not in (None, [], "")}
    return file_config.merged(**provided)
