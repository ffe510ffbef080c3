"""Capture log lifecycle and per-test capture cycles.

The capture log is an append-only journal: every stopped capture appends
one JSON array of script coverage samples followed by BATCH_DELIMITER.
Test workers running in parallel append to the same file, so each batch
is written with a single write on an O_APPEND descriptor.
"""

import json
import os
import shutil
import weakref
from dataclasses import dataclass

from v8_coverage.config import CoverageConfig
from v8_coverage.errors import ConfigurationError

BATCH_DELIMITER = "*|FRM_BREAK|*"
ENV_DIR = "V8_COVERAGE_DIR"
ENV_FILE = "V8_COVERAGE_FILE"

# Only Chromium exposes V8 precise coverage.
COVERAGE_BROWSER = "chromium"

_cdp_sessions = weakref.WeakKeyDictionary()


@dataclass(frozen=True)
class CaptureSession:
    """Handle on a prepared capture log.

    Returned by setup_coverage() and consumed by do_coverage() and the
    report phase.
    """

    directory: str
    log_path: str
    config: CoverageConfig

    @classmethod
    def from_config(cls, config):
        """Derive the session paths from config without touching the disk."""
        directory, log_path = _resolve_paths(config.dir, config.file)
        return cls(directory, log_path, config)

    @classmethod
    def from_environment(cls, config=None):
        """Rebuild the session published by setup_coverage() in this or a parent process."""
        log_path = os.environ.get(ENV_FILE)
        if not log_path:
            raise ConfigurationError(
                f"No coverage log path: {ENV_FILE} is not set (was setup_coverage() run?)"
            )
        directory = os.environ.get(ENV_DIR) or os.path.dirname(log_path)
        return cls(directory, log_path, config or CoverageConfig())

    @property
    def report_dir(self):
        return os.path.join(self.directory, self.config.report_dir)

    def publish(self):
        os.environ[ENV_DIR] = self.directory
        os.environ[ENV_FILE] = self.log_path

    def append(self, batch):
        """Append one capture batch to the log as a single write."""
        payload = (json.dumps(batch) + BATCH_DELIMITER).encode("utf-8")
        fd = os.open(self.log_path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
        try:
            written = os.write(fd, payload)
        finally:
            os.close(fd)
        if written != len(payload):
            raise OSError(
                f"Short write to {self.log_path}: {written} of {len(payload)} bytes"
            )

    def read_text(self):
        with open(self.log_path, encoding="utf-8") as f:
            return f.read()


def _resolve_paths(directory, file):
    if not directory or not file:
        raise ConfigurationError(
            f"Coverage directory and file name are required (dir={directory!r}, file={file!r})"
        )
    directory = os.path.abspath(directory)
    return directory, os.path.abspath(os.path.join(directory, file))


def _clear(path):
    """Remove a previous log. A missing log is already clean."""
    try:
        if os.path.isdir(path) and not os.path.islink(path):
            shutil.rmtree(path)
        else:
            os.remove(path)
    except FileNotFoundError:
        pass


def setup_coverage(config=None, directory=None, file=None):
    """Create an empty capture log and publish its location.

    Args:
        config: CoverageConfig to use (defaults apply when omitted).
        directory: Overrides config.dir.
        file: Overrides config.file.

    Returns:
        The CaptureSession for the new log.

    Raises:
        ConfigurationError: If the directory or file name is empty.
        OSError: If an existing log cannot be removed or the new one created.
    """
    config = (config or CoverageConfig()).merged(dir=directory, file=file)
    session = CaptureSession.from_config(config)

    _clear(session.log_path)

    os.makedirs(session.directory, exist_ok=True)
    with open(session.log_path, "w", encoding="utf-8"):
        pass

    session.publish()
    return session


def resolve_session(session=None, config=None):
    """Pick the capture session for a phase.

    Precedence: an explicit session, then the published environment, then
    the paths derived from config.
    """
    if session is not None:
        return session
    config = config or CoverageConfig()
    if os.environ.get(ENV_FILE):
        return CaptureSession.from_environment(config)
    return CaptureSession.from_config(config)


def _js_coverage_for(page):
    """Return an object exposing start_js_coverage()/stop_js_coverage() for page."""
    if hasattr(page, "start_js_coverage") and hasattr(page, "stop_js_coverage"):
        return page
    engine = _cdp_sessions.get(page)
    if engine is None:
        from v8_coverage.cdp import CDPCoverage

        engine = CDPCoverage(page)
        _cdp_sessions[page] = engine
    return engine


def do_coverage(browser_name, page, start=True, session=None):
    """Start or stop JS coverage for one test and log the result.

    Browsers other than Chromium are skipped without touching the page or
    the log.

    Args:
        browser_name: Engine name reported by the test runner.
        page: Browser page. Either exposes start_js_coverage() and
            stop_js_coverage() itself or is a Playwright page driven
            through a DevTools session.
        start: True before the test, False after it.
        session: CaptureSession to append to. Falls back to the session
            published by setup_coverage().

    Raises:
        ConfigurationError: If stopping and no capture log can be located.
    """
    if browser_name != COVERAGE_BROWSER:
        return

    engine = _js_coverage_for(page)

    if start:
        engine.start_js_coverage()
        return

    batch = engine.stop_js_coverage()
    if session is None:
        session = CaptureSession.from_environment()
    session.append(batch)
