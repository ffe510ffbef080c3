"""V8 precise coverage over a Chrome DevTools Protocol session.

Playwright for Python has no page.coverage API, so coverage is driven
through a CDP session attached to the page. The samples returned by
stop_js_coverage() have the shape of the DevTools ScriptCoverage type plus
the script source, which is what the capture log stores.
"""

from v8_coverage.errors import ConfigurationError


class CDPCoverage:
    """Start/stop V8 coverage for one page via ``page.context.new_cdp_session``."""

    def __init__(self, page, report_anonymous_scripts=False):
        self._page = page
        self._report_anonymous = report_anonymous_scripts
        self._session = None
        self._scripts = {}

    def _on_script_parsed(self, event):
        url = event.get("url")
        if not url and not self._report_anonymous:
            return
        self._scripts[event["scriptId"]] = url

    def start_js_coverage(self):
        session = self._page.context.new_cdp_session(self._page)
        self._scripts = {}
        session.on("Debugger.scriptParsed", self._on_script_parsed)
        session.send("Profiler.enable")
        session.send("Profiler.startPreciseCoverage", {"callCount": True, "detailed": True})
        session.send("Debugger.enable")
        session.send("Debugger.setSkipAllPauses", {"skip": True})
        self._session = session

    def stop_js_coverage(self):
        """Collect coverage since start_js_coverage() and detach.

        Returns:
            List of samples: {"url", "scriptId", "source", "functions"}.
        """
        session = self._session
        if session is None:
            raise ConfigurationError("JS coverage was not started for this page")
        self._session = None

        result = session.send("Profiler.takePreciseCoverage")
        session.send("Profiler.stopPreciseCoverage")
        session.send("Profiler.disable")

        batch = []
        for entry in result.get("result", []):
            script_id = entry["scriptId"]
            url = entry.get("url", "")
            if not url and not self._report_anonymous:
                continue
            sample = {"url": url, "scriptId": script_id, "functions": entry.get("functions", [])}
            if script_id in self._scripts:
                response = session.send("Debugger.getScriptSource", {"scriptId": script_id})
                sample["source"] = response.get("scriptSource")
            batch.append(sample)

        session.send("Debugger.disable")
        session.detach()
        return batch
