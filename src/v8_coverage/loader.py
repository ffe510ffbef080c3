"""Read the capture log back into a flat list of script coverage samples."""

import json
import os
import re
import sys
from urllib.parse import urlsplit
from urllib.request import url2pathname

from v8_coverage.capture import BATCH_DELIMITER
from v8_coverage.errors import ParseError

SOURCE_MAP_REF = re.compile(r"(?P<prefix>[#@]\s*sourceMappingURL=)(?!data:)\S+\.map\b")


def base_url_is_path(url):
    """True unless url is an http(s) origin."""
    return urlsplit(url).scheme.lower() not in ("http", "https")


def split_batches(text):
    """Split log text into parsed batches.

    A fragment followed by the delimiter must be valid JSON. The trailing
    fragment may be a batch whose writer died before appending the
    delimiter; if it does not parse it is dropped.

    Raises:
        ParseError: If a delimited fragment is not valid JSON.
    """
    fragments = text.split(BATCH_DELIMITER)
    tail = fragments.pop()
    batches = []
    for index, fragment in enumerate(fragments):
        if not fragment.strip():
            continue
        try:
            batches.append(json.loads(fragment))
        except json.JSONDecodeError as e:
            raise ParseError(f"Malformed coverage batch #{index}: {e}") from e
    if tail.strip():
        try:
            batches.append(json.loads(tail))
        except json.JSONDecodeError:
            print(
                f"Warning: discarding incomplete trailing batch ({len(tail)} chars)",
                file=sys.stderr,
            )
    return batches


def flatten_batch(batch):
    """Yield the sample dicts of one batch."""
    if isinstance(batch, dict) and isinstance(batch.get("result"), list):
        batch = batch["result"]
    if isinstance(batch, dict):
        yield batch
    elif isinstance(batch, list):
        for item in batch:
            yield from flatten_batch(item)
    else:
        raise ParseError(f"Unexpected coverage batch entry: {type(batch).__name__}")


def _local_url(url, base_url, url_is_path):
    """Map a sample URL to a local path, or None if it is not served locally."""
    if url.startswith("file://"):
        return url2pathname(urlsplit(url).path)
    if base_url_is_path(url):
        return url
    if url_is_path:
        return None
    prefix = base_url.rstrip("/") + "/"
    if not url.startswith(prefix):
        return None
    path = urlsplit(url).path[len(urlsplit(prefix).path):]
    return "./" + path


def rewrite_sample(sample, base_url, url_is_path):
    """Return a copy of sample with its URL and source map reference localized."""
    entry = dict(sample)
    url = entry.get("url")
    if not url:
        return entry
    local = _local_url(url, base_url, url_is_path)
    if local is None:
        return entry

    source = entry.get("source")
    if source is not None:
        map_path = os.path.abspath(local + ".map")
        entry["source"] = SOURCE_MAP_REF.sub(
            lambda m: m.group("prefix") + map_path, source
        )
    entry["url"] = local
    return entry


def load_coverage(log_path, base_url):
    """Load every sample from the capture log, oldest first.

    Args:
        log_path: Capture log written by CaptureSession.append().
        base_url: Configured test-server URL used to localize sample URLs.

    Returns:
        List of rewritten sample dicts.
    """
    with open(log_path, encoding="utf-8") as f:
        text = f.read()

    url_is_path = base_url_is_path(base_url)
    samples = []
    for batch in split_batches(text):
        for sample in flatten_batch(batch):
            samples.append(rewrite_sample(sample, base_url, url_is_path))
    return samples
