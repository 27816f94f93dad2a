"""A quick HTTP download speed and integrity check."""

from __future__ import annotations

import argparse
import hashlib
import logging
import time
import urllib.error
import urllib.request
from typing import Optional, Sequence, Union

log = logging.getLogger(__name__)

DEFAULT_LENGTH = 64 * 1024 * 1024
DEFAULT_TIMEOUT = 30
DEFAULT_MINIMUM = 10
_CHUNK = 64 * 1024


class NetHealthError(Exception):
    """Raised when the check fails: unreachable, too slow, or corrupted."""


def parse_hash_file(content: Union[bytes, str]) -> str:
    """Extract the hash from a "<name> <hash>" checksum file."""
    text = content.decode() if isinstance(content, bytes) else content
    parts = text.split(" ")
    if len(parts) <= 1:
        raise NetHealthError(f"Could not parse SHA hash file contents ({text})")
    return parts[1].strip("\n ")


def compute_bandwidth(content_length: int, elapsed_ms: int) -> int:
    """Bandwidth in KiB/sec for a transfer of content_length bytes."""
    if elapsed_ms <= 0:
        raise NetHealthError("elapsed time must be positive")
    return (content_length * 1000) // (elapsed_ms * 1024)


def _open(request: urllib.request.Request, timeout: Optional[float] = None):
    try:
        if timeout is None:
            return urllib.request.urlopen(request)
        return urllib.request.urlopen(request, timeout=timeout)
    except urllib.error.HTTPError as exc:
        return exc


def _content_length(response) -> int:
    value = response.headers.get("Content-Length")
    try:
        return int(value) if value is not None else -1
    except ValueError:
        return -1


def _head(url: str, what: str) -> int:
    request = urllib.request.Request(url, method="HEAD")
    try:
        response = _open(request)
    except (urllib.error.URLError, OSError, ValueError) as exc:
        raise NetHealthError(f"Failed to find {what} {url} ({exc})") from exc
    with response:
        return _content_length(response)


class _Deadline:
    def __init__(self, timeout: int) -> None:
        self.timeout = timeout
        self.end = time.monotonic() + timeout

    def check(self) -> None:
        if time.monotonic() > self.end:
            raise NetHealthError(
                f"ERROR: Timeout ({self.timeout}) seconds occurred before GET finished - "
                "declaring TOO SLOW"
            )

    def remaining(self) -> float:
        return max(self.end - time.monotonic(), 0.001)


def _get(url: str, deadline: _Deadline):
    deadline.check()
    request = urllib.request.Request(url, headers={"Accept-Encoding": "identity"})
    try:
        return _open(request, timeout=deadline.remaining())
    except TimeoutError:
        deadline.check()
        raise NetHealthError(f"Failure (timed out) while reading {url}") from None
    except (urllib.error.URLError, OSError, ValueError) as exc:
        raise NetHealthError(f"Failure ({exc}) while reading {url}") from exc


def _read_all(response, deadline: _Deadline, what: str) -> bytes:
    chunks: list[bytes] = []
    with response:
        while True:
            deadline.check()
            try:
                chunk = response.read(_CHUNK)
            except TimeoutError:
                deadline.check()
                raise NetHealthError(f"Failed to read full {what}: timed out") from None
            except OSError as exc:
                raise NetHealthError(f"Failed to read full {what}: {exc}") from exc
            if not chunk:
                return b"".join(chunks)
            chunks.append(chunk)


def run(
    url: str,
    hash_url: str,
    length: int = DEFAULT_LENGTH,
    timeout: int = DEFAULT_TIMEOUT,
    minimum: int = DEFAULT_MINIMUM,
) -> int:
    """Download url, check its length, bandwidth and SHA-512; return KiB/sec."""
    reported = _head(url, "URL")
    if reported != length:
        raise NetHealthError(
            f"Length reported ({reported}) is not equal to expected length ({length})"
        )
    log.info("HTTP HEAD reports content length: %d - running GET", reported)
    _head(hash_url, "hash URL")

    start = time.monotonic()
    deadline = _Deadline(timeout)
    response = _get(url, deadline)
    reported = _content_length(response)
    if reported != length:
        response.close()
        raise NetHealthError(
            f"Length reported ({reported}) is not equal to expected length ({length})"
        )
    blob = _read_all(response, deadline, "content")
    elapsed_ms = max(int((time.monotonic() - start) * 1000), 1)
    bandwidth = compute_bandwidth(reported, elapsed_ms)
    log.info("DOWNLOAD: %d bytes %d ms Bandwidth ~ %d KiB/sec", reported, elapsed_ms, bandwidth)
    if minimum * 1024 > bandwidth:
        raise NetHealthError(
            f"ERROR: Minimum bandwidth guarantee of {minimum} MiB/sec not met - "
            "network connectivity is slow"
        )

    expected = parse_hash_file(_read_all(_get(hash_url, deadline), deadline, "content of hash file"))
    computed = hashlib.sha512(blob).hexdigest()
    if computed != expected:
        raise NetHealthError(
            f"ERROR: Hash Mismatch - Computed hash = '{computed}' Expected hash = '{expected}'"
        )
    log.info("Hash Matches expected value")
    return bandwidth


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the check from the command line; exit status 1 on failure."""
    parser = argparse.ArgumentParser(description="HTTP GET download speed check")
    parser.add_argument("-url", "--url", required=True, help="Blob URL")
    parser.add_argument("-hashurl", "--hashurl", required=True, help="Blob Hash URL")
    parser.add_argument("-length", "--length", type=int, default=DEFAULT_LENGTH,
                        help="Expected content length")
    parser.add_argument("-timeout", "--timeout", type=int, default=DEFAULT_TIMEOUT,
                        help="Maximum Seconds to wait")
    parser.add_argument("-minimum", "--minimum", type=int, default=DEFAULT_MINIMUM,
                        help="Minimum bandwidth expected (MiB/sec)")
    options = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    try:
        run(options.url, options.hashurl, options.length, options.timeout, options.minimum)
    except NetHealthError as exc:
        log.error("%s", exc)
        return 1
    return 0