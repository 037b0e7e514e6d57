"""
Tests for the package fetcher module.

Tests cover:
- Successful streamed downloads
- Authorization header
- Non-2xx responses and transport failures
- Removal of partial files on failure
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterator
from pathlib import Path

import httpx
import pytest

from platform_updater.errors import NetworkError
from platform_updater.updates.fetcher import PackageFetcher

ARTIFACT_URL = "https://releases.example.com/download/core-1.3.0.zip"


class _BrokenStream(httpx.SyncByteStream):
    """Response body that fails after the first chunk."""

    def __iter__(self) -> Iterator[bytes]:
        yield b"partial-content"
        raise httpx.ReadError("connection reset by peer")


def _fetcher(handler) -> PackageFetcher:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return PackageFetcher(client=client)


# =============================================================================
# Success Tests
# =============================================================================


class TestFetchSuccess:
    """Tests for successful downloads."""

    def test_downloads_to_destination(self, tmp_path: Path) -> None:
        """Test the body is written to the destination."""
        body = b"PK\x03\x04 fake zip body" * 100
        fetcher = _fetcher(lambda request: httpx.Response(200, content=body))
        destination = tmp_path / "updates" / "core-upgrade-1.3.0.zip"

        artifact = fetcher.fetch(ARTIFACT_URL, "secret", destination)

        assert destination.read_bytes() == body
        assert artifact.path == str(destination)
        assert artifact.url == ARTIFACT_URL
        assert artifact.size_bytes == len(body)
        assert artifact.sha256 == hashlib.sha256(body).hexdigest()

    def test_sends_token_header(self, tmp_path: Path) -> None:
        """Test the application token is sent as 'token <t>'."""
        seen: dict[str, str] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["authorization"] = request.headers["Authorization"]
            return httpx.Response(200, content=b"x")

        _fetcher(handler).fetch(ARTIFACT_URL, "abc123", tmp_path / "a.zip")

        assert seen["authorization"] == "token abc123"

    def test_default_timeout_is_hours(self) -> None:
        """Test the default download timeout is measured in hours."""
        assert PackageFetcher().timeout >= 3600


# =============================================================================
# Failure Tests
# =============================================================================


class TestFetchFailure:
    """Tests for failed downloads."""

    def test_http_500(self, tmp_path: Path) -> None:
        """Test a 500 response raises NetworkError with the status code."""
        fetcher = _fetcher(lambda request: httpx.Response(500, content=b"oops"))
        destination = tmp_path / "a.zip"

        with pytest.raises(NetworkError) as exc_info:
            fetcher.fetch(ARTIFACT_URL, "secret", destination)

        assert exc_info.value.status_code == 500
        assert "Error code: 500" in exc_info.value.message
        assert not destination.exists()

    def test_http_404(self, tmp_path: Path) -> None:
        """Test a 404 response raises NetworkError."""
        fetcher = _fetcher(lambda request: httpx.Response(404))

        with pytest.raises(NetworkError) as exc_info:
            fetcher.fetch(ARTIFACT_URL, "secret", tmp_path / "a.zip")

        assert exc_info.value.status_code == 404

    def test_transport_error(self, tmp_path: Path) -> None:
        """Test a transport failure raises NetworkError with its message."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Name or service not known")

        destination = tmp_path / "a.zip"
        with pytest.raises(NetworkError) as exc_info:
            _fetcher(handler).fetch(ARTIFACT_URL, "secret", destination)

        assert exc_info.value.status_code is None
        assert "Name or service not known" in exc_info.value.message
        assert not destination.exists()

    def test_partial_file_removed(self, tmp_path: Path) -> None:
        """Test a download broken mid-stream leaves no partial file."""
        fetcher = _fetcher(lambda request: httpx.Response(200, stream=_BrokenStream()))
        destination = tmp_path / "a.zip"

        with pytest.raises(NetworkError):
            fetcher.fetch(ARTIFACT_URL, "secret", destination)

        assert not destination.exists()

    def test_stale_file_replaced_not_kept_on_failure(self, tmp_path: Path) -> None:
        """Test an old file at the destination does not survive a failed fetch."""
        destination = tmp_path / "a.zip"
        destination.write_bytes(b"stale")
        fetcher = _fetcher(lambda request: httpx.Response(503))

        with pytest.raises(NetworkError):
            fetcher.fetch(ARTIFACT_URL, "secret", destination)

        assert not destination.exists()
