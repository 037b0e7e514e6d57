"""
Download of update artifacts from the release service.

Artifacts can be large, so they are streamed to disk under a long timeout
(hours, not seconds). A partial file is never left behind: on any failure
the destination is removed before the error propagates.
"""

from __future__ import annotations

import hashlib
from pathlib import Path

import httpx
from pydantic import BaseModel, Field

from platform_updater.errors import NetworkError
from platform_updater.logging import get_logger
from platform_updater.updates.operations import discard_file, ensure_directory

logger = get_logger(__name__)

# 8 hours, so large packages do not time out
DEFAULT_DOWNLOAD_TIMEOUT = 28800.0
DEFAULT_CONNECT_TIMEOUT = 30.0
CHUNK_SIZE = 1024 * 1024
USER_AGENT = "platform-updater"


class LocalArtifact(BaseModel):
    """
    A completely downloaded update artifact.

    Attributes:
        path: Local path of the artifact.
        url: URL it was downloaded from.
        size_bytes: Size of the downloaded file.
        sha256: SHA-256 hex digest of the file.
    """

    path: str = Field(..., description="Local path of the artifact")
    url: str = Field(..., description="Source URL")
    size_bytes: int = Field(default=0, ge=0, description="File size in bytes")
    sha256: str = Field(default="", description="SHA-256 hex digest")


class PackageFetcher:
    """
    Streams remote artifacts to local staging.

    Attributes:
        timeout: Overall read/write ceiling for one download in seconds.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_DOWNLOAD_TIMEOUT,
        *,
        client: httpx.Client | None = None,
    ) -> None:
        """
        Initialize the PackageFetcher.

        Args:
            timeout: Download timeout in seconds.
            client: Optional preconfigured httpx client (used by tests).
        """
        self.timeout = timeout
        self._client = client

    def _open_client(self) -> httpx.Client:
        if self._client is not None:
            return self._client
        return httpx.Client(
            timeout=httpx.Timeout(self.timeout, connect=DEFAULT_CONNECT_TIMEOUT),
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )

    def fetch(
        self,
        url: str,
        auth_token: str,
        destination_path: Path | str,
    ) -> LocalArtifact:
        """
        Download ``url`` to ``destination_path``.

        Args:
            url: Artifact download URL.
            auth_token: Application token, sent as ``Authorization: token <t>``.
            destination_path: Local file to write.

        Returns:
            The downloaded LocalArtifact.

        Raises:
            NetworkError: On a non-2xx response (with ``status_code``) or a
                transport failure (DNS, TLS, timeout).
        """
        destination = Path(destination_path)
        ensure_directory(destination.parent)

        logger.info(
            "Downloading update package",
            extra={"url": url, "destination": str(destination)},
        )

        client = self._open_client()
        digest = hashlib.sha256()
        size = 0
        try:
            with client.stream(
                "GET",
                url,
                headers={"Authorization": f"token {auth_token}"},
            ) as response:
                if not response.is_success:
                    raise NetworkError(
                        f"Error while fetching update package. Error code: "
                        f"{response.status_code}",
                        details={"url": url},
                        status_code=response.status_code,
                    )
                with open(destination, "wb") as f:
                    for chunk in response.iter_bytes(CHUNK_SIZE):
                        f.write(chunk)
                        digest.update(chunk)
                        size += len(chunk)
        except NetworkError:
            discard_file(destination)
            raise
        except httpx.HTTPError as e:
            discard_file(destination)
            raise NetworkError(
                f"Transport error while fetching update package: {e}",
                details={"url": url, "error": str(e)},
            ) from e
        except OSError as e:
            discard_file(destination)
            raise NetworkError(
                f"Failed to write update package: {e}",
                details={"url": url, "destination": str(destination), "error": str(e)},
            ) from e
        finally:
            if self._client is None:
                client.close()

        logger.info(
            "Update package downloaded",
            extra={"destination": str(destination), "size_bytes": size},
        )

        return LocalArtifact(
            path=str(destination),
            url=url,
            size_bytes=size,
            sha256=digest.hexdigest(),
        )
