"""
plugin_builder.pipeline.fetcher - Source Archive Download
===========================================================

Downloads a release tarball to the workspace. The response body is streamed
straight to disk in chunks because archives can be large.

Behavior:
    - Identifying ``User-Agent`` header on every request (auditability)
    - ``Accept: application/octet-stream``
    - Redirects are followed (release tarball URLs redirect to a CDN host)
    - Optional bearer token for private repositories
    - Non-2xx status or any transport failure → DownloadError
    - No retries here; whole-run retry is the caller's decision

Usage:
    >>> fetcher = ArchiveFetcher(config.fetcher)
    >>> await fetcher.fetch(request.archive_url, workspace.archive_path)
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import httpx
import structlog

from plugin_builder.core.config import FetcherConfig
from plugin_builder.core.exceptions import DownloadError


logger = structlog.get_logger()


class ArchiveFetcher:
    """Streams a remote archive to a local file with httpx.

    Attributes:
        _config: Timeout, User-Agent and chunk size settings.
        _transport: Optional httpx transport (tests inject a MockTransport).
    """

    def __init__(
        self,
        config: Optional[FetcherConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config or FetcherConfig()
        self._transport = transport
        self._logger = logger.bind(component="archive_fetcher")

    def _headers(self, auth_token: Optional[str]) -> dict[str, str]:
        headers = {
            "Accept": "application/octet-stream",
            "User-Agent": self._config.user_agent,
        }
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        return headers

    async def fetch(
        self,
        url: str,
        dest_path: Path,
        auth_token: Optional[str] = None,
    ) -> int:
        """Download ``url`` to ``dest_path``.

        Args:
            url: Archive URL.
            dest_path: Local file to create (parent directory must exist).
            auth_token: Optional bearer token for authenticated downloads.

        Returns:
            Number of bytes written.

        Raises:
            DownloadError: On a non-2xx response or any transport failure.
        """
        self._logger.info("archive_download_started", url=url)
        written = 0

        try:
            async with httpx.AsyncClient(
                timeout=self._config.timeout_seconds,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                async with client.stream(
                    "GET", url, headers=self._headers(auth_token)
                ) as response:
                    if not response.is_success:
                        raise DownloadError(
                            message=(
                                f"Failed to download: {response.status_code} "
                                f"{response.reason_phrase}"
                            ),
                            url=url,
                            status_code=response.status_code,
                        )

                    # Disk I/O goes through worker threads.
                    f = await asyncio.to_thread(open, dest_path, "wb")
                    try:
                        async for chunk in response.aiter_bytes(self._config.chunk_size):
                            await asyncio.to_thread(f.write, chunk)
                            written += len(chunk)
                    finally:
                        await asyncio.to_thread(f.close)
        except httpx.HTTPError as e:
            raise DownloadError(
                message=f"Failed to download: {type(e).__name__}: {e}",
                url=url,
                error_code="DOWNLOAD_TRANSPORT_ERROR",
            ) from e
        except OSError as e:
            raise DownloadError(
                message=f"Failed to write archive to {dest_path}: {e}",
                url=url,
                error_code="DOWNLOAD_WRITE_ERROR",
            ) from e

        self._logger.info("archive_download_complete", url=url, bytes=written)
        return written
