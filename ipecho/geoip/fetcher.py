"""Atomic download of dataset files.

A download is streamed into a temporary file next to the destination and
moved into place with ``os.replace`` only after the body has been fully
received and verified. The destination therefore always holds either the
last successfully fetched version or nothing.
"""

import asyncio
from collections.abc import Iterable
from contextlib import suppress
import os
from pathlib import Path
import secrets

from ipecho.log import fetcher_logger

from .datasets import DatasetDescriptor
from .errors import FetchFailure

import aiofiles
import httpx

logger = fetcher_logger("DatasetFetcher")

USER_AGENT = "ipecho-server (+geoip-updater)"


class DatasetFetcher:
    """Downloads remote binary datasets to local storage.

    Attributes:
        timeout: HTTP timeout in seconds for connect/read/write.
        transport: Optional httpx transport, mainly for tests.
    """

    def __init__(self, timeout: float = 60.0, transport: httpx.AsyncBaseTransport | None = None):
        self.timeout = timeout
        self.transport = transport

    @staticmethod
    def _temp_path(dest: Path) -> Path:
        return dest.with_name(f".{dest.name}.{secrets.token_hex(4)}.part")

    @staticmethod
    def _unlink(path: Path) -> None:
        with suppress(FileNotFoundError):
            path.unlink()

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            follow_redirects=True,
            timeout=self.timeout,
            transport=self.transport,
            headers={"User-Agent": USER_AGENT},
        )

    async def fetch(self, url: str, dest: Path) -> Path:
        """Download ``url`` to ``dest`` atomically.

        Args:
            url: Source URL.
            dest: Final location of the file.

        Returns:
            The destination path.

        Raises:
            FetchFailure: On network, status, verification or storage errors.
                ``dest`` is left untouched in that case.
        """
        tmp_path = self._temp_path(dest)
        committed = False
        try:
            await asyncio.to_thread(dest.parent.mkdir, parents=True, exist_ok=True)
            async with self._client() as client, client.stream("GET", url) as resp:
                resp.raise_for_status()
                expected = resp.headers.get("Content-Length")
                received = 0
                async with aiofiles.open(tmp_path, "wb") as tmp_file:
                    async for chunk in resp.aiter_bytes():
                        if chunk:
                            received += len(chunk)
                            await tmp_file.write(chunk)
                    await tmp_file.flush()
                    await asyncio.to_thread(os.fsync, tmp_file.fileno())
                # Content-Length counts bytes on the wire, before any decoding
                downloaded = resp.num_bytes_downloaded

            if received == 0:
                raise FetchFailure(url, dest, "empty response body")
            if expected is not None and expected.isdigit() and int(expected) != downloaded:
                raise FetchFailure(url, dest, f"incomplete body ({downloaded} of {expected} bytes)")

            await asyncio.to_thread(os.replace, tmp_path, dest)
            committed = True
            logger.info(f"Downloaded {url} -> {dest} ({received / 1024 / 1024:.1f} MiB)")
            return dest
        except (httpx.HTTPError, httpx.InvalidURL, OSError) as e:
            raise FetchFailure(url, dest, str(e) or type(e).__name__) from e
        finally:
            # also runs on cancellation, so no partial download outlives the call
            if not committed:
                self._unlink(tmp_path)

    async def fetch_many(self, descriptors: Iterable[DatasetDescriptor]) -> list[Path]:
        """Fetch datasets one after another, stopping at the first failure."""
        paths: list[Path] = []
        for descriptor in descriptors:
            logger.info(f"Downloading {descriptor.name} database...")
            paths.append(await self.fetch(descriptor.url, descriptor.path))
        return paths
