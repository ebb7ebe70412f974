"""
Async HTTP Transport for depfetch

This module provides AsyncTransport, the default Transport used by repository
backends: aiohttp session management, bounded concurrency, streamed
downloads into the cache directory, checksum validation and retry with
exponential backoff.
"""

import asyncio
import inspect
import json
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional

import aiofiles  # type: ignore[import-untyped]
import aiohttp
from aiohttp import ClientSession, ClientTimeout, TCPConnector

from depfetch import __version__
from depfetch.constants import (
    BYTES_PER_MEGABYTE,
    DEFAULT_BACKOFF_FACTOR,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CONNECT_RETRIES,
    DEFAULT_MAX_CONCURRENT_DOWNLOADS,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_RETRY_DELAY,
    FILE_SIZE_MB_LOGGING_THRESHOLD,
    HTTP_STATUS_ERROR_THRESHOLD,
    HTTP_STATUS_RETRY_THRESHOLD,
    HTTP_STATUS_TOO_MANY_REQUESTS,
)
from depfetch.exceptions import ChecksumError, DownloadError, HTTPError, NetworkError
from depfetch.log_utils import logger

from .files import digest_for_checksum, sha1_hex, verify_checksum
from .interfaces import Pathish, ProgressCallback, Transport, TransportResult


def _is_retryable_status(status: int) -> bool:
    return status >= HTTP_STATUS_RETRY_THRESHOLD or status == HTTP_STATUS_TOO_MANY_REQUESTS


def get_user_agent() -> str:
    return f"depfetch/{__version__}"


class AsyncTransport(Transport):
    """
    Asynchronous transport using aiohttp.

    Downloaded files are named `<sha1(url)><ext>` inside the target directory,
    so a later fetch of the same url with `use_cache=True` finds the file and
    skips the network.

    Example:
        async with AsyncTransport() as transport:
            result = await transport.fetch(url, target=cache_dir, ext_name=".tgz")
    """

    def __init__(
        self,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT_DOWNLOADS,
        max_retries: int = DEFAULT_CONNECT_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
    ) -> None:
        """
        Initialize the transport.

        Parameters:
            timeout (float): Total request timeout in seconds.
            max_concurrent (int): Maximum concurrent requests (semaphore limit).
            max_retries (int): Retry attempts after the first try for retryable failures.
            retry_delay (float): Initial delay in seconds before the first retry.
            backoff_factor (float): Multiplier applied to the delay after each retry.
        """
        self.timeout = ClientTimeout(total=timeout)
        self.max_concurrent = max(1, int(max_concurrent))
        self.max_retries = max(0, int(max_retries))
        self.retry_delay = max(0.0, float(retry_delay))
        self.backoff_factor = backoff_factor
        self._session: Optional[ClientSession] = None
        self._semaphore: Optional[asyncio.Semaphore] = None

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "AsyncTransport":
        """Build a transport from a loaded configuration mapping."""
        from depfetch.config import get_float, get_int

        return cls(
            timeout=get_float(config, "REQUEST_TIMEOUT"),
            max_concurrent=get_int(config, "MAX_CONCURRENT_DOWNLOADS", minimum=1),
            max_retries=get_int(config, "MAX_DOWNLOAD_RETRIES"),
            retry_delay=get_float(config, "DOWNLOAD_RETRY_DELAY"),
        )

    async def __aenter__(self) -> "AsyncTransport":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _get_semaphore(self) -> asyncio.Semaphore:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrent)
        return self._semaphore

    async def _ensure_session(self) -> ClientSession:
        """
        Ensure a session exists, creating one if needed.

        Returns:
            ClientSession: The active aiohttp session.
        """
        if self._session is None or self._session.closed:
            connector = TCPConnector(limit=self.max_concurrent)
            self._session = ClientSession(
                connector=connector,
                timeout=self.timeout,
                headers={"User-Agent": get_user_agent()},
            )
        return self._session

    async def close(self) -> None:
        """Close the client session and release resources."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def get_target_file(self, url: str, target: Pathish, ext_name: str = "") -> Path:
        """Return the cache file path a url is downloaded to."""
        return Path(target) / f"{sha1_hex(url)}{ext_name or ''}"

    async def _call_progress_callback(
        self,
        callback: ProgressCallback,
        downloaded: int,
        total: Optional[int],
        filename: str,
    ) -> None:
        """Invoke a sync or async progress callback; callback errors are logged and ignored."""
        try:
            result = callback(downloaded, total, filename)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.debug(f"Progress callback error: {e}")

    async def _cleanup_temp_file(self, temp_path: Path) -> None:
        try:
            if temp_path.exists():
                temp_path.unlink()
        except OSError as e:
            logger.debug(f"Error cleaning up temp file {temp_path}: {e}")

    async def _verify_cached_file(self, file_path: Path, shasum: Optional[str]) -> bool:
        if not file_path.is_file():
            return False
        if not shasum:
            return True
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, verify_checksum, file_path, shasum)

    async def _download_once(
        self,
        url: str,
        target_file: Path,
        shasum: Optional[str],
        headers: Optional[Dict[str, str]],
        progress_callback: Optional[ProgressCallback],
    ) -> None:
        temp_path = target_file.with_name(
            f"{target_file.name}.tmp.{os.getpid()}.{time.time_ns()}"
        )
        downloaded = 0

        try:
            start_time = time.time()
            async with self._get_semaphore():
                session = await self._ensure_session()
                async with session.get(url, headers=headers or None) as response:
                    if response.status >= HTTP_STATUS_ERROR_THRESHOLD:
                        raise HTTPError(
                            f"HTTP error {response.status}",
                            status_code=response.status,
                            url=url,
                            is_retryable=_is_retryable_status(response.status),
                        )

                    content_length = response.headers.get("Content-Length")
                    try:
                        total_size = int(content_length) if content_length else 0
                    except (TypeError, ValueError):
                        total_size = 0

                    async with aiofiles.open(temp_path, "wb") as f:
                        async for chunk in response.content.iter_chunked(
                            DEFAULT_CHUNK_SIZE
                        ):
                            await f.write(chunk)
                            downloaded += len(chunk)
                            if progress_callback:
                                await self._call_progress_callback(
                                    progress_callback,
                                    downloaded,
                                    total_size or None,
                                    target_file.name,
                                )

            if shasum:
                loop = asyncio.get_running_loop()
                actual = await loop.run_in_executor(
                    None, digest_for_checksum, temp_path, shasum
                )
                if actual is None or actual.lower() != shasum.strip().lower():
                    raise ChecksumError(
                        f"Checksum mismatch for {url}",
                        expected=shasum,
                        actual=actual,
                        url=url,
                    )

            temp_path.replace(target_file)

            elapsed = time.time() - start_time
            file_size_mb = downloaded / BYTES_PER_MEGABYTE
            logger.debug(f"Downloaded {url} in {elapsed:.2f}s")
            if file_size_mb >= FILE_SIZE_MB_LOGGING_THRESHOLD:
                logger.info(f"Downloaded: {url} ({file_size_mb:.1f} MB)")
            else:
                logger.info(f"Downloaded: {url} ({downloaded} bytes)")

        except DownloadError:
            await self._cleanup_temp_file(temp_path)
            raise
        except aiohttp.ClientResponseError as e:
            await self._cleanup_temp_file(temp_path)
            raise HTTPError(
                f"HTTP error {e.status}: {e.message}",
                status_code=e.status,
                url=url,
                is_retryable=_is_retryable_status(e.status),
            ) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            await self._cleanup_temp_file(temp_path)
            raise NetworkError(
                f"Network error: {e}", url=url, is_retryable=True
            ) from e
        except OSError as e:
            await self._cleanup_temp_file(temp_path)
            raise DownloadError(
                f"Filesystem error: {e}", url=url, is_retryable=False
            ) from e

    async def _with_retry(self, url: str, operation: Any) -> Any:
        """
        Run `operation()` retrying retryable DownloadErrors with exponential backoff.

        Raises:
            DownloadError: If a non-retryable error occurs or retries are exhausted.
        """
        delay = self.retry_delay
        for attempt in range(self.max_retries + 1):
            try:
                return await operation()
            except DownloadError as e:
                e.retry_count = attempt
                if not e.is_retryable or attempt == self.max_retries:
                    logger.error(f"Download failed permanently for {url}: {e.message}")
                    raise
                logger.warning(
                    f"Download attempt {attempt + 1}/{self.max_retries + 1} failed for {url}, "
                    f"retrying in {delay:.1f}s: {e.message}"
                )
                await asyncio.sleep(delay)
                delay *= self.backoff_factor
        raise DownloadError(
            "Download failed unexpectedly without an error context", url=url
        )

    async def fetch(
        self,
        url: str,
        *,
        target: Pathish,
        ext_name: str = "",
        shasum: Optional[str] = None,
        use_cache: bool = True,
        headers: Optional[Dict[str, str]] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> TransportResult:
        target_file = self.get_target_file(url, target, ext_name)
        target_file.parent.mkdir(parents=True, exist_ok=True)

        if use_cache and await self._verify_cached_file(target_file, shasum):
            logger.debug(f"Using cached download for {url}: {target_file}")
            return TransportResult(temp_file=str(target_file), cache=True)

        await self._with_retry(
            url,
            lambda: self._download_once(
                url, target_file, shasum, headers, progress_callback
            ),
        )
        return TransportResult(temp_file=str(target_file), cache=False)

    async def _get_json_once(self, url: str, headers: Optional[Dict[str, str]]) -> Any:
        try:
            async with self._get_semaphore():
                session = await self._ensure_session()
                async with session.get(url, headers=headers or None) as response:
                    if response.status >= HTTP_STATUS_ERROR_THRESHOLD:
                        raise HTTPError(
                            f"HTTP error {response.status}",
                            status_code=response.status,
                            url=url,
                            is_retryable=_is_retryable_status(response.status),
                        )
                    body = await response.text()
        except DownloadError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(f"Network error: {e}", url=url, is_retryable=True) from e

        try:
            return json.loads(body)
        except ValueError as e:
            raise DownloadError(
                f"Invalid JSON response from {url}", url=url, details=str(e)
            ) from e

    async def fetch_json(self, url: str, headers: Optional[Dict[str, str]] = None) -> Any:
        logger.debug(f"Fetching metadata {url}")
        return await self._with_retry(url, lambda: self._get_json_once(url, headers))
