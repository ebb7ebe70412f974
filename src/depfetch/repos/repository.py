"""
Repository Base Implementation

This module provides Repository, the base class every package origin backend
extends. It implements the shared behavior: cache-aware download
orchestration, cache reads, version index fetching and version selection.
Backends override the hooks that differ per origin (url resolution, version
index parsing, install source descriptors).
"""

import asyncio
import dataclasses
import itertools
import os
import time
from abc import ABC
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from depfetch.constants import EMPTY_CANDIDATES_PLACEHOLDER, NO_MATCHED_VERSION_TEMPLATE
from depfetch.exceptions import (
    CacheMissError,
    DecompressError,
    UnknownSourceError,
    UnsupportedOperationError,
)
from depfetch.log_utils import logger

from .interfaces import (
    CacheEntry,
    CacheGateway,
    DependencyEndpoint,
    DownloadResult,
    FetchVersionOutcome,
    InstallSource,
    NoMatchedVersion,
    ProgressCallback,
    Transport,
    TransportResult,
    Unpacker,
    UpdateInfo,
    VersionIndex,
    VersionRecord,
)
from .files import get_file_ext_name, rm_file
from .version import max_satisfying

# Process-wide allocation ids for scratch directories
_scratch_ids = itertools.count(1)


class InflightFetches:
    """
    At-most-one concurrent transport fetch per key.

    The first caller for a key (the leader) runs the fetch; callers that
    arrive while it is running await the leader's TransportResult instead of
    starting their own. Only the fetch is shared: each caller expands the
    file into its own scratch directory.
    """

    def __init__(self) -> None:
        self._pending: Dict[str, "asyncio.Future[TransportResult]"] = {}

    async def run(
        self, key: str, factory: Callable[[], Awaitable[TransportResult]]
    ) -> TransportResult:
        pending = self._pending.get(key)
        if pending is not None:
            logger.debug(f"Waiting for in-flight fetch {key}")
            result = await asyncio.shield(pending)
            return dataclasses.replace(result)

        future: "asyncio.Future[TransportResult]" = (
            asyncio.get_running_loop().create_future()
        )
        self._pending[key] = future
        try:
            result = await factory()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Followers re-raise it; mark retrieved so a leader-only failure is not reported twice
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            if self._pending.get(key) is future:
                del self._pending[key]


_inflight_fetches = InflightFetches()


class Repository(ABC):
    """
    Base class of all package origin backends.

    One instance is created per package reference and lives for one
    resolve + download call chain. The instance owns its mutable state
    (`resolved_url`, `resolved_version`, the in-memory version index); the
    on-disk cache is shared through the CacheGateway.
    """

    url: Optional[str] = None
    """Static fetchable location known at construction time"""

    meta_data_url: Optional[str] = None
    """Endpoint listing all versions of the package"""

    ext_name: Optional[str] = None
    """Explicit download file extension overriding url inference"""

    def __init__(
        self,
        repo_type: str,
        *,
        name: Optional[str] = None,
        version: Optional[str] = None,
        resolved_url: Optional[str] = None,
        use_cache: Optional[bool] = None,
        component: Optional[bool] = None,
        config: Optional[Dict[str, Any]] = None,
        cache: Optional[CacheGateway] = None,
        transport: Optional[Transport] = None,
        unpacker: Optional[Unpacker] = None,
    ):
        """
        Create a repository instance.

        Parameters:
            repo_type (str): Origin type identifier ("local", "url", "registry", "github").
            name (Optional[str]): Name of the package to install.
            version (Optional[str]): Requested version, range or tag.
            resolved_url (Optional[str]): A previously resolved download url.
            use_cache (Optional[bool]): Cache policy; defaults to the USE_CACHE setting (True).
            component (Optional[bool]): Whether this is a component package; only namespaces the cache directory. Defaults to the COMPONENT setting (True).
            config (Optional[Dict[str, Any]]): Configuration overriding the defaults; when omitted it is read with load_config() (config file and environment).
            cache (Optional[CacheGateway]): Cache gateway; a CacheManager is created if omitted.
            transport (Optional[Transport]): Transport; an AsyncTransport is created if omitted.
            unpacker (Optional[Unpacker]): Unpacker; an ArchiveUnpacker is created if omitted.
        """
        from depfetch.config import DEFAULT_CONFIG, get_bool, load_config

        if config is None:
            self.config: Dict[str, Any] = load_config()
        else:
            self.config = dict(DEFAULT_CONFIG)
            self.config.update(config)

        self.type = repo_type
        self._pkg_name = name
        self._pkg_version = version
        self.resolved_url: Optional[str] = resolved_url
        self.resolved_version: Optional[str] = None
        self.use_cache = get_bool(self.config, "USE_CACHE") if use_cache is None else bool(use_cache)
        self.component = get_bool(self.config, "COMPONENT") if component is None else bool(component)
        self.req_headers: Dict[str, str] = {}
        self._all_versions: Optional[VersionIndex] = None

        self._owns_transport = transport is None
        self.cache = cache if cache is not None else self._create_cache()
        self.transport = transport if transport is not None else self._create_transport()
        self.unpacker = unpacker if unpacker is not None else self._create_unpacker()

    def _create_cache(self) -> CacheGateway:
        from depfetch.config import get_float

        from .cache import CacheManager

        return CacheManager(
            self.config.get("CACHE_DIR"),
            version_info_expiry_hours=get_float(
                self.config, "VERSION_INFO_CACHE_EXPIRY_HOURS"
            ),
        )

    def _create_transport(self) -> Transport:
        from .async_client import AsyncTransport

        return AsyncTransport.from_config(self.config)

    def _create_unpacker(self) -> Unpacker:
        from .files import ArchiveUnpacker

        return ArchiveUnpacker()

    async def close(self) -> None:
        """Release the transport when this repository created it."""
        close = getattr(self.transport, "close", None)
        if self._owns_transport and close is not None:
            await close()

    async def __aenter__(self) -> "Repository":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self.pkg_name!r}, "
            f"version={self.pkg_version!r}, url={self.get_resolved_url()!r})"
        )

    def _debug(self, message: str, *args: Any) -> None:
        logger.debug(f"[{self.type}] {message}", *args)

    @property
    def pkg_name(self) -> Optional[str]:
        return self._pkg_name

    @property
    def pkg_version(self) -> Optional[str]:
        return self._pkg_version

    # ------------------------------------------------------------------
    # Descriptors
    # ------------------------------------------------------------------

    def get_install_source(self) -> InstallSource:
        return InstallSource(type=self.type)

    def get_repos_url(self) -> str:
        return ""

    def needs_resolve(self) -> bool:
        """Whether a resolve step is needed before the package can be downloaded."""
        return True

    def get_dependency_endpoint(self) -> Optional[DependencyEndpoint]:
        """
        Describe where this package's own dependencies should be fetched from.

        Returns:
            The endpoint dependents inherit, or None when they must resolve independently.
        """
        return DependencyEndpoint(type=self.type)

    def get_download_cache_dir(self) -> str:
        return self.cache.get_cache_dir(self.component, self.type)

    def get_download_file_extension(self, url: Optional[str]) -> str:
        return self.ext_name or get_file_ext_name(url)

    def get_decompress_temp_dir(self, decompress_file: str) -> str:
        """
        Allocate a scratch directory next to `decompress_file`.

        The name combines a nanosecond timestamp with a process-wide
        allocation id, so no two calls get the same directory.
        """
        parent = os.path.dirname(os.path.abspath(decompress_file))
        return os.path.join(parent, f"{time.time_ns()}-{next(_scratch_ids)}")

    def get_resolved_url(self) -> Optional[str]:
        return self.resolved_url or self.url

    def get_resolved_version(self) -> Optional[str]:
        return self.resolved_version or self.pkg_version

    # ------------------------------------------------------------------
    # Cache reads and downloads
    # ------------------------------------------------------------------

    async def read_from_cache(self, latest: bool = False) -> DownloadResult:
        """
        Expand the cached download of this package, if there is a usable one.

        Parameters:
            latest (bool): When no version was requested, accept the most recently cached version.

        Returns:
            DownloadResult: The expanded package, with `cache=True`.

        Raises:
            CacheMissError: When there is no entry, its file is gone, or it no longer unpacks; stale entries are evicted.
        """
        entry = self.cache.get_cache_repos_info(self, latest)
        if entry is None:
            raise CacheMissError(f"No cache entry for {self.pkg_name or self.get_resolved_url()}")

        if not entry.is_valid():
            self._debug("cached file missing, evict entry: %s", entry.file)
            self.cache.remove_repos_info_cache(self, entry)
            raise CacheMissError(f"Cached file is missing: {entry.file}")

        temp_dir = self.get_decompress_temp_dir(entry.file)
        try:
            result = await self.unpacker.expand(entry.file, temp_dir)
        except (DecompressError, OSError) as e:
            self._debug("read from cache fail: %s", e)
            self.cache.remove_repos_info_cache(self, entry)
            raise CacheMissError(f"Cached file cannot be expanded: {entry.file}") from e

        self._debug("read from cache ok: %s", result.decompress_dir)
        self.resolved_url = entry.resolved
        return DownloadResult(
            dir=result.decompress_dir,
            resolved_url=entry.resolved,
            cache=True,
            name=entry.name,
            version=entry.version,
        )

    async def download(
        self,
        url: Optional[str] = None,
        *,
        name: Optional[str] = None,
        version: Optional[str] = None,
        shasum: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        use_cache: Optional[bool] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> DownloadResult:
        """
        Download (or reuse the cached file of) this package and expand it.

        Parameters:
            url (Optional[str]): Explicit download url; defaults to the resolved url, then the static url.
            name (Optional[str]): Package name to record; defaults to the instance name.
            version (Optional[str]): Package version to record; defaults to the resolved or requested version.
            shasum (Optional[str]): Expected hex digest of the downloaded file.
            headers (Optional[Dict[str, str]]): Request headers; defaults to the backend's headers.
            use_cache (Optional[bool]): Overrides the instance cache policy for this call.
            progress_callback (Optional[ProgressCallback]): Receives (downloaded, total, file name) updates.

        Returns:
            DownloadResult: The expanded package directory and where it came from.

        Raises:
            UnknownSourceError: When no url is known.
            DownloadError: When the transport fails.
            DecompressError: When the downloaded file cannot be expanded; the file is removed first.
        """
        url = url or self.resolved_url or self.url
        self.resolved_url = url
        if not url:
            raise UnknownSourceError("unknown download url", repo_type=self.type)

        self._debug("begin download package %s...", url)
        effective_use_cache = self.use_cache if use_cache is None else bool(use_cache)
        cache_dir = self.get_download_cache_dir()

        data = await _inflight_fetches.run(
            f"{cache_dir}|{url}|{effective_use_cache}",
            lambda: self.transport.fetch(
                url,
                target=cache_dir,
                ext_name=self.get_download_file_extension(url),
                shasum=shasum,
                use_cache=effective_use_cache,
                headers=headers or self.req_headers,
                progress_callback=progress_callback,
            ),
        )
        return await self._unpack_download(url, data, name=name, version=version)

    async def _unpack_download(
        self,
        url: str,
        data: TransportResult,
        *,
        name: Optional[str],
        version: Optional[str],
    ) -> DownloadResult:
        temp_dir = self.get_decompress_temp_dir(data.temp_file)
        try:
            result = await self.unpacker.expand(data.temp_file, temp_dir, data)
        except DecompressError as e:
            e.archive_path = e.archive_path or data.temp_file
            self._debug("decompress file fail, rm file: %s", e.archive_path)
            rm_file(e.archive_path)
            raise
        except OSError as e:
            self._debug("decompress file fail, rm file: %s", data.temp_file)
            rm_file(data.temp_file)
            raise DecompressError(
                f"Error expanding {data.temp_file}",
                archive_path=data.temp_file,
                details=str(e),
            ) from e

        name = name or self.pkg_name
        version = version or self.get_resolved_version()

        self._debug("check need cache: %s", not data.cache)
        if not data.cache:
            download_uri = self.cache.get_download_uri(self)
            entry = CacheEntry(
                uri=download_uri or url,
                name=name,
                version=version,
                resolved=url,
                file=data.temp_file,
                origin=self.get_repos_url() or None,
            )
            self.cache.cache_repos_info(entry)
            self._debug("cache download info: %s", entry.to_dict())

        return DownloadResult(
            dir=result.decompress_dir,
            resolved_url=url,
            cache=data.cache,
            name=name,
            version=version,
        )

    # ------------------------------------------------------------------
    # Version metadata
    # ------------------------------------------------------------------

    async def fetch_repos_meta_data(self) -> Optional[Dict[str, Any]]:
        return None

    async def fetch_available_versions(self) -> VersionIndex:
        """
        Return the index describing all versions and tags of this package.

        Looks in the instance, then the cache gateway, then the transport;
        freshly fetched indexes are stored in both caches.

        Raises:
            UnknownSourceError: When the backend has no metadata endpoint.
            DownloadError: When the transport fails.
        """
        meta_data_url = self.meta_data_url
        self._debug("fetch meta data: %s...", meta_data_url)
        if not meta_data_url:
            raise UnknownSourceError("unknown meta data", repo_type=self.type)

        if self._all_versions is not None:
            return self._all_versions

        version_info = self.cache.get_cache_version_info(self) if self.use_cache else None
        if version_info is not None:
            self._all_versions = version_info
            return version_info

        result = await self.transport.fetch_json(
            meta_data_url, headers=self.req_headers or None
        )
        self.cache.cache_version_info(self, result)
        self._all_versions = result
        return result

    async def fetch_all_versions(self) -> Any:
        raise UnsupportedOperationError(
            "listing all versions is not supported", operation="fetch_all_versions"
        )

    async def fetch_version_metadata(self, record: VersionRecord) -> VersionRecord:
        """Complete a selected version record; the base implementation returns it unchanged."""
        return record

    async def fetch_update_data(self, current_version: Optional[str]) -> UpdateInfo:
        raise UnsupportedOperationError(
            "update is not available", operation="fetch_update_data"
        )

    def parse_version_index(
        self, index: VersionIndex
    ) -> Tuple[List[VersionRecord], List[VersionRecord]]:
        """
        Split a version index into version records and tag records.

        The generic format is {"versions": [...], "tags": {tag: version}};
        versions may be strings or objects with a "version" key.
        """
        versions: List[VersionRecord] = []
        for item in index.get("versions") or []:
            if isinstance(item, dict) and item.get("version"):
                metadata = {k: v for k, v in item.items() if k != "version"}
                versions.append(VersionRecord(version=str(item["version"]), metadata=metadata))
            elif isinstance(item, str):
                versions.append(VersionRecord(version=item))

        tags: List[VersionRecord] = []
        raw_tags = index.get("tags") or {}
        if isinstance(raw_tags, dict):
            for tag, version in raw_tags.items():
                tags.append(VersionRecord(version=str(version), tag=str(tag)))
        return versions, tags

    def select_fetch_version(
        self,
        fetch_version: Optional[str],
        all_versions: List[VersionRecord],
        all_tags: List[VersionRecord],
    ) -> FetchVersionOutcome:
        """
        Pick the version record to fetch.

        Precedence: exact version, exact tag, highest version satisfying
        `fetch_version` as a semver range, then (only when nothing was
        requested) the first version or else the first tag.

        Returns:
            FetchVersionOutcome: The selected record, or a NoMatchedVersion error.
        """
        version_map: Dict[str, VersionRecord] = {}
        for item in all_versions:
            version_map[item.version] = item

        tag_map: Dict[str, VersionRecord] = {}
        for item in all_tags:
            if item.tag is not None:
                tag_map[item.tag] = item

        if fetch_version and fetch_version in version_map:
            return FetchVersionOutcome(selected=version_map[fetch_version])
        if fetch_version and fetch_version in tag_map:
            return FetchVersionOutcome(selected=tag_map[fetch_version])

        valid_version: Optional[VersionRecord] = None
        candidates = list(version_map)
        if fetch_version:
            self._debug("fetch %s from %s", fetch_version, candidates)
            matched = max_satisfying(candidates, fetch_version)
            if matched is not None:
                valid_version = version_map[matched]
        elif all_versions:
            valid_version = all_versions[0]
        elif all_tags:
            valid_version = all_tags[0]

        if valid_version is None:
            package = self.pkg_name or ""
            if fetch_version:
                package += f"@{fetch_version}"
            tags = list(tag_map)
            reason = NO_MATCHED_VERSION_TEMPLATE.format(
                package=package,
                candidates=", ".join(candidates) or EMPTY_CANDIDATES_PLACEHOLDER,
                tags=", ".join(tags) or EMPTY_CANDIDATES_PLACEHOLDER,
            )
            return FetchVersionOutcome(
                error=NoMatchedVersion(
                    reason=reason,
                    requested=fetch_version,
                    candidate_versions=candidates,
                    candidate_tags=tags,
                )
            )

        return FetchVersionOutcome(selected=valid_version)

    # ------------------------------------------------------------------
    # Call chains
    # ------------------------------------------------------------------

    async def resolve(self, requested: Optional[str] = None) -> VersionRecord:
        """
        Resolve the requested version to a concrete, downloadable record.

        Records the selected version and its download url on the instance.

        Raises:
            NoMatchedVersionError: When no version matches.
        """
        requested = self.pkg_version if requested is None else requested
        if not self.needs_resolve():
            return VersionRecord(
                version=requested or "",
                metadata={"tarball": self.get_resolved_url()},
            )

        index = await self.fetch_available_versions()
        versions, tags = self.parse_version_index(index)
        record = self.select_fetch_version(requested, versions, tags).unwrap()
        record = await self.fetch_version_metadata(record)

        self.resolved_version = record.version
        if record.download_url:
            self.resolved_url = record.download_url
        self._debug("resolved %s to %s (%s)", requested, record.version, self.resolved_url)
        return record

    async def install(
        self,
        requested: Optional[str] = None,
        *,
        use_cache: Optional[bool] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> DownloadResult:
        """
        Resolve (when needed), then read from the cache or download.

        A cache miss falls back to a live download.
        """
        record: Optional[VersionRecord] = None
        if self.needs_resolve():
            record = await self.resolve(requested)

        effective_use_cache = self.use_cache if use_cache is None else bool(use_cache)
        if effective_use_cache:
            wants_latest = not (requested or self.pkg_version)
            try:
                return await self.read_from_cache(latest=wants_latest)
            except CacheMissError as e:
                self._debug("cache miss: %s", e)

        return await self.download(
            version=record.version if record else None,
            shasum=record.shasum if record else None,
            use_cache=effective_use_cache,
            progress_callback=progress_callback,
        )
