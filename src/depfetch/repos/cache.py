"""
Cache Management for the depfetch Repository Subsystem

CacheManager is the default CacheGateway. It owns the on-disk layout:

    <cache root>/
        component/<repo type>/...     downloads of component packages
        other/<repo type>/...         downloads of everything else
        repos-info.json               cache entries keyed by lookup uri
        versions/<sha1(url)>.json     version indexes with expiry
"""

import json
import os
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Dict, Optional

from depfetch.constants import (
    CACHE_APP_NAME,
    COMPONENT_CACHE_DIR_NAME,
    OTHER_CACHE_DIR_NAME,
    REPOS_INFO_CACHE_FILE,
    VERSION_INFO_CACHE_DIR_NAME,
    VERSION_INFO_CACHE_EXPIRY_HOURS,
)
from depfetch.log_utils import logger

from .files import _atomic_write_json, sha1_hex
from .interfaces import CacheEntry, CacheGateway, VersionIndex
from .version import is_valid_version

if TYPE_CHECKING:
    from .repository import Repository


def _parse_iso_datetime_utc(value: Any) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp and normalize it to UTC.

    Returns:
        A timezone-aware datetime in UTC if parsing succeeds, `None` otherwise.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except (ValueError, TypeError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class CacheManager(CacheGateway):
    """
    File-backed cache gateway.

    Cache entries and version indexes are JSON files written atomically; the
    downloaded artifacts themselves live in the per-type cache directories.
    """

    def __init__(
        self,
        cache_dir: Optional[str] = None,
        version_info_expiry_hours: float = VERSION_INFO_CACHE_EXPIRY_HOURS,
    ):
        """
        Initialize the CacheManager with a cache directory.

        Parameters:
            cache_dir (Optional[str]): Root of the on-disk cache. If None, the platform user cache directory is used.
            version_info_expiry_hours (float): How long a cached version index stays fresh.
        """
        self.cache_dir = cache_dir or self._get_default_cache_dir()
        self.version_info_expiry_hours = version_info_expiry_hours
        self._ensure_cache_dir_exists()

    def _get_default_cache_dir(self) -> str:
        import platformdirs

        return platformdirs.user_cache_dir(CACHE_APP_NAME)

    def _ensure_cache_dir_exists(self) -> None:
        try:
            os.makedirs(self.cache_dir, exist_ok=True)
        except OSError as e:
            logger.error(f"Could not create cache directory {self.cache_dir}: {e}")
            raise

    @property
    def repos_info_file(self) -> str:
        return os.path.join(self.cache_dir, REPOS_INFO_CACHE_FILE)

    def read_json(self, file_path: str) -> Optional[Any]:
        """
        Load and parse JSON from the given file path.

        Returns:
            The parsed JSON value, or `None` if the file is missing or cannot be read/decoded.
        """
        if not os.path.exists(file_path):
            return None

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Could not read JSON file {file_path}: {e}")
            return None

    def cache_with_expiry(self, cache_file: str, data: Any, expiry_hours: float) -> bool:
        """
        Store `data` in `cache_file` along with UTC `cached_at` and `expires_at` timestamps.

        Returns:
            bool: True if the cache file was written successfully, False otherwise.
        """
        now = datetime.now(timezone.utc)
        cache_data = {
            "data": data,
            "cached_at": now.isoformat(),
            "expires_at": (now + timedelta(hours=expiry_hours)).isoformat(),
        }
        return _atomic_write_json(cache_file, cache_data)

    def read_cache_with_expiry(self, cache_file: str) -> Optional[Any]:
        """
        Return the value stored under "data" if the cache file exists and has not expired.

        A missing or malformed "expires_at" timestamp is treated as non-expiring.
        """
        cache_data = self.read_json(cache_file)
        if not isinstance(cache_data, dict):
            return None

        expires_at = _parse_iso_datetime_utc(cache_data.get("expires_at"))
        if expires_at and datetime.now(timezone.utc) > expires_at:
            logger.debug(f"Cache expired for {cache_file}")
            return None

        return cache_data.get("data")

    # ------------------------------------------------------------------
    # Download directories
    # ------------------------------------------------------------------

    def get_cache_dir(self, component: bool, repo_type: str) -> str:
        scope = COMPONENT_CACHE_DIR_NAME if component else OTHER_CACHE_DIR_NAME
        cache_dir = os.path.join(self.cache_dir, scope, str(repo_type))
        os.makedirs(cache_dir, exist_ok=True)
        return cache_dir

    # ------------------------------------------------------------------
    # Repository entries
    # ------------------------------------------------------------------

    def get_download_uri(self, repository: "Repository") -> Optional[str]:
        """
        Return "<type>:<origin>#<name>@<version>" when the repository has a concrete version.

        The origin (registry base, repository url) is left out for backends
        that have none, giving "<type>:<name>@<version>".

        Repositories without a name or with a range/tag version have no
        canonical uri; callers fall back to the download url.
        """
        name = repository.pkg_name
        version = repository.get_resolved_version()
        if not name or not version or not is_valid_version(version):
            return None
        origin = repository.get_repos_url()
        if origin:
            return f"{repository.type}:{origin}#{name}@{version}"
        return f"{repository.type}:{name}@{version}"

    def _lookup_key(self, repository: "Repository") -> Optional[str]:
        return self.get_download_uri(repository) or repository.get_resolved_url()

    def _load_repos_info(self) -> Dict[str, Dict[str, Any]]:
        data = self.read_json(self.repos_info_file)
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, dict)}

    def get_cache_repos_info(
        self, repository: "Repository", latest: bool = False
    ) -> Optional[CacheEntry]:
        """
        Look up the cache entry for a repository.

        The entry is found by the repository's lookup key. When nothing is
        stored under that key, `latest` is set and the repository asks for no
        particular version, the most recently cached entry with the same name,
        origin and cache directory is returned instead.
        """
        entries = self._load_repos_info()
        key = self._lookup_key(repository)
        if key and key in entries:
            return CacheEntry.from_dict(entries[key])

        if not latest or repository.pkg_version or not repository.pkg_name:
            return None

        origin = repository.get_repos_url() or None
        cache_dir = repository.get_download_cache_dir()
        newest: Optional[Dict[str, Any]] = None
        newest_at: Optional[datetime] = None
        for record in entries.values():
            if record.get("name") != repository.pkg_name or record.get("origin") != origin:
                continue
            file_path = str(record.get("file") or "")
            if not _is_under(cache_dir, file_path):
                continue
            cached_at = _parse_iso_datetime_utc(record.get("cached_at"))
            if newest is None or (
                cached_at is not None and (newest_at is None or cached_at > newest_at)
            ):
                newest, newest_at = record, cached_at

        return CacheEntry.from_dict(newest) if newest else None

    def cache_repos_info(self, entry: CacheEntry) -> None:
        entries = self._load_repos_info()
        record = entry.to_dict()
        record["cached_at"] = datetime.now(timezone.utc).isoformat()
        entries[entry.uri] = record
        if not _atomic_write_json(self.repos_info_file, entries):
            logger.warning(f"Could not persist cache entry for {entry.uri}")

    def remove_repos_info_cache(
        self, repository: "Repository", entry: Optional[CacheEntry] = None
    ) -> None:
        entries = self._load_repos_info()
        key = entry.uri if entry is not None else self._lookup_key(repository)
        if not key or key not in entries:
            return
        del entries[key]
        logger.debug(f"Evicted cache entry {key}")
        _atomic_write_json(self.repos_info_file, entries)

    # ------------------------------------------------------------------
    # Version indexes
    # ------------------------------------------------------------------

    def _version_info_file(self, repository: "Repository") -> Optional[str]:
        meta_data_url = repository.meta_data_url
        if not meta_data_url:
            return None
        return os.path.join(
            self.cache_dir, VERSION_INFO_CACHE_DIR_NAME, f"{sha1_hex(meta_data_url)}.json"
        )

    def get_cache_version_info(self, repository: "Repository") -> Optional[VersionIndex]:
        cache_file = self._version_info_file(repository)
        if cache_file is None:
            return None
        data = self.read_cache_with_expiry(cache_file)
        return data if isinstance(data, (dict, list)) else None

    def cache_version_info(self, repository: "Repository", index: VersionIndex) -> None:
        cache_file = self._version_info_file(repository)
        if cache_file is None:
            return
        self.cache_with_expiry(cache_file, index, self.version_info_expiry_hours)


def _is_under(directory: str, file_path: str) -> bool:
    if not file_path:
        return False
    try:
        real_dir = os.path.realpath(directory)
        return os.path.commonpath([real_dir, os.path.realpath(file_path)]) == real_dir
    except ValueError:
        return False
