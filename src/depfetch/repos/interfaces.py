"""
Core Interfaces for the depfetch Repository Subsystem

This module defines the data structures passed between repositories and their
collaborators, and the abstract collaborator interfaces (transport, unpacker
and cache gateway) that repository backends are written against.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Union

from depfetch.constants import (
    REPO_TYPE_GITHUB,
    REPO_TYPE_LOCAL,
    REPO_TYPE_REGISTRY,
    REPO_TYPE_URL,
)
from depfetch.exceptions import NoMatchedVersionError

if TYPE_CHECKING:
    from .repository import Repository

Pathish = Union[str, Path]

VersionIndex = Union[Dict[str, Any], List[Any]]
"""Raw version listing as returned by an origin (JSON object or array)."""

ProgressCallback = Callable[[int, Optional[int], str], Union[None, Awaitable[None]]]
"""Called with (downloaded_bytes, total_bytes_or_None, file_name)."""


class RepoType(str, Enum):
    """Package origin kinds."""

    LOCAL = REPO_TYPE_LOCAL
    URL = REPO_TYPE_URL
    REGISTRY = REPO_TYPE_REGISTRY
    GITHUB = REPO_TYPE_GITHUB


@dataclass
class VersionRecord:
    """One installable version of a package."""

    version: str
    """The version string (e.g. '1.2.5')"""

    tag: Optional[str] = None
    """The tag this record was listed under, if any"""

    metadata: Dict[str, Any] = field(default_factory=dict)
    """Origin-specific details: author, license, deprecated, tarball, shasum..."""

    @property
    def download_url(self) -> Optional[str]:
        return self.metadata.get("tarball")

    @property
    def shasum(self) -> Optional[str]:
        return self.metadata.get("shasum")


@dataclass
class NoMatchedVersion:
    """Why version selection failed."""

    reason: str
    requested: Optional[str] = None
    candidate_versions: List[str] = field(default_factory=list)
    candidate_tags: List[str] = field(default_factory=list)
    kind: str = "NoMatchedVersion"

    def __str__(self) -> str:
        return self.reason


@dataclass
class FetchVersionOutcome:
    """Result of version selection: exactly one of `selected` or `error` is set."""

    selected: Optional[VersionRecord] = None
    error: Optional[NoMatchedVersion] = None

    def __post_init__(self) -> None:
        if (self.selected is None) == (self.error is None):
            raise ValueError("exactly one of selected or error must be set")

    @property
    def ok(self) -> bool:
        return self.selected is not None

    def unwrap(self) -> VersionRecord:
        """Return the selected record, raising NoMatchedVersionError on failure."""
        if self.error is not None:
            raise NoMatchedVersionError.from_outcome(self.error)
        assert self.selected is not None
        return self.selected


@dataclass
class CacheEntry:
    """Persisted record mapping a package identity to a downloaded file."""

    uri: str
    """Lookup key (download URI or url)"""

    name: Optional[str]
    version: Optional[str]

    resolved: str
    """The url the file was downloaded from"""

    file: str
    """Path of the downloaded file inside the cache directory"""

    origin: Optional[str] = None
    """Registry base or repository url the package comes from"""

    def is_valid(self) -> bool:
        return bool(self.file) and Path(self.file).is_file()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uri": self.uri,
            "name": self.name,
            "version": self.version,
            "resolved": self.resolved,
            "file": self.file,
            "origin": self.origin,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        return cls(
            uri=str(data.get("uri", "")),
            name=data.get("name"),
            version=data.get("version"),
            resolved=str(data.get("resolved", "")),
            file=str(data.get("file", "")),
            origin=data.get("origin"),
        )


@dataclass
class DownloadResult:
    """Result of a download or cache read; identical shape for both."""

    dir: str
    """The expanded package directory"""

    resolved_url: str
    """Where the package came from"""

    cache: bool = False
    """Whether the files came from the cache"""

    name: Optional[str] = None
    version: Optional[str] = None


@dataclass
class TransportResult:
    """Result of a transport fetch."""

    temp_file: str
    cache: bool = False


@dataclass
class UnpackResult:
    """Result of an unpack or directory copy."""

    decompress_dir: str
    extra: Optional[TransportResult] = None


@dataclass
class InstallSource:
    """How a package was installed, suitable for recording in a manifest."""

    type: str
    path: Optional[str] = None
    value: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        data = {"type": self.type}
        if self.path is not None:
            data["path"] = self.path
        if self.value is not None:
            data["value"] = self.value
        return data


@dataclass
class DependencyEndpoint:
    """Where the dependencies of a package should be resolved from."""

    type: str
    value: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"type": self.type, "value": self.value}


@dataclass
class UpdateInfo:
    """Update check result for an installed package."""

    current: Optional[str]
    latest: Optional[str]
    has_update: bool = False


class Transport(ABC):
    """Fetches remote resources into local files."""

    @abstractmethod
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
        """
        Download `url` into the `target` directory.

        When `use_cache` is true and a previously downloaded file for the same
        url exists (and matches `shasum`, when given), the network is skipped
        and the result reports `cache=True`.

        Raises:
            DownloadError: On network, HTTP, checksum or filesystem failures.
        """

    @abstractmethod
    async def fetch_json(
        self, url: str, headers: Optional[Dict[str, str]] = None
    ) -> Any:
        """
        Fetch `url` and decode the body as JSON.

        Raises:
            DownloadError: On network or HTTP failures or an undecodable body.
        """


class Unpacker(ABC):
    """Turns an archive file or a directory into an expanded directory tree."""

    @abstractmethod
    async def expand(
        self,
        source: Pathish,
        target_dir: Pathish,
        extra: Optional[TransportResult] = None,
    ) -> UnpackResult:
        """
        Expand the archive at `source` into `target_dir`.

        `extra` is handed back unchanged on the result.

        Raises:
            DecompressError: If the archive is unreadable or of an unknown format.
        """

    @abstractmethod
    async def copy_tree(self, source_dir: Pathish, target_dir: Pathish) -> UnpackResult:
        """
        Recursively copy `source_dir` into `target_dir`.

        Raises:
            DepfetchFileSystemError: If the copy fails.
        """


class CacheGateway(ABC):
    """Maps repository identities to cached files and metadata."""

    @abstractmethod
    def get_cache_dir(self, component: bool, repo_type: str) -> str:
        """Return the download cache directory for a (scope, origin type) pair."""

    @abstractmethod
    def get_download_uri(self, repository: "Repository") -> Optional[str]:
        """Return the canonical cache lookup key for a repository, if it has one."""

    @abstractmethod
    def get_cache_repos_info(
        self, repository: "Repository", latest: bool = False
    ) -> Optional[CacheEntry]:
        """Look up the cache entry for a repository."""

    @abstractmethod
    def cache_repos_info(self, entry: CacheEntry) -> None:
        """Store a cache entry."""

    @abstractmethod
    def remove_repos_info_cache(
        self, repository: "Repository", entry: Optional[CacheEntry] = None
    ) -> None:
        """Evict the cache entry of a repository (or `entry` itself when given)."""

    @abstractmethod
    def get_cache_version_info(self, repository: "Repository") -> Optional[VersionIndex]:
        """Return the cached version index of a repository, if fresh."""

    @abstractmethod
    def cache_version_info(self, repository: "Repository", index: VersionIndex) -> None:
        """Store the version index of a repository."""
