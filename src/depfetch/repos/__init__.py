"""
depfetch Repository Subsystem

This package resolves package references to concrete versions and fetches
them (from the cache when possible) into expanded directories.

Core Components:
- interfaces: Data types and collaborator interfaces
- repository: Repository base class (download orchestration, version selection)
- local, url, registry, github: Origin backends
- factory: Reference string to backend mapping
- async_client: aiohttp transport
- cache: On-disk cache gateway
- files: Archive expansion and file utilities
- version: Semver range matching
"""

from .async_client import AsyncTransport
from .cache import CacheManager
from .factory import create_repository, detect_repo_type, split_name_version
from .files import ArchiveUnpacker
from .github import GitHubRepository
from .interfaces import (
    CacheEntry,
    CacheGateway,
    DependencyEndpoint,
    DownloadResult,
    FetchVersionOutcome,
    InstallSource,
    NoMatchedVersion,
    RepoType,
    Transport,
    TransportResult,
    Unpacker,
    UnpackResult,
    UpdateInfo,
    VersionRecord,
)
from .local import LocalRepository
from .registry import RegistryRepository
from .repository import Repository
from .url import UrlRepository

__all__ = [
    # Interfaces
    "CacheEntry",
    "CacheGateway",
    "DependencyEndpoint",
    "DownloadResult",
    "FetchVersionOutcome",
    "InstallSource",
    "NoMatchedVersion",
    "RepoType",
    "Transport",
    "TransportResult",
    "Unpacker",
    "UnpackResult",
    "UpdateInfo",
    "VersionRecord",
    # Base class
    "Repository",
    # Backends
    "LocalRepository",
    "UrlRepository",
    "RegistryRepository",
    "GitHubRepository",
    "create_repository",
    "detect_repo_type",
    "split_name_version",
    # Collaborators
    "AsyncTransport",
    "CacheManager",
    "ArchiveUnpacker",
]
