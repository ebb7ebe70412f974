"""
Registry Repository

Installs packages from an npm-style package registry. The registry serves a
metadata document per package:

    {
        "name": "pkg",
        "dist-tags": {"latest": "1.2.0", ...},
        "versions": {"1.2.0": {..., "dist": {"tarball": ..., "shasum": ...}}, ...}
    }
"""

from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from depfetch.constants import DEFAULT_REGISTRY_URL, REPO_TYPE_REGISTRY
from depfetch.exceptions import UnknownSourceError

from .interfaces import (
    DependencyEndpoint,
    InstallSource,
    UpdateInfo,
    VersionIndex,
    VersionRecord,
)
from .repository import Repository
from .version import is_newer, is_valid_version, sort_versions_desc

# Fields of a registry version document carried onto VersionRecord.metadata
_METADATA_FIELDS = ("description", "author", "license", "deprecated", "homepage")


def _version_metadata(document: Any) -> Dict[str, Any]:
    if not isinstance(document, dict):
        return {}
    metadata = {key: document[key] for key in _METADATA_FIELDS if key in document}
    dist = document.get("dist")
    if isinstance(dist, dict):
        for key in ("tarball", "shasum", "integrity"):
            if dist.get(key):
                metadata[key] = dist[key]
    return metadata


class RegistryRepository(Repository):
    """Repository backed by an npm-compatible registry."""

    def __init__(
        self,
        name: str,
        version: Optional[str] = None,
        registry: Optional[str] = None,
        **options: Any,
    ):
        """
        Create a registry repository.

        Parameters:
            name (str): Package name, optionally scoped ("@scope/name").
            version (Optional[str]): Requested version, range or dist-tag.
            registry (Optional[str]): Registry base url; defaults to the REGISTRY_URL setting.
            **options: Forwarded to Repository.
        """
        if not name:
            raise UnknownSourceError("registry package needs a name", repo_type=REPO_TYPE_REGISTRY)
        super().__init__(REPO_TYPE_REGISTRY, name=name, version=version, **options)
        self.registry = (
            registry or self.config.get("REGISTRY_URL") or DEFAULT_REGISTRY_URL
        ).rstrip("/")
        self.meta_data_url = f"{self.registry}/{quote(name, safe='@')}"
        self.req_headers = {"Accept": "application/json"}

    def get_repos_url(self) -> str:
        return self.registry

    def get_install_source(self) -> InstallSource:
        return InstallSource(type=self.type, value=self.registry)

    def get_dependency_endpoint(self) -> Optional[DependencyEndpoint]:
        return DependencyEndpoint(type=self.type, value=self.registry)

    def parse_version_index(
        self, index: VersionIndex
    ) -> Tuple[List[VersionRecord], List[VersionRecord]]:
        """
        Turn a registry document into version records (newest first) and dist-tag records.

        Tag records are separate objects from the version records they point at.
        """
        if not isinstance(index, dict):
            return [], []

        documents = index.get("versions") or {}
        if not isinstance(documents, dict):
            documents = {}

        versions = [
            VersionRecord(version=name, metadata=_version_metadata(documents[name]))
            for name in sort_versions_desc(v for v in documents if is_valid_version(v))
        ]

        tags: List[VersionRecord] = []
        dist_tags = index.get("dist-tags") or {}
        if isinstance(dist_tags, dict):
            for tag, version in dist_tags.items():
                tags.append(
                    VersionRecord(
                        version=str(version),
                        tag=str(tag),
                        metadata=_version_metadata(documents.get(version)),
                    )
                )
        return versions, tags

    async def fetch_version_metadata(self, record: VersionRecord) -> VersionRecord:
        """
        Make sure a selected record carries its tarball url and checksum.

        Records parsed from a full document already do; otherwise the
        per-version document is fetched from the registry.
        """
        if record.download_url:
            return record

        url = f"{self.meta_data_url}/{quote(record.version, safe='')}"
        self._debug("fetch version meta data: %s", url)
        document = await self.transport.fetch_json(url, headers=self.req_headers)
        record.metadata.update(_version_metadata(document))
        return record

    async def fetch_all_versions(self) -> List[str]:
        """Return every published version, newest first."""
        versions, _ = self.parse_version_index(await self.fetch_available_versions())
        return [record.version for record in versions]

    async def fetch_update_data(self, current_version: Optional[str]) -> UpdateInfo:
        """
        Compare `current_version` with the registry's `latest` dist-tag.

        Falls back to the newest published version when there is no `latest` tag.
        """
        versions, tags = self.parse_version_index(await self.fetch_available_versions())
        latest: Optional[str] = None
        for record in tags:
            if record.tag == "latest":
                latest = record.version
                break
        if latest is None and versions:
            latest = versions[0].version

        return UpdateInfo(
            current=current_version,
            latest=latest,
            has_update=is_newer(latest, current_version),
        )
