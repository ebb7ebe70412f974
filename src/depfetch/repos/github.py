"""
GitHub Repository

Installs packages from the tags of a GitHub repository. Versions are the tags
whose names parse as semantic versions; every tag (including those) is also
listed as a tag record so non-version tags like "stable" can be requested.
Archives are fetched from codeload.
"""

from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from depfetch.constants import (
    GITHUB_API_BASE,
    GITHUB_CODELOAD_BASE,
    GITHUB_MAX_PER_PAGE,
    GITHUB_WEB_BASE,
    REPO_TYPE_GITHUB,
)
from depfetch.exceptions import UnknownSourceError

from .interfaces import (
    DependencyEndpoint,
    InstallSource,
    UpdateInfo,
    VersionIndex,
    VersionRecord,
)
from .repository import Repository
from .version import is_newer, is_valid_version, sort_versions_desc, strip_version_prefix


def parse_github_source(source: str) -> Tuple[str, str]:
    """
    Split "owner/repo" (or a github.com url) into its owner and repository name.

    Raises:
        UnknownSourceError: If `source` does not name a repository.
    """
    cleaned = source.strip()
    for prefix in (f"{GITHUB_WEB_BASE}/", "github.com/"):
        if cleaned.startswith(prefix):
            cleaned = cleaned[len(prefix):]
            break
    cleaned = cleaned.strip("/")
    if cleaned.endswith(".git"):
        cleaned = cleaned[: -len(".git")]

    parts = cleaned.split("/")
    if len(parts) != 2 or not all(parts):
        raise UnknownSourceError(
            f"Invalid GitHub repository: {source!r}", repo_type=REPO_TYPE_GITHUB
        )
    return parts[0], parts[1]


class GitHubRepository(Repository):
    """Repository backed by the tags of a GitHub repository."""

    ext_name = ".tar.gz"

    def __init__(
        self,
        source: str,
        version: Optional[str] = None,
        token: Optional[str] = None,
        **options: Any,
    ):
        """
        Create a GitHub repository.

        Parameters:
            source (str): "owner/repo" or a github.com url.
            version (Optional[str]): Requested version, range or tag name.
            token (Optional[str]): API token; defaults to the GITHUB_TOKEN setting.
            **options: Forwarded to Repository. `name` defaults to the repository name.
        """
        self.owner, self.repo = parse_github_source(source)
        name = options.pop("name", None) or self.repo
        super().__init__(REPO_TYPE_GITHUB, name=name, version=version, **options)

        self.token = token or self.config.get("GITHUB_TOKEN")
        self.meta_data_url = (
            f"{GITHUB_API_BASE}/{self.owner}/{self.repo}/tags?per_page={GITHUB_MAX_PER_PAGE}"
        )
        self.branches_url = (
            f"{GITHUB_API_BASE}/{self.owner}/{self.repo}/branches?per_page={GITHUB_MAX_PER_PAGE}"
        )
        self.req_headers = {"Accept": "application/vnd.github+json"}
        if self.token:
            self.req_headers["Authorization"] = f"token {self.token}"

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    def get_archive_url(self, ref: str) -> str:
        return f"{GITHUB_CODELOAD_BASE}/{self.owner}/{self.repo}/tar.gz/{quote(ref, safe='')}"

    def get_repos_url(self) -> str:
        return f"{GITHUB_WEB_BASE}/{self.full_name}"

    def get_install_source(self) -> InstallSource:
        return InstallSource(type=self.type, path=f"{self.type}:{self.full_name}")

    def get_dependency_endpoint(self) -> Optional[DependencyEndpoint]:
        return DependencyEndpoint(type=self.type)

    def _tag_metadata(self, tag: Dict[str, Any]) -> Dict[str, Any]:
        ref = str(tag["name"])
        metadata: Dict[str, Any] = {"ref": ref, "tarball": self.get_archive_url(ref)}
        commit = tag.get("commit")
        if isinstance(commit, dict) and commit.get("sha"):
            metadata["sha"] = commit["sha"]
        return metadata

    def parse_version_index(
        self, index: VersionIndex
    ) -> Tuple[List[VersionRecord], List[VersionRecord]]:
        """
        Turn a tags listing into version records (newest first) and tag records.

        Tag names like "v1.2.0" produce the version "1.2.0"; the archive is
        still fetched by the original tag name.
        """
        if not isinstance(index, list):
            return [], []

        raw_tags = [t for t in index if isinstance(t, dict) and t.get("name")]
        by_version: Dict[str, Dict[str, Any]] = {}
        for tag in raw_tags:
            name = str(tag["name"])
            if is_valid_version(name):
                by_version.setdefault(strip_version_prefix(name), tag)

        versions = [
            VersionRecord(version=version, metadata=self._tag_metadata(by_version[version]))
            for version in sort_versions_desc(by_version)
        ]
        tags = [
            VersionRecord(
                version=strip_version_prefix(str(tag["name"])),
                tag=str(tag["name"]),
                metadata=self._tag_metadata(tag),
            )
            for tag in raw_tags
        ]
        return versions, tags

    async def fetch_all_versions(self) -> Dict[str, List[str]]:
        """Return the names of all tags and branches of the repository."""
        tags = await self.fetch_available_versions()
        branches = await self.transport.fetch_json(self.branches_url, headers=self.req_headers)
        return {
            "tags": [str(t["name"]) for t in tags or [] if isinstance(t, dict) and t.get("name")],
            "branches": [
                str(b["name"]) for b in branches or [] if isinstance(b, dict) and b.get("name")
            ],
        }

    async def fetch_update_data(self, current_version: Optional[str]) -> UpdateInfo:
        """Compare `current_version` with the newest version tag."""
        versions, _ = self.parse_version_index(await self.fetch_available_versions())
        latest = versions[0].version if versions else None
        return UpdateInfo(
            current=current_version,
            latest=latest,
            has_update=is_newer(latest, current_version),
        )
