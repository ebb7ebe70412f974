"""
Repository factory.

Maps a package reference string to the backend that can fetch it:

    local:<path>            LocalRepository
    url:<url>, http(s)://   UrlRepository
    registry:<name>[@<v>]   RegistryRepository (alias: npm:)
    github:<owner/repo>[@<v>] GitHubRepository

References without a prefix are inferred: existing or explicitly relative
paths are local, urls are url, "owner/repo" is GitHub, anything else is a
registry package name.
"""

import os
import re
from typing import Any, Optional, Tuple

from depfetch.exceptions import UnknownSourceError
from depfetch.log_utils import logger

from .github import GitHubRepository
from .interfaces import RepoType
from .local import LocalRepository
from .registry import RegistryRepository
from .repository import Repository
from .url import UrlRepository


_PREFIX_ALIASES = {
    "local": RepoType.LOCAL,
    "file": RepoType.LOCAL,
    "url": RepoType.URL,
    "registry": RepoType.REGISTRY,
    "npm": RepoType.REGISTRY,
    "github": RepoType.GITHUB,
}

_OWNER_REPO = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]*)/[A-Za-z0-9._-]+(?:@.+)?$")


def split_name_version(reference: str) -> Tuple[str, Optional[str]]:
    """
    Split "name@version" into its parts; the leading '@' of a scoped name is kept.

    >>> split_name_version("@scope/pkg@^1.0.0")
    ('@scope/pkg', '^1.0.0')
    """
    index = reference.rfind("@")
    if index <= 0:
        return reference, None
    return reference[:index], reference[index + 1:] or None


def detect_repo_type(source: str) -> Tuple[RepoType, str]:
    """
    Return (repository type, reference without its prefix) for a package reference.

    Raises:
        UnknownSourceError: For an empty reference.
    """
    source = (source or "").strip()
    if not source:
        raise UnknownSourceError("empty package reference")

    if source.startswith(("http://", "https://")):
        return RepoType.URL, source

    prefix, sep, rest = source.partition(":")
    if sep and prefix.lower() in _PREFIX_ALIASES:
        return _PREFIX_ALIASES[prefix.lower()], rest

    if (
        source.startswith((".", os.sep, "~"))
        or os.path.isabs(source)
        or os.path.exists(source)
    ):
        return RepoType.LOCAL, source
    if _OWNER_REPO.match(source):
        return RepoType.GITHUB, source
    return RepoType.REGISTRY, source


def create_repository(source: str, **options: Any) -> Repository:
    """
    Create the repository backend for a package reference.

    Parameters:
        source (str): The package reference, with or without a type prefix.
        **options: Forwarded to the backend (version, use_cache, component, config, collaborators...).
            An explicit `version` option wins over a version embedded in the reference.

    Returns:
        Repository: A new backend instance.

    Raises:
        UnknownSourceError: If the reference cannot be mapped to a backend.
    """
    repo_type, reference = detect_repo_type(source)
    logger.debug(f"Package reference {source!r} maps to {repo_type.value} repository")

    if repo_type == RepoType.LOCAL:
        return LocalRepository(os.path.expanduser(reference), **options)
    if repo_type == RepoType.URL:
        return UrlRepository(reference, **options)

    name, embedded_version = split_name_version(reference)
    version = options.pop("version", None) or embedded_version
    if repo_type == RepoType.GITHUB:
        return GitHubRepository(name, version=version, **options)
    return RegistryRepository(name, version=version, **options)
