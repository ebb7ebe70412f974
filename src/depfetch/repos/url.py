"""
Url Repository

Installs packages from a remote archive url (for example a tarball on a
static file host). There is nothing to resolve: the url is the source.
"""

import os
from typing import Any, Optional
from urllib.parse import unquote, urlparse

from depfetch.constants import REPO_TYPE_URL

from .files import strip_ext_name
from .interfaces import DependencyEndpoint, InstallSource
from .repository import Repository


class UrlRepository(Repository):
    """Repository backed by a single downloadable archive."""

    def __init__(self, source: str, **options: Any):
        """
        Create a url repository.

        Parameters:
            source (str): Archive url.
            **options: Forwarded to Repository. `name` defaults to the archive file name without its extension.
        """
        name = options.pop("name", None) or _name_from_url(source)
        super().__init__(REPO_TYPE_URL, name=name, **options)
        self.source = source
        self.url = source

    def needs_resolve(self) -> bool:
        return False

    def get_repos_url(self) -> str:
        return self.source

    def get_install_source(self) -> InstallSource:
        return InstallSource(type=self.type, path=self.source)

    def get_dependency_endpoint(self) -> Optional[DependencyEndpoint]:
        return None


def _name_from_url(url: str) -> Optional[str]:
    path = unquote(urlparse(url).path).rstrip("/")
    base = os.path.basename(path)
    return strip_ext_name(base) or None
