"""
Local Repository

Installs packages from a path on disk: either a directory, copied as-is,
or an archive file, expanded. Both land in a cache slot named after the
md5 of the absolute source path.
"""

import asyncio
import os
import stat
from typing import Any, Optional

from depfetch.constants import REPO_TYPE_LOCAL
from depfetch.exceptions import DepfetchFileSystemError, UnknownSourceError

from .files import md5_hex, remove_directory
from .interfaces import DependencyEndpoint, DownloadResult, InstallSource
from .repository import Repository


class LocalRepository(Repository):
    """
    Repository backed by a local file or directory.

    The path given by the caller is resolved against the current working
    directory; the package name defaults to the last path segment.
    """

    def __init__(self, source: str, **options: Any):
        """
        Create a local repository.

        Parameters:
            source (str): File or directory path, absolute or relative to the working directory.
            **options: Forwarded to Repository (version, use_cache, component, config, collaborators). `name` is ignored: the name always comes from the path.
        """
        options.pop("name", None)
        self.file_path = source
        self.resolved_path = os.path.abspath(os.path.join(os.getcwd(), source))
        super().__init__(
            REPO_TYPE_LOCAL,
            name=os.path.basename(self.resolved_path.rstrip(os.sep)),
            **options,
        )
        self.url = self.resolved_url or self.resolved_path

    def needs_resolve(self) -> bool:
        return False

    def get_cache_slot(self, file_path: Optional[str] = None) -> str:
        """Return the cache directory a source path is materialized into."""
        source = file_path or self.get_resolved_url() or ""
        return os.path.join(self.get_download_cache_dir(), md5_hex(source))

    async def download(self, url: Optional[str] = None, **_options: Any) -> DownloadResult:
        """
        Copy or expand the local source into its cache slot.

        Download options other than `url` do not apply to local sources and are ignored.

        Raises:
            UnknownSourceError: When there is no path, or the path is neither a file nor a directory.
            DepfetchFileSystemError: When the path does not exist or cannot be read.
        """
        file_path = url or self.get_resolved_url()
        if not file_path:
            raise UnknownSourceError("unknown file path", repo_type=self.type)

        self._debug("begin load package from local: %s...", file_path)

        loop = asyncio.get_running_loop()
        try:
            state = await loop.run_in_executor(None, os.stat, file_path)
        except OSError as e:
            raise DepfetchFileSystemError(
                f"Cannot access local package {file_path}", path=file_path, details=str(e)
            ) from e

        cache_dir = self.get_cache_slot(file_path)

        if stat.S_ISDIR(state.st_mode):
            result = await self.unpacker.copy_tree(file_path, cache_dir)
        elif stat.S_ISREG(state.st_mode):
            await loop.run_in_executor(None, remove_directory, cache_dir)
            result = await self.unpacker.expand(file_path, cache_dir)
        else:
            raise UnknownSourceError(
                f"Unsupported local source type: {file_path}", repo_type=self.type
            )

        self.resolved_url = file_path
        return DownloadResult(
            dir=result.decompress_dir,
            resolved_url=file_path,
            cache=False,
            name=self.pkg_name,
            version=self.pkg_version,
        )

    def get_install_source(self) -> InstallSource:
        return InstallSource(type=self.type, path=f"{self.type}:{self.file_path}")

    def get_dependency_endpoint(self) -> Optional[DependencyEndpoint]:
        return None
