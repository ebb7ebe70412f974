"""
File Operations for the depfetch Repository Subsystem

This module provides file utilities (atomic writes, hashing, extension
inference, safe removal) and ArchiveUnpacker, the default Unpacker used to
expand downloaded packages.
"""

import asyncio
import hashlib
import json
import os
import shutil
import tarfile
import tempfile
import zipfile
from typing import Any, Callable, List, Optional
from urllib.parse import unquote, urlparse

from depfetch.constants import (
    COMPOUND_ARCHIVE_EXTENSIONS,
    TAR_EXTENSIONS,
    ZIP_EXTENSION,
)
from depfetch.exceptions import DecompressError, DepfetchFileSystemError
from depfetch.log_utils import logger

from .interfaces import Pathish, TransportResult, Unpacker, UnpackResult

_DIGEST_ALGORITHMS = {40: "sha1", 64: "sha256", 128: "sha512"}


def md5_hex(value: str) -> str:
    """Return the md5 hex digest of a string (used for stable cache slot names)."""
    return hashlib.md5(value.encode("utf-8")).hexdigest()


def sha1_hex(value: str) -> str:
    """Return the sha1 hex digest of a string."""
    return hashlib.sha1(value.encode("utf-8")).hexdigest()


def get_file_ext_name(url: Optional[str]) -> str:
    """
    Infer a file extension from a url or path.

    Query strings and fragments are ignored and compound archive extensions
    ('.tar.gz', '.tar.bz2', '.tar.xz') are kept whole.

    Returns:
        str: The extension including its leading dot, or an empty string.
    """
    if not url:
        return ""
    path = unquote(urlparse(url).path) if "://" in url else url
    name = os.path.basename(path.rstrip("/")).lower()
    for compound in COMPOUND_ARCHIVE_EXTENSIONS:
        if name.endswith(compound):
            return compound
    return os.path.splitext(name)[1]


def strip_ext_name(file_name: str) -> str:
    """Return `file_name` without its (possibly compound) extension."""
    ext = get_file_ext_name(file_name)
    if ext and file_name.lower().endswith(ext):
        return file_name[: -len(ext)]
    return file_name


def digest_for_checksum(file_path: Pathish, checksum: str) -> Optional[str]:
    """
    Hash a file with the algorithm implied by the length of `checksum`.

    40 hex characters select sha1, 64 sha256 and 128 sha512.

    Returns:
        The hex digest, or None if the file cannot be read or the checksum length is unknown.
    """
    algorithm = _DIGEST_ALGORITHMS.get(len(checksum.strip()))
    if algorithm is None:
        logger.warning("Unsupported checksum length %d", len(checksum.strip()))
        return None

    digest = hashlib.new(algorithm)
    try:
        with open(file_path, "rb") as f:
            for byte_block in iter(lambda: f.read(65536), b""):
                digest.update(byte_block)
    except OSError as e:
        logger.debug(f"Could not hash {file_path}: {e}")
        return None
    return digest.hexdigest()


def verify_checksum(file_path: Pathish, checksum: Optional[str]) -> bool:
    """Return True when no checksum is given or the file matches it."""
    if not checksum:
        return True
    actual = digest_for_checksum(file_path, checksum)
    return actual is not None and actual.lower() == checksum.strip().lower()


def rm_file(file_path: Optional[Pathish]) -> bool:
    """
    Remove a file if it exists.

    Returns:
        bool: `False` if removal failed, `True` otherwise (including when there was nothing to remove).
    """
    if not file_path:
        return True
    try:
        if os.path.isfile(file_path):
            os.remove(file_path)
            logger.debug(f"Removed file {file_path}")
    except OSError as e:
        logger.error(f"Error removing file {file_path}: {e}")
        return False
    return True


def _is_within_base(real_base_dir: str, candidate: str) -> bool:
    try:
        return os.path.commonpath([real_base_dir, candidate]) == real_base_dir
    except ValueError:
        return False


def safe_extract_path(extract_dir: str, member_name: str) -> str:
    """
    Resolve a safe absolute extraction path and prevent directory traversal.

    Raises:
        ValueError: If the member would land outside extract_dir.
    """
    if not member_name or "\x00" in member_name:
        raise ValueError(f"Invalid archive member name {member_name!r}")
    real_extract_dir = os.path.realpath(extract_dir)
    normalized_path = os.path.realpath(os.path.join(real_extract_dir, member_name))

    if not _is_within_base(real_extract_dir, normalized_path):
        raise ValueError(
            f"Unsafe extraction path '{member_name}' is outside base '{extract_dir}'"
        )
    return normalized_path


def _atomic_write(
    file_path: str, writer_func: Callable[[Any], None], suffix: str = ".tmp"
) -> bool:
    """
    Write data to a file atomically via a temporary sibling file and os.replace.

    Returns:
        bool: `True` if the write and replace succeeded, `False` on any error.
    """
    directory = os.path.dirname(file_path) or "."
    try:
        os.makedirs(directory, exist_ok=True)
        temp_fd, temp_path = tempfile.mkstemp(dir=directory, prefix="tmp-", suffix=suffix)
    except OSError as e:
        logger.error(f"Could not create temporary file for {file_path}: {e}")
        return False

    try:
        with os.fdopen(temp_fd, "w", encoding="utf-8") as temp_f:
            writer_func(temp_f)
        os.replace(temp_path, file_path)
    except (UnicodeEncodeError, OSError, TypeError, ValueError) as e:
        logger.error(f"Could not write to {file_path}: {e}")
        return False
    finally:
        if os.path.exists(temp_path):
            try:
                os.remove(temp_path)
            except OSError:
                pass
    return True


def _atomic_write_json(file_path: str, data: Any) -> bool:
    """Atomically write `data` to `file_path` as pretty-printed JSON."""
    return _atomic_write(
        file_path, lambda f: json.dump(data, f, indent=2), suffix=".json"
    )


def _single_root_dir(directory: str) -> str:
    """
    Return the only child of `directory` when it is a lone sub-directory.

    Package archives usually wrap their content in one folder ('package/' for
    registry tarballs, '<repo>-<sha>/' for GitHub tarballs).
    """
    try:
        entries = [e for e in os.listdir(directory) if not e.startswith(".")]
    except OSError:
        return directory
    if len(entries) == 1:
        candidate = os.path.join(directory, entries[0])
        if os.path.isdir(candidate) and not os.path.islink(candidate):
            return candidate
    return directory


def _extract_zip(archive_path: str, target_dir: str) -> List[str]:
    extracted = []
    with zipfile.ZipFile(archive_path, "r") as zip_ref:
        for file_info in zip_ref.infolist():
            try:
                extract_path = safe_extract_path(target_dir, file_info.filename)
            except ValueError as e:
                logger.warning(f"Skipping unsafe archive member: {e}")
                continue

            if file_info.is_dir():
                os.makedirs(extract_path, exist_ok=True)
                continue

            os.makedirs(os.path.dirname(extract_path), exist_ok=True)
            with zip_ref.open(file_info) as source, open(extract_path, "wb") as target:
                shutil.copyfileobj(source, target)
            extracted.append(extract_path)
    return extracted


def _extract_tar(archive_path: str, target_dir: str) -> List[str]:
    extracted = []
    with tarfile.open(archive_path, "r:*") as tar_ref:
        for member in tar_ref.getmembers():
            if not (member.isfile() or member.isdir()):
                logger.debug(f"Skipping non-regular archive member {member.name}")
                continue
            try:
                extract_path = safe_extract_path(target_dir, member.name)
            except ValueError as e:
                logger.warning(f"Skipping unsafe archive member: {e}")
                continue

            if member.isdir():
                os.makedirs(extract_path, exist_ok=True)
                continue

            os.makedirs(os.path.dirname(extract_path), exist_ok=True)
            source = tar_ref.extractfile(member)
            if source is None:
                continue
            with source, open(extract_path, "wb") as target:
                shutil.copyfileobj(source, target)
            if member.mode & 0o111:
                try:
                    os.chmod(extract_path, 0o755)
                except OSError:
                    pass
            extracted.append(extract_path)
    return extracted


def expand_archive(archive_path: str, target_dir: str) -> str:
    """
    Expand an archive into `target_dir` (blocking).

    The format is chosen from the file name; unnamed files are sniffed as zip
    first, then tar.

    Returns:
        str: The directory holding the package content.

    Raises:
        DecompressError: On unknown formats or unreadable archives.
    """
    name = archive_path.lower()
    os.makedirs(target_dir, exist_ok=True)
    try:
        if name.endswith(ZIP_EXTENSION):
            files = _extract_zip(archive_path, target_dir)
        elif name.endswith(TAR_EXTENSIONS):
            files = _extract_tar(archive_path, target_dir)
        elif zipfile.is_zipfile(archive_path):
            files = _extract_zip(archive_path, target_dir)
        elif tarfile.is_tarfile(archive_path):
            files = _extract_tar(archive_path, target_dir)
        else:
            raise DecompressError(
                f"Unsupported archive format: {os.path.basename(archive_path)}",
                archive_path=archive_path,
            )
    except (zipfile.BadZipFile, tarfile.TarError, EOFError, OSError) as e:
        raise DecompressError(
            f"Error extracting archive {archive_path}",
            archive_path=archive_path,
            details=str(e),
        ) from e

    logger.debug(f"Extracted {len(files)} files from {archive_path} to {target_dir}")
    return _single_root_dir(target_dir)


def remove_directory(directory: str) -> None:
    """
    Remove `directory` and everything below it (blocking); a missing directory is fine.

    Raises:
        DepfetchFileSystemError: If the directory cannot be removed.
    """
    try:
        if os.path.isdir(directory):
            shutil.rmtree(directory)
    except OSError as e:
        raise DepfetchFileSystemError(
            f"Error removing directory {directory}", path=directory, details=str(e)
        ) from e


def copy_directory(source_dir: str, target_dir: str) -> str:
    """
    Recursively copy `source_dir` into `target_dir` (blocking).

    Existing content of `target_dir` is replaced.

    Raises:
        DepfetchFileSystemError: If the copy fails.
    """
    remove_directory(target_dir)
    try:
        shutil.copytree(source_dir, target_dir, symlinks=True)
    except (OSError, shutil.Error) as e:
        raise DepfetchFileSystemError(
            f"Error copying directory {source_dir}", path=source_dir, details=str(e)
        ) from e
    return target_dir


class ArchiveUnpacker(Unpacker):
    """
    Default Unpacker: zip and tar-family archives, plus plain directory copies.

    Extraction runs in the default executor so the event loop is not blocked.
    """

    async def expand(
        self,
        source: Pathish,
        target_dir: Pathish,
        extra: Optional[TransportResult] = None,
    ) -> UnpackResult:
        loop = asyncio.get_running_loop()
        source_path = str(source)
        if not os.path.isfile(source_path):
            raise DecompressError(
                f"Archive not found: {source_path}", archive_path=source_path
            )
        decompress_dir = await loop.run_in_executor(
            None, expand_archive, source_path, str(target_dir)
        )
        return UnpackResult(decompress_dir=decompress_dir, extra=extra)

    async def copy_tree(self, source_dir: Pathish, target_dir: Pathish) -> UnpackResult:
        loop = asyncio.get_running_loop()
        copied = await loop.run_in_executor(
            None, copy_directory, str(source_dir), str(target_dir)
        )
        return UnpackResult(decompress_dir=copied)
