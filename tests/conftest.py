import asyncio
import copy
import io
import tarfile
from pathlib import Path
from unittest.mock import AsyncMock

import platformdirs
import pytest

from depfetch.exceptions import HTTPError
from depfetch.repos.files import sha1_hex
from depfetch.repos.interfaces import Transport, TransportResult

_ASYNC_NETWORK_BLOCK_MSG = (
    "Async network access is blocked during tests. Mock aiohttp.ClientSession."
)


async def _async_block_network(*_args, **_kwargs):
    """
    Prevent async network calls during tests by raising a RuntimeError.

    Raises:
        RuntimeError: `_ASYNC_NETWORK_BLOCK_MSG` explaining that async network access is blocked and suggesting mocking `aiohttp.ClientSession`.
    """
    raise RuntimeError(_ASYNC_NETWORK_BLOCK_MSG)


def pytest_configure(config):
    """Register the markers used by the depfetch test suite."""
    config.addinivalue_line("markers", "unit: fast, isolated unit tests")
    config.addinivalue_line(
        "markers", "core_downloads: download, cache and version selection behavior"
    )
    config.addinivalue_line(
        "markers", "integration: tests exercising several components together"
    )
    config.addinivalue_line("markers", "configuration: configuration loading tests")


@pytest.fixture(autouse=True)
def _isolate_test_environment(tmp_path_factory, monkeypatch):
    """
    Point every platformdirs location at a temporary directory and clear depfetch environment overrides.

    Keeps tests from reading the developer's configuration or writing into the real user cache.
    """
    base = tmp_path_factory.mktemp("depfetch")
    cache_dir = base / "cache"
    config_dir = base / "config"
    state_dir = base / "state"

    for path in (cache_dir, config_dir, state_dir):
        path.mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("XDG_CACHE_HOME", str(cache_dir))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_dir))
    monkeypatch.setenv("XDG_STATE_HOME", str(state_dir))

    monkeypatch.setattr(
        platformdirs, "user_cache_dir", lambda *_args, **_kwargs: str(cache_dir)
    )
    monkeypatch.setattr(
        platformdirs, "user_config_dir", lambda *_args, **_kwargs: str(config_dir)
    )
    monkeypatch.setattr(
        platformdirs, "user_state_dir", lambda *_args, **_kwargs: str(state_dir)
    )

    from depfetch.config import DEFAULT_CONFIG

    for key in DEFAULT_CONFIG:
        monkeypatch.delenv(f"DEPFETCH_{key}", raising=False)
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)


def pytest_runtest_setup():
    """
    Prevent real network requests during tests.

    Replaces aiohttp's top-level request and ClientSession HTTP methods with an async blocker.
    """
    import aiohttp

    aiohttp.request = _async_block_network
    aiohttp.ClientSession.request = _async_block_network  # type: ignore[assignment]
    aiohttp.ClientSession.get = _async_block_network  # type: ignore[assignment]
    aiohttp.ClientSession.post = _async_block_network  # type: ignore[assignment]
    aiohttp.ClientSession.head = _async_block_network  # type: ignore[assignment]


# =============================================================================
# Collaborator Fakes
# =============================================================================


class FakeTransport(Transport):
    """
    In-memory Transport.

    `payloads` maps download urls to file bytes and `documents` maps metadata
    urls to JSON values. Files are written with the same `<sha1(url)><ext>`
    naming AsyncTransport uses, so cache reuse behaves the same way.
    """

    def __init__(self, payloads=None, documents=None, delay=0.0):
        self.payloads = dict(payloads or {})
        self.documents = dict(documents or {})
        self.delay = delay
        self.fetch_calls = []
        self.json_calls = []
        self.closed = False

    async def fetch(
        self,
        url,
        *,
        target,
        ext_name="",
        shasum=None,
        use_cache=True,
        headers=None,
        progress_callback=None,
    ):
        self.fetch_calls.append(
            {"url": url, "ext_name": ext_name, "shasum": shasum, "headers": headers}
        )
        target_file = Path(target) / f"{sha1_hex(url)}{ext_name}"
        if use_cache and target_file.is_file():
            return TransportResult(temp_file=str(target_file), cache=True)

        if self.delay:
            await asyncio.sleep(self.delay)
        if url not in self.payloads:
            raise HTTPError("HTTP error 404", status_code=404, url=url)

        target_file.parent.mkdir(parents=True, exist_ok=True)
        target_file.write_bytes(self.payloads[url])
        if progress_callback:
            size = len(self.payloads[url])
            progress_callback(size, size, target_file.name)
        return TransportResult(temp_file=str(target_file), cache=False)

    async def fetch_json(self, url, headers=None):
        self.json_calls.append({"url": url, "headers": headers})
        if url not in self.documents:
            raise HTTPError("HTTP error 404", status_code=404, url=url)
        return copy.deepcopy(self.documents[url])

    async def close(self):
        self.closed = True


def build_tarball(files, root="package"):
    """
    Build a gzipped tarball in memory.

    Parameters:
        files (dict): Relative file names mapped to text content.
        root (str): Top-level directory wrapping the files, as registry tarballs do.

    Returns:
        bytes: The archive content.
    """
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for name, content in files.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(name=f"{root}/{name}" if root else name)
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


@pytest.fixture
def fake_transport():
    """Provide an empty FakeTransport; tests fill `payloads` and `documents`."""
    return FakeTransport()


@pytest.fixture
def tarball_bytes():
    """Provide a factory building gzipped package tarballs in memory."""
    return build_tarball


@pytest.fixture
def cache_manager(tmp_path):
    """Provide a CacheManager rooted in a per-test directory."""
    from depfetch.repos.cache import CacheManager

    return CacheManager(str(tmp_path / "cache"))


@pytest.fixture
def repo_options(cache_manager, fake_transport):
    """
    Keyword arguments wiring a repository to the test cache and fake transport.

    The real ArchiveUnpacker is used so archives are actually expanded.
    """
    from depfetch.repos.files import ArchiveUnpacker

    return {
        "cache": cache_manager,
        "transport": fake_transport,
        "unpacker": ArchiveUnpacker(),
    }


# =============================================================================
# aiohttp Fixtures
# =============================================================================


@pytest.fixture
def mock_aiohttp_session(mocker):
    """
    Provide a mock aiohttp.ClientSession for testing async HTTP operations.

    Yields a MagicMock configured with the aiohttp.ClientSession spec and with `closed` set to False.
    """
    import aiohttp

    mock_session = mocker.MagicMock(spec=aiohttp.ClientSession)
    mock_session.closed = False
    yield mock_session


@pytest.fixture
def mock_async_response(mocker):
    """
    Provide a factory that creates configured mock aiohttp.ClientResponse objects for tests.

    Returns:
        factory (callable): Builds a response mock with `status`, `headers`, an async
        `text()` returning `text`, and `content.iter_chunked` yielding `content_chunks`.
    """

    def _create_response(status=200, headers=None, text="", content_chunks=None):
        import aiohttp

        response = AsyncMock(spec=aiohttp.ClientResponse)
        response.status = status
        response.headers = headers or {}
        response.text = AsyncMock(return_value=text)

        async def _async_iter_chunks():
            for chunk in content_chunks or []:
                yield chunk

        mock_content = mocker.MagicMock()
        mock_content.iter_chunked = mocker.Mock(return_value=_async_iter_chunks())
        response.content = mock_content
        return response

    return _create_response


@pytest.fixture
def attach_response(mocker):
    """
    Provide a helper that makes `session.get(...)` usable as an async context manager yielding `response`.
    """

    def _attach(session, *responses):
        contexts = []
        for response in responses:
            context = mocker.MagicMock()
            context.__aenter__ = AsyncMock(return_value=response)
            context.__aexit__ = AsyncMock(return_value=False)
            contexts.append(context)
        session.get = mocker.Mock(side_effect=contexts)
        return session

    return _attach
