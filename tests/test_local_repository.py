"""
Tests for LocalRepository.
"""

import os

import pytest

from depfetch.exceptions import DepfetchFileSystemError, UnknownSourceError
from depfetch.repos.files import md5_hex
from depfetch.repos.local import LocalRepository

pytestmark = [pytest.mark.unit, pytest.mark.core_downloads]


@pytest.fixture
def package_dir(tmp_path):
    """A package directory with a nested file."""
    pkg = tmp_path / "src" / "my-pkg"
    (pkg / "lib").mkdir(parents=True)
    (pkg / "package.json").write_text('{"name": "my-pkg"}')
    (pkg / "lib" / "index.js").write_text("module.exports = {}")
    return pkg


class TestLocalRepositoryConstruction:
    """Test path resolution and descriptors."""

    def test_relative_path_resolved_against_cwd(self, repo_options, package_dir, monkeypatch):
        monkeypatch.chdir(package_dir.parent)

        repo = LocalRepository("./my-pkg", **repo_options)

        assert repo.resolved_path == str(package_dir)
        assert repo.get_resolved_url() == str(package_dir)
        assert repo.pkg_name == "my-pkg"

    def test_trailing_separator_keeps_name(self, repo_options, package_dir):
        repo = LocalRepository(f"{package_dir}{os.sep}", **repo_options)
        assert repo.pkg_name == "my-pkg"

    def test_descriptors(self, repo_options):
        repo = LocalRepository("../vendor/foo", **repo_options)

        assert repo.needs_resolve() is False
        assert repo.get_install_source().to_dict() == {
            "type": "local",
            "path": "local:../vendor/foo",
        }
        assert repo.get_dependency_endpoint() is None

    def test_same_path_same_slot(self, repo_options, package_dir):
        first = LocalRepository(str(package_dir), **repo_options)
        second = LocalRepository(str(package_dir), **repo_options)

        assert first.get_cache_slot() == second.get_cache_slot()
        assert os.path.basename(first.get_cache_slot()) == md5_hex(str(package_dir))

    def test_different_paths_different_slots(self, repo_options, tmp_path):
        first = LocalRepository(str(tmp_path / "a" / "pkg"), **repo_options)
        second = LocalRepository(str(tmp_path / "b" / "pkg"), **repo_options)

        assert first.pkg_name == second.pkg_name
        assert first.get_cache_slot() != second.get_cache_slot()


class TestLocalRepositoryDownload:
    """Test copying and expanding local sources."""

    @pytest.mark.asyncio
    async def test_directory_is_copied(self, repo_options, package_dir, cache_manager):
        repo = LocalRepository(str(package_dir), **repo_options)

        result = await repo.download()

        assert result.cache is False
        assert result.dir == repo.get_cache_slot()
        assert result.resolved_url == str(package_dir)
        assert result.name == "my-pkg"
        assert (
            open(os.path.join(result.dir, "lib", "index.js")).read()
            == "module.exports = {}"
        )
        assert cache_manager._load_repos_info() == {}

    @pytest.mark.asyncio
    async def test_second_copy_replaces_slot(self, repo_options, package_dir):
        repo = LocalRepository(str(package_dir), **repo_options)
        first = await repo.download()
        (package_dir / "lib" / "index.js").unlink()

        second = await repo.download()

        assert second.dir == first.dir
        assert not os.path.exists(os.path.join(second.dir, "lib", "index.js"))

    @pytest.mark.asyncio
    async def test_archive_is_expanded(self, repo_options, tmp_path, tarball_bytes):
        archive = tmp_path / "my-pkg-1.0.0.tgz"
        archive.write_bytes(tarball_bytes({"README.md": "# pkg"}))
        repo = LocalRepository(str(archive), **repo_options)

        result = await repo.download()

        assert result.dir == os.path.join(repo.get_cache_slot(), "package")
        assert os.path.isfile(os.path.join(result.dir, "README.md"))

    @pytest.mark.asyncio
    async def test_updated_archive_replaces_slot(self, repo_options, tmp_path, tarball_bytes):
        archive = tmp_path / "my-pkg.tgz"
        archive.write_bytes(tarball_bytes({"old.js": "1", "index.js": "v1"}))
        repo = LocalRepository(str(archive), **repo_options)
        first = await repo.download()

        archive.write_bytes(tarball_bytes({"index.js": "v2"}))
        second = await repo.download()

        assert second.dir == first.dir
        assert sorted(os.listdir(second.dir)) == ["index.js"]
        assert open(os.path.join(second.dir, "index.js")).read() == "v2"

    @pytest.mark.asyncio
    async def test_missing_path(self, repo_options, tmp_path):
        repo = LocalRepository(str(tmp_path / "nope"), **repo_options)

        with pytest.raises(DepfetchFileSystemError) as exc_info:
            await repo.download()

        assert exc_info.value.path == str(tmp_path / "nope")

    @pytest.mark.asyncio
    @pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="requires named pipes")
    async def test_special_file_is_unknown_source(self, repo_options, tmp_path):
        fifo = tmp_path / "pipe"
        os.mkfifo(fifo)
        repo = LocalRepository(str(fifo), **repo_options)

        with pytest.raises(UnknownSourceError):
            await repo.download()

    @pytest.mark.asyncio
    async def test_install_skips_resolve(self, repo_options, package_dir, fake_transport):
        repo = LocalRepository(str(package_dir), **repo_options)

        result = await repo.install()

        assert os.path.isfile(os.path.join(result.dir, "package.json"))
        assert fake_transport.fetch_calls == []
        assert fake_transport.json_calls == []
