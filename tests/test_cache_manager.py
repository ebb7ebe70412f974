"""
Tests for CacheManager, the on-disk cache gateway.
"""

import json
import os
from datetime import datetime, timedelta, timezone

import pytest

from depfetch.exceptions import CacheMissError
from depfetch.repos.cache import CacheManager
from depfetch.repos.github import GitHubRepository
from depfetch.repos.interfaces import CacheEntry
from depfetch.repos.registry import RegistryRepository
from depfetch.repos.repository import Repository

pytestmark = [pytest.mark.unit, pytest.mark.core_downloads]


class _Repo(Repository):
    def __init__(self, cache, name="foo", version=None, url=None, meta=None, origin=""):
        super().__init__("stub", name=name, version=version, cache=cache, config={})
        self.url = url
        self.meta_data_url = meta
        self.origin = origin

    def get_repos_url(self):
        return self.origin


def _entry(cache_manager, name, version, file_name, uri=None, origin=None):
    directory = cache_manager.get_cache_dir(True, "stub")
    path = os.path.join(directory, file_name)
    with open(path, "wb") as f:
        f.write(b"x")
    return CacheEntry(
        uri=uri or f"stub:{name}@{version}",
        name=name,
        version=version,
        resolved=f"https://x.example.com/{file_name}",
        file=path,
        origin=origin,
    )


class TestCacheLayout:
    def test_default_cache_dir_uses_platformdirs(self):
        import platformdirs

        manager = CacheManager()

        assert manager.cache_dir == platformdirs.user_cache_dir("depfetch")
        assert os.path.isdir(manager.cache_dir)

    def test_cache_dir_scopes(self, cache_manager):
        component = cache_manager.get_cache_dir(True, "registry")
        other = cache_manager.get_cache_dir(False, "registry")

        assert component == os.path.join(cache_manager.cache_dir, "component", "registry")
        assert other == os.path.join(cache_manager.cache_dir, "other", "registry")
        assert os.path.isdir(component) and os.path.isdir(other)


class TestDownloadUri:
    @pytest.mark.parametrize(
        "version, expected",
        [
            ("1.2.3", "stub:foo@1.2.3"),
            ("^1.2.3", None),
            ("latest", None),
            (None, None),
        ],
    )
    def test_download_uri(self, cache_manager, version, expected):
        repo = _Repo(cache_manager, version=version)
        assert cache_manager.get_download_uri(repo) == expected

    def test_resolved_version_wins(self, cache_manager):
        repo = _Repo(cache_manager, version="^1.0.0")
        repo.resolved_version = "1.4.0"

        assert cache_manager.get_download_uri(repo) == "stub:foo@1.4.0"


class TestRepositoryEntries:
    def test_store_and_lookup(self, cache_manager):
        entry = _entry(cache_manager, "foo", "1.0.0", "a.tgz")
        cache_manager.cache_repos_info(entry)

        found = cache_manager.get_cache_repos_info(_Repo(cache_manager, version="1.0.0"))

        assert found == entry
        stored = json.load(open(cache_manager.repos_info_file))
        assert "cached_at" in stored["stub:foo@1.0.0"]

    def test_lookup_by_url(self, cache_manager):
        url = "https://x.example.com/foo.tgz"
        entry = _entry(cache_manager, "foo", None, "foo.tgz", uri=url)
        cache_manager.cache_repos_info(entry)

        assert cache_manager.get_cache_repos_info(_Repo(cache_manager, url=url)) == entry

    def test_latest_fallback(self, cache_manager):
        older = _entry(cache_manager, "foo", "1.0.0", "a.tgz")
        newer = _entry(cache_manager, "foo", "1.1.0", "b.tgz")
        unrelated = _entry(cache_manager, "bar", "9.0.0", "c.tgz")
        for entry in (older, newer, unrelated):
            cache_manager.cache_repos_info(entry)

        repo = _Repo(cache_manager)

        assert cache_manager.get_cache_repos_info(repo) is None
        assert cache_manager.get_cache_repos_info(repo, latest=True) == newer

    def test_latest_ignored_when_version_requested(self, cache_manager):
        cache_manager.cache_repos_info(_entry(cache_manager, "foo", "1.0.0", "a.tgz"))

        repo = _Repo(cache_manager, version="2.0.0")

        assert cache_manager.get_cache_repos_info(repo, latest=True) is None

    def test_remove(self, cache_manager):
        entry = _entry(cache_manager, "foo", "1.0.0", "a.tgz")
        cache_manager.cache_repos_info(entry)

        cache_manager.remove_repos_info_cache(_Repo(cache_manager, version="1.0.0"))

        assert cache_manager.get_cache_repos_info(_Repo(cache_manager, version="1.0.0")) is None
        # Removing again is a no-op
        cache_manager.remove_repos_info_cache(_Repo(cache_manager, version="1.0.0"))

    def test_corrupt_index_is_empty(self, cache_manager):
        with open(cache_manager.repos_info_file, "w") as f:
            f.write("{not json")

        assert cache_manager.get_cache_repos_info(_Repo(cache_manager, version="1.0.0")) is None


class TestOriginScopedEntries:
    """Same-named packages from different origins never share an entry."""

    def test_download_uri_includes_origin(self, cache_manager):
        repo = _Repo(cache_manager, version="1.0.0", origin="https://github.com/alice/utils")

        assert cache_manager.get_download_uri(repo) == (
            "stub:https://github.com/alice/utils#foo@1.0.0"
        )

    def test_other_origin_misses(self, cache_manager):
        alice = _Repo(cache_manager, version="1.0.0", origin="https://github.com/alice/utils")
        bob = _Repo(cache_manager, version="1.0.0", origin="https://github.com/bob/utils")
        cache_manager.cache_repos_info(
            _entry(
                cache_manager,
                "foo",
                "1.0.0",
                "alice.tgz",
                uri=cache_manager.get_download_uri(alice),
                origin=alice.get_repos_url(),
            )
        )

        assert cache_manager.get_cache_repos_info(alice) is not None
        assert cache_manager.get_cache_repos_info(bob) is None

    def test_latest_matches_origin(self, cache_manager):
        registry = "https://npm.corp.example.com"
        public = _entry(
            cache_manager, "foo", "2.0.0", "public.tgz", origin="https://registry.npmjs.org"
        )
        corp = _entry(cache_manager, "foo", "1.0.0", "corp.tgz", origin=registry)
        cache_manager.cache_repos_info(corp)
        cache_manager.cache_repos_info(public)

        found = cache_manager.get_cache_repos_info(
            _Repo(cache_manager, origin=registry), latest=True
        )

        assert found == corp

    @pytest.mark.asyncio
    async def test_github_owners_do_not_share_cache(
        self, repo_options, fake_transport, tarball_bytes
    ):
        archive_url = "https://codeload.github.com/alice/utils/tar.gz/1.0.0"
        fake_transport.payloads[archive_url] = tarball_bytes({"owner.txt": "alice"})
        await GitHubRepository("alice/utils", "1.0.0", **repo_options).download(archive_url)

        bob = GitHubRepository("bob/utils", "1.0.0", **repo_options)

        with pytest.raises(CacheMissError):
            await bob.read_from_cache()

    @pytest.mark.asyncio
    async def test_registries_do_not_share_cache(
        self, repo_options, fake_transport, tarball_bytes
    ):
        tarball = "https://registry.npmjs.org/foo/-/foo-1.0.0.tgz"
        fake_transport.payloads[tarball] = tarball_bytes({"index.js": "public"})
        await RegistryRepository("foo", "1.0.0", **repo_options).download(tarball)

        corp = RegistryRepository(
            "foo", "1.0.0", registry="https://npm.corp.example.com", **repo_options
        )

        with pytest.raises(CacheMissError):
            await corp.read_from_cache()


class TestVersionIndexCache:
    def test_round_trip(self, cache_manager):
        repo = _Repo(cache_manager, meta="https://registry.example.com/foo")
        index = {"versions": {"1.0.0": {}}, "dist-tags": {"latest": "1.0.0"}}

        cache_manager.cache_version_info(repo, index)

        assert cache_manager.get_cache_version_info(repo) == index

    def test_list_index(self, cache_manager):
        repo = _Repo(cache_manager, meta="https://api.github.com/repos/a/b/tags")
        cache_manager.cache_version_info(repo, [{"name": "v1.0.0"}])

        assert cache_manager.get_cache_version_info(repo) == [{"name": "v1.0.0"}]

    def test_without_meta_data_url(self, cache_manager):
        repo = _Repo(cache_manager)
        cache_manager.cache_version_info(repo, {"versions": []})

        assert cache_manager.get_cache_version_info(repo) is None

    def test_expired(self, tmp_path):
        manager = CacheManager(str(tmp_path / "cache"), version_info_expiry_hours=0)
        repo = _Repo(manager, meta="https://registry.example.com/foo")
        manager.cache_version_info(repo, {"versions": {}})

        assert manager.get_cache_version_info(repo) is None

    def test_read_cache_with_expiry_naive_timestamp(self, cache_manager, tmp_path):
        cache_file = str(tmp_path / "c.json")
        future = (datetime.now(timezone.utc) + timedelta(hours=1)).replace(tzinfo=None)
        with open(cache_file, "w") as f:
            json.dump({"data": 1, "expires_at": future.isoformat()}, f)

        assert cache_manager.read_cache_with_expiry(cache_file) == 1
