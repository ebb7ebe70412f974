"""
Tests for the depfetch exception hierarchy.
"""

import pytest

from depfetch.exceptions import (
    ArchiveError,
    CacheMissError,
    ChecksumError,
    ConfigurationError,
    DecompressError,
    DepfetchError,
    DepfetchFileSystemError,
    DownloadError,
    HTTPError,
    NetworkError,
    NoMatchedVersionError,
    UnknownSourceError,
    UnsupportedOperationError,
)
from depfetch.repos.interfaces import FetchVersionOutcome, NoMatchedVersion, VersionRecord

pytestmark = pytest.mark.unit


class TestDepfetchError:
    """Test base DepfetchError exception."""

    def test_basic_message(self):
        error = DepfetchError("Something went wrong")
        assert str(error) == "Something went wrong"
        assert error.message == "Something went wrong"
        assert error.details is None

    def test_message_with_details(self):
        error = DepfetchError("Operation failed", details="Connection timeout")
        assert str(error) == "Operation failed - Connection timeout"

    @pytest.mark.parametrize(
        "error_class",
        [
            ConfigurationError,
            UnknownSourceError,
            UnsupportedOperationError,
            CacheMissError,
            DownloadError,
            DepfetchFileSystemError,
            ArchiveError,
        ],
    )
    def test_hierarchy(self, error_class):
        assert issubclass(error_class, DepfetchError)


class TestDownloadErrors:
    def test_download_error_defaults(self):
        error = DownloadError("failed")
        assert error.url is None
        assert error.retry_count == 0
        assert error.is_retryable is False

    def test_http_error(self):
        error = HTTPError("HTTP error 503", status_code=503, url="https://x", is_retryable=True)

        assert isinstance(error, DownloadError)
        assert error.status_code == 503
        assert error.is_retryable is True

    def test_network_error(self):
        assert issubclass(NetworkError, DownloadError)

    def test_checksum_error(self):
        error = ChecksumError("Checksum mismatch", expected="aa", actual="bb", url="https://x")

        assert str(error) == "Checksum mismatch - expected aa, got bb"
        assert error.is_retryable is False
        assert error.url == "https://x"


class TestSourceErrors:
    def test_unknown_source(self):
        error = UnknownSourceError("unknown download url", repo_type="url")
        assert error.repo_type == "url"

    def test_unsupported(self):
        error = UnsupportedOperationError("update is not available", operation="fetch_update_data")
        assert error.operation == "fetch_update_data"

    def test_decompress_error(self):
        error = DecompressError("bad archive", archive_path="/tmp/a.tgz", details="EOF")

        assert isinstance(error, ArchiveError)
        assert error.archive_path == "/tmp/a.tgz"
        assert str(error) == "bad archive - EOF"


class TestNoMatchedVersion:
    def test_from_outcome(self):
        failure = NoMatchedVersion(
            reason="No matched version for foo@2, candidates = 1.0.0, tags = n/a",
            requested="2",
            candidate_versions=["1.0.0"],
        )

        error = NoMatchedVersionError.from_outcome(failure)

        assert str(error) == failure.reason
        assert error.requested == "2"
        assert error.candidate_versions == ["1.0.0"]
        assert error.candidate_tags == []

    def test_outcome_requires_exactly_one(self):
        with pytest.raises(ValueError):
            FetchVersionOutcome()
        with pytest.raises(ValueError):
            FetchVersionOutcome(
                selected=VersionRecord(version="1.0.0"),
                error=NoMatchedVersion(reason="x"),
            )
