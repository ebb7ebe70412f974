"""
Constants and configuration values for depfetch.

This module contains the hardcoded values, URLs, timeouts, directory names and
other constants used throughout the package acquisition core.
"""

# Repository (package origin) types
REPO_TYPE_LOCAL = "local"
REPO_TYPE_URL = "url"
REPO_TYPE_REGISTRY = "registry"
REPO_TYPE_GITHUB = "github"

# Registry and GitHub endpoints
DEFAULT_REGISTRY_URL = "https://registry.npmjs.org"
GITHUB_API_BASE = "https://api.github.com/repos"
GITHUB_CODELOAD_BASE = "https://codeload.github.com"
GITHUB_WEB_BASE = "https://github.com"
GITHUB_MAX_PER_PAGE = 100

# Download configuration defaults
DEFAULT_CONNECT_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0
DEFAULT_BACKOFF_FACTOR = 2.0
DEFAULT_REQUEST_TIMEOUT = 30
DEFAULT_CHUNK_SIZE = 8192
DEFAULT_MAX_CONCURRENT_DOWNLOADS = 5

HTTP_STATUS_ERROR_THRESHOLD = 400
HTTP_STATUS_RETRY_THRESHOLD = 500
HTTP_STATUS_TOO_MANY_REQUESTS = 429

BYTES_PER_MEGABYTE = 1024 * 1024
FILE_SIZE_MB_LOGGING_THRESHOLD = 1.0

# Cache layout
CACHE_APP_NAME = "depfetch"
COMPONENT_CACHE_DIR_NAME = "component"
OTHER_CACHE_DIR_NAME = "other"
REPOS_INFO_CACHE_FILE = "repos-info.json"
VERSION_INFO_CACHE_DIR_NAME = "versions"
VERSION_INFO_CACHE_EXPIRY_HOURS = 1.0

# Archive handling
ZIP_EXTENSION = ".zip"
COMPOUND_ARCHIVE_EXTENSIONS = (".tar.gz", ".tar.bz2", ".tar.xz")
TAR_EXTENSIONS = (".tar", ".tgz", ".tbz2", ".txz") + COMPOUND_ARCHIVE_EXTENSIONS

# Configuration file names
CONFIG_FILE_NAME = "depfetch.yaml"
CONFIG_ENV_PREFIX = "DEPFETCH_"

# Environment variable names
LOG_LEVEL_ENV_VAR = "DEPFETCH_LOG_LEVEL"
GITHUB_TOKEN_ENV_VAR = "GITHUB_TOKEN"

# Logging configuration
LOGGER_NAME = "depfetch"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
INFO_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DEBUG_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s: %(message)s"
LOG_FILE_NAME = "depfetch.log"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
LOG_FILE_BACKUP_COUNT = 5

# Version selection messages
NO_MATCHED_VERSION_TEMPLATE = (
    "No matched version for {package}, candidates = {candidates}, tags = {tags}"
)
EMPTY_CANDIDATES_PLACEHOLDER = "n/a"
