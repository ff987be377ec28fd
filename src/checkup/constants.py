"""
Constants and configuration values for Checkup.

This module contains hardcoded defaults, upstream URLs, timeouts, on-disk
file names and other constants used throughout the application.
"""

# Upstream API endpoints
GITHUB_API_BASE = "https://api.github.com/repos"
GITLAB_API_PATH = "api/v4/projects"
FORGEJO_API_PATH = "api/v1/repos"

DEFAULT_GITHUB_HOST = "github.com"
DEFAULT_GITLAB_HOST = "gitlab.com"

GITHUB_ACCEPT_HEADER = "application/vnd.github+json"
GITHUB_API_VERSION = "2022-11-28"

# Pagination
GITHUB_MAX_PER_PAGE = 100
GITLAB_MAX_PER_PAGE = 100
FORGEJO_PAGE_LIMIT = 50
MAX_RELEASE_PAGES = 10

# Network timeouts (in seconds) and connection limits
DEFAULT_REQUEST_TIMEOUT = 30
DEFAULT_CONNECTOR_LIMIT = 20
DEFAULT_LIMIT_PER_HOST = 5

HTTP_STATUS_RETRY_THRESHOLD = 500
RATE_LIMIT_REMAINING_DEFAULT = -1

# Cache settings
DEFAULT_CACHE_HOURS = 24
CACHE_REPO_DIR = "repo"
CACHE_JSON_FILE = "releases.json"
CACHE_HTML_FILE = "index.html"
CACHE_MARKER_FILE = "last_updated"
CACHE_READ_ATTEMPTS = 2
HTML_STAMP_META_NAME = "checkup-cached-at"

# Server defaults
DEFAULT_BIND_HOST = "127.0.0.1"
DEFAULT_BIND_PORT = 3000
PROCESSING_RETRY_AFTER_SECONDS = 5
DEFAULT_WARM_CONCURRENCY = 4

# HTTP response headers
CACHE_STATUS_HEADER = "X-Checkup-Cache"
REFRESH_ERROR_HEADER = "X-Checkup-Refresh-Error"

# Request path suffixes
LATEST_PATH_MARKER = "/latest."
CACHE_PATH_SUFFIX = "/cache"

# Archive suffixes recognised as a single extension
DOUBLE_EXTENSIONS = (".tar.gz", ".tar.bz2", ".tar.xz", ".tar.zst")

ARCHIVE_CONTENT_TYPES = {
    "tar.gz": "application/gzip",
    "tgz": "application/gzip",
    "tar.bz2": "application/x-bzip2",
    "tar.xz": "application/x-xz",
    "tar.zst": "application/zstd",
    "zip": "application/zip",
}

# cgit scraping
CGIT_TAGS_PATH = "refs/tags"
CGIT_SNAPSHOT_SEGMENT = "/snapshot/"
CGIT_TABLE_CLASS = "list"
CGIT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S %z"

# Configuration
CONFIG_FILE_NAME = "checkup.yaml"
APP_NAME = "checkup"

# Logging configuration
LOGGER_NAME = "checkup"
LOG_LEVEL_ENV_VAR = "CHECKUP_LOG_LEVEL"
LOG_FILE_NAME = "checkup.log"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
INFO_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DEBUG_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s: %(message)s"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
LOG_FILE_BACKUP_COUNT = 5
