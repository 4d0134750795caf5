"""
Constants and configuration values for ghr-installer.

This module contains all hardcoded values, URLs, timeouts, and other constants
used throughout the application.
"""

APP_NAME = "ghr-installer"

# GitHub API URLs
GITHUB_API_BASE = "https://api.github.com/repos"
GITHUB_LATEST_RELEASE_URL = GITHUB_API_BASE + "/{repo}/releases/latest"

# Network timeouts and delays (in seconds)
GITHUB_API_TIMEOUT = 10
API_CALL_DELAY = 0.1  # Small delay to be respectful to GitHub API

# Download settings. Retries are disabled unless configured.
DEFAULT_CONNECT_RETRIES = 0
DEFAULT_BACKOFF_FACTOR = 0.3
DEFAULT_REQUEST_TIMEOUT = 30
DEFAULT_CHUNK_SIZE = 8192

# Cache configuration
DEFAULT_CACHE_TTL_SECONDS = 3600
ARTIFACT_MAX_AGE_DAYS = 30
RELEASE_CACHE_FILE = "api-cache.json"
RELEASE_CACHE_VERSION = "1.0"
ASSETS_CACHE_DIR_NAME = "assets"
ARTIFACT_META_SUFFIX = ".meta.json"

# Package database
DB_FILE_NAME = "packages.json"
DB_BACKUP_SUFFIX = ".backup"
DB_SCHEMA_VERSION = 1
LOCK_FILE_NAME = "ghr-installer.lock"
PACKAGE_SOURCE_GITHUB = "github"

# Installation layout (relative to the user's home directory)
DEFAULT_INSTALL_DIR = "~/.local/bin"
BASH_COMPLETION_DIR = "~/.local/share/bash-completion/completions"
ZSH_COMPLETION_DIR = "~/.local/share/zsh/site-functions"
MAN1_DIR = "~/.local/share/man/man1"
SHELL_RC_FILES = {
    "bash": "~/.bashrc",
    "zsh": "~/.zshrc",
}
EXECUTABLE_PERMISSIONS = 0o755
PRIVATE_DIR_PERMISSIONS = 0o700

# Archive handling
SUPPORTED_ARCHIVE_EXTENSIONS = (".tar.gz", ".tgz", ".zip")
TAR_EXTENSIONS = (".tar.gz", ".tgz")
ZIP_EXTENSION = ".zip"

# Asset selection: ordered architecture patterns, most specific first
X86_64_ASSET_PATTERNS = (
    r"linux.*x86[_-]64",
    r"linux.*amd64",
    r"linux.*64.*bit",
    r"linux.*64",
    r"x86[_-]64.*linux",
    r"amd64.*linux",
    r"linux",
)
AARCH64_ASSET_PATTERNS = (
    r"linux.*aarch64",
    r"linux.*arm64",
    r"aarch64.*linux",
    r"arm64.*linux",
    r"linux",
)
ARCH_ALIASES = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "aarch64": "aarch64",
    "arm64": "aarch64",
}
# Keyword prefixes that disqualify an asset name for the given family.
ARCH_EXCLUDE_KEYWORDS = {
    "x86_64": (
        "aarch64",
        "arm",
        "386",
        "i386",
        "i686",
        "ppc64",
        "powerpc",
        "riscv",
        "s390",
        "mips",
        "loong",
        "musl",
        "alpine",
    ),
    "aarch64": (
        "x86",
        "amd64",
        "i386",
        "i686",
        "armv6",
        "armv7",
        "armhf",
        "armel",
        "386",
        "ppc64",
        "powerpc",
        "riscv",
        "s390",
        "mips",
        "loong",
        "musl",
        "alpine",
    ),
}
ASSET_EXCLUDE_SUFFIXES = (
    ".sha256",
    ".sha256sum",
    ".sha512",
    ".sha512sum",
    ".md5",
    ".sig",
    ".asc",
    ".pem",
    ".sbom",
    ".deb",
    ".rpm",
)
ASSET_EXCLUDE_KEYWORDS = ("checksum", "sha256sum", "sha512sum")

# Completion and man page discovery inside extracted archives
BASH_COMPLETION_MARKERS = ("bash-completion", "bash_completion", ".bash")
ZSH_COMPLETION_MARKERS = ("zsh-completion", "zsh_completion", ".zsh")
MAN_PAGE_SUFFIXES = (".1", ".1.gz")

# Version probing
BINARY_VERSION_PATTERN = r"[0-9]+\.[0-9]+\.[0-9]+"
BINARY_VERSION_TIMEOUT = 10

# Comparison statuses shown in the check table
STATUS_GITHUB = "GitHub"
STATUS_APT = "APT"
STATUS_EQUAL = "Equal"
STATUS_GITHUB_ONLY = "GitHub only"

# Install modes
INSTALL_MODE_NEWER = "newer"
INSTALL_MODE_GITHUB = "github"
INSTALL_MODE_APT = "apt"
INSTALL_MODES = (INSTALL_MODE_NEWER, INSTALL_MODE_GITHUB, INSTALL_MODE_APT)

# Configuration file names
CONFIG_FILE_NAME = "ghr-installer.yaml"
REPOS_FILE_NAME = "repos.txt"

# Logging configuration
LOGGER_NAME = "ghr_installer"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
INFO_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DEBUG_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s: %(message)s"
LOG_FILE_NAME = "ghr-installer.log"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
LOG_FILE_BACKUP_COUNT = 5

# Environment variable names
LOG_LEVEL_ENV_VAR = "GHR_INSTALLER_LOG_LEVEL"
GITHUB_TOKEN_ENV_VAR = "GITHUB_TOKEN"
