"""Constants used in the project."""

from enum import Enum


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    FILE_ERROR = 1
    CONNECTION_ERROR = 2
    EXIT_WARNINGS = 3
    RESOLUTION_ERROR = 4
    SIGNATURE_ERROR = 5
    INSTALL_ERROR = 6
    USAGE_ERROR = 64


class SignaturePolicy(Enum):
    """Signature checking modes for downloaded indexes and artifacts.

    Args:
        Enum (string): Policy names accepted in configuration and on the CLI.
    """

    REQUIRED = "required"
    ALLOW_UNSIGNED = "allow-unsigned"
    OFF = "off"


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    DEFAULT_ARCHIVES = [
        ("gnu", "https://elpa.gnu.org/packages/"),
        ("nongnu", "https://elpa.nongnu.org/nongnu/"),
    ]
    LOG_FORMAT = "[%(levelname)s] %(message)s"
    LOG_LEVEL_ENV = "ELPM_LOG_LEVEL"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for all HTTP requests
    HTTP_RETRY_MAX = 3
    HTTP_RETRY_BASE_DELAY_SEC = 0.3
    USER_AGENT = "elpm/1.0"

    # Filesystem layout
    DEFAULT_PACKAGE_DIR = "~/.local/share/elpm/elpa"
    DEFAULT_CACHE_DIR = "~/.cache/elpm"
    DEFAULT_STATE_FILE = "~/.config/elpm/state.yml"
    ARCHIVE_CACHE_SUBDIR = "archives"
    ARCHIVE_CONTENTS_FILE = "archive-contents"
    SIGNATURE_SUFFIX = ".sig"
    SIGNED_MARKER_SUFFIX = ".signed"
    DESCRIPTION_SUFFIX = "-pkg.el"
    AUTOLOADS_SUFFIX = "-autoloads.el"
    SOURCE_SUFFIX = ".el"
    BUNDLE_SUFFIX = ".tar"

    # Archive index format version understood by the reader
    ARCHIVE_FORMAT_VERSION = 1

    # Host process the packages are activated into
    HOST_NAME = "emacs"
    HOST_VERSION = "29.1"

    SIGNATURE_POLICY = SignaturePolicy.ALLOW_UNSIGNED.value
    MAX_INDEX_BYTES = 32 * 1024 * 1024
