"""Constants used in the project."""

from enum import Enum


class ExitCodes(Enum):
    """Exit codes for the broker itself.

    The exit code of a launched package manager is passed through unchanged;
    these only apply when the broker stops before handing off control.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    USAGE_ERROR = 1
    CONNECTION_ERROR = 2
    INTEGRITY_ERROR = 3


class PackageManagers(Enum):
    """Package managers supported by the program.

    Args:
        Enum (string): Package managers supported by the program.
    """

    NPM = "npm"
    PNPM = "pnpm"
    YARN = "yarn"


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    SUPPORTED_PACKAGE_MANAGERS = [
        PackageManagers.NPM.value,
        PackageManagers.PNPM.value,
        PackageManagers.YARN.value,
    ]

    ENV_PREFIX = "PMPIN_"
    ENV_HOME = "PMPIN_HOME"
    ENV_ROOT = "PMPIN_ROOT"
    ENV_ENABLE_NETWORK = "PMPIN_ENABLE_NETWORK"
    ENV_DEFAULT_TO_LATEST = "PMPIN_DEFAULT_TO_LATEST"
    ENV_ENABLE_STRICT = "PMPIN_ENABLE_STRICT"
    ENV_ENABLE_UNSAFE_CUSTOM_URLS = "PMPIN_ENABLE_UNSAFE_CUSTOM_URLS"
    ENV_INTEGRITY_KEYS = "PMPIN_INTEGRITY_KEYS"
    ENV_INTEGRITY_STRICT = "PMPIN_INTEGRITY_STRICT"
    ENV_NPM_REGISTRY = "PMPIN_NPM_REGISTRY"
    ENV_NPM_TOKEN = "PMPIN_NPM_TOKEN"
    ENV_NPM_USERNAME = "PMPIN_NPM_USERNAME"
    ENV_NPM_PASSWORD = "PMPIN_NPM_PASSWORD"
    ENV_NODE = "PMPIN_NODE"
    ENV_LAUNCH_MODE = "PMPIN_LAUNCH_MODE"
    ENV_ENV_FILE = "PMPIN_ENV_FILE"
    ENV_DEFINITIONS = "PMPIN_DEFINITIONS"
    ENV_HTTP_TIMEOUT = "PMPIN_HTTP_TIMEOUT"
    ENV_LOG_LEVEL = "PMPIN_LOG_LEVEL"
    ENV_DEBUG = "PMPIN_DEBUG"

    PACKAGE_JSON_FILE = "package.json"
    PACKAGE_MANAGER_FIELD = "packageManager"
    ENV_OVERLAY_FILE = ".pmpin.env"
    VENDOR_FOLDER = "node_modules"
    LAST_KNOWN_GOOD_FILE = "lastKnownGood.json"
    TEMP_PREFIX = "pmpin"
    CACHE_SUBFOLDER = "pmpin"

    REGISTRY_URL_NPM = "https://registry.npmjs.org"
    NPM_ABBREVIATED_ACCEPT = (
        "application/vnd.npm.install-v1+json; q=1.0, application/json; q=0.8, */*"
    )
    USER_AGENT = "pmpin/0.4.0"
    LOG_FORMAT = "[%(levelname)s] %(message)s"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for socket reads
    DOWNLOAD_CHUNK_SIZE = 64 * 1024

    LAUNCH_MODE_SPAWN = "spawn"
    LAUNCH_MODE_EXEC = "exec"
    TARBALL_EXTENSIONS = (".tgz", ".tar.gz")

    # npm registry signing keys, as published at /-/npm/v1/keys
    NPM_SIGNING_KEYS = [
        {
            "keyid": "SHA256:jl3bwswu80PjjokCgh0o2w5c2U4LhQAE57gj9cz1kzA",
            "key": (
                "MFkwEwYHKoZIzj0CAQYIKoZIzj0DAQcDQgAE1Olb3zMAFFxXKHiIkQO5cJ3Yhl5i6UPp"
                "+IhuteBJbuHcA5UogKo0EWtlWwW6KSaKoTNEYL7JlCQiVnkhBktUgg=="
            ),
        },
        {
            "keyid": "SHA256:DhQ8wR5APBvFHLF/+Tc+AYvPOdTpcIDqOhxsBHRwC7U",
            "key": (
                "MFkwEwYHKoZIzj0CAQYIKoZIzj0DAQcDQgAEY6Ya7W++7aUPzvMTrezH6Ycx3c+HOKYC"
                "cNGybJZSCJq/fd7Qa8uuAKtdIkUQtQiEKERhAmE5lMMJhP8OkDOa2g=="
            ),
        },
    ]
