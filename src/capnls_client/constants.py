CAPNLS_COMMAND_NAME = "capnp-ls"
"""The bare command name of the language server, resolved via PATH at spawn time as a last resort."""

DEFAULT_SERVER_VERSION = "v0.0.1"
"""The release tag downloaded when no version is configured."""

RELEASES_BASE_URL = "https://github.com/trickstar0301/capnp-ls/releases/download"

DOWNLOAD_USER_AGENT = "capnls-client"
DOWNLOAD_ACCEPT = "application/octet-stream"
DEFAULT_DOWNLOAD_TIMEOUT = 30.0
"""Wall-clock budget, in seconds, for one complete download attempt."""
DOWNLOAD_CHUNK_SIZE = 64 * 1024

DEFAULT_SHUTDOWN_TIMEOUT = 5.0

CONFIG_SECTION = "capnp-ls-client"
CONFIG_FILE_ENCODING = "utf-8"

CAPNLS_LOG_FORMAT = "%(levelname)-5s %(asctime)-15s [%(threadName)s] %(name)s:%(funcName)s:%(lineno)d - %(message)s"
