"""
This module contains the exceptions raised while resolving and acquiring the language server.
"""

from enum import Enum


class CapnpClientException(Exception):
    def __init__(self, message: str, cause: Exception | None = None) -> None:
        """
        Initializes the exception with the given message.

        :param message: the message describing the exception
        :param cause: the original exception that caused this exception, if any
            (e.g. a requests.RequestException or an OSError raised during a download)
        """
        self.cause = cause
        super().__init__(message)

    def __str__(self) -> str:
        s = super().__str__()
        if self.cause:
            if "\n" in s:
                s += "\n"
            else:
                s += " "
            s += f"(caused by {self.cause})"
        return s


class ClientConfigError(CapnpClientException):
    pass


class ConfigurationMissingError(CapnpClientException):
    """
    Raised when there is no workspace root to resolve against. Nothing can be resolved in this case.
    """


class ServerPathNotFoundError(CapnpClientException):
    """
    Raised when an explicitly configured server path does not exist and the strict override policy applies.
    """

    def __init__(self, server_path: str) -> None:
        self.server_path = server_path
        super().__init__(
            f"Configured language server path {server_path} does not exist. "
            "Fix languageServer.path or set server_path_policy to 'fallback' to search for capnp-ls instead."
        )


class UnsupportedPlatformError(CapnpClientException):
    pass


class DownloadFailureKind(str, Enum):
    REDIRECT_WITHOUT_LOCATION = "redirect_without_location"
    NON_SUCCESS_STATUS = "non_success_status"
    EMPTY_ARTIFACT = "empty_artifact"
    TIMEOUT = "timeout"
    FILESYSTEM_ERROR = "filesystem_error"
    NETWORK_ERROR = "network_error"


class DownloadError(CapnpClientException):
    """
    Raised by the stages of a download attempt. All download errors are recoverable at the acquirer level.
    """

    def __init__(self, kind: DownloadFailureKind, message: str, status_code: int | None = None, cause: Exception | None = None) -> None:
        """
        :param kind: the kind of failure
        :param message: the message describing the failure
        :param status_code: the HTTP status code, for failures of kind NON_SUCCESS_STATUS
        :param cause: the original exception, if any
        """
        self.kind = kind
        self.status_code = status_code
        super().__init__(message, cause=cause)
