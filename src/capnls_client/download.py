"""
Download of a single release artifact to a fixed target path.

A download attempt runs the stages request -> (at most one redirect hop) -> stream -> verify -> chmod
under a single wall-clock deadline. Every stage signals failure by raising a DownloadError; the
attempt converts it into a FetchOutcome and removes any partially written file in one place.
"""

import logging
import os
import stat
import threading
import time
from dataclasses import dataclass
from typing import Optional, Self
from urllib.parse import urljoin

import requests
from sensai.util.logging import LogTime
from sensai.util.string import ToStringMixin

from capnls_client.constants import DEFAULT_DOWNLOAD_TIMEOUT, DOWNLOAD_ACCEPT, DOWNLOAD_CHUNK_SIZE, DOWNLOAD_USER_AGENT
from capnls_client.exceptions import DownloadError, DownloadFailureKind
from capnls_client.platform_utils import PlatformId, PlatformUtils

log = logging.getLogger(__name__)

REDIRECT_STATUS_CODES = (301, 302)
_MB = 1024 * 1024


@dataclass(frozen=True)
class DownloadSpec:
    release_version: str
    platform_id: PlatformId
    target_path: str
    url: str

    @classmethod
    def for_platform(cls, release_version: str, platform_id: PlatformId | None, install_dir: str) -> Optional[Self]:
        """
        :return: the download spec for the given platform or None if the platform is not eligible for automatic download
        """
        artifact_name = PlatformUtils.get_release_artifact(platform_id)
        if artifact_name is None:
            return None
        assert platform_id is not None
        return cls(
            release_version=release_version,
            platform_id=platform_id,
            target_path=os.path.join(install_dir, PlatformUtils.binary_name(platform_id)),
            url=PlatformUtils.get_download_url(release_version, artifact_name),
        )


@dataclass(frozen=True)
class FetchOutcome:
    """
    The terminal state of one download attempt.
    """

    bytes_written: int = 0
    error: DownloadError | None = None

    @classmethod
    def success(cls, bytes_written: int) -> "FetchOutcome":
        return cls(bytes_written=bytes_written)

    @classmethod
    def failed(cls, error: DownloadError) -> "FetchOutcome":
        return cls(error=error)

    def is_success(self) -> bool:
        return self.error is None

    @property
    def failure_kind(self) -> DownloadFailureKind | None:
        return None if self.error is None else self.error.kind

    def raise_for_failure(self) -> None:
        """
        Raises the error of a failed outcome; does nothing for a successful one.
        """
        if self.error is not None:
            raise self.error


class _Deadline:
    def __init__(self, timeout: float) -> None:
        self._timeout = timeout
        self._end = time.monotonic() + timeout
        self._expired = False

    def expire(self) -> None:
        self._expired = True

    def is_expired(self) -> bool:
        return self._expired or time.monotonic() >= self._end

    def remaining(self) -> float:
        """
        :return: the remaining time in seconds
        :raises DownloadError: if the deadline has passed
        """
        remaining = self._end - time.monotonic()
        if remaining <= 0 or self._expired:
            raise self.timeout_error()
        return remaining

    def timeout_error(self, cause: Exception | None = None) -> DownloadError:
        return DownloadError(DownloadFailureKind.TIMEOUT, f"Download timed out after {self._timeout:g} seconds", cause=cause)


class _DownloadAttempt(ToStringMixin):
    def __init__(self, session: requests.Session, headers: dict[str, str], chunk_size: int, url: str, target_path: str, timeout: float):
        self._session = session
        self._headers = headers
        self._chunk_size = chunk_size
        self.url = url
        self.target_path = target_path
        self.deadline = _Deadline(timeout)
        self.file_opened = False
        self.bytes_written = 0
        self._response: requests.Response | None = None
        self._watchdog: threading.Timer | None = None

    def _tostring_includes(self) -> list[str]:
        return ["url", "target_path", "bytes_written"]

    def start_watchdog(self) -> None:
        """
        Arms a timer which expires the deadline when it passes and shuts down the connection of the response
        being read, so that a read blocked in the transport returns instead of waiting for more data.
        """
        self._watchdog = threading.Timer(self.deadline.remaining(), self._on_deadline)
        self._watchdog.daemon = True
        self._watchdog.start()

    def stop_watchdog(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    def _on_deadline(self) -> None:
        self.deadline.expire()
        response = self._response
        if response is None:
            return
        log.warning("Deadline passed while downloading from %s, aborting the transfer", response.url)
        try:
            # unblocks a pending socket read in the downloading thread; closing is left to that thread
            response.raw.shutdown()
        except (ValueError, RuntimeError, OSError) as e:
            log.debug("Could not shut down the connection to %s: %s", response.url, e)

    def _get(self, url: str) -> requests.Response:
        log.debug("Sending GET request to %s with headers %s", url, self._headers)
        try:
            response = self._session.get(url, headers=self._headers, stream=True, allow_redirects=False, timeout=self.deadline.remaining())
        except requests.Timeout as e:
            raise self.deadline.timeout_error(cause=e) from e
        except requests.RequestException as e:
            if self.deadline.is_expired():
                raise self.deadline.timeout_error(cause=e) from e
            raise DownloadError(DownloadFailureKind.NETWORK_ERROR, f"Error requesting {url}", cause=e) from e
        self._response = response
        if self.deadline.is_expired():
            response.close()
            raise self.deadline.timeout_error()
        log.debug("Received response with status code %s and headers %s", response.status_code, dict(response.headers))
        return response

    def request(self) -> requests.Response:
        """
        Issues the request, following at most one redirect hop explicitly.

        :return: the response with status 200, whose body has not yet been consumed
        """
        response = self._get(self.url)
        if response.status_code in REDIRECT_STATUS_CODES:
            location = response.headers.get("Location")
            status_code, reason = response.status_code, response.reason
            response.close()
            if not location:
                raise DownloadError(
                    DownloadFailureKind.REDIRECT_WITHOUT_LOCATION, f"Redirect location not found: {status_code} {reason}", status_code=status_code
                )
            redirect_url = urljoin(self.url, location)
            log.info("Following redirect to %s", redirect_url)
            response = self._get(redirect_url)
        if response.status_code != 200:
            status_code, reason = response.status_code, response.reason
            response.close()
            raise DownloadError(
                DownloadFailureKind.NON_SUCCESS_STATUS, f"Failed to download: {status_code} {reason}", status_code=status_code
            )
        return response

    def stream(self, response: requests.Response) -> None:
        """
        Writes the response body to the target path chunk by chunk.
        """
        reported_mb = 0
        try:
            with response:
                os.makedirs(os.path.dirname(self.target_path) or ".", exist_ok=True)
                with open(self.target_path, "wb") as f:
                    self.file_opened = True
                    for chunk in response.iter_content(chunk_size=self._chunk_size):
                        if self.deadline.is_expired():
                            raise self.deadline.timeout_error()
                        if not chunk:
                            continue
                        f.write(chunk)
                        self.bytes_written += len(chunk)
                        if self.bytes_written // _MB > reported_mb:
                            reported_mb = self.bytes_written // _MB
                            log.info("Downloaded %d MB...", reported_mb)
                    # a shut down connection without a declared length ends the body early instead of failing
                    if self.deadline.is_expired():
                        raise self.deadline.timeout_error()
        except requests.RequestException as e:
            # requests reports read timeouts during streaming as connection errors
            if isinstance(e, requests.Timeout) or self.deadline.is_expired():
                raise self.deadline.timeout_error(cause=e) from e
            raise DownloadError(DownloadFailureKind.NETWORK_ERROR, f"Error while downloading from {response.url}", cause=e) from e
        except OSError as e:
            raise DownloadError(DownloadFailureKind.FILESYSTEM_ERROR, f"Error writing {self.target_path}", cause=e) from e

    def verify(self) -> int:
        """
        :return: the size of the written file in bytes
        """
        try:
            size = os.stat(self.target_path).st_size
        except OSError as e:
            raise DownloadError(DownloadFailureKind.FILESYSTEM_ERROR, f"Error checking file size of {self.target_path}", cause=e) from e
        if size == 0:
            raise DownloadError(DownloadFailureKind.EMPTY_ARTIFACT, "Downloaded file is empty (0 bytes)")
        log.info("Downloaded file size: %d bytes", size)
        return size

    def make_executable(self) -> None:
        self.deadline.remaining()
        if os.name == "nt":
            return
        try:
            mode = os.stat(self.target_path).st_mode
            os.chmod(self.target_path, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        except OSError as e:
            raise DownloadError(DownloadFailureKind.FILESYSTEM_ERROR, f"Error making {self.target_path} executable", cause=e) from e

    def remove_partial_file(self) -> None:
        if not self.file_opened:
            return
        try:
            os.remove(self.target_path)
            log.info("Removed partial download at %s", self.target_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            log.error("Could not remove partial download at %s: %s", self.target_path, e)


class ArtifactDownloader:
    """
    Downloads release artifacts over HTTPS.
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        user_agent: str = DOWNLOAD_USER_AGENT,
        chunk_size: int = DOWNLOAD_CHUNK_SIZE,
    ) -> None:
        """
        :param session: the requests session to use; a new session is created if None
        :param user_agent: the User-Agent header to send (the release host rejects requests without one)
        :param chunk_size: the size of the chunks in which the response body is written to disk
        """
        self._session = session if session is not None else requests.Session()
        self._headers = {"User-Agent": user_agent, "Accept": DOWNLOAD_ACCEPT}
        self._chunk_size = chunk_size

    def download(self, url: str, target_path: str, timeout: float = DEFAULT_DOWNLOAD_TIMEOUT) -> FetchOutcome:
        """
        Downloads the file at the given URL to the given path and makes it executable.
        A failed outcome never leaves a file behind at the target path;
        a successful outcome leaves exactly one complete, executable file there.

        :param url: the URL to download from
        :param target_path: the absolute path of the file to create
        :param timeout: the wall-clock budget for the entire attempt, in seconds
        :return: the outcome of the attempt
        """
        attempt = _DownloadAttempt(self._session, self._headers, self._chunk_size, url, target_path, timeout)
        log.info("Downloading %s to %s", url, target_path)
        log.debug("Starting download attempt %s with timeout %s", attempt, timeout)
        success = False
        try:
            attempt.start_watchdog()
            with LogTime(f"Download of {url}", logger=log):
                response = attempt.request()
                attempt.stream(response)
                attempt.verify()
                attempt.make_executable()
            success = True
            log.info("Download completed and file made executable: %s", target_path)
            return FetchOutcome.success(attempt.bytes_written)
        except DownloadError as e:
            log.error("Download of %s failed: %s", url, e)
            return FetchOutcome.failed(e)
        finally:
            attempt.stop_watchdog()
            if not success:
                attempt.remove_partial_file()

    def fetch(self, spec: DownloadSpec, timeout: float = DEFAULT_DOWNLOAD_TIMEOUT) -> FetchOutcome:
        log.info("Downloading capnp-ls version %s for %s", spec.release_version, spec.platform_id.value)
        return self.download(spec.url, spec.target_path, timeout=timeout)
