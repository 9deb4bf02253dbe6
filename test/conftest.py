import logging
import os
import time
from collections.abc import Iterator
from typing import Any

import pytest
import requests
from requests.structures import CaseInsensitiveDict
from sensai.util.logging import configure

configure(level=logging.INFO)

log = logging.getLogger(__name__)


class FakeRawResponse:
    def __init__(self) -> None:
        self.shut_down = False

    def shutdown(self) -> None:
        self.shut_down = True


class FakeResponse:
    """
    Stands in for a streamed requests.Response.
    """

    def __init__(
        self,
        status_code: int = 200,
        body: list[bytes] | None = None,
        headers: dict[str, str] | None = None,
        reason: str = "OK",
        url: str = "",
        chunk_delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        """
        :param status_code: the HTTP status code
        :param body: the chunks of the response body
        :param headers: the response headers
        :param reason: the reason phrase
        :param url: the URL of the response
        :param chunk_delay: the delay, in seconds, before each chunk is yielded
        :param error: an exception to raise after all chunks have been yielded
        """
        self.status_code = status_code
        self.reason = reason
        self.headers = CaseInsensitiveDict(headers or {})
        self.url = url
        self._body = body or []
        self._chunk_delay = chunk_delay
        self._error = error
        self.raw = FakeRawResponse()
        self.closed = False

    def iter_content(self, chunk_size: int = 1) -> Iterator[bytes]:
        for chunk in self._body:
            if self._chunk_delay:
                time.sleep(self._chunk_delay)
            yield chunk
        if self._error is not None:
            raise self._error

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class FakeSession(requests.Session):
    """
    A requests session which answers GET requests from a table of canned responses (or exceptions) by URL.
    """

    def __init__(self, responses: dict[str, FakeResponse | Exception]) -> None:
        super().__init__()
        self._responses = responses
        self.requests: list[tuple[str, dict[str, Any]]] = []

    def get(self, url: str | bytes, **kwargs: Any) -> Any:  # type: ignore[override]
        url = str(url)
        self.requests.append((url, kwargs))
        response = self._responses[url]
        if isinstance(response, Exception):
            raise response
        response.url = url
        return response

    @property
    def requested_urls(self) -> list[str]:
        return [url for url, _ in self.requests]


def make_executable_file(path: str, content: bytes = b"#!/bin/sh\n") -> str:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(content)
    os.chmod(path, 0o755)
    return path


@pytest.fixture
def install_dir(tmp_path) -> str:
    """An empty installation directory."""
    path = tmp_path / "install"
    path.mkdir()
    return str(path)


@pytest.fixture
def fake_response() -> type[FakeResponse]:
    return FakeResponse


@pytest.fixture
def fake_session() -> type[FakeSession]:
    return FakeSession


@pytest.fixture
def executable_file():
    return make_executable_file
