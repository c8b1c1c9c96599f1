"""
jenkinscli Full Duplex HTTP
A duplex byte stream made of two long-lived POST requests.

- download: response body streamed server -> client
- upload: chunked request body streamed client -> server, fed from a queue
  by a dedicated thread

Both carry the same random Session header so the server can pair them.
"""

import io
import logging
import queue
import threading
import uuid
from typing import Dict, Optional

import httpx

from .errors import ConnectFailure
from .protocol import CRUMB_PATH, DUPLEX_HEADER, SESSION_HEADER, SIDE_HEADER

LOGGER = logging.getLogger(__name__)

_END = object()

# Both requests live as long as the session: only connecting is bounded.
STREAM_TIMEOUT = httpx.Timeout(10.0, read=None)
UPLOAD_JOIN_TIMEOUT = 10.0


def fetch_crumb(http: httpx.Client, base_url: str) -> Optional[Dict[str, str]]:
    """Ask the crumb issuer for a CSRF header. None when crumbs are disabled."""
    url = base_url.rstrip("/") + "/" + CRUMB_PATH
    try:
        response = http.get(url)
    except httpx.HTTPError as e:
        LOGGER.debug("Crumb request to %s failed: %s", url, e)
        return None
    if response.status_code != 200:
        LOGGER.debug("No crumb issued by %s (HTTP %d)", url, response.status_code)
        return None
    name, sep, value = response.text.strip().partition(":")
    if not sep:
        return None
    return {name: value}


class ResponseInput(io.RawIOBase):
    """Raw readable view over a streamed httpx response body."""

    def __init__(self, response: httpx.Response):
        self.response = response
        self._chunks = response.iter_bytes()
        self._pending = b""

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        while not self._pending:
            try:
                self._pending = next(self._chunks)
            except StopIteration:
                return 0
            except httpx.HTTPError as e:
                raise ConnectionError(f"Download stream broken: {e}") from e
        size = min(len(buffer), len(self._pending))
        buffer[:size] = self._pending[:size]
        self._pending = self._pending[size:]
        return size

    def close(self):
        if not self.closed:
            self.response.close()
        super().close()


class UploadOutput(io.RawIOBase):
    """Raw writable side queued into the upload request body."""

    def __init__(self, stream: "FullDuplexHttpStream"):
        self.stream = stream

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        self.stream.check_upload()
        self.stream.chunks.put(bytes(data))
        return len(data)

    def close(self):
        if not self.closed:
            self.stream.finish_upload(UPLOAD_JOIN_TIMEOUT)
        super().close()


class FullDuplexHttpStream:
    """
    Opens the download side synchronously, then the upload side on a thread.

    ``input`` and ``output`` are the two halves of the duplex stream.
    """

    def __init__(self, target: str, http: httpx.Client,
                 authorization: Optional[str] = None,
                 crumb: Optional[Dict[str, str]] = None):
        self.target = target
        self.http = http
        self.session = str(uuid.uuid4())
        self.chunks: "queue.Queue" = queue.Queue()
        self.upload_error: Optional[BaseException] = None

        headers = {SESSION_HEADER: self.session}
        if authorization:
            headers["Authorization"] = authorization
        if crumb:
            headers.update(crumb)
        self._headers = headers

        response = self._open_download()
        self.input = io.BufferedReader(ResponseInput(response))
        self.output = UploadOutput(self)
        self._uploader = threading.Thread(
            target=self._upload, name=f"upload {target}", daemon=True)
        self._uploader.start()

    def _open_download(self) -> httpx.Response:
        request = self.http.build_request(
            "POST", self.target, content=b"",
            timeout=STREAM_TIMEOUT,
            headers={**self._headers, SIDE_HEADER: "download"})
        try:
            response = self.http.send(request, stream=True)
        except httpx.HTTPError as e:
            raise ConnectFailure(f"Failed to connect to {self.target}: {e}") from e
        if response.status_code != 200 or DUPLEX_HEADER not in response.headers:
            response.close()
            raise ConnectFailure(
                f"{self.target} doesn't look like Jenkins (HTTP {response.status_code})")
        LOGGER.debug("Download side of session %s open", self.session)
        return response

    def _body(self):
        while True:
            chunk = self.chunks.get()
            if chunk is _END:
                return
            yield chunk

    def _upload(self):
        request = self.http.build_request(
            "POST", self.target, content=self._body(),
            timeout=STREAM_TIMEOUT,
            headers={**self._headers, SIDE_HEADER: "upload",
                     "Content-Type": "application/octet-stream"})
        try:
            response = self.http.send(request)
            if response.status_code >= 400:
                raise ConnectFailure(f"Upload rejected with HTTP {response.status_code}")
            LOGGER.debug("Upload side of session %s finished", self.session)
        except (httpx.HTTPError, ConnectFailure) as e:
            LOGGER.debug("Upload side of session %s failed: %s", self.session, e)
            self.upload_error = e

    def check_upload(self):
        """Raise if the upload request died; writes would be lost otherwise."""
        if self.upload_error is not None:
            raise ConnectionError(f"Upload stream broken: {self.upload_error}")

    def finish_upload(self, timeout: Optional[float] = None):
        """End the request body and wait for the upload to complete."""
        self.chunks.put(_END)
        self._uploader.join(timeout)

    def close(self):
        self.output.close()
        self.input.close()
