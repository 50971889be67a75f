# remote.py
from __future__ import annotations

import urllib.error
import urllib.request
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from .errors import RemoteCacheError

DEFAULT_TIMEOUT = 30.0


class RemoteCacheClient:
    """
    HTTP client for a shared cache server.

    Protocol (one artifact per fingerprint):
      HEAD {base}/v1/cache/{fingerprint}  -> 200 exists, 404 missing
      GET  {base}/v1/cache/{fingerprint}  -> artifact bytes
      PUT  {base}/v1/cache/{fingerprint}  <- artifact bytes
    """

    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _url(self, fingerprint: str) -> str:
        return f"{self.base_url}/v1/cache/{quote(fingerprint, safe='')}"

    def _request(
        self,
        method: str,
        fingerprint: str,
        data: Optional[bytes] = None,
    ) -> bytes:
        """
        Send one request and return the response body.

        Raises:
            RemoteCacheError: on HTTP errors (carrying the status code in
                `status`) and network errors
        """
        headers = {}
        if data is not None:
            headers["Content-Type"] = "application/octet-stream"

        req = urllib.request.Request(self._url(fingerprint), data=data, headers=headers, method=method)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                return response.read()
        except urllib.error.HTTPError as e:
            err = RemoteCacheError(f"{method} {fingerprint[:12]} failed: HTTP {e.code} {e.reason}")
            err.status = e.code
            raise err from e
        except urllib.error.URLError as e:
            raise RemoteCacheError(f"Network error talking to {self.base_url}: {e.reason}") from e
        except OSError as e:
            raise RemoteCacheError(f"Network error talking to {self.base_url}: {e}") from e

    def exists(self, fingerprint: str) -> bool:
        try:
            self._request("HEAD", fingerprint)
        except RemoteCacheError as e:
            if getattr(e, "status", None) == 404:
                return False
            raise
        return True

    def download(self, fingerprint: str) -> bytes:
        body = self._request("GET", fingerprint)
        if not body:
            raise RemoteCacheError(f"Empty artifact for {fingerprint[:12]}")
        return body

    def upload(self, fingerprint: str, artifact: str | Path) -> None:
        path = Path(artifact)
        if not path.is_file():
            raise RemoteCacheError(f"No local artifact to upload for {fingerprint[:12]}: {path}")
        self._request("PUT", fingerprint, data=path.read_bytes())
