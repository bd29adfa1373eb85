"""Media transport - download attachment bytes referenced by a webhook.

One attempt per message, no retries: a failed download downgrades the
message to unsupported instead of failing the event.
"""

from __future__ import annotations

import os
from typing import Mapping, Protocol

import requests

MEDIA_FETCH_TIMEOUT = float(os.environ.get("MEDIA_FETCH_TIMEOUT_SECONDS", "30"))
MEDIA_MAX_BYTES = int(os.environ.get("MEDIA_MAX_BYTES", str(40 * 1024 * 1024)))


class MediaFetchError(Exception):
    """Raised when referenced media cannot be downloaded."""

    pass


class MediaFetcher(Protocol):
    """Fetch media bytes from a URL."""

    def fetch(self, url: str, headers: Mapping[str, str] | None = None) -> bytes:
        ...


class HttpMediaFetcher:
    """MediaFetcher using requests with streaming and a size cap."""

    def __init__(
        self,
        session: requests.Session | None = None,
        timeout: float = MEDIA_FETCH_TIMEOUT,
        max_bytes: int = MEDIA_MAX_BYTES,
    ) -> None:
        self._session = session or requests.Session()
        self._timeout = timeout
        self._max_bytes = max_bytes

    def fetch(self, url: str, headers: Mapping[str, str] | None = None) -> bytes:
        """Download url and return its body.

        Raises:
            MediaFetchError: On invalid URL, transport error, non-2xx status
                or a body larger than max_bytes.
        """
        if not url or not url.startswith(("http://", "https://")):
            raise MediaFetchError("invalid media url")

        try:
            with self._session.get(
                url,
                headers=dict(headers or {}),
                timeout=self._timeout,
                stream=True,
            ) as response:
                response.raise_for_status()
                chunks: list[bytes] = []
                size = 0
                for chunk in response.iter_content(chunk_size=64 * 1024):
                    size += len(chunk)
                    if size > self._max_bytes:
                        raise MediaFetchError("media exceeds size limit")
                    chunks.append(chunk)
                return b"".join(chunks)
        except requests.RequestException as e:
            raise MediaFetchError(f"media download failed: {e}") from e
