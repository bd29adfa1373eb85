"""Tests for the HTTP media transport."""

from unittest.mock import MagicMock

import pytest
import requests

from wainbound.infra.media import HttpMediaFetcher, MediaFetchError


def _session(chunks=(b"abc",), error=None):
    response = MagicMock()
    response.__enter__.return_value = response
    response.iter_content.return_value = list(chunks)
    if error is not None:
        response.raise_for_status.side_effect = error
    session = MagicMock()
    session.get.return_value = response
    return session


class TestHttpMediaFetcher:
    def test_returns_body(self):
        session = _session(chunks=[b"ab", b"cd"])
        fetcher = HttpMediaFetcher(session=session, timeout=7)

        assert fetcher.fetch("https://cdn/x.jpg", {"x-api-key": "k"}) == b"abcd"
        session.get.assert_called_once_with(
            "https://cdn/x.jpg", headers={"x-api-key": "k"}, timeout=7, stream=True
        )

    @pytest.mark.parametrize("url", ["", "ftp://cdn/x", "cdn/x.jpg"])
    def test_invalid_url(self, url):
        with pytest.raises(MediaFetchError):
            HttpMediaFetcher(session=_session()).fetch(url)

    def test_http_error(self):
        session = _session(error=requests.HTTPError("404 Not Found"))
        with pytest.raises(MediaFetchError):
            HttpMediaFetcher(session=session).fetch("https://cdn/x.jpg")

    def test_transport_error(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("reset")
        with pytest.raises(MediaFetchError):
            HttpMediaFetcher(session=session).fetch("https://cdn/x.jpg")

    def test_size_limit(self):
        session = _session(chunks=[b"x" * 6, b"x" * 6])
        with pytest.raises(MediaFetchError, match="size limit"):
            HttpMediaFetcher(session=session, max_bytes=10).fetch("https://cdn/x.jpg")
