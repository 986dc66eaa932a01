"""Shared HTTP client for emote catalog APIs."""

import asyncio
import json
import logging
import time

import aiohttp

from ..__version__ import __version__
from ..emotes.errors import FetchTimeoutError, NetworkError, ParseError

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 10.0  # seconds
USER_AGENT = f"overlay-emotes/{__version__}"


async def safe_json(resp: aiohttp.ClientResponse) -> dict | list:
    """Parse JSON from a response, raising ParseError on garbage.

    This handles common error cases:
    - HTML error pages (ContentTypeError)
    - Malformed JSON (JSONDecodeError)
    - Empty responses
    """
    url = str(resp.url)
    try:
        data = await resp.json(content_type=None)
    except (aiohttp.ContentTypeError, json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ParseError(url, f"invalid JSON: {e}") from e
    if data is None:
        raise ParseError(url, "empty body")
    return data


class EmoteApiClient:
    """Lazily-created aiohttp session shared by every provider."""

    def __init__(self, timeout: float = DEFAULT_REQUEST_TIMEOUT) -> None:
        self._timeout = timeout
        self._session: aiohttp.ClientSession | None = None

    @property
    def session(self) -> aiohttp.ClientSession:
        """Get or create the HTTP session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            connector = aiohttp.TCPConnector(limit=20)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                connector=connector,
                headers={"User-Agent": USER_AGENT},
            )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            try:
                await self._session.close()
                # Allow time for underlying connections to fully close
                await asyncio.sleep(0.1)
            except RuntimeError as e:
                # Session may be attached to a different event loop
                if "attached to a different loop" in str(e):
                    logger.debug(f"Session attached to different loop, skipping close: {e}")
                else:
                    raise
            finally:
                self._session = None

    async def get_json(
        self,
        url: str,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict | list:
        """GET ``url`` and decode its JSON body.

        Raises:
            NetworkError: non-2xx status or connection failure.
            FetchTimeoutError: the request ran past the client timeout.
            ParseError: the body is not JSON.
        """
        started = time.monotonic()
        try:
            async with self.session.get(url, params=params, headers=headers) as resp:
                if not 200 <= resp.status < 300:
                    body = await resp.text(errors="replace")
                    raise NetworkError(url, resp.status, body[:200])
                return await safe_json(resp)
        except asyncio.TimeoutError as e:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            raise FetchTimeoutError(attempt=0, elapsed_ms=elapsed_ms, url=url) from e
        except aiohttp.ClientError as e:
            raise NetworkError(url, 0, str(e) or type(e).__name__) from e
