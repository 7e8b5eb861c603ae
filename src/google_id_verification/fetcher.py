"""HTTP fetchers for Google's published signing keys.

A fetcher performs exactly one GET against its certs URL and turns the
response into ``FetchedKeys``: the usable keys plus the number of seconds
they may be reused, taken from ``Cache-Control: max-age``. Caching itself
lives in the key store.

Two variants share the parsing code:
- HttpKeyFetcher: blocking, on ``httpx.Client``
- AsyncHttpKeyFetcher: suspending, on ``httpx.AsyncClient``
"""

from __future__ import annotations

import logging
import re
from typing import Final

import httpx

from .errors import KeyFetchError
from .keys import FetchedKeys, parse_key_set

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE: Final[float] = 300
"""Lifetime used when the response carries no usable max-age (5 minutes)."""

DEFAULT_TIMEOUT: Final[float] = 10.0
"""Seconds allowed for each phase of the HTTP request."""

_MAX_AGE = re.compile(r"^max-age\s*=\s*\"?(\d+)\"?$", re.IGNORECASE)


def parse_max_age(cache_control: str | None, default: float = DEFAULT_MAX_AGE) -> float:
    """Return the ``max-age`` directive of a Cache-Control header in seconds.

    Falls back to ``default`` when the header is missing or has no valid
    max-age. Other directives are ignored.

    Example:
        >>> parse_max_age("public, max-age=19800, must-revalidate")
        19800
    """
    if not cache_control:
        return default

    for directive in cache_control.split(","):
        match = _MAX_AGE.match(directive.strip())
        if match:
            return int(match.group(1))

    return default


def keys_from_response(response: httpx.Response, default_max_age: float) -> FetchedKeys:
    """Validate an HTTP response and parse it into FetchedKeys.

    Raises:
        KeyFetchError: Non-2xx status, non-JSON body, or no usable keys.
    """
    try:
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise KeyFetchError(
            f"Key endpoint {response.request.url} returned {response.status_code}"
        ) from e

    try:
        document = response.json()
    except ValueError as e:
        raise KeyFetchError("Key endpoint returned a non-JSON body") from e

    keys = parse_key_set(document)
    if not keys:
        raise KeyFetchError("Key endpoint returned no usable signing keys")

    max_age = parse_max_age(response.headers.get("Cache-Control"), default_max_age)
    return FetchedKeys(keys=keys, max_age=max_age)


class _BaseFetcher:
    def __init__(
        self,
        url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        default_max_age: float = DEFAULT_MAX_AGE,
    ) -> None:
        if not url:
            raise ValueError("url cannot be empty")
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        if default_max_age < 0:
            raise ValueError(f"default_max_age cannot be negative, got {default_max_age}")

        self.url = url
        self._timeout = timeout
        self._default_max_age = default_max_age

    def _parse(self, response: httpx.Response) -> FetchedKeys:
        fetched = keys_from_response(response, self._default_max_age)
        logger.info(
            "Fetched %d signing keys from %s (max-age %ss)",
            len(fetched.keys),
            self.url,
            fetched.max_age,
        )
        return fetched

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.url!r})"


class HttpKeyFetcher(_BaseFetcher):
    """Blocking key fetcher.

    Args:
        url: Certs endpoint, e.g. ``GOOGLE_SIGNIN_CERTS_URL``.
        timeout: Per-phase HTTP timeout in seconds.
        default_max_age: Lifetime used when Cache-Control has no max-age.
        http_client: Optional shared ``httpx.Client``. It is used as-is and
            never closed here. When omitted, a client is created per fetch.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        default_max_age: float = DEFAULT_MAX_AGE,
        http_client: httpx.Client | None = None,
    ) -> None:
        super().__init__(url, timeout=timeout, default_max_age=default_max_age)
        self._http = http_client

    def fetch(self) -> FetchedKeys:
        try:
            if self._http is not None:
                response = self._http.get(self.url, timeout=self._timeout)
            else:
                with httpx.Client(timeout=self._timeout) as client:
                    response = client.get(self.url)
        except httpx.HTTPError as e:
            raise KeyFetchError(f"Failed to fetch signing keys from {self.url}: {e}") from e

        return self._parse(response)


class AsyncHttpKeyFetcher(_BaseFetcher):
    """Suspending key fetcher; same arguments as HttpKeyFetcher with an
    ``httpx.AsyncClient``."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        default_max_age: float = DEFAULT_MAX_AGE,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(url, timeout=timeout, default_max_age=default_max_age)
        self._http = http_client

    async def fetch(self) -> FetchedKeys:
        try:
            if self._http is not None:
                response = await self._http.get(self.url, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.get(self.url)
        except httpx.HTTPError as e:
            raise KeyFetchError(f"Failed to fetch signing keys from {self.url}: {e}") from e

        return self._parse(response)
