"""Public entry points: blocking and asyncio ID token clients.

A client binds one ValidationPolicy to its own key store and exposes
``verify_id_token``. Each client owns its cache, so a Sign-In client and a
Firebase client in the same process never share keys or state.

High-level flow
---------------
1. ``TokenDecoder.decode(raw)`` - structure only, no network
2. ``key_store.get(kid)`` - cache hit, or single-flight refresh
3. ``Verifier`` - signature, then issuer/audience/expiry/issued-at
4. ``IdToken`` returned

Example
-------

.. code-block:: python

    client = Client.google_signin("1234-abc.apps.googleusercontent.com")

    try:
        id_token = client.verify_id_token(raw)
    except TokenExpired:
        ...  # ask the user to sign in again
    except InvalidToken:
        ...  # reject
    except KeyFetchError:
        ...  # Google unreachable; retry later

    async_client = AsyncClient.firebase("my-project")
    id_token = await async_client.verify_id_token(raw)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Self

import httpx

from .decoder import TokenDecoder
from .errors import InvalidToken
from .fetcher import DEFAULT_TIMEOUT, AsyncHttpKeyFetcher, HttpKeyFetcher
from .key_store import AsyncKeyStore, KeyStore
from .policy import DEFAULT_CLOCK_SKEW, ValidationPolicy
from .verifier import Verifier

if TYPE_CHECKING:
    from .id_token import IdToken
    from .protocols import AsyncKeyFetcher, AsyncKeySource, Clock, KeyFetcher, KeySource
    from .refresh_gate import RefreshGate

logger = logging.getLogger(__name__)


class _ClientBase:
    def __init__(self, policy: ValidationPolicy, *, clock: Clock | None) -> None:
        self._policy = policy
        self._decoder = TokenDecoder()
        self._verifier = Verifier(policy)
        self._clock: Clock = clock or time.time

    @property
    def policy(self) -> ValidationPolicy:
        return self._policy

    @classmethod
    def google_signin(
        cls, client_id: str, *, clock_skew: int = DEFAULT_CLOCK_SKEW, **options: Any
    ) -> Self:
        """Client for Google Sign-In ID tokens issued to ``client_id``."""
        return cls(ValidationPolicy.google_signin(client_id, clock_skew=clock_skew), **options)

    @classmethod
    def firebase(
        cls, project_id: str, *, clock_skew: int = DEFAULT_CLOCK_SKEW, **options: Any
    ) -> Self:
        """Client for Firebase Authentication ID tokens of ``project_id``."""
        return cls(ValidationPolicy.firebase(project_id, clock_skew=clock_skew), **options)

    def _log_rejection(self, error: InvalidToken) -> None:
        # Never log the token itself.
        logger.info(
            "Rejected ID token for audience %s: %s: %s",
            self._policy.audience,
            type(error).__name__,
            error,
        )


class Client(_ClientBase):
    """Blocking ID token client.

    When a refresh is needed, the calling thread performs the fetch inline
    (or waits for the thread already doing it).

    Args:
        policy: Validation policy; see ``google_signin``/``firebase``.
        key_store: Pre-built key store. Overrides every fetch option.
        fetcher: Key fetcher for a default KeyStore.
        http_client: Shared ``httpx.Client`` for the default fetcher.
        fetch_timeout: HTTP timeout for the default fetcher, in seconds.
        refresh_gate: Throttle for unknown-kid refreshes.
        clock: Wall-clock source for expiry checks and the cache.
    """

    def __init__(
        self,
        policy: ValidationPolicy,
        *,
        key_store: KeySource | None = None,
        fetcher: KeyFetcher | None = None,
        http_client: httpx.Client | None = None,
        fetch_timeout: float = DEFAULT_TIMEOUT,
        refresh_gate: RefreshGate | None = None,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(policy, clock=clock)
        if key_store is None:
            if fetcher is None:
                fetcher = HttpKeyFetcher(
                    policy.certs_url, timeout=fetch_timeout, http_client=http_client
                )
            key_store = KeyStore(fetcher, clock=clock, refresh_gate=refresh_gate)
        self._keys = key_store

    @property
    def key_store(self) -> KeySource:
        return self._keys

    def verify_id_token(self, token: str) -> IdToken:
        """Verify a raw ID token.

        Raises:
            MalformedToken, AlgorithmMismatch, UnknownKeyId, InvalidSignature,
            IssuerMismatch, AudienceMismatch, TokenExpired, TokenNotYetValid,
            InvalidClaims: The token was rejected.
            KeyFetchError: Keys were needed but could not be fetched.
        """
        try:
            decoded = self._decoder.decode(token)
            return self._verifier.verify(decoded, self._keys, self._clock())
        except InvalidToken as e:
            self._log_rejection(e)
            raise


class AsyncClient(_ClientBase):
    """asyncio ID token client.

    A needed refresh suspends the calling task; other tasks keep running and
    cache hits never suspend. Arguments mirror Client, with
    ``httpx.AsyncClient`` and an async fetcher/key store.
    """

    def __init__(
        self,
        policy: ValidationPolicy,
        *,
        key_store: AsyncKeySource | None = None,
        fetcher: AsyncKeyFetcher | None = None,
        http_client: httpx.AsyncClient | None = None,
        fetch_timeout: float = DEFAULT_TIMEOUT,
        refresh_gate: RefreshGate | None = None,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(policy, clock=clock)
        if key_store is None:
            if fetcher is None:
                fetcher = AsyncHttpKeyFetcher(
                    policy.certs_url, timeout=fetch_timeout, http_client=http_client
                )
            key_store = AsyncKeyStore(fetcher, clock=clock, refresh_gate=refresh_gate)
        self._keys = key_store

    @property
    def key_store(self) -> AsyncKeySource:
        return self._keys

    async def verify_id_token(self, token: str) -> IdToken:
        """Verify a raw ID token; see ``Client.verify_id_token``."""
        try:
            decoded = self._decoder.decode(token)
            return await self._verifier.verify_async(decoded, self._keys, self._clock())
        except InvalidToken as e:
            self._log_rejection(e)
            raise


def client_from_config(config: Mapping[str, Any], **options: Any) -> Client:
    """Build a blocking Client from Flask-style configuration.

    Reads GOOGLE_SIGNIN_CLIENT_ID or FIREBASE_PROJECT_ID,
    ID_TOKEN_CLOCK_SKEW and ID_TOKEN_FETCH_TIMEOUT. Extra keyword arguments
    are passed to Client.

    Raises:
        ValueError: Invalid or incomplete configuration.
    """
    policy = ValidationPolicy.from_config(config)
    options.setdefault(
        "fetch_timeout", float(config.get("ID_TOKEN_FETCH_TIMEOUT", DEFAULT_TIMEOUT))
    )
    return Client(policy, **options)
