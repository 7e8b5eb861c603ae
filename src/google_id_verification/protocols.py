"""Protocol definitions for Google ID token verification.

Structural interfaces (PEP 544) for the seams between components:
- Key fetching (blocking and async)
- Key lookup (blocking and async)
- Token verification
- Token extraction from Flask requests

Any object with the right methods satisfies a protocol, so tests can pass
small fakes without inheriting from anything.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, Protocol, TypeAlias

if TYPE_CHECKING:
    from .id_token import IdToken
    from .keys import FetchedKeys, SigningKey

# ============================================================================
# Type Aliases
# ============================================================================

Claims: TypeAlias = Mapping[str, Any]
"""Decoded token payload as a read-only mapping."""

Clock: TypeAlias = Callable[[], float]
"""Returns the current time as a Unix timestamp in seconds."""

ViewFunc: TypeAlias = Callable[..., Any]
"""Flask view function."""


# ============================================================================
# Key retrieval
# ============================================================================


class KeyFetcher(Protocol):
    """Fetches the published key set from an endpoint bound at construction.

    Implementations perform one network call per ``fetch()`` and hold no
    cache of their own.
    """

    def fetch(self) -> FetchedKeys:
        """Fetch and parse the key set.

        Returns:
            The usable keys and how long they may be cached.

        Raises:
            KeyFetchError: Network failure, bad status, unparsable body, or
                no usable keys.
        """
        ...


class AsyncKeyFetcher(Protocol):
    """Suspending counterpart of KeyFetcher."""

    async def fetch(self) -> FetchedKeys: ...


class KeySource(Protocol):
    """Resolves a signing key by its id."""

    def get(self, key_id: str) -> SigningKey:
        """Return the current key for ``key_id``.

        Raises:
            UnknownKeyId: The id is not published, even after a refresh.
            KeyFetchError: A required refresh failed.
        """
        ...


class AsyncKeySource(Protocol):
    """Suspending counterpart of KeySource."""

    async def get(self, key_id: str) -> SigningKey: ...


# ============================================================================
# Verification and request integration
# ============================================================================


class TokenVerifier(Protocol):
    """Anything that turns a raw ID token into a verified IdToken.

    ``Client`` is the standard implementation.
    """

    def verify_id_token(self, token: str) -> IdToken:
        """Verify ``token`` and return its verified claims.

        Raises:
            InvalidToken: Any decode, key, signature or claim failure.
            KeyFetchError: Keys were needed but could not be fetched.
        """
        ...


class Extractor(Protocol):
    """Pulls the raw token out of the current Flask request."""

    def extract(self) -> str:
        """Return the raw token.

        Raises:
            MissingToken: Token not present or improperly formatted.
        """
        ...
