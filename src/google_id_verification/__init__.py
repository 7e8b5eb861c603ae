"""
Google Sign-In and Firebase ID token verification.

High-level flow
---------------
1. ``Client.verify_id_token(raw)`` (or ``await AsyncClient.verify_id_token(raw)``)
2. ``TokenDecoder`` splits the token and keeps the exact signed bytes
3. ``KeyStore.get(kid)`` serves Google's public keys from memory, refetching
   once per ``Cache-Control: max-age`` window (single-flight)
4. ``Verifier`` checks algorithm, signature, issuer, audience, expiry and
   issued-at
5. On success an immutable ``IdToken`` is returned

Security notes
--------------
- Claims are never trusted before the signature verifies.
- Only the policy's algorithm (RS256) is accepted; "none" and HMAC never are.
- ``iss`` and ``aud`` must match exactly.
- Refreshes forced by unknown ``kid`` values are throttled.

Example usage
-------------

.. code-block:: python

    from google_id_verification import AuthExtension, Client

    client = Client.google_signin("1234-abc.apps.googleusercontent.com")
    id_token = client.verify_id_token(raw_token)
    print(id_token.subject, id_token.email)

    # Flask
    auth = AuthExtension(client)

    @app.route("/me")
    @auth.require(email_verified=True)
    def me():
        return {"sub": g.id_token.subject}
"""

# Clients
from .client import AsyncClient, Client, client_from_config

# Decoding
from .decoder import DecodedToken, TokenDecoder, TokenHeader

# Errors
from .errors import (
    AlgorithmMismatch,
    AudienceMismatch,
    AuthError,
    Forbidden,
    InvalidClaims,
    InvalidSignature,
    InvalidToken,
    IssuerMismatch,
    KeyFetchError,
    MalformedToken,
    MissingToken,
    TokenExpired,
    TokenNotYetValid,
    UnknownKeyId,
)

# Extractors
from .extractors import BearerExtractor, CookieExtractor, CredentialFormExtractor

# Key fetching
from .fetcher import AsyncHttpKeyFetcher, HttpKeyFetcher, parse_max_age

# Flask extension
from .flask_extension import AuthExtension, get_verified_id_token

# Result
from .id_token import IdToken

# Key store
from .key_store import AsyncKeyStore, KeyStore

# Keys
from .keys import CachedKeySet, FetchedKeys, SigningKey, parse_key_set

# Policy
from .policy import (
    FIREBASE_CERTS_URL,
    GOOGLE_SIGNIN_CERTS_URL,
    GOOGLE_SIGNIN_ISSUERS,
    ValidationPolicy,
)

# Protocols
from .protocols import (
    AsyncKeyFetcher,
    AsyncKeySource,
    Claims,
    Clock,
    Extractor,
    KeyFetcher,
    KeySource,
    TokenVerifier,
    ViewFunc,
)

# Refresh gate
from .refresh_gate import RefreshGate

# Verifier
from .verifier import Verifier

__all__ = [
    # Clients
    "AsyncClient",
    "Client",
    "client_from_config",
    # Errors
    "AuthError",
    "MissingToken",
    "InvalidToken",
    "MalformedToken",
    "AlgorithmMismatch",
    "UnknownKeyId",
    "InvalidSignature",
    "InvalidClaims",
    "IssuerMismatch",
    "AudienceMismatch",
    "TokenExpired",
    "TokenNotYetValid",
    "KeyFetchError",
    "Forbidden",
    # Protocols
    "AsyncKeyFetcher",
    "AsyncKeySource",
    "Claims",
    "Clock",
    "Extractor",
    "KeyFetcher",
    "KeySource",
    "TokenVerifier",
    "ViewFunc",
    # Policy
    "ValidationPolicy",
    "GOOGLE_SIGNIN_CERTS_URL",
    "GOOGLE_SIGNIN_ISSUERS",
    "FIREBASE_CERTS_URL",
    # Keys
    "SigningKey",
    "FetchedKeys",
    "CachedKeySet",
    "parse_key_set",
    # Key fetching
    "HttpKeyFetcher",
    "AsyncHttpKeyFetcher",
    "parse_max_age",
    # Key store
    "KeyStore",
    "AsyncKeyStore",
    # Refresh gate
    "RefreshGate",
    # Decoding
    "TokenDecoder",
    "TokenHeader",
    "DecodedToken",
    # Verifier
    "Verifier",
    "IdToken",
    # Extractors
    "BearerExtractor",
    "CookieExtractor",
    "CredentialFormExtractor",
    # Flask extension
    "AuthExtension",
    "get_verified_id_token",
]
