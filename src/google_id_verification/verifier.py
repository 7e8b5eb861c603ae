"""Signature and claim verification for decoded ID tokens.

The Verifier runs a fixed sequence of checks on a DecodedToken:

1. Header ``alg`` equals the policy's required algorithm (cheap, no I/O)
2. Resolve the signing key by ``kid`` (may refresh the key cache)
3. Verify the signature over the exact signed bytes
4. Validate issuer, audience, expiry and issued-at
5. Build the IdToken

Claims are read only in step 4, after the signature verified. Every step
fails with its own error type and none is skipped.

Key lookup is the only part that differs between blocking and async use;
``verify`` and ``verify_async`` share everything else.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from .errors import (
    AlgorithmMismatch,
    AudienceMismatch,
    InvalidClaims,
    InvalidSignature,
    IssuerMismatch,
    TokenExpired,
    TokenNotYetValid,
)
from .id_token import IdToken

if TYPE_CHECKING:
    from .decoder import DecodedToken
    from .keys import SigningKey
    from .policy import ValidationPolicy
    from .protocols import AsyncKeySource, KeySource


class Verifier:
    """Verifies decoded tokens against one ValidationPolicy.

    Thread Safety:
        Stateless apart from the frozen policy; safe to share.

    Example:
        ```python
        verifier = Verifier(ValidationPolicy.firebase("my-project"))
        id_token = verifier.verify(decoded, key_store, now=time.time())
        ```

    Attributes:
        _policy: Immutable validation policy.
    """

    def __init__(self, policy: ValidationPolicy) -> None:
        self._policy = policy

    @property
    def policy(self) -> ValidationPolicy:
        return self._policy

    def verify(self, decoded: DecodedToken, key_store: KeySource, now: float) -> IdToken:
        """Verify ``decoded`` using keys from a blocking key store.

        Args:
            decoded: Output of TokenDecoder.decode.
            key_store: Resolves the signing key by ``kid``.
            now: Current Unix time in seconds.

        Returns:
            The verified IdToken.

        Raises:
            AlgorithmMismatch: ``alg`` or the key's algorithm is not the required one.
            UnknownKeyId, KeyFetchError: From the key store.
            InvalidSignature: Signature does not verify.
            InvalidClaims: A claim check failed (see subclasses).
        """
        self._check_algorithm(decoded)
        key = key_store.get(decoded.header.key_id)
        return self._verify_with_key(decoded, key, now)

    async def verify_async(
        self, decoded: DecodedToken, key_store: AsyncKeySource, now: float
    ) -> IdToken:
        """Same as ``verify``, awaiting an async key store."""
        self._check_algorithm(decoded)
        key = await key_store.get(decoded.header.key_id)
        return self._verify_with_key(decoded, key, now)

    def _check_algorithm(self, decoded: DecodedToken) -> None:
        # Rejects "none", HMAC and any other algorithm before touching keys.
        required = self._policy.required_algorithm
        if decoded.header.algorithm != required:
            raise AlgorithmMismatch(
                f"Token algorithm {decoded.header.algorithm!r} is not {required!r}"
            )

    def _verify_with_key(self, decoded: DecodedToken, key: SigningKey, now: float) -> IdToken:
        if key.algorithm != self._policy.required_algorithm:
            raise AlgorithmMismatch(
                f"Key {key.key_id!r} uses {key.algorithm!r}, "
                f"not {self._policy.required_algorithm!r}"
            )

        if not key.verify(decoded.signing_input, decoded.signature):
            raise InvalidSignature(f"Signature does not verify with key {key.key_id!r}")

        self._validate_claims(decoded.claims, now)
        return IdToken(header=decoded.header, claims=decoded.claims)

    def _validate_claims(self, claims: Mapping[str, Any], now: float) -> None:
        policy = self._policy
        skew = policy.clock_skew

        issuer = claims.get("iss")
        if not isinstance(issuer, str) or issuer not in policy.accepted_issuers:
            raise IssuerMismatch(f"Issuer {issuer!r} is not accepted")

        audience = claims.get("aud")
        if not isinstance(audience, str) or audience != policy.audience:
            raise AudienceMismatch(f"Audience {audience!r} does not match {policy.audience!r}")

        expires_at = _timestamp(claims, "exp")
        if not expires_at > now - skew:
            raise TokenExpired(f"Token expired at {expires_at} (now {now})")

        issued_at = _timestamp(claims, "iat")
        if not issued_at <= now + skew:
            raise TokenNotYetValid(f"Token issued in the future at {issued_at} (now {now})")

        if "nbf" in claims:
            not_before = _timestamp(claims, "nbf")
            if not not_before <= now + skew:
                raise TokenNotYetValid(f"Token not valid before {not_before} (now {now})")

        if policy.require_auth_time:
            auth_time = _timestamp(claims, "auth_time")
            if not auth_time <= now + skew:
                raise TokenNotYetValid(f"User authenticated in the future at {auth_time}")

        if expires_at < issued_at:
            raise InvalidClaims(f"Token expires ({expires_at}) before it was issued ({issued_at})")

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise InvalidClaims("Claim 'sub' must be a non-empty string")


def _timestamp(claims: Mapping[str, Any], name: str) -> int | float:
    value = claims.get(name)
    # bool is an int subclass; true/false are never timestamps.
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise InvalidClaims(f"Claim {name!r} must be a numeric timestamp")
    return value
