"""Signing key records and the immutable cached key set.

Google publishes its token signing keys in two document shapes:

- A JWK set, ``{"keys": [{"kid": ..., "kty": "RSA", "n": ..., "e": ...}]}``,
  served by both the Sign-In and the Firebase JWK endpoints.
- A legacy map of key id to PEM-encoded X.509 certificate, still served for
  Firebase at the ``robot/v1/metadata/x509`` endpoint.

``parse_key_set`` accepts either shape, skips entries it cannot use and
returns the usable keys in document order.

Security Note:
    Only asymmetric keys are accepted. A published "oct" key would let anyone
    holding the key set mint tokens, so such entries are dropped.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Final

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from jwt import PyJWK
from jwt.algorithms import get_default_algorithms
from jwt.exceptions import PyJWTError

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS: Final[frozenset[str]] = frozenset({"RS256", "ES256"})
"""Signature algorithms Google uses for ID tokens."""

_ALGORITHMS = get_default_algorithms()

_INFERRED_ALGORITHM: Final[dict[tuple[str, str | None], str]] = {
    ("RSA", None): "RS256",
    ("EC", "P-256"): "ES256",
}
"""Algorithm to assume for JWKs that omit ``alg``, keyed by (kty, crv)."""


@dataclass(frozen=True, slots=True, eq=False)
class SigningKey:
    """One published public key.

    Attributes:
        key_id: The ``kid`` tokens reference in their header.
        algorithm: Signature algorithm tag, e.g. "RS256".
        public_key: cryptography public key object (RSA or EC).
    """

    key_id: str
    algorithm: str
    public_key: Any = field(repr=False)

    def verify(self, message: bytes, signature: bytes) -> bool:
        """Check ``signature`` over ``message`` with this key."""
        return _ALGORITHMS[self.algorithm].verify(message, self.public_key, signature)

    @classmethod
    def from_jwk(cls, data: Mapping[str, Any]) -> SigningKey:
        """Build a key from one JWK entry.

        Raises:
            ValueError: If the entry is not a usable asymmetric signing key.
        """
        kid = data.get("kid")
        if not isinstance(kid, str) or not kid:
            raise ValueError("JWK has no 'kid'")

        if data.get("use", "sig") != "sig":
            raise ValueError(f"JWK {kid!r} is not a signing key")

        kty = data.get("kty")
        algorithm = data.get("alg") or _INFERRED_ALGORITHM.get((kty, data.get("crv")))
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"JWK {kid!r} has unsupported algorithm {algorithm!r}")

        if "d" in data:
            raise ValueError(f"JWK {kid!r} contains private key material")

        try:
            jwk = PyJWK.from_dict(dict(data), algorithm=algorithm)
        except (PyJWTError, KeyError, ValueError) as e:
            raise ValueError(f"JWK {kid!r} could not be loaded: {e}") from e

        return cls(key_id=kid, algorithm=algorithm, public_key=jwk.key)

    @classmethod
    def from_certificate(cls, kid: str, pem: str) -> SigningKey:
        """Build a key from a PEM-encoded X.509 certificate.

        Raises:
            ValueError: If the certificate cannot be parsed or holds an
                unsupported key type.
        """
        certificate = x509.load_pem_x509_certificate(pem.encode("ascii"))
        public_key = certificate.public_key()

        if isinstance(public_key, rsa.RSAPublicKey):
            algorithm = "RS256"
        elif isinstance(public_key, ec.EllipticCurvePublicKey) and isinstance(
            public_key.curve, ec.SECP256R1
        ):
            algorithm = "ES256"
        else:
            raise ValueError(f"Certificate {kid!r} holds an unsupported key type")

        return cls(key_id=kid, algorithm=algorithm, public_key=public_key)


@dataclass(frozen=True, slots=True)
class FetchedKeys:
    """Result of one key fetch.

    Attributes:
        keys: Usable keys in document order.
        max_age: Seconds the keys may be reused before refetching.
    """

    keys: tuple[SigningKey, ...]
    max_age: float


@dataclass(frozen=True, slots=True)
class CachedKeySet:
    """Immutable snapshot of the published keys.

    A refresh builds a new instance and swaps the store's reference to it;
    readers holding the old reference keep seeing a complete old set.

    Attributes:
        keys: Read-only mapping of key id to SigningKey, in document order.
        fetched_at: Unix timestamp of the fetch.
        valid_until: Unix timestamp after which the set is stale.
    """

    keys: Mapping[str, SigningKey]
    fetched_at: float
    valid_until: float

    def __post_init__(self) -> None:
        if self.valid_until < self.fetched_at:
            raise ValueError(
                f"valid_until ({self.valid_until}) precedes fetched_at ({self.fetched_at})"
            )

    @classmethod
    def from_fetch(cls, fetched: FetchedKeys, fetched_at: float) -> CachedKeySet:
        """Snapshot a fetch result; the first key wins on duplicate ids."""
        keys: dict[str, SigningKey] = {}
        for key in fetched.keys:
            if key.key_id in keys:
                logger.warning("Duplicate key id %r in key set; keeping the first", key.key_id)
                continue
            keys[key.key_id] = key

        return cls(
            keys=MappingProxyType(keys),
            fetched_at=fetched_at,
            valid_until=fetched_at + max(fetched.max_age, 0),
        )

    def get(self, key_id: str) -> SigningKey | None:
        return self.keys.get(key_id)

    def is_fresh(self, now: float) -> bool:
        return now < self.valid_until

    def __len__(self) -> int:
        return len(self.keys)


def parse_key_set(document: Any) -> tuple[SigningKey, ...]:
    """Extract usable signing keys from a decoded key-set document.

    Malformed entries are logged and skipped. An empty result is returned
    as-is; deciding whether that is an error belongs to the caller.
    """
    if not isinstance(document, Mapping):
        return ()

    if "keys" in document:
        entries = document["keys"]
        if not isinstance(entries, list):
            return ()
        return tuple(_iter_jwks(entries))

    return tuple(_iter_certificates(document))


def _iter_jwks(entries: list[Any]):
    for index, entry in enumerate(entries):
        if not isinstance(entry, Mapping):
            logger.warning("Skipping JWK entry %d: not an object", index)
            continue
        try:
            yield SigningKey.from_jwk(entry)
        except ValueError as e:
            logger.warning("Skipping JWK entry %d: %s", index, e)


def _iter_certificates(document: Mapping[str, Any]):
    for kid, pem in document.items():
        if not isinstance(kid, str) or not kid or not isinstance(pem, str):
            logger.warning("Skipping certificate entry %r: not a kid/PEM pair", kid)
            continue
        try:
            yield SigningKey.from_certificate(kid, pem)
        except ValueError as e:
            logger.warning("Skipping certificate %r: %s", kid, e)
