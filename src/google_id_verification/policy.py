"""Validation policies for Google Sign-In and Firebase ID tokens.

A ValidationPolicy states what a valid token looks like for one application:
who it must be issued by, who it must be issued for, which endpoint
publishes the keys and how much clock skew to tolerate.

Google Sign-In:
    aud = OAuth client id, iss = "https://accounts.google.com" or
    "accounts.google.com", keys at ``GOOGLE_SIGNIN_CERTS_URL``.

Firebase Authentication:
    aud = Firebase project id, iss = "https://securetoken.google.com/<id>",
    keys at ``FIREBASE_CERTS_URL``, ``auth_time`` required.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Final

from .keys import SUPPORTED_ALGORITHMS

GOOGLE_SIGNIN_CERTS_URL: Final[str] = "https://www.googleapis.com/oauth2/v3/certs"
FIREBASE_CERTS_URL: Final[str] = (
    "https://www.googleapis.com/service_accounts/v1/jwk/securetoken@system.gserviceaccount.com"
)

GOOGLE_SIGNIN_ISSUERS: Final[frozenset[str]] = frozenset(
    {"https://accounts.google.com", "accounts.google.com"}
)
FIREBASE_ISSUER_PREFIX: Final[str] = "https://securetoken.google.com/"

DEFAULT_CLOCK_SKEW: Final[int] = 0
"""Seconds of tolerance for exp/iat/nbf/auth_time. Google's libraries default to 0."""


@dataclass(frozen=True, slots=True)
class ValidationPolicy:
    """What a token must satisfy to be accepted.

    Attributes:
        audience: Required ``aud``: the OAuth client id (Sign-In) or the
            Firebase project id.
        accepted_issuers: Exact ``iss`` values accepted.
        certs_url: Endpoint publishing the signing keys.
        clock_skew: Tolerance in seconds for time-based claims. Keep it small;
            it extends the life of every token.
        required_algorithm: The only ``alg`` accepted. Never "none" or HMAC.
        require_auth_time: Whether ``auth_time`` must be present (Firebase).

    Raises:
        ValueError: On an empty audience or issuer set, a negative clock
            skew, or an algorithm Google does not sign with.

    Example:
        ```python
        policy = ValidationPolicy.google_signin(
            "1234-abc.apps.googleusercontent.com", clock_skew=5
        )
        ```
    """

    audience: str
    accepted_issuers: frozenset[str]
    certs_url: str
    clock_skew: int = DEFAULT_CLOCK_SKEW
    required_algorithm: str = "RS256"
    require_auth_time: bool = False

    def __post_init__(self) -> None:
        if not self.audience:
            raise ValueError("audience cannot be empty")
        if not self.accepted_issuers or not all(self.accepted_issuers):
            raise ValueError("accepted_issuers must contain non-empty issuers")
        if not self.certs_url:
            raise ValueError("certs_url cannot be empty")
        if self.clock_skew < 0:
            raise ValueError(f"clock_skew cannot be negative, got {self.clock_skew}")
        if self.required_algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(
                f"required_algorithm must be one of {sorted(SUPPORTED_ALGORITHMS)}, "
                f"got {self.required_algorithm!r}"
            )

    @classmethod
    def google_signin(
        cls,
        client_id: str,
        *,
        clock_skew: int = DEFAULT_CLOCK_SKEW,
        certs_url: str = GOOGLE_SIGNIN_CERTS_URL,
    ) -> ValidationPolicy:
        """Policy for ID tokens from Google Sign-In for ``client_id``."""
        return cls(
            audience=client_id,
            accepted_issuers=GOOGLE_SIGNIN_ISSUERS,
            certs_url=certs_url,
            clock_skew=clock_skew,
        )

    @classmethod
    def firebase(
        cls,
        project_id: str,
        *,
        clock_skew: int = DEFAULT_CLOCK_SKEW,
        certs_url: str = FIREBASE_CERTS_URL,
    ) -> ValidationPolicy:
        """Policy for Firebase Authentication ID tokens of ``project_id``."""
        if not project_id:
            raise ValueError("project_id cannot be empty")
        return cls(
            audience=project_id,
            accepted_issuers=frozenset({FIREBASE_ISSUER_PREFIX + project_id}),
            certs_url=certs_url,
            clock_skew=clock_skew,
            require_auth_time=True,
        )

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> ValidationPolicy:
        """Build a policy from Flask-style configuration keys.

        Keys:
            GOOGLE_SIGNIN_CLIENT_ID: Sign-In client id.
            FIREBASE_PROJECT_ID: Firebase project id.
            ID_TOKEN_CLOCK_SKEW: Optional clock skew in seconds.

        Exactly one of the two id keys must be set.

        Raises:
            ValueError: Neither or both ids set, or a bad clock skew.
        """
        client_id = config.get("GOOGLE_SIGNIN_CLIENT_ID")
        project_id = config.get("FIREBASE_PROJECT_ID")
        if bool(client_id) == bool(project_id):
            raise ValueError(
                "Set exactly one of GOOGLE_SIGNIN_CLIENT_ID or FIREBASE_PROJECT_ID"
            )

        clock_skew = int(config.get("ID_TOKEN_CLOCK_SKEW", DEFAULT_CLOCK_SKEW))
        if client_id:
            return cls.google_signin(client_id, clock_skew=clock_skew)
        return cls.firebase(project_id, clock_skew=clock_skew)
