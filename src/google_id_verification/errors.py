"""Verification and key-retrieval errors.

Every failure raised by this package inherits from AuthError, so application
code can catch one type for any rejection.

Each error class carries:
    error_code: The HTTP status the Flask extension responds with.
    description: A generic, client-safe message.

The exception message (``str(exc)``) holds the detailed reason and is meant
for server-side logs only.

Security Note:
    Never return ``str(exc)`` to clients. Use ``description`` instead.
"""

from __future__ import annotations

from typing import ClassVar


class AuthError(Exception):
    """Base exception for all authentication and authorization failures."""

    error_code: ClassVar[int] = 401
    default_description: ClassVar[str] = "Authentication failed"

    @property
    def description(self) -> str:
        """Client-safe message for this kind of failure."""
        return self.default_description


class MissingToken(AuthError):  # noqa: N818
    """Raised when no token is found in the request.

    This occurs when:
    - The Authorization header is missing or not "Bearer <token>"
    - The configured cookie is missing or empty
    """

    default_description = "Missing token"


class InvalidToken(AuthError):  # noqa: N818
    """Raised when a token is present but was rejected.

    Parent of every decode, key, signature and claim failure. Catch this to
    treat all rejections alike.
    """

    default_description = "Invalid token"


class MalformedToken(InvalidToken):  # noqa: N818
    """Token structure could not be decoded.

    Wrong segment count, a segment outside the base64url alphabet, a header or
    payload that is not a JSON object, or a header missing ``alg``/``kid``.
    Raised before any network access.
    """


class AlgorithmMismatch(InvalidToken):  # noqa: N818
    """Header algorithm (or the resolved key's algorithm) is not the required one."""


class UnknownKeyId(InvalidToken):  # noqa: N818
    """The ``kid`` is not published by Google, even after a refresh.

    Either the token was signed with a retired key or it is forged. Callers
    may retry later; nothing is retried automatically.
    """


class InvalidSignature(InvalidToken):  # noqa: N818
    """Signature does not match the signed header and payload bytes."""


class InvalidClaims(InvalidToken):  # noqa: N818
    """Signature is valid but the claim set fails the validation policy.

    Raised directly for missing or mistyped required claims. Subclasses cover
    the specific policy checks.
    """


class IssuerMismatch(InvalidClaims):  # noqa: N818
    """``iss`` is not one of the accepted issuers."""


class AudienceMismatch(InvalidClaims):  # noqa: N818
    """``aud`` does not equal the configured client id or project id."""


class TokenExpired(InvalidClaims):  # noqa: N818
    """``exp`` has passed, after allowing for clock skew.

    Same 401 as any other rejection, with its own description so clients
    can tell they need a fresh token.
    """

    default_description = "Expired token"


class TokenNotYetValid(InvalidClaims):  # noqa: N818
    """``iat``, ``nbf`` or ``auth_time`` is in the future beyond clock skew."""


class KeyFetchError(AuthError):
    """Google's signing keys could not be fetched or parsed.

    Transient: network failure, timeout, non-2xx status, unparsable body or
    a body with no usable keys. Every caller waiting on the failed refresh
    sees this error. The existing cache is never modified by a failed fetch.
    """

    error_code = 503
    default_description = "Token verification temporarily unavailable"


class Forbidden(AuthError):  # noqa: N818
    """A verified token does not meet a route requirement.

    Raised by the Flask extension for ``email_verified`` or hosted-domain
    requirements. This is the only error that maps to 403.
    """

    error_code = 403
    default_description = "Forbidden"
