"""Ways of reading an ID token from a Flask request.

- BearerExtractor: ``Authorization: Bearer <id token>`` (mobile apps and
  SPAs that send the Firebase/Google ID token to an API)
- CookieExtractor: a cookie set by the app after sign-in
- CredentialFormExtractor: the ``credential`` form field that Google
  Identity Services posts to a ``login_uri``, with its double-submit CSRF
  cookie

Tokens are never read from query strings; they would end up in access logs.
"""

from __future__ import annotations

import hmac

from flask import request

from .errors import MissingToken


class BearerExtractor:
    """Reads the token from ``Authorization: Bearer <token>``.

    The scheme is matched case-insensitively; anything other than exactly
    one scheme and one non-empty token is rejected.
    """

    def extract(self) -> str:
        """Return the bearer token.

        Raises:
            MissingToken: Header missing, not Bearer, or empty token.
        """
        auth_header = request.headers.get("Authorization", "").strip()
        if not auth_header:
            raise MissingToken("Missing Authorization header")

        scheme, _, token = auth_header.partition(" ")
        if scheme.lower() != "bearer":
            raise MissingToken("Invalid authorization scheme (expected 'Bearer')")

        token = token.strip()
        if not token:
            raise MissingToken("Bearer token is empty")
        if " " in token:
            raise MissingToken("Invalid Authorization header format (expected 'Bearer <token>')")

        return token


class CookieExtractor:
    """Reads the token from a cookie.

    Set the cookie with HttpOnly, Secure and SameSite; cookie auth also needs
    CSRF protection on state-changing routes.

    Attributes:
        cookie_name: Cookie holding the ID token.
    """

    def __init__(self, cookie_name: str = "id_token") -> None:
        if not cookie_name or not cookie_name.strip():
            raise ValueError("cookie_name cannot be empty")
        self.cookie_name = cookie_name

    def extract(self) -> str:
        token = request.cookies.get(self.cookie_name)
        if not token:
            raise MissingToken(f"Missing cookie '{self.cookie_name}'")
        return token


class CredentialFormExtractor:
    """Reads the ID token Google Identity Services posts to ``login_uri``.

    The post carries the token in the ``credential`` field and a
    ``g_csrf_token`` value that must equal the ``g_csrf_token`` cookie Google
    set on the same browser.

    Attributes:
        field_name: Form field with the ID token.
        csrf_name: Name of both the CSRF form field and cookie.
    """

    def __init__(self, field_name: str = "credential", csrf_name: str = "g_csrf_token") -> None:
        self.field_name = field_name
        self.csrf_name = csrf_name

    def extract(self) -> str:
        """Return the posted credential after the double-submit check.

        Raises:
            MissingToken: Credential missing, or CSRF values missing or
                different.
        """
        csrf_cookie = request.cookies.get(self.csrf_name)
        csrf_field = request.form.get(self.csrf_name)
        if not csrf_cookie or not csrf_field:
            raise MissingToken("Missing CSRF token in cookie or form")
        if not hmac.compare_digest(csrf_cookie.encode(), csrf_field.encode()):
            raise MissingToken("Failed to verify double submit CSRF token")

        token = request.form.get(self.field_name)
        if not token:
            raise MissingToken(f"Missing form field '{self.field_name}'")
        return token
