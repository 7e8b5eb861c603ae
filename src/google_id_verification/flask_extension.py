"""Flask integration for Google ID token verification.

Key Components:
- AuthExtension: decorator that protects routes with a verified ID token
- get_verified_id_token: one-off verification of a cookie-held token

Request flow:
1. Extract the token (bearer header by default)
2. ``client.verify_id_token(token)``
3. Store the IdToken in ``flask.g.id_token``
4. Enforce optional route requirements (verified email, Workspace domain)
5. Map errors to HTTP responses: 401 for rejections, 403 for unmet
   requirements, 503 when Google's keys cannot be fetched
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from functools import wraps
from typing import TYPE_CHECKING, Any, Final

from flask import Flask, abort, g, request

from .client import client_from_config
from .errors import AuthError, Forbidden
from .extractors import BearerExtractor, CookieExtractor

if TYPE_CHECKING:
    from .id_token import IdToken
    from .protocols import Extractor, TokenVerifier, ViewFunc

logger = logging.getLogger(__name__)

_EXT_KEY: Final[str] = "google_id_verification"
"""Flask extensions registry key for AuthExtension."""


class AuthExtension:
    """
    Flask decorator glue for ID token authentication.

    Responsibilities:
    - Extract the token from the request (Extractor)
    - Verify it (TokenVerifier, normally a Client)
    - Store the IdToken in ``flask.g.id_token``
    - Enforce per-route requirements
    - Convert domain errors to HTTP responses (abort)

    Pattern:
        auth = AuthExtension()
        auth.init_app(app)  # builds a Client from app.config

    Usage:
        auth = AuthExtension(Client.google_signin(CLIENT_ID))

        @app.get("/me")
        @auth.require(email_verified=True)
        def me():
            return {"sub": g.id_token.subject}
    """

    def __init__(
        self,
        client: TokenVerifier | None = None,
        extractor: Extractor | None = None,
        app: Flask | None = None,
    ) -> None:
        self._client: TokenVerifier | None = client
        self._extractor: Extractor | None = extractor
        if app is not None:
            self.init_app(app)

    def init_app(
        self,
        app: Flask,
        *,
        client: TokenVerifier | None = None,
        extractor: Extractor | None = None,
    ) -> None:
        """Register the extension on ``app``.

        Explicit arguments win over the constructor's. Without any client, one
        is built from ``app.config`` (see ``client_from_config``). Without any
        extractor, ``ID_TOKEN_COOKIE_NAME`` selects cookie extraction;
        otherwise the bearer header is used.

        Raises:
            ValueError: A client must be built and the config is incomplete.
        """
        if client is not None:
            self._client = client
        if extractor is not None:
            self._extractor = extractor

        if self._client is None:
            self._client = client_from_config(app.config)
        if self._extractor is None:
            cookie_name = app.config.get("ID_TOKEN_COOKIE_NAME")
            self._extractor = CookieExtractor(cookie_name) if cookie_name else BearerExtractor()

        app.extensions[_EXT_KEY] = self

    @property
    def client(self) -> TokenVerifier:
        if self._client is None:
            raise RuntimeError("AuthExtension has no client; pass one or call init_app()")
        return self._client

    def require(
        self,
        *,
        email_verified: bool = False,
        hosted_domains: Sequence[str] = (),
    ):
        """Decorator to protect a route with a verified ID token.

        Args:
            email_verified: Reject (403) tokens whose ``email_verified`` is
                not true.
            hosted_domains: If non-empty, reject (403) tokens whose ``hd``
                (Google Workspace domain) is not listed.

        Error mapping:
        - ``MissingToken``  -> 401
        - ``InvalidToken`` and subclasses -> 401
        - ``KeyFetchError`` -> 503
        - ``Forbidden``     -> 403
        - Any other error   -> 401 ("Authentication failed")

        Side Effects:
            Sets ``flask.g.id_token`` before calling the view. May end the
            request early via ``flask.abort``.
        """
        domains = frozenset(hosted_domains)

        def decorator(view: ViewFunc) -> ViewFunc:
            @wraps(view)
            def wrapper(*args: Any, **kwargs: Any) -> Any:
                client = self.client
                extractor = self._extractor or BearerExtractor()
                try:
                    token = extractor.extract()
                    id_token = client.verify_id_token(token)

                    g.id_token = id_token

                    _check_requirements(
                        id_token, email_verified=email_verified, hosted_domains=domains
                    )

                except AuthError as e:
                    logger.debug("Rejected request to %s: %s", request.path, e)
                    abort(e.error_code, description=e.description)
                except Exception:
                    logger.exception("Unexpected error authenticating request to %s", request.path)
                    abort(401, description="Authentication failed")

                return view(*args, **kwargs)

            return wrapper

        return decorator


def _check_requirements(
    id_token: IdToken, *, email_verified: bool, hosted_domains: frozenset[str]
) -> None:
    if email_verified and not id_token.email_verified:
        raise Forbidden("Email address is not verified")
    if hosted_domains and id_token.hosted_domain not in hosted_domains:
        raise Forbidden(f"Hosted domain {id_token.hosted_domain!r} is not allowed")


def get_verified_id_token(
    client: TokenVerifier,
    *,
    cookie_name: str = "id_token",
) -> IdToken:
    """
    Return the verified IdToken held in a cookie of the current request.

    For views that need the identity without the decorator, e.g. a login
    callback that sets a session.

    Aborts with the error's status code when the cookie is missing or the
    token is rejected.
    """
    token = request.cookies.get(cookie_name)
    if not token:
        abort(401, description="Missing token")
    try:
        return client.verify_id_token(token)
    except AuthError as e:
        abort(e.error_code, description=e.description)
    except Exception:
        logger.exception("Unexpected error verifying cookie %r", cookie_name)
        abort(401, description="Authentication failed")
