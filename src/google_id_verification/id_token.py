"""Verified ID token."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .decoder import TokenHeader


@dataclass(frozen=True, slots=True)
class IdToken:
    """Result of a successful verification.

    Only the Verifier creates these, after the signature and every claim
    check passed. ``claims`` is the full payload exactly as signed; the
    properties are typed shortcuts into it.

    Profile properties return None when the claim is absent. Google Sign-In
    tokens carry email/name/picture when the matching scopes were granted;
    Firebase tokens carry whatever the sign-in provider supplied.
    """

    header: TokenHeader
    claims: Mapping[str, Any] = field(hash=False)

    # Registered claims (validated)

    @property
    def subject(self) -> str:
        return self.claims["sub"]

    @property
    def issuer(self) -> str:
        return self.claims["iss"]

    @property
    def audience(self) -> str:
        return self.claims["aud"]

    @property
    def expires_at(self) -> int | float:
        return self.claims["exp"]

    @property
    def issued_at(self) -> int | float:
        return self.claims["iat"]

    @property
    def auth_time(self) -> int | float | None:
        return self.claims.get("auth_time")

    @property
    def authorized_party(self) -> str | None:
        """``azp``: the client that requested the token (Sign-In)."""
        return self.claims.get("azp")

    # Profile claims

    @property
    def email(self) -> str | None:
        return self.claims.get("email")

    @property
    def email_verified(self) -> bool:
        # Google has sent this as the string "true" in older tokens.
        value = self.claims.get("email_verified", False)
        return value is True or value == "true"

    @property
    def name(self) -> str | None:
        return self.claims.get("name")

    @property
    def picture(self) -> str | None:
        return self.claims.get("picture")

    @property
    def given_name(self) -> str | None:
        return self.claims.get("given_name")

    @property
    def family_name(self) -> str | None:
        return self.claims.get("family_name")

    @property
    def locale(self) -> str | None:
        return self.claims.get("locale")

    @property
    def hosted_domain(self) -> str | None:
        """``hd``: Google Workspace domain of the account, if any."""
        return self.claims.get("hd")

    @property
    def phone_number(self) -> str | None:
        return self.claims.get("phone_number")

    @property
    def sign_in_provider(self) -> str | None:
        """Firebase ``firebase.sign_in_provider``, e.g. "google.com"."""
        firebase = self.claims.get("firebase")
        if isinstance(firebase, Mapping):
            return firebase.get("sign_in_provider")
        return None
