"""Compact JWS decoding without verification.

The decoder only parses. Nothing it returns is trusted until the verifier
has checked the signature over ``DecodedToken.signing_input``.

``signing_input`` is sliced from the raw token, never rebuilt from the parsed
header and payload.
"""

from __future__ import annotations

import binascii
import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from jwt.utils import base64url_decode

from .errors import MalformedToken

_BASE64URL = re.compile(r"[A-Za-z0-9_-]*")


@dataclass(frozen=True, slots=True)
class TokenHeader:
    """The JOSE header fields verification depends on."""

    algorithm: str
    key_id: str
    token_type: str | None = None


@dataclass(frozen=True, slots=True)
class DecodedToken:
    """A structurally valid but unverified token.

    Attributes:
        header: Parsed JOSE header.
        payload: Raw payload bytes, as signed.
        claims: Parsed payload. Untrusted until the signature is verified.
        signature: Raw signature bytes.
        signing_input: Exact ASCII bytes of ``<header>.<payload>`` from the
            raw token.
    """

    header: TokenHeader
    payload: bytes = field(repr=False)
    claims: Mapping[str, Any] = field(hash=False)
    signature: bytes = field(repr=False)
    signing_input: bytes = field(repr=False)


class TokenDecoder:
    """Splits and decodes compact three-segment tokens.

    Stateless; one instance can be shared by any number of threads.
    """

    def decode(self, raw_token: str) -> DecodedToken:
        """Decode ``raw_token`` into its parts.

        Raises:
            MalformedToken: Wrong segment count, invalid base64url, header or
                payload not a JSON object, or header missing ``alg``/``kid``.
        """
        if not isinstance(raw_token, str):
            raise MalformedToken("Token must be a string")
        if not raw_token.isascii():
            raise MalformedToken("Token contains non-ASCII characters")

        segments = raw_token.split(".")
        if len(segments) != 3:
            raise MalformedToken(f"Token must have 3 segments, found {len(segments)}")

        header_segment, payload_segment, signature_segment = segments

        header = self._parse_header(self._decode_json(header_segment, "header"))
        payload = self._decode_segment(payload_segment, "payload")
        claims = self._decode_json_bytes(payload, "payload")
        signature = self._decode_segment(signature_segment, "signature")

        return DecodedToken(
            header=header,
            payload=payload,
            claims=MappingProxyType(claims),
            signature=signature,
            signing_input=f"{header_segment}.{payload_segment}".encode("ascii"),
        )

    @staticmethod
    def _decode_segment(segment: str, name: str) -> bytes:
        if not _BASE64URL.fullmatch(segment):
            raise MalformedToken(f"Token {name} is not base64url encoded")
        try:
            return base64url_decode(segment)
        except (binascii.Error, ValueError) as e:
            raise MalformedToken(f"Token {name} could not be decoded") from e

    def _decode_json(self, segment: str, name: str) -> dict[str, Any]:
        return self._decode_json_bytes(self._decode_segment(segment, name), name)

    @staticmethod
    def _decode_json_bytes(data: bytes, name: str) -> dict[str, Any]:
        try:
            value = json.loads(data)
        except ValueError as e:
            raise MalformedToken(f"Token {name} is not valid JSON") from e
        if not isinstance(value, dict):
            raise MalformedToken(f"Token {name} is not a JSON object")
        return value

    @staticmethod
    def _parse_header(header: dict[str, Any]) -> TokenHeader:
        algorithm = header.get("alg")
        if not isinstance(algorithm, str) or not algorithm:
            raise MalformedToken("Token header has no 'alg'")

        key_id = header.get("kid")
        if not isinstance(key_id, str) or not key_id:
            raise MalformedToken("Token header has no 'kid'")

        token_type = header.get("typ")
        return TokenHeader(
            algorithm=algorithm,
            key_id=key_id,
            token_type=token_type if isinstance(token_type, str) else None,
        )
