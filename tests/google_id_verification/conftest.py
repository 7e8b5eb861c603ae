import asyncio
import datetime
import json
import threading
import time
from pathlib import Path

import jwt
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.x509.oid import NameOID
from flask import Flask
from jwt.utils import base64url_encode

import google_id_verification as m

DATA_DIR = Path(__file__).parent / "data"


@pytest.fixture()
def app():
    app = Flask(__name__)
    app.config["TESTING"] = True
    return app


@pytest.fixture()
def now() -> int:
    return 1_700_000_000


@pytest.fixture()
def client_id() -> str:
    return "1234-abc.apps.googleusercontent.com"


class FakeClock:
    """Settable wall clock; pass it wherever a ``clock`` is accepted."""

    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock(now: int) -> FakeClock:
    return FakeClock(now)


# ----------------------------------------------------------------------------
# Keys and tokens
# ----------------------------------------------------------------------------


@pytest.fixture(scope="session")
def rsa_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_rsa_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ec_private_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture()
def signing_key(rsa_private_key) -> m.SigningKey:
    return m.SigningKey(key_id="kid1", algorithm="RS256", public_key=rsa_private_key.public_key())


@pytest.fixture()
def make_signing_key(rsa_private_key):
    """
    Factory fixture for SigningKey records.

    Usage in tests:
        key = make_signing_key("kid2")
    """

    def _make(kid: str, *, private_key=None, algorithm: str = "RS256") -> m.SigningKey:
        private_key = private_key or rsa_private_key
        return m.SigningKey(key_id=kid, algorithm=algorithm, public_key=private_key.public_key())

    return _make


@pytest.fixture()
def claims(now: int, client_id: str) -> dict:
    """A valid Google Sign-In claim set at ``now``."""
    return {
        "iss": "https://accounts.google.com",
        "azp": client_id,
        "aud": client_id,
        "sub": "110169484474386276334",
        "email": "user@example.com",
        "email_verified": True,
        "iat": now - 60,
        "exp": now + 3540,
    }


@pytest.fixture()
def make_token(rsa_private_key):
    """
    Factory fixture that signs claims with PyJWT.

    Usage in tests:
        token = make_token(claims, kid="kid1")
        token = make_token(claims, key=ec_private_key, algorithm="ES256")
    """

    def _make(
        claims: dict,
        *,
        kid: str = "kid1",
        key=None,
        algorithm: str = "RS256",
        headers: dict | None = None,
    ) -> str:
        if key is None and algorithm.startswith("RS"):
            key = rsa_private_key
        return jwt.encode(claims, key, algorithm=algorithm, headers={"kid": kid, **(headers or {})})

    return _make


@pytest.fixture()
def sign_raw(rsa_private_key):
    """
    Sign exact header and payload bytes with RS256.

    For payloads PyJWT would never produce (whitespace, key order).
    """

    def _sign(header: bytes, payload: bytes) -> str:
        signing_input = base64url_encode(header) + b"." + base64url_encode(payload)
        signature = rsa_private_key.sign(signing_input, padding.PKCS1v15(), hashes.SHA256())
        return (signing_input + b"." + base64url_encode(signature)).decode("ascii")

    return _sign


@pytest.fixture(scope="session")
def certificate_pem(rsa_private_key) -> str:
    """Self-signed certificate for the session RSA key, as Google's x509 endpoint serves."""
    name = x509.Name(
        [x509.NameAttribute(NameOID.COMMON_NAME, "securetoken.system.gserviceaccount.com")]
    )
    issued = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(rsa_private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(issued)
        .not_valid_after(issued + datetime.timedelta(days=365))
        .sign(rsa_private_key, hashes.SHA256())
    )
    return certificate.public_bytes(serialization.Encoding.PEM).decode("ascii")


# ----------------------------------------------------------------------------
# Recorded Google data
# ----------------------------------------------------------------------------


@pytest.fixture(scope="session")
def signin_token() -> str:
    """Real Google Sign-In ID token (kid 09bcf802..., iat 1710947395, exp 1710950995)."""
    return (DATA_DIR / "signin_token.txt").read_text().strip()


@pytest.fixture(scope="session")
def signin_jwks() -> dict:
    return json.loads((DATA_DIR / "signin_jwks.json").read_text())


@pytest.fixture(scope="session")
def firebase_token() -> str:
    """Real Firebase ID token for project "jwt-verify" (iat 1607561874, exp 1607565474)."""
    return (DATA_DIR / "firebase_token.txt").read_text().strip()


@pytest.fixture(scope="session")
def firebase_jwks() -> dict:
    return json.loads((DATA_DIR / "firebase_jwks.json").read_text())


# ----------------------------------------------------------------------------
# Fake fetchers
# ----------------------------------------------------------------------------


class FakeFetcher:
    """
    Counting KeyFetcher stub.

    Returns (or raises) the queued results in order; the last one repeats.
    ``delay`` keeps the fetch in flight so concurrent callers pile up.
    """

    def __init__(self, *results, delay: float = 0.0):
        self._results = list(results)
        self.delay = delay
        self.calls = 0
        self.started = threading.Event()
        self._lock = threading.Lock()

    def _take(self):
        with self._lock:
            self.calls += 1
            if len(self._results) > 1:
                return self._results.pop(0)
            return self._results[0]

    @staticmethod
    def _deliver(result):
        if isinstance(result, BaseException):
            raise result
        return result

    def fetch(self) -> m.FetchedKeys:
        result = self._take()
        self.started.set()
        if self.delay:
            time.sleep(self.delay)
        return self._deliver(result)


class AsyncFakeFetcher(FakeFetcher):
    """Counting AsyncKeyFetcher stub."""

    async def fetch(self) -> m.FetchedKeys:
        result = self._take()
        self.started.set()
        await asyncio.sleep(self.delay)
        return self._deliver(result)


@pytest.fixture()
def fetched(signing_key) -> m.FetchedKeys:
    return m.FetchedKeys(keys=(signing_key,), max_age=3600)


@pytest.fixture()
def make_fetcher():
    """
    Factory fixture for counting fetchers.

    Usage in tests:
        fetcher = make_fetcher(fetched, m.KeyFetchError("down"), delay=0.1)
        fetcher = make_fetcher(fetched, asynchronous=True)
    """

    def _make(*results, delay: float = 0.0, asynchronous: bool = False) -> FakeFetcher:
        cls = AsyncFakeFetcher if asynchronous else FakeFetcher
        return cls(*results, delay=delay)

    return _make
