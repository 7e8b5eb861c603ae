"""
End-to-end tests for Client and AsyncClient.

Uses ID tokens and key sets recorded from Google, served through
``httpx.MockTransport`` with a pinned clock.
"""

import asyncio
import logging

import httpx
import pytest

import google_id_verification as m

SIGNIN_CLIENT_ID = "349879641691-9vg7bgbun62d4a62vpsfs24oguguank6.apps.googleusercontent.com"
SIGNIN_NOW = 1710948000  # between iat 1710947395 and exp 1710950995
FIREBASE_PROJECT = "jwt-verify"
FIREBASE_NOW = 1607562079  # between iat 1607561874 and exp 1607565474


class KeyEndpoint:
    """Mock certs endpoint serving a fixed document and counting requests."""

    def __init__(self, document: dict, *, status: int = 200, max_age: int = 21600):
        self.document = document
        self.status = status
        self.max_age = max_age
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(
            self.status,
            json=self.document,
            headers={"Cache-Control": f"public, max-age={self.max_age}, must-revalidate"},
        )

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self))

    def async_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


class Clock:
    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestGoogleSignIn:
    def test_verifies_recorded_token(self, signin_token: str, signin_jwks: dict):
        endpoint = KeyEndpoint(signin_jwks)
        client = m.Client.google_signin(
            SIGNIN_CLIENT_ID, http_client=endpoint.client(), clock=Clock(SIGNIN_NOW)
        )

        id_token = client.verify_id_token(signin_token)

        assert id_token.subject == "105907900008170871586"
        assert id_token.issuer == "https://accounts.google.com"
        assert id_token.audience == SIGNIN_CLIENT_ID
        assert id_token.authorized_party == SIGNIN_CLIENT_ID
        assert id_token.email == "dan.james.baumann@gmail.com"
        assert id_token.email_verified is True
        assert id_token.name == "Dan Baumann"
        assert id_token.given_name == "Dan"
        assert id_token.family_name == "Baumann"
        assert id_token.picture.startswith("https://lh3.googleusercontent.com/")
        assert id_token.hosted_domain is None
        assert id_token.issued_at == 1710947395
        assert id_token.expires_at == 1710950995

        assert len(endpoint.requests) == 1
        assert str(endpoint.requests[0].url) == m.GOOGLE_SIGNIN_CERTS_URL

    def test_second_verification_uses_cache(self, signin_token: str, signin_jwks: dict):
        endpoint = KeyEndpoint(signin_jwks)
        client = m.Client.google_signin(
            SIGNIN_CLIENT_ID, http_client=endpoint.client(), clock=Clock(SIGNIN_NOW)
        )

        for _ in range(5):
            client.verify_id_token(signin_token)

        assert len(endpoint.requests) == 1
        assert client.key_store.current.valid_until == SIGNIN_NOW + 21600

    def test_expired(self, signin_token: str, signin_jwks: dict):
        client = m.Client.google_signin(
            SIGNIN_CLIENT_ID,
            http_client=KeyEndpoint(signin_jwks).client(),
            clock=Clock(1710950995),
        )

        with pytest.raises(m.TokenExpired):
            client.verify_id_token(signin_token)

    def test_other_client_id(self, signin_token: str, signin_jwks: dict):
        client = m.Client.google_signin(
            "0000-other.apps.googleusercontent.com",
            http_client=KeyEndpoint(signin_jwks).client(),
            clock=Clock(SIGNIN_NOW),
        )

        with pytest.raises(m.AudienceMismatch):
            client.verify_id_token(signin_token)

    def test_key_not_published(self, signin_token: str, firebase_jwks: dict):
        endpoint = KeyEndpoint(firebase_jwks)
        client = m.Client.google_signin(
            SIGNIN_CLIENT_ID, http_client=endpoint.client(), clock=Clock(SIGNIN_NOW)
        )

        with pytest.raises(m.UnknownKeyId):
            client.verify_id_token(signin_token)

    def test_endpoint_failure(self, signin_token: str):
        endpoint = KeyEndpoint({"error": "unavailable"}, status=503)
        client = m.Client.google_signin(
            SIGNIN_CLIENT_ID, http_client=endpoint.client(), clock=Clock(SIGNIN_NOW)
        )

        with pytest.raises(m.KeyFetchError) as exc_info:
            client.verify_id_token(signin_token)

        assert exc_info.value.error_code == 503

    def test_malformed_token_makes_no_request(self, signin_jwks: dict):
        endpoint = KeyEndpoint(signin_jwks)
        client = m.Client.google_signin(SIGNIN_CLIENT_ID, http_client=endpoint.client())

        with pytest.raises(m.MalformedToken):
            client.verify_id_token("abc.def")

        assert endpoint.requests == []

    def test_rejection_log_never_contains_token(
        self, signin_token: str, signin_jwks: dict, caplog: pytest.LogCaptureFixture
    ):
        client = m.Client.google_signin(
            "0000-other.apps.googleusercontent.com",
            http_client=KeyEndpoint(signin_jwks).client(),
            clock=Clock(SIGNIN_NOW),
        )

        with caplog.at_level(logging.DEBUG, logger="google_id_verification"):
            with pytest.raises(m.AudienceMismatch):
                client.verify_id_token(signin_token)

        assert any("AudienceMismatch" in r.getMessage() for r in caplog.records)
        for part in signin_token.split("."):
            assert all(part not in r.getMessage() for r in caplog.records)


class TestFirebase:
    def test_verifies_recorded_token(self, firebase_token: str, firebase_jwks: dict):
        endpoint = KeyEndpoint(firebase_jwks)
        client = m.Client.firebase(
            FIREBASE_PROJECT, http_client=endpoint.client(), clock=Clock(FIREBASE_NOW)
        )

        id_token = client.verify_id_token(firebase_token)

        assert id_token.subject == "test"
        assert id_token.issuer == "https://securetoken.google.com/jwt-verify"
        assert id_token.auth_time == 1607561874
        assert id_token.sign_in_provider == "custom"
        assert id_token.email is None
        assert endpoint.requests[0].url.path.startswith("/service_accounts/v1/jwk/")

    def test_expired(self, firebase_token: str, firebase_jwks: dict):
        client = m.Client.firebase(
            FIREBASE_PROJECT,
            http_client=KeyEndpoint(firebase_jwks).client(),
            clock=Clock(1607566000),
        )

        with pytest.raises(m.TokenExpired):
            client.verify_id_token(firebase_token)

    def test_issued_in_the_future(self, firebase_token: str, firebase_jwks: dict):
        client = m.Client.firebase(
            FIREBASE_PROJECT,
            http_client=KeyEndpoint(firebase_jwks).client(),
            clock=Clock(1607561000),
        )

        with pytest.raises(m.TokenNotYetValid):
            client.verify_id_token(firebase_token)

    def test_tolerated_by_clock_skew(self, firebase_token: str, firebase_jwks: dict):
        client = m.Client.firebase(
            FIREBASE_PROJECT,
            clock_skew=900,
            http_client=KeyEndpoint(firebase_jwks).client(),
            clock=Clock(1607561000),
        )

        assert client.verify_id_token(firebase_token).subject == "test"

    def test_other_project(self, firebase_token: str, firebase_jwks: dict):
        client = m.Client.firebase(
            "other-project",
            http_client=KeyEndpoint(firebase_jwks).client(),
            clock=Clock(FIREBASE_NOW),
        )

        with pytest.raises(m.IssuerMismatch):
            client.verify_id_token(firebase_token)

    def test_signin_client_rejects_firebase_token(self, firebase_token: str, firebase_jwks):
        client = m.Client.google_signin(
            FIREBASE_PROJECT,
            http_client=KeyEndpoint(firebase_jwks).client(),
            clock=Clock(FIREBASE_NOW),
        )

        with pytest.raises(m.IssuerMismatch):
            client.verify_id_token(firebase_token)


def test_clients_do_not_share_keys(
    signin_token: str, signin_jwks: dict, firebase_token: str, firebase_jwks: dict
):
    signin_endpoint = KeyEndpoint(signin_jwks)
    firebase_endpoint = KeyEndpoint(firebase_jwks)
    signin = m.Client.google_signin(
        SIGNIN_CLIENT_ID, http_client=signin_endpoint.client(), clock=Clock(SIGNIN_NOW)
    )
    firebase = m.Client.firebase(
        FIREBASE_PROJECT, http_client=firebase_endpoint.client(), clock=Clock(FIREBASE_NOW)
    )

    signin.verify_id_token(signin_token)
    firebase.verify_id_token(firebase_token)

    assert signin.key_store is not firebase.key_store
    assert len(signin_endpoint.requests) == 1
    assert len(firebase_endpoint.requests) == 1


def test_injected_key_store(make_fetcher, fetched, make_token, claims, client_id, clock):
    fetcher = make_fetcher(fetched)
    store = m.KeyStore(fetcher, clock=clock)
    client = m.Client.google_signin(client_id, key_store=store, clock=clock)

    assert client.verify_id_token(make_token(claims)).subject == claims["sub"]
    assert client.key_store is store
    assert fetcher.calls == 1


class TestAsyncClient:
    @pytest.mark.asyncio
    async def test_verifies_recorded_tokens(
        self, signin_token, signin_jwks, firebase_token, firebase_jwks
    ):
        signin_endpoint = KeyEndpoint(signin_jwks)
        firebase_endpoint = KeyEndpoint(firebase_jwks)
        signin = m.AsyncClient.google_signin(
            SIGNIN_CLIENT_ID,
            http_client=signin_endpoint.async_client(),
            clock=Clock(SIGNIN_NOW),
        )
        firebase = m.AsyncClient.firebase(
            FIREBASE_PROJECT,
            http_client=firebase_endpoint.async_client(),
            clock=Clock(FIREBASE_NOW),
        )

        assert (await signin.verify_id_token(signin_token)).email_verified is True
        assert (await firebase.verify_id_token(firebase_token)).subject == "test"

    @pytest.mark.asyncio
    async def test_concurrent_verifications_fetch_once(self, signin_token, signin_jwks):
        endpoint = KeyEndpoint(signin_jwks)
        client = m.AsyncClient.google_signin(
            SIGNIN_CLIENT_ID, http_client=endpoint.async_client(), clock=Clock(SIGNIN_NOW)
        )

        results = await asyncio.gather(*(client.verify_id_token(signin_token) for _ in range(20)))

        assert {r.subject for r in results} == {"105907900008170871586"}
        assert len(endpoint.requests) == 1

    @pytest.mark.asyncio
    async def test_expired(self, firebase_token, firebase_jwks):
        client = m.AsyncClient.firebase(
            FIREBASE_PROJECT,
            http_client=KeyEndpoint(firebase_jwks).async_client(),
            clock=Clock(1607566000),
        )

        with pytest.raises(m.TokenExpired):
            await client.verify_id_token(firebase_token)

    @pytest.mark.asyncio
    async def test_malformed_token(self, make_fetcher, fetched, client_id):
        fetcher = make_fetcher(fetched, asynchronous=True)
        client = m.AsyncClient.google_signin(client_id, fetcher=fetcher)

        with pytest.raises(m.MalformedToken):
            await client.verify_id_token("abc.def")

        assert fetcher.calls == 0


class TestClientFromConfig:
    def test_signin(self):
        client = m.client_from_config(
            {"GOOGLE_SIGNIN_CLIENT_ID": SIGNIN_CLIENT_ID, "ID_TOKEN_CLOCK_SKEW": "5"}
        )

        assert isinstance(client, m.Client)
        assert client.policy.audience == SIGNIN_CLIENT_ID
        assert client.policy.accepted_issuers == m.GOOGLE_SIGNIN_ISSUERS
        assert client.policy.clock_skew == 5

    def test_firebase(self):
        client = m.client_from_config({"FIREBASE_PROJECT_ID": FIREBASE_PROJECT})

        assert client.policy.certs_url == m.FIREBASE_CERTS_URL
        assert client.policy.require_auth_time is True

    @pytest.mark.parametrize(
        "config",
        [
            {},
            {"GOOGLE_SIGNIN_CLIENT_ID": SIGNIN_CLIENT_ID, "FIREBASE_PROJECT_ID": "p"},
            {"GOOGLE_SIGNIN_CLIENT_ID": SIGNIN_CLIENT_ID, "ID_TOKEN_CLOCK_SKEW": -1},
        ],
    )
    def test_invalid(self, config):
        with pytest.raises(ValueError):
            m.client_from_config(config)
