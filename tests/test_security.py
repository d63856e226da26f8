import asyncio
import time
from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID
from jose import jwt

from enatbet_api.app.core import security
from enatbet_api.app.core.config import settings
from enatbet_api.app.core.security import InvalidTokenError, verify_firebase_token

PROJECT = "enatbet-test"
KID = "test-key-1"


def _make_key():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "securetoken.system.gserviceaccount.com")])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=1))
        .sign(key, hashes.SHA256())
    )
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("ascii")
    return private_pem, cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


PRIVATE_KEY, CERTIFICATE = _make_key()


def make_token(kid=KID, **overrides):
    now = int(time.time())
    claims = {
        "iss": f"https://securetoken.google.com/{PROJECT}",
        "aud": PROJECT,
        "sub": "uid-123",
        "email": "someone@example.com",
        "iat": now - 10,
        "exp": now + 3600,
    }
    claims.update(overrides)
    return jwt.encode(claims, PRIVATE_KEY, algorithm="RS256", headers={"kid": kid})


@pytest.fixture
def certificates(monkeypatch):
    calls = []

    async def fake_certificates(force_refresh=False):
        calls.append(force_refresh)
        return {KID: CERTIFICATE}

    monkeypatch.setattr(security, "get_google_certificates", fake_certificates)
    return calls


def verify(token):
    return asyncio.run(verify_firebase_token(token))


def test_valid_token(certificates):
    claims = verify(make_token())
    assert claims["sub"] == "uid-123"
    assert claims["email"] == "someone@example.com"
    assert certificates == [False]


def test_wrong_audience(certificates):
    with pytest.raises(InvalidTokenError):
        verify(make_token(aud="another-project"))


def test_wrong_issuer(certificates):
    with pytest.raises(InvalidTokenError):
        verify(make_token(iss="https://accounts.example.com"))


def test_expired_token(certificates):
    with pytest.raises(InvalidTokenError):
        verify(make_token(iat=int(time.time()) - 7200, exp=int(time.time()) - 3600))


def test_missing_subject(certificates):
    with pytest.raises(InvalidTokenError):
        verify(make_token(sub=""))


def test_unknown_key_refreshes_once(certificates):
    with pytest.raises(InvalidTokenError) as exc:
        verify(make_token(kid="rotated-key"))
    assert str(exc.value) == "Unknown signing key"
    assert certificates == [False, True]


def test_malformed_and_unsigned_tokens(certificates):
    with pytest.raises(InvalidTokenError):
        verify("not-a-jwt")
    hs256 = jwt.encode({"sub": "uid-123"}, "secret", algorithm="HS256", headers={"kid": KID})
    with pytest.raises(InvalidTokenError):
        verify(hs256)
    assert certificates == []


def test_project_must_be_configured(monkeypatch, certificates):
    monkeypatch.setattr(settings, "firebase_project_id", "")
    with pytest.raises(RuntimeError):
        verify(make_token())


def test_real_token_through_the_api(monkeypatch, certificates):
    from fastapi.testclient import TestClient

    from enatbet_api.app.main import app

    with TestClient(app) as client:
        good = client.get("/api/v1/users/me", headers={"Authorization": f"Bearer {make_token()}"})
        assert good.status_code == 200
        assert good.json()["email"] == "someone@example.com"
        assert good.json()["role"] == "guest"

        bad = client.get("/api/v1/users/me", headers={"Authorization": f"Bearer {make_token(aud='x')}"})
        assert bad.status_code == 401
        assert bad.headers["www-authenticate"] == "Bearer"
