"""
Pytest configuration for the passkey backend.

Settings are read at import time, so the environment is prepared before any
``passkey`` module is imported. Redis is replaced by an in-memory fake and the
fido2 verifier by ``FakeVerifier`` wherever a test does not need real
WebAuthn payloads.
"""

import hashlib
import json
import os
import secrets

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("RP_ID", "localhost")
os.environ.setdefault("ALLOWED_ORIGINS", "http://localhost:8080")

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from fastapi.testclient import TestClient
from fido2.cose import ES256
from fido2.utils import websafe_encode
from fido2.webauthn import Aaguid, AttestationObject, AttestedCredentialData, AuthenticatorData

from passkey.challenge_store import RedisChallengeStore, get_redis
from passkey.db import Base, SessionLocal, engine, init_db
from passkey.deps import get_verifier
from passkey.main import app
from passkey.webauthn import RegisteredCredential, VerifiedAuthentication, WebAuthnRejected, encode_public_key


class FakePipeline:
    def __init__(self, client):
        self.client = client
        self.ops = []

    def get(self, key):
        self.ops.append(("get", key))

    def delete(self, key):
        self.ops.append(("delete", key))

    def execute(self):
        results = [getattr(self.client, op)(key) for op, key in self.ops]
        self.ops = []
        return results


class FakeRedis:
    """Just enough of redis.Redis for the challenge store."""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    def get(self, key):
        return self.data.get(key)

    def setex(self, key, ttl, value):
        self.data[key] = value.encode() if isinstance(value, str) else value
        self.ttls[key] = ttl

    def delete(self, key):
        self.ttls.pop(key, None)
        return 1 if self.data.pop(key, None) is not None else 0

    def pipeline(self):
        return FakePipeline(self)


def make_public_key() -> str:
    private_key = ec.generate_private_key(ec.SECP256R1())
    return encode_public_key(ES256.from_cryptography_key(private_key.public_key()))


def cred_id(raw: bytes) -> str:
    return websafe_encode(raw)


class SoftAuthenticator:
    """A software ES256 authenticator producing browser-shaped JSON responses."""

    def __init__(self, credential_id: bytes = b"credential-0001", rp_id: str = "localhost",
                 origin: str = "http://localhost:8080"):
        self.private_key = ec.generate_private_key(ec.SECP256R1())
        self.public_key = ES256.from_cryptography_key(self.private_key.public_key())
        self.credential_id = credential_id
        self.rp_id_hash = hashlib.sha256(rp_id.encode()).digest()
        self.origin = origin

    def client_data(self, type_: str, challenge: str) -> bytes:
        return json.dumps(
            {"type": type_, "challenge": challenge, "origin": self.origin, "crossOrigin": False}
        ).encode()

    def register(self, challenge: str) -> dict:
        credential_data = AttestedCredentialData.create(Aaguid.NONE, self.credential_id, self.public_key)
        auth_data = AuthenticatorData.create(
            self.rp_id_hash,
            AuthenticatorData.FLAG.UP | AuthenticatorData.FLAG.AT,
            0,
            credential_data,
        )
        attestation = AttestationObject.create("none", auth_data, {})
        return {
            "id": websafe_encode(self.credential_id),
            "rawId": websafe_encode(self.credential_id),
            "type": "public-key",
            "response": {
                "clientDataJSON": websafe_encode(self.client_data("webauthn.create", challenge)),
                "attestationObject": websafe_encode(bytes(attestation)),
            },
        }

    def assertion(self, challenge: str, counter: int, user_handle: bytes | None = b"alice",
                  signer=None) -> dict:
        client_data = self.client_data("webauthn.get", challenge)
        auth_data = AuthenticatorData.create(self.rp_id_hash, AuthenticatorData.FLAG.UP, counter)
        signer = signer or self.private_key
        signature = signer.sign(bytes(auth_data) + hashlib.sha256(client_data).digest(), ec.ECDSA(hashes.SHA256()))
        response = {
            "clientDataJSON": websafe_encode(client_data),
            "authenticatorData": websafe_encode(bytes(auth_data)),
            "signature": websafe_encode(signature),
        }
        if user_handle is not None:
            response["userHandle"] = websafe_encode(user_handle)
        return {
            "id": websafe_encode(self.credential_id),
            "rawId": websafe_encode(self.credential_id),
            "type": "public-key",
            "response": response,
        }


class FakeVerifier:
    """Stands in for WebAuthnVerifier.

    Client payloads are plain dicts: the "challenge" field echoes the issued
    challenge, "signature" must be "valid" for assertions, and "signCount"
    carries the authenticator counter.
    """

    def __init__(self, enforce_uniqueness: bool = True):
        self.enforce_uniqueness = enforce_uniqueness
        self.public_key = make_public_key()
        self.authentications = []

    def begin_registration(self, user, exclude_credential_ids=()):
        challenge = websafe_encode(secrets.token_bytes(32))
        options = {
            "publicKey": {
                "challenge": challenge,
                "user": {"id": websafe_encode(user.id), "name": user.name, "displayName": user.display_name},
                "excludeCredentials": [{"type": "public-key", "id": c} for c in exclude_credential_ids],
            }
        }
        return options, challenge

    def finish_registration(self, challenge, payload, confirm_credential_id_not_registered):
        if payload.get("challenge") != challenge:
            raise WebAuthnRejected("challenge mismatch")
        if "id" not in payload:
            raise WebAuthnRejected("malformed payload")
        if self.enforce_uniqueness and not confirm_credential_id_not_registered(payload["id"]):
            raise WebAuthnRejected("credential id already registered")
        return RegisteredCredential(
            id=payload["id"],
            public_key=self.public_key,
            sign_count=payload.get("signCount", 0),
        )

    def begin_authentication(self):
        challenge = websafe_encode(secrets.token_bytes(32))
        return {"publicKey": {"challenge": challenge, "rpId": "localhost"}}, challenge

    def finish_authentication(self, challenge, payload, credential_public_key, current_sign_count, user_handle=None):
        self.authentications.append((payload["id"], current_sign_count))
        if payload.get("challenge") != challenge or payload.get("signature") != "valid":
            raise WebAuthnRejected("invalid signature")
        return VerifiedAuthentication(credential_id=payload["id"], new_sign_count=payload.get("signCount", 0))


@pytest.fixture(autouse=True)
def database():
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def challenges(fake_redis):
    return RedisChallengeStore(fake_redis, "session-1", ttl_seconds=300)


@pytest.fixture
def verifier():
    return FakeVerifier()


@pytest.fixture
def client(fake_redis, verifier):
    app.dependency_overrides[get_redis] = lambda: fake_redis
    app.dependency_overrides[get_verifier] = lambda: verifier
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
