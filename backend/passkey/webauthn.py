import logging
import struct
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

import cbor2
from fido2.cose import CoseKey
from fido2.server import Fido2Server
from fido2.utils import websafe_decode, websafe_encode
from fido2.webauthn import (
    Aaguid,
    AttestedCredentialData,
    AuthenticationResponse,
    PublicKeyCredentialDescriptor,
    PublicKeyCredentialRpEntity,
    PublicKeyCredentialUserEntity,
    RegistrationResponse,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from .config import settings

logger = logging.getLogger(__name__)

# Raised by fido2 while parsing untrusted client JSON
CLIENT_INPUT_ERRORS = (KeyError, TypeError, ValueError, IndexError, struct.error)

class WebAuthnRejected(Exception):
    pass

class InvalidPublicKey(Exception):
    pass

@dataclass(frozen=True)
class RegisteredCredential:
    id: str
    public_key: str
    sign_count: int

@dataclass(frozen=True)
class VerifiedAuthentication:
    credential_id: str
    new_sign_count: int

def to_json(value: Any) -> Any:
    """Make fido2 option objects JSON compatible (bytes become base64url)."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return websafe_encode(bytes(value))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping) or hasattr(value, "keys"):
        return {k: to_json(v) for k, v in dict(value).items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [to_json(v) for v in value]
    return value

def encode_public_key(public_key: CoseKey) -> str:
    return websafe_encode(cbor2.dumps(dict(public_key)))

def decode_public_key(encoded: str) -> CoseKey:
    try:
        return CoseKey.parse(cbor2.loads(websafe_decode(encoded)))
    except (cbor2.CBORError, AttributeError, KeyError, TypeError, ValueError) as exc:
        raise InvalidPublicKey(str(exc) or "invalid public key") from exc

def credential_id_from(payload: Mapping) -> str:
    """Canonical base64url credential id of a client response."""
    try:
        raw = websafe_decode(payload.get("rawId") or payload["id"])
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise WebAuthnRejected("malformed credential id") from exc
    return websafe_encode(raw)

class WebAuthnVerifier:
    def __init__(self, server: Fido2Server, user_verification: str = "preferred", resident_key: str = "required"):
        self.server = server
        self.user_verification = UserVerificationRequirement(user_verification)
        self.resident_key = ResidentKeyRequirement(resident_key)

    def _state(self, challenge: str) -> dict:
        return {"challenge": challenge, "user_verification": self.user_verification}

    # ---------- Registration ----------
    def begin_registration(
        self, user: PublicKeyCredentialUserEntity, exclude_credential_ids: list[str] = ()
    ) -> tuple[dict, str]:
        existing = [
            PublicKeyCredentialDescriptor(type="public-key", id=websafe_decode(cid))
            for cid in exclude_credential_ids
        ]
        options, state = self.server.register_begin(
            user=user,
            credentials=existing,
            resident_key_requirement=self.resident_key,
            user_verification=self.user_verification,
            authenticator_attachment=None,
        )
        return to_json(options), state["challenge"]

    def finish_registration(
        self,
        challenge: str,
        payload: Mapping,
        confirm_credential_id_not_registered: Callable[[str], bool],
    ) -> RegisteredCredential:
        # fido2 decodes the base64url fields of the client JSON itself
        try:
            response = RegistrationResponse.from_dict(payload)
        except CLIENT_INPUT_ERRORS as exc:
            raise WebAuthnRejected(f"malformed registration response: {exc}") from exc
        if response.response.attestation_object.auth_data.credential_data is None:
            raise WebAuthnRejected("no attested credential data")
        try:
            auth_data = self.server.register_complete(self._state(challenge), response)
        except ValueError as exc:
            raise WebAuthnRejected(str(exc) or "registration rejected") from exc

        credential_data = auth_data.credential_data
        credential_id = websafe_encode(credential_data.credential_id)
        if not confirm_credential_id_not_registered(credential_id):
            raise WebAuthnRejected("credential id already registered")

        return RegisteredCredential(
            id=credential_id,
            public_key=encode_public_key(credential_data.public_key),
            sign_count=auth_data.counter,
        )

    # ---------- Authentication ----------
    def begin_authentication(self) -> tuple[dict, str]:
        options, state = self.server.authenticate_begin(
            credentials=None,
            user_verification=self.user_verification,
        )
        return to_json(options), state["challenge"]

    def finish_authentication(
        self,
        challenge: str,
        payload: Mapping,
        credential_public_key: CoseKey,
        current_sign_count: int,
        user_handle: bytes | None = None,
    ) -> VerifiedAuthentication:
        try:
            response = AuthenticationResponse.from_dict(payload)
        except CLIENT_INPUT_ERRORS as exc:
            raise WebAuthnRejected(f"malformed assertion: {exc}") from exc

        attested = AttestedCredentialData.create(
            aaguid=Aaguid.NONE,
            credential_id=response.raw_id,
            public_key=credential_public_key,
        )
        try:
            self.server.authenticate_complete(self._state(challenge), [attested], response)
        except ValueError as exc:
            raise WebAuthnRejected(str(exc) or "assertion rejected") from exc

        assertion = response.response
        if user_handle is not None and assertion.user_handle is not None and assertion.user_handle != user_handle:
            raise WebAuthnRejected("user handle does not match credential owner")

        # Counters in use must strictly increase, otherwise the authenticator may be cloned
        new_count = assertion.authenticator_data.counter
        if (new_count or current_sign_count) and new_count <= current_sign_count:
            raise WebAuthnRejected("sign count did not increase")

        return VerifiedAuthentication(credential_id=websafe_encode(response.raw_id), new_sign_count=new_count)

def create_verifier() -> WebAuthnVerifier:
    rp = PublicKeyCredentialRpEntity(id=settings.RP_ID, name=settings.RP_NAME)
    allowed = set(settings.allowed_origins_list)
    server = Fido2Server(rp, verify_origin=lambda origin: origin in allowed)
    server.timeout = settings.CEREMONY_TIMEOUT_MS
    logger.info("WebAuthn relying party %s, origins %s", settings.RP_ID, sorted(allowed))
    return WebAuthnVerifier(
        server,
        user_verification=settings.USER_VERIFICATION,
        resident_key=settings.RESIDENT_KEY,
    )
