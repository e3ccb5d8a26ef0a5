import logging
from collections.abc import Mapping

from .challenge_store import ChallengeStore
from .errors import InternalError, MissingChallenge, Unauthorized, VerificationFailed
from .models import PasskeyUser
from .stores import CredentialStore, UserStore
from .webauthn import (
    InvalidPublicKey,
    WebAuthnRejected,
    WebAuthnVerifier,
    credential_id_from,
    decode_public_key,
)

logger = logging.getLogger(__name__)

class RegistrationCeremony:
    def __init__(
        self,
        challenges: ChallengeStore,
        users: UserStore,
        credentials: CredentialStore,
        verifier: WebAuthnVerifier,
        session_key: str = "registrationChallenge",
    ):
        self.challenges = challenges
        self.users = users
        self.credentials = credentials
        self.verifier = verifier
        self.session_key = session_key

    def begin(self, user: PasskeyUser) -> dict:
        user_entity = user.webauthn_user
        existing = [c.id for c in self.credentials.for_user(user.username)]
        options, challenge = self.verifier.begin_registration(user_entity, existing)
        self.challenges.set(self.session_key, challenge)
        logger.debug("Registration challenge issued for %s", user.username)
        return options

    def finish(self, payload: Mapping, user: PasskeyUser):
        challenge = self.challenges.pop(self.session_key)
        if not challenge:
            raise MissingChallenge("Missing registration challenge")

        try:
            registered = self.verifier.finish_registration(
                challenge,
                payload,
                confirm_credential_id_not_registered=self.credentials.confirm_not_registered,
            )
        except WebAuthnRejected as exc:
            logger.warning("Registration rejected for %s: %s", user.username, exc)
            raise VerificationFailed(str(exc)) from exc

        cred = self.credentials.add(
            user,
            credential_id=registered.id,
            public_key=registered.public_key,
            sign_count=registered.sign_count,
        )
        logger.info("Registered credential %s for %s", registered.id, user.username)
        return cred

    def delete(self, user: PasskeyUser) -> bool:
        deleted = self.users.delete(user)
        if deleted:
            logger.info("Deleted passkey user %s", user.username)
        return deleted

class AuthenticationCeremony:
    def __init__(
        self,
        challenges: ChallengeStore,
        credentials: CredentialStore,
        verifier: WebAuthnVerifier,
        session_key: str = "authChallenge",
    ):
        self.challenges = challenges
        self.credentials = credentials
        self.verifier = verifier
        self.session_key = session_key

    def begin(self) -> dict:
        options, challenge = self.verifier.begin_authentication()
        self.challenges.set(self.session_key, challenge)
        return options

    def finish(self, payload: Mapping) -> PasskeyUser:
        """Verify an assertion and return the credential's owner.

        The stored sign count is overwritten with the verified one before the
        user is returned; a failure to persist it fails the login.
        """
        challenge = self.challenges.pop(self.session_key)
        if not challenge:
            raise MissingChallenge("Missing authentication challenge")

        try:
            credential_id = credential_id_from(payload)
        except WebAuthnRejected as exc:
            raise Unauthorized() from exc

        cred = self.credentials.get_with_user(credential_id)
        if cred is None:
            logger.warning("Authentication with unknown credential %s", credential_id)
            raise Unauthorized()

        try:
            public_key = decode_public_key(cred.public_key)
        except InvalidPublicKey as exc:
            raise InternalError(f"Invalid credential public key for {cred.id}") from exc

        user = cred.user
        current = cred.current_sign_count
        try:
            verified = self.verifier.finish_authentication(
                challenge,
                payload,
                credential_public_key=public_key,
                current_sign_count=current,
                user_handle=user.webauthn_user.id,
            )
        except WebAuthnRejected as exc:
            logger.warning("Authentication rejected for credential %s: %s", cred.id, exc)
            raise Unauthorized() from exc

        if not self.credentials.update_sign_count(cred.id, expected=current, new_count=verified.new_sign_count):
            logger.warning("Sign count of %s changed during authentication", cred.id)
            raise Unauthorized()

        logger.info("Authenticated %s with credential %s", user.username, cred.id)
        return user
