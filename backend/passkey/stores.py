import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from .errors import PersistenceFailed, VerificationFailed
from .models import PasskeyUser, WebAuthnCredential

logger = logging.getLogger(__name__)

class UserStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, username: str) -> PasskeyUser | None:
        return self.db.get(PasskeyUser, username)

    def get_or_build(self, username: str, display_name: str | None = None) -> PasskeyUser:
        """Existing user, or a transient one that is only saved on registration."""
        user = self.get(username)
        if user is None:
            user = PasskeyUser(username=username, display_name=display_name)
        return user

    def delete(self, user: PasskeyUser) -> bool:
        persisted = self.get(user.username)
        if persisted is None:
            return False
        try:
            self.db.delete(persisted)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceFailed("could not delete user") from exc
        return True

class CredentialStore:
    def __init__(self, db: Session):
        self.db = db

    def is_registered(self, credential_id: str) -> bool:
        stmt = select(WebAuthnCredential.id).where(WebAuthnCredential.id == credential_id)
        return self.db.execute(stmt).first() is not None

    def confirm_not_registered(self, credential_id: str) -> bool:
        return not self.is_registered(credential_id)

    def for_user(self, username: str) -> list[WebAuthnCredential]:
        stmt = select(WebAuthnCredential).where(WebAuthnCredential.user_id == username)
        return list(self.db.scalars(stmt))

    def get_with_user(self, credential_id: str) -> WebAuthnCredential | None:
        stmt = (
            select(WebAuthnCredential)
            .options(joinedload(WebAuthnCredential.user))
            .where(WebAuthnCredential.id == credential_id)
        )
        return self.db.scalars(stmt).one_or_none()

    def add(self, user: PasskeyUser, credential_id: str, public_key: str, sign_count: int) -> WebAuthnCredential:
        """Insert the credential (and the user when new) and commit.

        The primary key decides races between registrations of the same id.
        A new user inserted concurrently by another request is picked up on
        a second attempt.
        """
        for attempt in range(2):
            cred = WebAuthnCredential(
                id=credential_id,
                public_key=public_key,
                current_sign_count=sign_count,
                user_id=user.username,
            )
            try:
                if self.db.get(PasskeyUser, user.username) is None:
                    self.db.add(user)
                    self.db.flush()
                self.db.add(cred)
                self.db.commit()
                return cred
            except IntegrityError as exc:
                self.db.rollback()
                if self.is_registered(credential_id):
                    logger.warning("Credential id collision on insert: %s", credential_id)
                    raise VerificationFailed("credential id already registered") from exc
                if attempt:
                    raise PersistenceFailed("could not store credential") from exc
                logger.info("User %s was created concurrently, retrying insert", user.username)
                if user in self.db:
                    self.db.expunge(user)
            except SQLAlchemyError as exc:
                self.db.rollback()
                raise PersistenceFailed("could not store credential") from exc

    def update_sign_count(self, credential_id: str, expected: int, new_count: int) -> bool:
        """Compare-and-set the counter; False when another request changed it first."""
        stmt = (
            update(WebAuthnCredential)
            .where(
                WebAuthnCredential.id == credential_id,
                WebAuthnCredential.current_sign_count == expected,
            )
            .values(current_sign_count=new_count)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
            if result.rowcount != 1:
                self.db.rollback()
                return False
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceFailed("could not update sign count") from exc
        return True
