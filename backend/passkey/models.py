from datetime import datetime

from sqlalchemy import Integer, String, ForeignKey, DateTime, func
from sqlalchemy.orm import relationship, Mapped, mapped_column
from fido2.webauthn import PublicKeyCredentialUserEntity

from .db import Base
from .errors import InvalidState

class PasskeyUser(Base):
    __tablename__ = "passkey_users"
    username: Mapped[str] = mapped_column(String(255), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)

    credentials = relationship(
        "WebAuthnCredential",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __init__(self, username: str, display_name: str | None = None, **kwargs):
        super().__init__(username=username, display_name=display_name or username, **kwargs)

    @property
    def webauthn_user(self) -> PublicKeyCredentialUserEntity:
        """User entity handed to the verifier; its id is the UTF-8 username."""
        if not self.username:
            raise InvalidState("PasskeyUser must have a username to be used with WebAuthn")
        return PublicKeyCredentialUserEntity(
            id=self.username.encode("utf-8"),
            name=self.username,
            display_name=self.display_name or self.username,
        )

class WebAuthnCredential(Base):
    __tablename__ = "webauthn_credentials"
    # base64url of the raw credential id
    id: Mapped[str] = mapped_column(String(1024), primary_key=True)
    # base64url of the CBOR encoded COSE key
    public_key: Mapped[str] = mapped_column(String, nullable=False)
    current_sign_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("passkey_users.username", ondelete="CASCADE"), index=True, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)

    user = relationship("PasskeyUser", back_populates="credentials")
