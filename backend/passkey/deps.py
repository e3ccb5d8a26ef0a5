"""FastAPI dependencies wiring the ceremonies to the request."""

from functools import lru_cache

from fastapi import Depends, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from redis import Redis
from sqlalchemy.orm import Session

from .ceremonies import AuthenticationCeremony, RegistrationCeremony
from .challenge_store import RedisChallengeStore, get_redis, new_session_id
from .config import settings
from .db import session_scope
from .errors import Unauthenticated
from .models import PasskeyUser
from .security import decode_token
from .stores import CredentialStore, UserStore
from .webauthn import WebAuthnVerifier, create_verifier

bearer = HTTPBearer(auto_error=False)

def get_db():
    with session_scope() as db:
        yield db

@lru_cache
def get_verifier() -> WebAuthnVerifier:
    return create_verifier()

def get_challenge_store(
    request: Request,
    response: Response,
    client: Redis = Depends(get_redis),
) -> RedisChallengeStore:
    session_id = request.cookies.get(settings.SESSION_COOKIE)
    if not session_id:
        session_id = new_session_id()
        response.set_cookie(
            settings.SESSION_COOKIE,
            session_id,
            httponly=True,
            secure=settings.COOKIE_SECURE,
            samesite="lax",
        )
    return RedisChallengeStore(client, session_id, ttl_seconds=settings.CHALLENGE_TTL_SECONDS)

def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
) -> PasskeyUser:
    """User named by the session token; built in memory if not registered yet."""
    token = credentials.credentials if credentials else request.cookies.get(settings.TOKEN_COOKIE)
    claims = decode_token(token) if token else None
    if not claims:
        raise Unauthenticated()
    return UserStore(db).get_or_build(claims["sub"], claims.get("name"))

def get_registration_ceremony(
    challenges: RedisChallengeStore = Depends(get_challenge_store),
    db: Session = Depends(get_db),
    verifier: WebAuthnVerifier = Depends(get_verifier),
) -> RegistrationCeremony:
    return RegistrationCeremony(
        challenges,
        UserStore(db),
        CredentialStore(db),
        verifier,
        session_key=settings.SESSION_REGISTRATION_CHALLENGE_KEY,
    )

def get_authentication_ceremony(
    challenges: RedisChallengeStore = Depends(get_challenge_store),
    db: Session = Depends(get_db),
    verifier: WebAuthnVerifier = Depends(get_verifier),
) -> AuthenticationCeremony:
    return AuthenticationCeremony(
        challenges,
        CredentialStore(db),
        verifier,
        session_key=settings.SESSION_AUTH_CHALLENGE_KEY,
    )
