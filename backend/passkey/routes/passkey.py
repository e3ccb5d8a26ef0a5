from fastapi import APIRouter, Depends, Response, status

from ..ceremonies import AuthenticationCeremony, RegistrationCeremony
from ..config import settings
from ..deps import get_authentication_ceremony, get_current_user, get_registration_ceremony
from ..models import PasskeyUser
from ..security import issue_token

router = APIRouter(prefix=settings.API_PREFIX, tags=["passkey"])

# ---------- Registration ----------
@router.get("/makeCredential")
async def get_make_credential(
    user: PasskeyUser = Depends(get_current_user),
    ceremony: RegistrationCeremony = Depends(get_registration_ceremony),
):
    return ceremony.begin(user)

@router.post("/makeCredential")
async def create_make_credential(
    payload: dict,
    user: PasskeyUser = Depends(get_current_user),
    ceremony: RegistrationCeremony = Depends(get_registration_ceremony),
):
    ceremony.finish(payload, user)
    return {"status": "ok"}

@router.delete("/makeCredential", status_code=status.HTTP_204_NO_CONTENT)
async def delete_make_credential(
    user: PasskeyUser = Depends(get_current_user),
    ceremony: RegistrationCeremony = Depends(get_registration_ceremony),
):
    ceremony.delete(user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

# ---------- Authentication ----------
@router.get("/authenticate")
async def get_authenticate(ceremony: AuthenticationCeremony = Depends(get_authentication_ceremony)):
    return ceremony.begin()

@router.post("/authenticate")
async def post_authenticate(
    response: Response,
    payload: dict,
    ceremony: AuthenticationCeremony = Depends(get_authentication_ceremony),
):
    user = ceremony.finish(payload)
    token = issue_token(sub=user.username, name=user.display_name)
    response.set_cookie(
        settings.TOKEN_COOKIE,
        token,
        max_age=settings.TOKEN_TTL_SECONDS,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
    )
    return {"status": "ok", "token": token}
