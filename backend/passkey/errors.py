import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

class PasskeyError(Exception):
    status_code = 500
    default_message = "Passkey error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

class Unauthenticated(PasskeyError):
    status_code = 401
    default_message = "Authentication required"

class MissingChallenge(PasskeyError):
    status_code = 400
    default_message = "Missing challenge"

class VerificationFailed(PasskeyError):
    status_code = 400
    default_message = "Credential verification failed"

# Unknown credential and bad assertion share one message
class Unauthorized(PasskeyError):
    status_code = 401
    default_message = "Unauthorized"

class InvalidState(PasskeyError):
    status_code = 500
    default_message = "Invalid state"

class InternalError(PasskeyError):
    status_code = 500
    default_message = "Internal error"

class PersistenceFailed(PasskeyError):
    status_code = 500
    default_message = "Storage operation failed"

def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(PasskeyError)
    async def passkey_error_handler(request: Request, exc: PasskeyError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
            return JSONResponse(
                status_code=exc.status_code,
                content={"detail": "An internal error occurred"},
            )

        logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})
