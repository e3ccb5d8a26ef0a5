import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .config import settings
from .db import db_ping, init_db
from .errors import register_error_handlers
from .routes import core, passkey

def configure_logging(level: str = settings.LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Passkey Backend", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"]
    )
    register_error_handlers(app)

    # Tables are created at startup; there are no migrations yet
    @app.on_event("startup")
    def on_startup():
        init_db()

    @app.get("/healthz")
    def healthz():
        return {
            "status": "ok",
            "db": "up" if db_ping() else "down",
        }

    app.include_router(core.router)
    app.include_router(passkey.router)

    @app.get("/")
    def root():
        return {"service": "passkey", "version": "0.1.0"}

    return app

app = create_app()
