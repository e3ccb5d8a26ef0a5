from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "sqlite:///./passkey.db"
    REDIS_URL: str = "redis://localhost:6379/0"
    RP_ID: str = "localhost"
    RP_NAME: str = "Passkey Demo RP"
    ALLOWED_ORIGINS: str = "http://localhost:8080"
    JWT_SECRET: str
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"
    API_PREFIX: str = "/api/v1"

    # Session keys, one per challenge purpose
    SESSION_REGISTRATION_CHALLENGE_KEY: str = "registrationChallenge"
    SESSION_AUTH_CHALLENGE_KEY: str = "authChallenge"
    CHALLENGE_TTL_SECONDS: int = 300

    SESSION_COOKIE: str = "passkey_session"
    TOKEN_COOKIE: str = "passkey_token"
    TOKEN_TTL_SECONDS: int = 3600
    COOKIE_SECURE: bool = False

    # WebAuthn ceremony parameters
    USER_VERIFICATION: str = "preferred"
    RESIDENT_KEY: str = "required"
    CEREMONY_TIMEOUT_MS: int = 60000

    @property
    def allowed_origins_list(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

settings = Settings()
