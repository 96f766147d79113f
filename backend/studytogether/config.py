"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_HOURS: int
    DATABASE_URL: str
    MAX_UPLOAD_BYTES: int
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    FREE_TIME_DAY_START: int
    FREE_TIME_DAY_END: int
    FREE_TIME_MIN_SLOT_MINUTES: int
    MAX_LOGIN_ATTEMPTS: int
    LOCKOUT_MINUTES: int
    PASSWORD_MIN_LENGTH: int

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", str(7 * 24)))
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'studytogether.db'}")
        self.MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(2 * 1024 * 1024)))  # 2 MB default
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        # free-time window, minutes since midnight (08:00-22:00)
        self.FREE_TIME_DAY_START = int(os.getenv("FREE_TIME_DAY_START", "480"))
        self.FREE_TIME_DAY_END = int(os.getenv("FREE_TIME_DAY_END", "1320"))
        self.FREE_TIME_MIN_SLOT_MINUTES = int(os.getenv("FREE_TIME_MIN_SLOT_MINUTES", "30"))
        # defaults for the security settings row created on first use
        self.MAX_LOGIN_ATTEMPTS = int(os.getenv("MAX_LOGIN_ATTEMPTS", "5"))
        self.LOCKOUT_MINUTES = int(os.getenv("LOCKOUT_MINUTES", "30"))
        self.PASSWORD_MIN_LENGTH = int(os.getenv("PASSWORD_MIN_LENGTH", "6"))
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if not 0 <= self.FREE_TIME_DAY_START <= self.FREE_TIME_DAY_END <= 24 * 60:
            raise RuntimeError("FREE_TIME_DAY_START/FREE_TIME_DAY_END must satisfy 0 <= start <= end <= 1440")
        if self.FREE_TIME_MIN_SLOT_MINUTES < 0:
            raise RuntimeError("FREE_TIME_MIN_SLOT_MINUTES must be >= 0")


settings = Settings()
