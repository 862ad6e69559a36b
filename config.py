import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _env(name: str, default: Optional[str] = None, prefix: str = "") -> Optional[str]:
    if prefix:
        value = os.getenv(prefix + name)
        if value:
            return value
    return os.getenv(name, default)


@dataclass
class Settings:
    app_env: str = "production"
    database_url: Optional[str] = None
    database_name: str = "asset_management"
    upload_dir: str = field(default_factory=lambda: os.path.join(os.getcwd(), "uploads"))
    password_salt: str = "assetmgr_salt_v1"
    token_ttl_hours: int = 12
    log_level: str = "INFO"
    log_dir: Optional[str] = None
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    mongo_timeout_ms: int = 5000
    port: int = 8000

    @property
    def is_staging(self) -> bool:
        return self.app_env == "staging"


def load_settings() -> Settings:
    """Build settings from the environment.

    Two deployment targets share this codebase. ``APP_ENV=staging`` makes
    the ``STAGING_``-prefixed database variables take precedence.
    """
    app_env = os.getenv("APP_ENV", "production").lower()
    prefix = "STAGING_" if app_env == "staging" else ""
    origins = os.getenv("CORS_ORIGINS", "*")
    return Settings(
        app_env=app_env,
        database_url=_env("DATABASE_URL", prefix=prefix),
        database_name=_env("DATABASE_NAME", "asset_management", prefix=prefix),
        upload_dir=os.getenv("UPLOAD_DIR", os.path.join(os.getcwd(), "uploads")),
        password_salt=os.getenv("PASSWORD_SALT", "assetmgr_salt_v1"),
        token_ttl_hours=int(os.getenv("TOKEN_TTL_HOURS", "12")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_dir=os.getenv("LOG_DIR"),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        mongo_timeout_ms=int(os.getenv("MONGO_TIMEOUT_MS", "5000")),
        port=int(os.getenv("PORT", "8000")),
    )


settings = load_settings()
