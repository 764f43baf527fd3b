import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def load_env() -> None:
    """Load .env and then .env.<APP_ENV> on top of it"""
    env_name = os.getenv("APP_ENV", "development")
    candidates = [Path.cwd(), PROJECT_ROOT]
    for base in candidates:
        env_path = base / ".env"
        if env_path.exists():
            load_dotenv(env_path)
            break

    for base in candidates:
        env_specific = base / f".env.{env_name}"
        if env_specific.exists():
            load_dotenv(env_specific, override=True)
            break


def _normalize_database_url(url: str) -> str:
    # Ensure the URL has the correct async driver
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return url


def _split_csv(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    app_env: str = "development"
    database_url: str = "sqlite+aiosqlite:///./taskhub.db"
    jwt_secret: str = "dev-access-secret-change-me"
    jwt_refresh_secret: str = "dev-refresh-secret-change-me"
    jwt_expire_minutes: int = 15
    jwt_refresh_expire_days: int = 7
    bcrypt_rounds: int = 10
    allowed_origins: tuple[str, ...] = ("*",)
    upload_dir: str = "uploads"
    upload_base_url: str = "/uploads"
    max_upload_mb: int = 5
    allowed_upload_types: tuple[str, ...] = ("application/pdf",)
    max_attachments: int = 3
    admin_email: Optional[str] = None
    admin_password: Optional[str] = field(default=None, repr=False)
    log_level: str = "INFO"
    log_dir: str = "logs"
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024

    @property
    def upload_path(self) -> Path:
        path = Path(self.upload_dir)
        return path if path.is_absolute() else PROJECT_ROOT / path


def settings_from_env() -> Settings:
    load_env()
    return Settings(
        app_env=os.getenv("APP_ENV", "development"),
        database_url=_normalize_database_url(
            os.getenv("DATABASE_URL", "").strip() or Settings.database_url
        ),
        jwt_secret=os.getenv("JWT_SECRET", Settings.jwt_secret),
        jwt_refresh_secret=os.getenv("JWT_REFRESH_SECRET", Settings.jwt_refresh_secret),
        jwt_expire_minutes=int(os.getenv("JWT_EXPIRE_MINUTES", "15")),
        jwt_refresh_expire_days=int(os.getenv("JWT_REFRESH_EXPIRE_DAYS", "7")),
        bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", "10")),
        allowed_origins=_split_csv(os.getenv("ALLOWED_ORIGINS", "*")),
        upload_dir=os.getenv("UPLOAD_DIR", "uploads"),
        upload_base_url=os.getenv("UPLOAD_BASE_URL", "/uploads").rstrip("/"),
        max_upload_mb=int(os.getenv("MAX_UPLOAD_MB", "5")),
        allowed_upload_types=_split_csv(os.getenv("ALLOWED_UPLOAD_TYPES", "application/pdf")),
        max_attachments=int(os.getenv("MAX_ATTACHMENTS", "3")),
        admin_email=os.getenv("ADMIN_EMAIL", "").strip().lower() or None,
        admin_password=os.getenv("ADMIN_PASSWORD") or None,
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_dir=os.getenv("LOG_DIR", "logs"),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        debug=os.getenv("DEBUG", "False").lower() == "true",
    )


@lru_cache
def get_settings() -> Settings:
    return settings_from_env()
