import logging
import os
from pathlib import Path
from dotenv import load_dotenv

root = Path(__file__).resolve().parents[1]
load_dotenv(dotenv_path=root / ".env")


def _database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    db_host = os.getenv("DB_HOST")
    if not db_host:
        return "sqlite+aiosqlite:///./stepwise.db"
    return (
        f"postgresql+asyncpg://{os.getenv('DB_USER')}:{os.getenv('DB_PASS')}"
        f"@{db_host}:{os.getenv('DB_PORT', '5432')}/{os.getenv('DB_NAME')}"
    )


class Settings:
    DATABASE_URL: str = _database_url()
    DB_ECHO: bool = os.getenv("DB_ECHO", "false").lower() in ("1", "true", "yes")

    SECRET_KEY: str = os.getenv("SECRET_KEY", "stepwise-secret-key-change-in-production")
    ALGORITHM: str = os.getenv("ALGORITHM", "HS256")

    # Object storage gateway; STORAGE_PUBLIC_URL is the prefix of stored references
    STORAGE_URL: str = os.getenv("STORAGE_URL", "http://localhost:8010/files")
    STORAGE_PUBLIC_URL: str = os.getenv("STORAGE_PUBLIC_URL", "http://localhost:8010/files")
    STORAGE_TOKEN: str | None = os.getenv("STORAGE_TOKEN")

    ACTIVITY_SERVICE_URL: str | None = os.getenv("ACTIVITY_SERVICE_URL")

    CORS_ORIGINS: list[str] = [
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
        if origin.strip()
    ]
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()


def setup_logging():
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL, logging.INFO))


def get_cors_settings():
    return {
        "allow_origins": settings.CORS_ORIGINS,
        "allow_credentials": True,
        "allow_methods": ["*"],
        "allow_headers": ["*"],
    }
