import os
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Database
    BOOKS_DB_DSN = os.getenv("BOOKS_DB_DSN")
    PORT = int(os.getenv("PORT", 8001))

    # Auth
    AUTH_SECRET_KEY = os.getenv("AUTH_SECRET_KEY", "dev-secret-key")
    AUTH_ALGORITHM = os.getenv("AUTH_ALGORITHM", "HS256")
    AUTH_TOKEN_TTL_MINUTES = int(os.getenv("AUTH_TOKEN_TTL_MINUTES", 60 * 24 * 7))
    AUTH_COOKIE_NAME = os.getenv("AUTH_COOKIE_NAME", "catalog_session")
    AUTH_COOKIE_SECURE = _env_flag("AUTH_COOKIE_SECURE")
    MIN_PASSWORD_LENGTH = 6

    # Client side (catalog view)
    CATALOG_API_URL = os.getenv("CATALOG_API_URL", f"http://localhost:{PORT}")

    @classmethod
    def validate_required(cls):
        """Validate that all required environment variables are set"""
        if not cls.BOOKS_DB_DSN:
            raise ValueError("BOOKS_DB_DSN environment variable is required")

        if not cls.AUTH_SECRET_KEY:
            raise ValueError("AUTH_SECRET_KEY must not be empty")

    @classmethod
    def is_postgres(cls) -> bool:
        """Check if the configured store is PostgreSQL"""
        return bool(cls.BOOKS_DB_DSN) and cls.BOOKS_DB_DSN.startswith(("postgres://", "postgresql"))
