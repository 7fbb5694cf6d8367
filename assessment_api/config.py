import os

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./assessment.db")
SQL_ECHO = _flag("SQL_ECHO")

# Bootstrap administrator, upserted on startup
ADMIN_LOGIN = os.getenv("ADMIN_LOGIN", "admin")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin")
ADMIN_NAME = os.getenv("ADMIN_NAME", "Administrator")

BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

LINK_TOKEN_BYTES = int(os.getenv("LINK_TOKEN_BYTES", "16"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
