# backend/salestrainer/config.py
import os
from pathlib import Path
from dotenv import load_dotenv
from urllib.parse import quote_plus

BACKEND_DIR = Path(__file__).resolve().parents[1]   # backend/
REPO_DIR = BACKEND_DIR.parent                        # repo root

ENV_BACKEND = BACKEND_DIR / ".env"
ENV_REPO = REPO_DIR / ".env"
ENV_FILE = ENV_BACKEND if ENV_BACKEND.exists() else ENV_REPO

# Explicit environment wins over .env so tests and containers can override.
load_dotenv(dotenv_path=str(ENV_FILE), override=False)


def _build_database_url() -> str:
    """Use DATABASE_URL directly, build a PostgreSQL URL from DB_* parts, or fall back to SQLite."""
    direct_url = os.getenv("DATABASE_URL")
    if direct_url:
        return direct_url

    host = os.getenv("DB_HOST")
    if not host:
        return "sqlite:///./salestrainer.db"

    port = os.getenv("DB_PORT", "5432")
    user = os.getenv("DB_USER", "postgres")
    password = quote_plus(os.getenv("DB_PASSWORD", ""))
    db = os.getenv("DB_NAME", "postgres")
    return f"postgresql://{user}:{password}@{host}:{port}/{db}"


def _parse_origins(raw: str) -> list[str]:
    # split, strip, drop empties, drop trailing slashes
    out = []
    for o in (raw or "").split(","):
        o = (o or "").strip().rstrip("/")
        if o:
            out.append(o)
    return out


class Settings:
    DATABASE_URL: str = _build_database_url()

    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")

    # ================= Upstream realtime engine =================
    OPENAI_REALTIME_URL: str = os.getenv(
        "OPENAI_REALTIME_URL",
        "wss://api.openai.com/v1/realtime?model=gpt-4o-realtime-preview",
    )
    OPENAI_REALTIME_VOICE: str = os.getenv("OPENAI_REALTIME_VOICE", "alloy")
    OPENAI_TRANSCRIBE_MODEL: str = os.getenv("OPENAI_TRANSCRIBE_MODEL", "whisper-1")

    # ================= Outcome classifier =================
    CLASSIFIER_MODEL: str = os.getenv("CLASSIFIER_MODEL", "gpt-4o-mini")
    CLASSIFIER_TEMPERATURE: float = float(os.getenv("CLASSIFIER_TEMPERATURE", "0.1"))
    # Classifier response budget: seller mode, then customer mode
    CLASSIFIER_SELLER_MAX_TOKENS: int = int(os.getenv("CLASSIFIER_SELLER_MAX_TOKENS", "200"))
    CLASSIFIER_MAX_TOKENS: int = int(os.getenv("CLASSIFIER_MAX_TOKENS", "250"))
    CLASSIFIER_TIMEOUT_SECONDS: float = float(os.getenv("CLASSIFIER_TIMEOUT_SECONDS", "15.0"))

    # Number of most recent persisted messages handed to the classifier layer
    TRANSCRIPT_WINDOW: int = int(os.getenv("TRANSCRIPT_WINDOW", "15"))

    # IMPORTANT: keep localhost + 127.0.0.1 for local frontends
    CORS_ORIGINS: list[str] = _parse_origins(
        os.getenv(
            "CORS_ORIGINS",
            "http://127.0.0.1:8010,http://localhost:8010,http://127.0.0.1:5173,http://localhost:5173",
        )
    )

    # ================= Environment / logging =================
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_DIR: str = os.getenv("LOG_DIR", "logs")


settings = Settings()


# =============================================================================
# CONFIGURATION VALIDATION
# =============================================================================

class ConfigValidationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def validate_config(raise_on_error: bool = True) -> dict:
    """
    Validate all configuration settings.

    Args:
        raise_on_error: If True, raises ConfigValidationError on critical errors.
                       If False, returns dict with errors and warnings.

    Returns:
        Dict with 'errors' (critical) and 'warnings' (non-critical) lists.
    """
    errors = []
    warnings = []

    if not settings.DATABASE_URL:
        errors.append("DATABASE_URL is required")

    # The realtime engine and the classifier both need the key
    if not settings.OPENAI_API_KEY:
        if settings.ENVIRONMENT == "production":
            errors.append("OPENAI_API_KEY is required for realtime sessions")
        else:
            warnings.append("OPENAI_API_KEY missing - realtime sessions and outcome detection will fail")

    if settings.TRANSCRIPT_WINDOW < 10:
        warnings.append("TRANSCRIPT_WINDOW below 10 - classifier sees less context than it expects")

    if settings.ENVIRONMENT == "production":
        if settings.DATABASE_URL.startswith("sqlite"):
            warnings.append("SQLite database in production - consider PostgreSQL")
        if not settings.CORS_ORIGINS or any("localhost" in o for o in settings.CORS_ORIGINS):
            warnings.append("CORS_ORIGINS includes localhost in production - consider restricting")

    result = {"errors": errors, "warnings": warnings}

    if raise_on_error and errors:
        raise ConfigValidationError(f"Configuration errors: {'; '.join(errors)}")

    return result


def get_config_status() -> dict:
    """Configuration presence flags for the health endpoint."""
    return {
        "environment": settings.ENVIRONMENT,
        "database_configured": bool(settings.DATABASE_URL),
        "database_backend": settings.DATABASE_URL.split(":", 1)[0] if settings.DATABASE_URL else None,
        "openai_configured": bool(settings.OPENAI_API_KEY),
        "classifier_model": settings.CLASSIFIER_MODEL,
        "transcript_window": settings.TRANSCRIPT_WINDOW,
    }
