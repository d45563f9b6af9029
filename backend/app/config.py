# backend/app/config.py
import os
from pathlib import Path
from dotenv import load_dotenv

BACKEND_DIR = Path(__file__).resolve().parents[1]   # backend/
REPO_DIR = BACKEND_DIR.parent                        # repo root

ENV_BACKEND = BACKEND_DIR / ".env"
ENV_REPO = REPO_DIR / ".env"
ENV_FILE = ENV_BACKEND if ENV_BACKEND.exists() else ENV_REPO

load_dotenv(dotenv_path=str(ENV_FILE), override=False)


def _parse_origins(raw: str) -> list[str]:
    # split, strip, drop empties, drop trailing slashes
    out = []
    for o in (raw or "").split(","):
        o = (o or "").strip().rstrip("/")
        if o:
            out.append(o)
    return out


class Settings:
    # ================= Environment Configuration =================
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # IMPORTANT: keep localhost + 127.0.0.1 for Vite dev
    CORS_ORIGINS: list[str] = _parse_origins(
        os.getenv(
            "CORS_ORIGINS",
            "http://127.0.0.1:5173,http://localhost:5173,http://127.0.0.1:3000,http://localhost:3000",
        )
    )

    # ================= Script Scoring Backend =================
    # Endpoint that turns a transcript excerpt into per-gate similarity
    SCRIPT_SCORING_URL: str | None = os.getenv("SCRIPT_SCORING_URL")
    SCRIPT_SCORING_API_KEY: str | None = os.getenv("SCRIPT_SCORING_API_KEY")
    SCRIPT_SCORING_TIMEOUT: float = float(os.getenv("SCRIPT_SCORING_TIMEOUT", "10.0"))

    # ================= Script Adherence Tracking =================
    # Minimum seconds between two scoring requests for one session
    SCRIPT_CHECK_INTERVAL: float = float(os.getenv("SCRIPT_CHECK_INTERVAL", "5.0"))
    # Only the tail of the trainee's speech is sent for scoring
    TRANSCRIPT_EXCERPT_CHARS: int = int(os.getenv("TRANSCRIPT_EXCERPT_CHARS", "500"))
    ON_SCRIPT_THRESHOLD: float = float(os.getenv("ON_SCRIPT_THRESHOLD", "0.75"))
    LOW_SIMILARITY_THRESHOLD: float = float(os.getenv("LOW_SIMILARITY_THRESHOLD", "0.40"))

    # ================= Gamification =================
    STREAK_REQUIREMENT: int = int(os.getenv("STREAK_REQUIREMENT", "3"))
    PEAK_MODE_SCORE: float = float(os.getenv("PEAK_MODE_SCORE", "90"))
    PEAK_MODE_SECONDS: float = float(os.getenv("PEAK_MODE_SECONDS", "30"))

    # ================= Coaching Hints =================
    GATE_STUCK_SECONDS: float = float(os.getenv("GATE_STUCK_SECONDS", "15"))
    HINT_COOLDOWN_SECONDS: float = float(os.getenv("HINT_COOLDOWN_SECONDS", "30"))

    # ================= Resource Limits =================
    MAX_ACTIVE_SESSIONS: int = int(os.getenv("MAX_ACTIVE_SESSIONS", "100"))

    # ================= Logging =================
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    # Empty disables the rotating file sink
    LOG_DIR: str = os.getenv("LOG_DIR", "" if ENVIRONMENT == "test" else "logs")
    LOG_RETENTION_DAYS: int = int(os.getenv("LOG_RETENTION_DAYS", "7"))


settings = Settings()


# =============================================================================
# CONFIGURATION VALIDATION
# =============================================================================

LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


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

    Raises:
        ConfigValidationError: If raise_on_error=True and critical errors found.
    """
    errors = []
    warnings = []

    # Critical - thresholds outside their range make scoring meaningless
    if not 0.0 < settings.LOW_SIMILARITY_THRESHOLD < settings.ON_SCRIPT_THRESHOLD <= 1.0:
        errors.append(
            "LOW_SIMILARITY_THRESHOLD must be below ON_SCRIPT_THRESHOLD, both within (0, 1]"
        )
    if settings.SCRIPT_CHECK_INTERVAL <= 0:
        errors.append("SCRIPT_CHECK_INTERVAL must be positive")
    if settings.TRANSCRIPT_EXCERPT_CHARS <= 0:
        errors.append("TRANSCRIPT_EXCERPT_CHARS must be positive")
    if not 0 <= settings.PEAK_MODE_SCORE <= 100:
        errors.append("PEAK_MODE_SCORE must be within 0..100")
    if settings.LOG_LEVEL not in LOG_LEVELS:
        errors.append(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}")

    # Warnings - Degraded functionality
    if not settings.SCRIPT_SCORING_URL:
        warnings.append("SCRIPT_SCORING_URL missing - adherence scoring disabled")
    if settings.HINT_COOLDOWN_SECONDS < settings.GATE_STUCK_SECONDS:
        warnings.append("HINT_COOLDOWN_SECONDS shorter than GATE_STUCK_SECONDS - hints may feel spammy")

    # Production-specific warnings
    if settings.ENVIRONMENT == "production":
        if not settings.CORS_ORIGINS or any("localhost" in o for o in settings.CORS_ORIGINS):
            warnings.append("CORS_ORIGINS includes localhost in production - consider restricting")
        if settings.SCRIPT_SCORING_URL and not settings.SCRIPT_SCORING_API_KEY:
            warnings.append("SCRIPT_SCORING_API_KEY not set in production")

    result = {"errors": errors, "warnings": warnings}

    if raise_on_error and errors:
        raise ConfigValidationError(f"Configuration errors: {'; '.join(errors)}")

    return result


def get_config_status() -> dict:
    """
    Get configuration status for health check endpoints.

    Returns:
        Dict with configuration presence and validation status.
    """
    return {
        "environment": settings.ENVIRONMENT,
        "scoring_configured": bool(settings.SCRIPT_SCORING_URL),
        "scoring_authenticated": bool(settings.SCRIPT_SCORING_API_KEY),
        "check_interval_seconds": settings.SCRIPT_CHECK_INTERVAL,
        "on_script_threshold": settings.ON_SCRIPT_THRESHOLD,
        "low_similarity_threshold": settings.LOW_SIMILARITY_THRESHOLD,
    }


# Log configuration on import (development only)
# SECURITY: Never log credentials
if settings.ENVIRONMENT not in ("production", "test"):
    print(f">>> .env loaded from: {ENV_FILE}")
    print(f">>> SCRIPT_SCORING_URL configured: {bool(settings.SCRIPT_SCORING_URL)}")
    print(f">>> CORS_ORIGINS in use: {settings.CORS_ORIGINS}")
