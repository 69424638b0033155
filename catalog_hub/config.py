# ----------------------------------------------------------------
# Import configuration variables to be used throughout the project
# ----------------------------------------------------------------
import os
from dotenv import load_dotenv

# Load .env (allow container env to override file values)
load_dotenv(override=True)


def _rstrip_slash(s: str) -> str:
    return (s or "").rstrip("/")


def _get_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in {"1", "true", "yes", "on", "y"}


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw) if raw.strip() else default
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    try:
        return float(raw) if raw.strip() else default
    except ValueError:
        return default


class Settings:
    # ── Database ─────────────────────────────────────────────────────────────
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./data/catalog_hub.db")

    # ── Credential vault ─────────────────────────────────────────────────────
    # base64 (optionally "base64:"-prefixed) 32-byte key; validated at startup
    ENCRYPTION_KEY: str = os.getenv("ENCRYPTION_KEY", "")

    # ── Object storage (MinIO / S3) ──────────────────────────────────────────
    MINIO_ENDPOINT: str = os.getenv("MINIO_ENDPOINT", "localhost")
    MINIO_PORT: int = _get_int("MINIO_PORT", 9000)
    MINIO_ACCESS_KEY: str = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
    MINIO_SECRET_KEY: str = os.getenv("MINIO_SECRET_KEY", "minioadmin")
    MINIO_USE_SSL: bool = _get_bool("MINIO_USE_SSL", False)
    MINIO_BUCKET: str = os.getenv("MINIO_BUCKET", "product-images")
    # Public base for served objects; defaults to http(s)://endpoint:port
    MINIO_PUBLIC_URL: str = _rstrip_slash(os.getenv("MINIO_PUBLIC_URL", ""))

    # ── WooCommerce client ───────────────────────────────────────────────────
    WC_TIMEOUT: float = _get_float("WC_TIMEOUT", 30.0)
    WC_MAX_ATTEMPTS: int = _get_int("WC_MAX_ATTEMPTS", 3)
    WC_PER_PAGE: int = _get_int("WC_PER_PAGE", 100)

    # ── Image relocation ─────────────────────────────────────────────────────
    IMAGE_MAX_BYTES: int = _get_int("IMAGE_MAX_BYTES", 25 * 1024 * 1024)
    IMAGE_TIMEOUT: float = _get_float("IMAGE_TIMEOUT", 30.0)
    IMAGE_CONCURRENCY: int = _get_int("IMAGE_CONCURRENCY", 4)

    # When true, a failed relocation clears the stored featured image
    SYNC_OVERWRITE_IMAGES_WITH_NULL: bool = _get_bool("SYNC_OVERWRITE_IMAGES_WITH_NULL", False)

    # ── Admin API ────────────────────────────────────────────────────────────
    ADMIN_USER: str = os.getenv("ADMIN_USER", "admin")
    ADMIN_PASS: str = os.getenv("ADMIN_PASS", "changeme")

    # ── CORS ─────────────────────────────────────────────────────────────────
    # Comma-separated list in .env, e.g. "https://example.com, https://foo.bar"
    CORS_ORIGINS: list[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


settings = Settings()
