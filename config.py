import os
from dotenv import load_dotenv
load_dotenv()

BASE_DIR = os.path.abspath(os.path.dirname(__file__))
BLOB_DIR = os.path.join(BASE_DIR, "blobs")


def _int_env(name, default):
    return int(os.getenv(name) or default)


class Config:
    SECRET_KEY = os.getenv("FLASK_SECRET_KEY", "dev-secret")
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL", f"sqlite:///{os.path.join(BASE_DIR, 'app.db')}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024

    # Blob store: encrypted files on disk, served back through /blob/<token>
    BLOB_FOLDER = os.getenv("BLOB_FOLDER", BLOB_DIR)
    BLOB_BASE_URL = os.getenv("BLOB_BASE_URL", "/blob")
    UPLOAD_CHUNK_SIZE = _int_env("UPLOAD_CHUNK_SIZE", 256 * 1024)

    # AES-256-GCM key in base64 (decode before use)
    ENCRYPTION_KEY_B64 = os.getenv("ENCRYPTION_KEY")

    MAX_FILE_SIZE = 5 * 1024 * 1024  # 5 MiB
    ALLOWED_MIME_TYPES = frozenset({
        "image/jpeg",
        "image/jpg",
        "image/png",
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    })
    MIN_DESCRIPTION_LENGTH = 10

    CACHE_TTL_SECONDS = _int_env("CACHE_TTL_SECONDS", 5 * 60)
    AUDIT_FALLBACK_CAPACITY = _int_env("AUDIT_FALLBACK_CAPACITY", 100)

    # Background reconciliation of deleted blobs
    BLOB_REAPER_ENABLED = os.getenv("BLOB_REAPER_ENABLED", "1") == "1"
    BLOB_REAPER_MINUTES = _int_env("BLOB_REAPER_MINUTES", 5)
