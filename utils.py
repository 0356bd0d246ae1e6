import os
import base64
import uuid
from datetime import datetime, timezone
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from werkzeug.utils import secure_filename

NONCE_SIZE = 12  # 96-bit nonce


def utcnow():
    """Naive UTC timestamp, the form stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ==========================================================
# 🔐 ENCRYPTION / DECRYPTION
# ==========================================================
def load_encryption_key(key_b64):
    """Decode the base64 AES-256 key from config."""
    if not key_b64:
        raise RuntimeError("ENCRYPTION_KEY not set in .env — generate one using base64 key generator")
    key = base64.b64decode(key_b64)
    if len(key) != 32:
        raise RuntimeError("ENCRYPTION_KEY must decode to 32 bytes")
    return key


def encrypt_bytes(key: bytes, data: bytes) -> bytes:
    """Encrypt bytes using AES-GCM; the nonce is prefixed to the ciphertext."""
    nonce = os.urandom(NONCE_SIZE)
    return nonce + AESGCM(key).encrypt(nonce, data, None)


def decrypt_bytes(key: bytes, blob: bytes) -> bytes:
    """Decrypt bytes produced by encrypt_bytes."""
    nonce, ciphertext = blob[:NONCE_SIZE], blob[NONCE_SIZE:]
    return AESGCM(key).decrypt(nonce, ciphertext, None)


# ==========================================================
# 💾 STORAGE PATHS
# ==========================================================
def generate_storage_path(owner_id, original_name, now=None):
    """
    Collision-resistant blob path: owner folder, millisecond timestamp,
    a random suffix and the sanitized original name.
    """
    now = now or utcnow()
    stamp = int(now.replace(tzinfo=timezone.utc).timestamp() * 1000)
    name = secure_filename(original_name or "") or "file"
    return f"documents/{owner_id}/{stamp}_{uuid.uuid4().hex[:8]}_{name}"


# ==========================================================
# 🧾 DISPLAY HELPERS
# ==========================================================
def mask_identity_number(value):
    if value and len(value) == 12:
        return f"XXXX XXXX {value[-4:]}"
    return value


def format_file_size(size):
    if size == 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    i = 0
    value = float(size)
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {units[i]}"
