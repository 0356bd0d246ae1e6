"""
Encrypted blob store on the local filesystem.

Blobs are addressed by a relative storage path ("documents/<owner>/..."),
encrypted with AES-256-GCM before they touch disk, and handed out through
signed capability URLs (``<BLOB_BASE_URL>/<token>``).
"""
import os
import logging
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from itsdangerous import BadSignature, URLSafeSerializer

from utils import encrypt_bytes, decrypt_bytes

log = logging.getLogger(__name__)


class BlobStoreError(Exception):
    pass


@dataclass(frozen=True)
class BlobHandle:
    path: str
    size: int
    content_type: str


class LocalBlobStore:

    def __init__(self, root, key, secret, base_url="/blob", chunk_size=256 * 1024):
        self.root = os.path.abspath(root)
        self.key = key
        self.base_url = base_url.rstrip("/")
        self.chunk_size = chunk_size
        self._signer = URLSafeSerializer(secret, salt="blob-retrieval")
        os.makedirs(self.root, exist_ok=True)

    def _full_path(self, path):
        full = os.path.abspath(os.path.join(self.root, path))
        if os.path.commonpath([full, self.root]) != self.root:
            raise BlobStoreError(f"path escapes blob root: {path}")
        return full

    def put(self, path, data, content_type):
        """
        Generator that writes ``data`` under ``path`` and yields the written
        percentage (0 first, 100 last). Its return value is the BlobHandle.

        Closing the generator early removes the partial file.
        """
        full = self._full_path(path)
        tmp = full + ".part"
        payload = encrypt_bytes(self.key, data)
        total = len(payload)
        completed = False
        try:
            os.makedirs(os.path.dirname(full), exist_ok=True)
            yield 0
            with open(tmp, "wb") as fh:
                written = 0
                while written < total:
                    chunk = payload[written:written + self.chunk_size]
                    fh.write(chunk)
                    written += len(chunk)
                    yield int(written * 100 / total)
            os.replace(tmp, full)
            completed = True
        except OSError as exc:
            raise BlobStoreError(f"write failed for {path}: {exc}") from exc
        finally:
            if not completed and os.path.exists(tmp):
                os.remove(tmp)
        return BlobHandle(path=path, size=len(data), content_type=content_type)

    def get_retrieval_url(self, handle):
        return f"{self.base_url}/{self._signer.dumps(handle.path)}"

    def resolve_token(self, token):
        """Storage path for a retrieval token, or None if the signature is bad."""
        try:
            return self._signer.loads(token)
        except BadSignature:
            return None

    def open(self, path):
        full = self._full_path(path)
        try:
            with open(full, "rb") as fh:
                return decrypt_bytes(self.key, fh.read())
        except FileNotFoundError:
            return None
        except InvalidTag as exc:
            raise BlobStoreError(f"blob failed authentication: {path}") from exc
        except OSError as exc:
            raise BlobStoreError(f"read failed for {path}: {exc}") from exc

    def exists(self, path):
        return os.path.exists(self._full_path(path))

    def delete(self, path):
        """Remove a blob. Deleting a missing blob is a no-op."""
        full = self._full_path(path)
        try:
            os.remove(full)
        except FileNotFoundError:
            log.info("blob already gone: %s", path)
        except OSError as exc:
            raise BlobStoreError(f"delete failed for {path}: {exc}") from exc
