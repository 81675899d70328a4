# ABOUTME: Object storage for generated audio, video, subtitle and export artifacts
# ABOUTME: Filesystem-backed, with HMAC-signed expiring GET URLs served by the API
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import re
import time
import uuid
from pathlib import Path
from urllib.parse import urlencode

import httpx

from errors import NotFoundError, StorageError

logger = logging.getLogger("lingodino-media.storage")

DEFAULT_TTL_SECS = 600
MAX_NAME_LEN = 120


def make_key(filename: str, folder: str = "uploads") -> str:
    """Namespaced, collision-free key from a user-facing file name."""
    base = filename.replace("\\", "/").split("/")[-1]
    safe_name = re.sub(r"[^\w.\-]+", "-", base)[:MAX_NAME_LEN]
    return f"{folder}/{uuid.uuid4().hex[:10]}-{safe_name}"


class LocalObjectStorage:
    """Stores objects under `root`; `base_url` is where /files/{key} is served."""

    def __init__(self, root: Path, base_url: str, secret: str):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self._secret = secret.encode()

    @classmethod
    def from_settings(cls, settings) -> LocalObjectStorage:
        return cls(settings.storage_root, settings.public_base_url, settings.storage_secret)

    def path_for(self, key: str) -> Path:
        if not key or key.startswith("/") or ".." in key.split("/"):
            raise StorageError(f"Invalid storage key: {key!r}")
        return self.root / key

    def _meta_path(self, key: str) -> Path:
        return self.root / ".meta" / f"{key}.json"

    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        path = self.path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            meta = self._meta_path(key)
            meta.parent.mkdir(parents=True, exist_ok=True)
            meta.write_text(json.dumps({"content_type": content_type, "size": len(data)}))
        except OSError as e:
            raise StorageError(f"Failed to upload {key}: {e}") from e
        logger.info("Uploaded %s (%d bytes, %s)", key, len(data), content_type)
        return key

    def content_type(self, key: str) -> str:
        meta = self._meta_path(key)
        if meta.exists():
            return json.loads(meta.read_text()).get("content_type", "application/octet-stream")
        return "application/octet-stream"

    def exists(self, key: str) -> bool:
        return self.path_for(key).is_file()

    async def delete(self, key: str):
        path = self.path_for(key)
        if not path.exists():
            raise NotFoundError(f"Object not found: {key}")
        path.unlink()
        self._meta_path(key).unlink(missing_ok=True)
        logger.info("Deleted %s", key)

    def _signature(self, key: str, expires: int, download_name: str | None) -> str:
        message = f"{key}\n{expires}\n{download_name or ''}".encode()
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def signed_get_url(self, key: str, ttl: int = DEFAULT_TTL_SECS, download_name: str | None = None) -> str:
        expires = int(time.time()) + ttl
        params = {"expires": expires, "sig": self._signature(key, expires, download_name)}
        if download_name:
            params["download"] = download_name
        return f"{self.base_url}/files/{key}?{urlencode(params)}"

    def verify(self, key: str, expires: int, sig: str, download_name: str | None = None) -> bool:
        if expires < time.time():
            return False
        return hmac.compare_digest(sig, self._signature(key, expires, download_name))


async def fetch_signed(storage: LocalObjectStorage, key: str, http_client: httpx.AsyncClient) -> bytes:
    """Resolve a stored object through a short-lived signed URL."""
    url = storage.signed_get_url(key)
    try:
        resp = await http_client.get(url)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        raise StorageError(f"Failed to fetch {key}: {e}") from e
    return resp.content
