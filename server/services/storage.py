import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Protocol

import httpx
from core.errors import PersistenceError
from core.logging_setup import log_step

logger = logging.getLogger(__name__)

LOG_STEP = "STORAGE"


@dataclass
class StoredObject:
    key: str
    url: str


class BlobStore(Protocol):
    async def put(self, key: str, data: bytes, mime_type: str) -> StoredObject: ...

    async def close(self) -> None: ...


def resolve_public_base_url(app_base_url: str, public_url: str) -> str:
    """
    Turns a path such as "/uploads" into an absolute URL on the app's public
    origin. Absolute URLs are returned unchanged.
    """
    if public_url.startswith(("http://", "https://")):
        return public_url.rstrip("/")
    return f"{app_base_url.rstrip('/')}/{public_url.strip('/')}".rstrip("/")


class LocalBlobStore:
    """
    Writes uploads under a local directory. The directory is mounted as static
    files, so the returned URL is `public_base_url` + key. The URL is handed to
    the OCR model, so it must be absolute.
    """

    def __init__(self, root_dir: str, public_base_url: str):
        if not public_base_url.startswith(("http://", "https://")):
            raise ValueError(
                f"Upload URLs must be absolute for the OCR model to fetch them: {public_base_url}"
            )
        self.root_dir = os.path.abspath(root_dir)
        self.public_base_url = public_base_url.rstrip("/")
        os.makedirs(self.root_dir, exist_ok=True)

    def _path_for(self, key: str) -> str:
        path = os.path.abspath(os.path.join(self.root_dir, key))
        if os.path.commonpath([path, self.root_dir]) != self.root_dir:
            raise ValueError(f"Storage key escapes the storage directory: {key}")
        return path

    def _write(self, path: str, data: bytes):
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)

    async def put(self, key: str, data: bytes, mime_type: str) -> StoredObject:
        path = self._path_for(key)
        with log_step(LOG_STEP):
            try:
                await asyncio.to_thread(self._write, path, data)
            except OSError as e:
                logger.error(f"Failed to write upload '{key}': {e}", exc_info=True)
                raise PersistenceError("Failed to store uploaded image") from e
            logger.info(f"Stored {len(data)} bytes ({mime_type}) at '{key}'.")
        return StoredObject(key=key, url=f"{self.public_base_url}/{key}")

    async def close(self) -> None:
        return None


class HttpBlobStore:
    """Uploads to a remote storage API that answers with the object's URL."""

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 60.0):
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"), headers=headers, timeout=timeout
        )

    async def put(self, key: str, data: bytes, mime_type: str) -> StoredObject:
        filename = key.rsplit("/", 1)[-1]
        with log_step(LOG_STEP):
            try:
                resp = await self.client.post(
                    "/upload",
                    params={"path": key},
                    files={"file": (filename, data, mime_type)},
                )
                resp.raise_for_status()
                url = resp.json()["url"]
            except (httpx.HTTPError, KeyError, ValueError) as e:
                logger.error(f"Storage upload failed for '{key}': {e}", exc_info=True)
                raise PersistenceError("Failed to store uploaded image") from e
            logger.info(f"Uploaded {len(data)} bytes ({mime_type}) as '{key}'.")
        return StoredObject(key=key, url=url)

    async def close(self) -> None:
        await self.client.aclose()
