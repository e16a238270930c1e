"""Blob store collaborators - download uploaded files by storage locator."""

import asyncio
import mimetypes
import re
from pathlib import Path
from typing import Protocol
from urllib.parse import unquote, urlparse

import httpx

from backend.assistant.config import Settings
from backend.assistant.models.docs import BlobContent


class BlobNotFoundError(Exception):
    """No blob exists for the locator."""

    pass


class BlobStore(Protocol):
    """Download-by-locator interface."""

    async def download(self, locator: str) -> BlobContent:
        """Fetch a blob.

        Args:
            locator: Storage locator (a relative object key)

        Returns:
            BlobContent with bytes and the declared media type, if known

        Raises:
            BlobNotFoundError: If the locator does not exist
        """
        ...


# Object-storage URL prefixes: /storage/v1/object/public/<bucket>/<key>
_OBJECT_PATH = re.compile(r"/object/(?:public|sign|authenticated)/[^/]+/(?P<key>.+)$")


def locator_from_access_url(url: str | None) -> str | None:
    """Derive a storage locator from a persisted access URL.

    Legacy rows only carry the URL they were served from. Object-storage
    URLs map to their object key; other URLs map to their path. Signing
    query strings are discarded.
    """
    if not url:
        return None
    path = urlparse(url).path
    if not path or path == "/":
        return None
    match = _OBJECT_PATH.search(path)
    key = match.group("key") if match else path.lstrip("/")
    return unquote(key) or None


def _guess_media_type(locator: str) -> str | None:
    media_type, _ = mimetypes.guess_type(locator)
    return media_type


class LocalBlobStore:
    """Filesystem-backed blob store rooted at a base directory."""

    def __init__(self, base_dir: str | Path) -> None:
        self._base_dir = Path(base_dir).resolve()

    def _resolve(self, locator: str) -> Path:
        path = (self._base_dir / locator.lstrip("/")).resolve()
        # Locators must stay inside the base directory
        if self._base_dir not in path.parents:
            raise BlobNotFoundError(f"Locator outside blob root: {locator}")
        return path

    async def download(self, locator: str) -> BlobContent:
        path = self._resolve(locator)
        if not path.is_file():
            raise BlobNotFoundError(f"No blob at {locator}")
        data = await asyncio.to_thread(path.read_bytes)
        return BlobContent(data=data, media_type=_guess_media_type(locator))


class HttpBlobStore:
    """HTTP blob store: GET <base_url>/<locator>."""

    def __init__(self, base_url: str, client: httpx.AsyncClient | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client

    async def download(self, locator: str) -> BlobContent:
        url = f"{self._base_url}/{locator.lstrip('/')}"

        close_client = False
        client = self._client
        if client is None:
            client = httpx.AsyncClient(timeout=10.0)
            close_client = True

        try:
            response = await client.get(url)
            if response.status_code == 404:
                raise BlobNotFoundError(f"No blob at {locator}")
            response.raise_for_status()

            content_type = response.headers.get("content-type")
            media_type = content_type.split(";", 1)[0].strip() if content_type else None
            if not media_type or media_type == "application/octet-stream":
                media_type = _guess_media_type(locator) or media_type
            return BlobContent(data=response.content, media_type=media_type)
        finally:
            if close_client:
                await client.aclose()


class InMemoryBlobStore:
    """In-memory blob store for tests and local development."""

    def __init__(self) -> None:
        self._blobs: dict[str, BlobContent] = {}

    def put(self, locator: str, data: bytes, media_type: str | None = None) -> None:
        self._blobs[locator] = BlobContent(data=data, media_type=media_type)

    async def download(self, locator: str) -> BlobContent:
        blob = self._blobs.get(locator)
        if blob is None:
            raise BlobNotFoundError(f"No blob at {locator}")
        return blob


def build_blob_store(settings: Settings) -> BlobStore:
    """Pick the blob store implementation from settings."""
    if settings.blob_base_url:
        return HttpBlobStore(settings.blob_base_url)
    return LocalBlobStore(settings.blob_base_dir)
