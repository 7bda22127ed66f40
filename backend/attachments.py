# attachments.py - Attachment store for photo reports and completion proof
"""
Given binary content and a logical path, an attachment store returns a
retrievable URL. Uploads report incremental progress through an optional
callback and raise DependencyError on failure; nothing is dropped
silently and nothing is retried here.
"""

import asyncio
import functools
import logging
import os
import time
from pathlib import Path
from typing import AsyncIterator, Callable, Optional

import httpx

from errors import DependencyError

logger = logging.getLogger("worktrack.attachments")

# Storage configuration (configurable via env)
STORAGE_ROOT = os.getenv("FILE_STORAGE_ROOT", "/data/attachments")
ATTACHMENT_BASE_URL = os.getenv("ATTACHMENT_BASE_URL", "")
UPLOAD_CHUNK_SIZE = 64 * 1024

ProgressCallback = Callable[[int, int], None]


def build_attachment_path(work_item_id: str, filename: str, now: Optional[float] = None) -> str:
    """attachments/{work_item_id}/{epoch_millis}-{filename}"""
    millis = int((now if now is not None else time.time()) * 1000)
    safe_name = Path(filename).name or "upload"
    return f"attachments/{work_item_id}/{millis}-{safe_name}"


def _report(progress: Optional[ProgressCallback], sent: int, total: int) -> None:
    if progress is None:
        return
    try:
        progress(sent, total)
    except Exception as e:
        logger.debug(f"Upload progress callback failed: {e}")


class AttachmentStore:
    """Interface every attachment backend implements"""

    async def upload(
        self, path: str, content: bytes,
        content_type: Optional[str] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> str:
        raise NotImplementedError

    async def delete(self, path: str) -> None:
        raise NotImplementedError


class LocalAttachmentStore(AttachmentStore):
    """Stores files under a local root directory"""

    def __init__(self, root: str = STORAGE_ROOT, base_url: str = ATTACHMENT_BASE_URL):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _target(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise DependencyError(f"Refusing to write outside storage root: {path}", code="WT-DEP-002")
        return target

    def url_for(self, path: str) -> str:
        if self.base_url:
            return f"{self.base_url}/{path}"
        return self._target(path).as_uri()

    def _write(self, target: Path, content: bytes, progress: Optional[ProgressCallback]) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        total = len(content)
        sent = 0
        with open(target, "wb") as fh:
            while sent < total:
                chunk = content[sent:sent + UPLOAD_CHUNK_SIZE]
                fh.write(chunk)
                sent += len(chunk)
                _report(progress, sent, total)
        if total == 0:
            _report(progress, 0, 0)

    async def upload(self, path, content, content_type=None, progress=None) -> str:
        target = self._target(path)
        try:
            await asyncio.to_thread(self._write, target, content, progress)
        except OSError as e:
            logger.error(f"Local upload failed for {path}: {e}")
            raise DependencyError(f"Attachment upload failed: {path}", code="WT-DEP-002") from e
        logger.info(f"Stored attachment {path} ({len(content)} bytes)")
        return self.url_for(path)

    async def delete(self, path: str) -> None:
        target = self._target(path)
        try:
            await asyncio.to_thread(target.unlink, True)
        except OSError as e:
            raise DependencyError(f"Attachment delete failed: {path}", code="WT-DEP-002") from e


class HTTPAttachmentStore(AttachmentStore):
    """Object storage reached over HTTP (PUT to upload, DELETE to remove)"""

    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def _stream(self, content: bytes, progress) -> AsyncIterator[bytes]:
        total = len(content)
        sent = 0
        for start in range(0, total, UPLOAD_CHUNK_SIZE):
            chunk = content[start:start + UPLOAD_CHUNK_SIZE]
            sent += len(chunk)
            yield chunk
            _report(progress, sent, total)

    async def upload(self, path, content, content_type=None, progress=None) -> str:
        url = f"{self.base_url}/{path}"
        headers = {"Content-Length": str(len(content))}
        if content_type:
            headers["Content-Type"] = content_type
        try:
            resp = await self._client.put(url, content=self._stream(content, progress), headers=headers)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Object store upload failed for {path}: {e}")
            raise DependencyError(f"Attachment upload failed: {path}", code="WT-DEP-002") from e

        # Stores that mint their own download URL return it as JSON
        try:
            body = resp.json()
        except ValueError:
            body = {}
        return body.get("url") if isinstance(body, dict) and body.get("url") else url

    async def delete(self, path: str) -> None:
        try:
            resp = await self._client.delete(f"{self.base_url}/{path}")
            if resp.status_code != 404:
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise DependencyError(f"Attachment delete failed: {path}", code="WT-DEP-002") from e

    async def aclose(self) -> None:
        await self._client.aclose()


@functools.lru_cache(maxsize=1)
def get_attachment_store() -> AttachmentStore:
    """Dependency for the configured attachment backend (FastAPI Depends)"""
    object_store_url = os.getenv("ATTACHMENT_OBJECT_STORE_URL", "")
    if object_store_url:
        return HTTPAttachmentStore(object_store_url)
    return LocalAttachmentStore()
