import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import PurePath

import httpx

from stepwise.config import settings
from stepwise.services.errors import AnswerValidationError, StorageFailure

logger = logging.getLogger("storage_service")

ALLOWED_EXTENSIONS = {".mp4", ".mov", ".avi", ".webm", ".mkv", ".pdf", ".doc", ".docx", ".zip"}
MAX_UPLOAD_BYTES = 500 * 1024 * 1024  # 500MB


@dataclass(frozen=True)
class Upload:
    filename: str
    content_type: str
    data: bytes


def check_upload(upload: Upload):
    ext = PurePath(upload.filename or "").suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise AnswerValidationError("file_type", f"File type '{ext or upload.filename}' is not allowed")
    if len(upload.data) > MAX_UPLOAD_BYTES:
        raise AnswerValidationError("file_size", "File is larger than 500MB")


class ArtifactStore:
    """Thin client for the object storage gateway.

    Stored artifacts are addressed by their public URL; only URLs under
    ``public_url`` are considered ours and are ever deleted.
    """

    def __init__(self, base_url: str, public_url: str, token: str | None = None,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.public_url = public_url.rstrip("/")
        self.token = token
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {}
        if self.token:
            headers["authorization"] = f"Bearer {self.token}"
        return httpx.AsyncClient(headers=headers, transport=self._transport, timeout=60.0)

    async def store(self, data: bytes, content_type: str, filename: str) -> str:
        ext = PurePath(filename or "").suffix.lower()
        key = f"{int(time.time() * 1000)}-{uuid.uuid4()}{ext}"
        try:
            async with self._client() as client:
                res = await client.put(
                    f"{self.base_url}/{key}",
                    content=data,
                    headers={"content-type": content_type or "application/octet-stream"},
                )
                res.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Upload of {filename!r} failed: {e}")
            raise StorageFailure("File storage is unavailable, please retry") from e
        logger.info(f"Stored artifact {key} ({len(data)} bytes)")
        return f"{self.public_url}/{key}"

    async def delete(self, reference: str | None) -> bool:
        if not reference or not reference.startswith(f"{self.public_url}/"):
            return False
        key = reference[len(self.public_url) + 1:]
        try:
            async with self._client() as client:
                res = await client.delete(f"{self.base_url}/{key}")
                res.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to delete artifact {key}: {e}")
            return False
        logger.info(f"Deleted artifact {key}")
        return True

    async def delete_many(self, references):
        for reference in references:
            if reference:
                await self.delete(reference)


def get_artifact_store() -> ArtifactStore:
    return ArtifactStore(settings.STORAGE_URL, settings.STORAGE_PUBLIC_URL, settings.STORAGE_TOKEN)
