"""
Remote storage upload for backup artifacts
"""
import logging
import os
from typing import AsyncIterator, Optional

import httpx

from bookkeeping.exceptions import UploadError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


async def _read_chunks(path: str) -> AsyncIterator[bytes]:
    with open(path, "rb") as artifact:
        while True:
            chunk = artifact.read(CHUNK_SIZE)
            if not chunk:
                break
            yield chunk


class RemoteUploader:
    """Uploads backup artifacts to an HTTP object storage endpoint"""

    def __init__(
        self,
        upload_url: str,
        token: str = "",
        timeout: float = 300.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize uploader

        Args:
            upload_url: Endpoint that accepts POSTed file bodies
            token: Optional bearer token sent with every upload
            timeout: Request timeout in seconds
            client: Optional pre-built client (tests inject a MockTransport)
        """
        self.upload_url = upload_url
        self.token = token
        self.client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    def _headers(self, path: str) -> dict:
        headers = {
            "Content-Type": "application/sql",
            "Content-Length": str(os.path.getsize(path)),
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def upload(self, path: str) -> None:
        """
        Send one artifact to remote storage

        Raises:
            UploadError: when the endpoint is not configured, the file is
                unreadable, the request fails or the response is not 2xx
        """
        if not self.upload_url:
            raise UploadError("No upload URL configured", path=path)

        object_name = os.path.basename(path)
        try:
            response = await self.client.post(
                self.upload_url,
                params={"name": object_name},
                headers=self._headers(path),
                content=_read_chunks(path),
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise UploadError(
                f"Upload of {object_name} rejected with HTTP {e.response.status_code}",
                path=path,
                status_code=e.response.status_code,
            ) from e
        except (httpx.RequestError, OSError) as e:
            raise UploadError(f"Upload of {object_name} failed: {e}", path=path) from e

        logger.debug(f"Uploaded {object_name} to remote storage")

    async def aclose(self) -> None:
        await self.client.aclose()
