"""
Media Service Clients
=====================

Clients for the media backend:
- MuxingClient: concatenates scene videos and lays an audio track over a video
- StorageClient: uploads binary files and returns their public URL

Both talk to the same HTTP service (``media.base_url``).
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional, List, Dict, Any, Union

import aiofiles
import httpx

from ..core.exceptions import MuxingError, StorageError, ValidationError
from ..core.security import sanitize_filename

logger = logging.getLogger(__name__)


DEFAULT_MEDIA_URL = "http://localhost:4000"


class _MediaServiceClient:
    """Shared HTTP client handling for the media backend."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 300.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or DEFAULT_MEDIA_URL).rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._client_lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self.timeout),
                    # Required when the backend is exposed through an ngrok tunnel
                    headers={"ngrok-skip-browser-warning": "1"},
                    transport=self._transport,
                )
            return self._client

    @staticmethod
    def _error_text(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text
        if isinstance(data, dict) and data.get("error"):
            return str(data["error"])
        return response.text

    async def close(self) -> None:
        """Close the HTTP client."""
        async with self._client_lock:
            if self._client:
                await self._client.aclose()
                self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


# =============================================================================
# Muxing
# =============================================================================


class MuxingClient(_MediaServiceClient):
    """FFmpeg-backed merge service."""

    async def health(self) -> bool:
        """Return True if the service answers ``{"ok": true}`` on /health."""
        client = await self._get_client()
        try:
            response = await client.get(f"{self.base_url}/health")
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Muxing service health check failed: {e}")
            return False
        return isinstance(data, dict) and data.get("ok") is True

    async def _require_healthy(self) -> None:
        if not await self.health():
            raise MuxingError(
                f"Muxing service is not available at {self.base_url}",
                provider="muxing",
            )

    async def _post(self, path: str, body: Dict[str, Any], operation: str) -> str:
        client = await self._get_client()
        try:
            response = await client.post(f"{self.base_url}{path}", json=body)
        except httpx.HTTPError as e:
            raise MuxingError(f"{operation} request failed: {e}", provider="muxing") from e

        if not response.is_success:
            raise MuxingError(
                f"{operation} failed: {self._error_text(response)}",
                provider="muxing",
                status_code=response.status_code,
                response_body=response.text,
            )

        try:
            output_url = response.json().get("output_url")
        except (ValueError, AttributeError) as e:
            raise MuxingError(f"{operation} returned invalid JSON", provider="muxing") from e
        if not output_url:
            raise MuxingError(f"{operation} returned no output_url", provider="muxing")
        return output_url

    async def merge_videos(self, video_urls: List[str]) -> str:
        """
        Concatenate videos in the given order.

        A single video is returned unchanged without contacting the service.
        """
        if not video_urls:
            raise ValidationError("No video URLs provided", field="video_urls")
        if len(video_urls) == 1:
            logger.info("Only one video, returning as-is")
            return video_urls[0]

        await self._require_healthy()
        logger.info(f"Merging {len(video_urls)} videos")
        output_url = await self._post("/api/merge", {"urls": list(video_urls)}, "Video merge")
        logger.info(f"Videos merged: {output_url}")
        return output_url

    async def merge_video_with_audio(self, video_url: str, audio_url: str) -> str:
        """Lay an audio track over a video."""
        if not video_url or not audio_url:
            raise ValidationError(
                "Both a video URL and an audio URL are required",
                field="video_url" if not video_url else "audio_url",
            )

        await self._require_healthy()
        logger.info("Merging video with audio")
        output_url = await self._post(
            "/api/video-audio",
            {"video_url": video_url, "audio_url": audio_url},
            "Video/audio merge",
        )
        logger.info(f"Video and audio merged: {output_url}")
        return output_url


# =============================================================================
# Object Storage
# =============================================================================


class StorageClient(_MediaServiceClient):
    """Upload endpoint that stores files and returns a public URL."""

    # The upload endpoint takes every file type under this field name
    UPLOAD_FIELD = "audio"

    async def upload_bytes(self, content: bytes, filename: str, content_type: str) -> str:
        """
        Upload raw bytes.

        Returns:
            Public URL of the stored file

        Raises:
            StorageError: If the upload fails or the response has no URL
        """
        if not content:
            raise ValidationError("Cannot upload an empty file", field="content")

        safe_name = sanitize_filename(filename)
        logger.info(f"Uploading {safe_name} ({len(content) / 1024:.2f} KB)")

        client = await self._get_client()
        files = {self.UPLOAD_FIELD: (safe_name, content, content_type)}
        try:
            response = await client.post(f"{self.base_url}/api/upload-audio", files=files)
        except httpx.HTTPError as e:
            raise StorageError(f"Upload failed: {e}", provider="storage") from e

        if not response.is_success:
            raise StorageError(
                f"Upload failed with status {response.status_code}",
                provider="storage",
                status_code=response.status_code,
                response_body=response.text,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise StorageError("Upload returned invalid JSON", provider="storage") from e

        if not isinstance(data, dict) or not data.get("success") or not data.get("url"):
            raise StorageError("Invalid response from storage service", provider="storage", response_body=str(data))

        logger.info(f"Uploaded {data.get('filename', safe_name)}: {data['url']}")
        return data["url"]

    async def upload_file(self, path: Union[str, Path], content_type: str) -> str:
        """Read a local file and upload it."""
        path = Path(path)
        if not path.is_file():
            raise ValidationError(f"File not found: {path}", field="path", value=str(path))

        async with aiofiles.open(path, "rb") as f:
            content = await f.read()
        return await self.upload_bytes(content, path.name, content_type)
