"""
Object Store - Single Responsibility: turn a local image into a durable URL.

Unsigned uploads to Cloudinary, trying several upload presets in order.
"""
from typing import Dict, Optional, Sequence
import asyncio
import logging
import time

import httpx

from ..errors import UploadError
from ..models import MediaFile

logger = logging.getLogger(__name__)

CLOUDINARY_API_URL = "https://api.cloudinary.com/v1_1"
DEFAULT_PRESETS = ("rebuild_fit", "ml_default", "unsigned")


def _folder_parts(prefix: str) -> Sequence[str]:
    return [p for p in prefix.strip("/").split("/") if p]


class CloudinaryObjectStore:
    """
    Service for uploading images to Cloudinary.

    Implements IObjectStore protocol. Has no multi-file endpoint, so the
    scheduler issues one upload per file.

    Usage:
        async with CloudinaryObjectStore("my-cloud") as store:
            url = await store.upload(MediaFile.from_path("photo.jpg"), "gyms")
    """

    def __init__(
        self,
        cloud_name: str,
        upload_presets: Sequence[str] = DEFAULT_PRESETS,
        root_folder: str = "rebuild_gym",
        timeout: int = 120,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not upload_presets:
            raise ValueError("At least one upload preset is required")
        self._cloud_name = cloud_name
        self._presets = tuple(upload_presets)
        self._root_folder = root_folder
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def upload_url(self) -> str:
        return f"{CLOUDINARY_API_URL}/{self._cloud_name}/image/upload"

    async def __aenter__(self):
        self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    def _form_fields(self, file: MediaFile, prefix: str, preset: str) -> Dict[str, str]:
        parts = _folder_parts(prefix)
        folder = "/".join(parts[:2]) if parts else "general"
        context = {
            "upload_path": prefix,
            "uploaded_via": "admin_dashboard",
            "upload_timestamp": str(int(time.time() * 1000)),
            "original_name": file.name,
        }
        return {
            "upload_preset": preset,
            "folder": f"{self._root_folder}/{folder}",
            "tags": ",".join([parts[0] if parts else "general", self._root_folder, "admin_upload"]),
            "context": "|".join(f"{k}={v}" for k, v in context.items()),
        }

    async def upload(self, file: MediaFile, prefix: str) -> str:
        """
        Upload image, falling back through the configured presets.

        Args:
            file: Image to upload
            prefix: Destination path such as "gyms/" or "transformations/before/"

        Returns:
            secure_url of the stored image

        Raises:
            UploadError: when every preset failed
        """
        if not self._client:
            raise RuntimeError("CloudinaryObjectStore not initialized. Use 'async with' context.")

        content = await asyncio.to_thread(file.path.read_bytes)
        last_error = "No upload presets available"

        for preset in self._presets:
            try:
                return await self._attempt(file, content, prefix, preset)
            except (UploadError, httpx.HTTPError) as exc:
                last_error = str(exc)
                logger.debug(f"[cloudinary] preset {preset} failed for {file.name}: {last_error}")

        raise UploadError(
            f"Failed to upload image with all available presets. Last error: {last_error}"
        )

    async def _attempt(self, file: MediaFile, content: bytes, prefix: str, preset: str) -> str:
        response = await self._client.post(
            self.upload_url,
            data=self._form_fields(file, prefix, preset),
            files={"file": (file.name, content, file.content_type)},
        )

        if response.status_code >= 400:
            try:
                message = response.json().get("error", {}).get("message") or "Unknown error occurred"
            except ValueError:
                message = response.text or "Unknown error occurred"
            if "upload_preset" in message or response.status_code == 400:
                message = (
                    f'Upload preset "{preset}" not found or not properly configured '
                    f"({message})"
                )
            raise UploadError(f"Upload failed: {response.status_code}. {message}")

        secure_url = response.json().get("secure_url")
        if not secure_url:
            raise UploadError("Upload response did not include secure_url")
        logger.info(f"[cloudinary] Uploaded {file.name} with preset {preset}")
        return secure_url
