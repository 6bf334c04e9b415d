"""
Preview Service - Single Responsibility: local previews for admitted files.

A preview is a small JPEG thumbnail encoded as a data URI so a renderer can
show the image before (and regardless of whether) the upload succeeds.
"""
from typing import List, Optional, Sequence
import asyncio
import base64
import io
import logging

from PIL import Image, UnidentifiedImageError

from ..models import MediaFile

logger = logging.getLogger(__name__)


class PreviewService:
    """Generates thumbnail data URIs with Pillow."""

    def __init__(self, max_size: int = 320, quality: int = 80):
        self._max_size = max_size
        self._quality = quality

    def generate(self, file: MediaFile) -> Optional[str]:
        """
        Build a preview for one file.

        Returns:
            data:image/jpeg;base64,... or None when the file cannot be decoded
        """
        try:
            with Image.open(file.path) as img:
                img.thumbnail((self._max_size, self._max_size))
                if img.mode not in ("RGB", "L"):
                    img = img.convert("RGB")
                buffer = io.BytesIO()
                img.save(buffer, format="JPEG", quality=self._quality)
        except (UnidentifiedImageError, OSError) as e:
            logger.warning(f"[preview] Could not build preview for {file.name}: {e}")
            return None

        encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
        return f"data:image/jpeg;base64,{encoded}"

    async def generate_async(self, file: MediaFile) -> Optional[str]:
        """Generate preview off the event loop."""
        return await asyncio.to_thread(self.generate, file)

    async def generate_many(self, files: Sequence[MediaFile]) -> List[Optional[str]]:
        """Previews for a batch, in the same order as files."""
        return list(await asyncio.gather(*(self.generate_async(f) for f in files)))
