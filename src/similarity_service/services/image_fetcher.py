"""
Image acquisition from URLs, data URLs and local files.
"""

from __future__ import annotations

import base64
import binascii
import io
from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx
from PIL import Image, UnidentifiedImageError

from similarity_service.core.exceptions import EmptyInputError, ImageFetchError
from similarity_service.logging import get_logger


def decode_data_url(data_url: str) -> bytes:
    """
    Decode a base64 data URL ("data:image/png;base64,...") to bytes.

    Raises:
        ImageFetchError: If the URL is not base64 encoded or does not decode
    """
    header, _, payload = data_url.partition(",")
    if not header.endswith(";base64"):
        raise ImageFetchError(
            "Only base64 data URLs are supported",
            details={"header": header[:64]},
        )
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ImageFetchError(f"Invalid Base64 encoding: {e}") from e


def decode_image(image_bytes: bytes) -> Image.Image:
    """
    Load image from bytes and convert it to RGB.

    Args:
        image_bytes: Raw image bytes

    Returns:
        PIL Image in RGB mode

    Raises:
        EmptyInputError: If there are no bytes
        ImageFetchError: If the bytes are not a decodable image
    """
    if len(image_bytes) == 0:
        raise EmptyInputError("Image source returned no data")

    try:
        image = Image.open(io.BytesIO(image_bytes))
        # Verify image integrity
        image.verify()
        # Re-open because verify() consumes the file
        image = Image.open(io.BytesIO(image_bytes))
        return image.convert("RGB")
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        raise ImageFetchError(f"Failed to decode image: {e}") from e


class ImageFetcher:
    """
    Resolves an image source to a decoded RGB image.

    Supported sources: http(s) URLs, base64 data URLs, and (when enabled)
    file:// URLs or plain filesystem paths.
    """

    def __init__(
        self,
        timeout: float,
        max_bytes: int,
        allow_local_files: bool,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.allow_local_files = allow_local_files
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=5.0),
            follow_redirects=True,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def fetch(self, source: str) -> Image.Image:
        """
        Fetch and decode the image at source.

        Raises:
            ImageFetchError: If the source is unsupported, unreachable,
                too large, or not an image
            EmptyInputError: If the source yields no bytes
        """
        return decode_image(await self.fetch_bytes(source))

    async def fetch_bytes(self, source: str) -> bytes:
        source = source.strip()
        if not source:
            raise EmptyInputError("Image URL is empty")

        scheme = urlparse(source).scheme.lower()
        if scheme in {"http", "https"}:
            data = await self._fetch_http(source)
        elif scheme == "data":
            data = decode_data_url(source)
        elif scheme == "file" or scheme == "" or (len(scheme) == 1 and Path(source).is_absolute()):
            # One-letter schemes are Windows drive letters
            data = self._read_local(source)
        else:
            raise ImageFetchError(
                f"Unsupported image source scheme '{scheme}'",
                details={"scheme": scheme},
            )

        if len(data) > self.max_bytes:
            raise ImageFetchError(
                f"Image exceeds the {self.max_bytes} byte limit",
                details={"size": len(data), "max_bytes": self.max_bytes},
            )
        return data

    async def _fetch_http(self, url: str) -> bytes:
        logger = get_logger()
        try:
            async with self.client.stream("GET", url) as response:
                response.raise_for_status()
                buffer = bytearray()
                async for chunk in response.aiter_bytes():
                    buffer.extend(chunk)
                    if len(buffer) > self.max_bytes:
                        raise ImageFetchError(
                            f"Image exceeds the {self.max_bytes} byte limit",
                            details={"url": url, "max_bytes": self.max_bytes},
                        )
                return bytes(buffer)
        except httpx.TimeoutException as e:
            logger.warning("Image fetch timed out", extra={"url": url, "timeout": self.timeout})
            raise ImageFetchError(
                f"Timed out fetching image from {url}",
                details={"url": url, "timeout_seconds": self.timeout},
            ) from e
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Image fetch returned error status",
                extra={"url": url, "status_code": e.response.status_code},
            )
            raise ImageFetchError(
                f"Fetching image from {url} failed with HTTP {e.response.status_code}",
                details={"url": url, "status_code": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            logger.warning("Image fetch failed", extra={"url": url, "error_type": type(e).__name__})
            raise ImageFetchError(
                f"Could not fetch image from {url}: {e}",
                details={"url": url},
            ) from e

    def _read_local(self, source: str) -> bytes:
        if not self.allow_local_files:
            raise ImageFetchError("Local image files are not allowed")

        path = Path(unquote(urlparse(source).path)) if source.startswith("file:") else Path(source)
        try:
            return path.read_bytes()
        except OSError as e:
            raise ImageFetchError(
                f"Could not read image file {path}: {e}",
                details={"path": str(path)},
            ) from e
