from __future__ import annotations

import logging
import shutil
from io import BytesIO
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import httpx
from PIL import Image, UnidentifiedImageError

from .errors import DownloadError, ResourceNotFoundError

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT_SEC = 120.0


def is_remote(locator: str) -> bool:
    return locator.startswith("http://") or locator.startswith("https://")


def local_path(locator: str) -> Optional[Path]:
    """Filesystem path behind a locator, or None for remote URLs."""
    if is_remote(locator):
        return None
    if locator.startswith("file://"):
        return Path(unquote(urlparse(locator).path))
    return Path(locator).expanduser()


def ensure_exists(locator: str) -> None:
    path = local_path(locator)
    if path is not None and not path.is_file():
        raise ResourceNotFoundError(locator)


def read_media_bytes(locator: str) -> bytes:
    path = local_path(locator)
    if path is None:
        try:
            response = httpx.get(locator, timeout=DOWNLOAD_TIMEOUT_SEC, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise DownloadError(f"Failed to fetch {locator}: {e}") from e
        return response.content
    if not path.is_file():
        raise ResourceNotFoundError(locator)
    return path.read_bytes()


def probe_image_size(locator: str) -> Optional[tuple[int, int]]:
    """Intrinsic (width, height) of an image, or None if it cannot be decoded."""
    try:
        data = read_media_bytes(locator)
        with Image.open(BytesIO(data)) as img:
            return img.size
    except (UnidentifiedImageError, OSError, DownloadError) as e:
        logger.debug(f"Could not probe image size for {locator}: {e}")
        return None


async def download_to_file(url: str, dest: Path) -> Path:
    """Save a generated artifact to ``dest``.

    Handles ``file://`` URLs (and bare paths) by copying, remote URLs by
    streaming through httpx.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    source = local_path(url)
    if source is not None:
        if not source.is_file():
            raise DownloadError(f"Failed to download {url}: file not found")
        if source.resolve() != dest.resolve():
            shutil.copyfile(source, dest)
        return dest

    try:
        async with httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT_SEC, follow_redirects=True) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                with dest.open("wb") as f:
                    async for chunk in response.aiter_bytes():
                        f.write(chunk)
    except httpx.HTTPError as e:
        raise DownloadError(f"Failed to download {url}: {e}") from e
    return dest
