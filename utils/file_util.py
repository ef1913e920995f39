import asyncio
import base64
import mimetypes
import os
from typing import Iterable, List

from errors import ValidationError
from logger import get_logger
from utils.response_format import ImagePart

logger = get_logger(__name__)

IMAGE_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".heic": "image/heic",
    ".heif": "image/heif",
}


def get_mime_type(path: str) -> str:
    extension = os.path.splitext(path)[1].lower()
    if extension in IMAGE_MIME_TYPES:
        return IMAGE_MIME_TYPES[extension]
    guessed, _ = mimetypes.guess_type(path)
    return guessed or "image/jpeg"


def _read_base64(path: str) -> str:
    with open(path, "rb") as f:
        return base64.b64encode(f.read()).decode("ascii")


async def read_image_parts(paths: Iterable[str]) -> List[ImagePart]:
    """Loads each image as a base64 inline part, preserving order."""
    parts = []
    for path in paths:
        try:
            data = await asyncio.to_thread(_read_base64, path)
        except OSError as e:
            logger.error(f"Error reading image file {path}: {e}")
            raise ValidationError(
                f"Failed to process image file: {os.path.basename(path)}"
            ) from e
        parts.append(ImagePart(mime_type=get_mime_type(path), data=data))
    return parts


async def cleanup_files(paths: Iterable[str]):
    """Deletes temporary uploads; a missing file is not an error."""
    for path in paths:
        try:
            await asyncio.to_thread(os.remove, path)
            logger.debug(f"Removed temporary file {path}")
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning(f"Could not remove temporary file {path}: {e}")
