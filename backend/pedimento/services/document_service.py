import os
import uuid

import aiofiles
import aiofiles.os
from fastapi import UploadFile

from pedimento.config import Settings


async def save_upload(file: UploadFile, settings: Settings) -> tuple[str, str]:
    """Save an uploaded pedimento to disk.

    Returns (stored_filename, full_file_path).
    """
    ext = os.path.splitext(file.filename or "upload")[1]
    stored_filename = f"{uuid.uuid4()}{ext}"
    file_path = os.path.join(settings.upload_dir, stored_filename)

    os.makedirs(settings.upload_dir, exist_ok=True)

    async with aiofiles.open(file_path, "wb") as f:
        content = await file.read()
        await f.write(content)

    return stored_filename, file_path


async def remove_upload(file_path: str) -> None:
    """Delete a stored upload once it has been processed."""
    await aiofiles.os.remove(file_path)


def get_file_extension(filename: str) -> str:
    """Extract the file extension without the dot, lowercased."""
    _, ext = os.path.splitext(filename)
    return ext.lstrip(".").lower()


def get_mime_type(filename: str) -> str:
    """Map file extension to MIME type."""
    ext = get_file_extension(filename)
    mime_map = {
        "pdf": "application/pdf",
        "png": "image/png",
        "jpg": "image/jpeg",
        "jpeg": "image/jpeg",
        "tiff": "image/tiff",
        "tif": "image/tiff",
        "txt": "text/plain",
    }
    return mime_map.get(ext, "application/octet-stream")
