"""
Product image upload validation and storage.
"""
import logging
import os
import time
from typing import List, Optional

from fastapi import HTTPException, UploadFile
from werkzeug.utils import secure_filename

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "webp"}
ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/webp"}
URL_PREFIX = "/uploads"


def allowed_file(filename: str, content_type: Optional[str]) -> bool:
    if not filename or "." not in filename:
        return False
    extension = filename.rsplit(".", 1)[1].lower()
    return extension in ALLOWED_EXTENSIONS and (content_type or "").lower() in ALLOWED_CONTENT_TYPES


def _file_size(upload: UploadFile) -> int:
    stream = upload.file
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(0)
    return size


def validate_images(files: List[UploadFile], max_files: int, max_size: int) -> List[UploadFile]:
    """
    Check count, type and size of uploaded images before anything is written.

    Empty form parts (browsers send one when no file is chosen) are dropped.
    """
    images = [f for f in files or [] if f is not None and f.filename]
    if len(images) > max_files:
        raise HTTPException(status_code=400, detail=f"At most {max_files} images are allowed")
    for image in images:
        if not allowed_file(image.filename, image.content_type):
            raise HTTPException(status_code=400, detail="Only images are allowed (JPEG, JPG, PNG, WEBP)")
        if _file_size(image) > max_size:
            raise HTTPException(
                status_code=400,
                detail=f"Image '{image.filename}' exceeds the {max_size // (1024 * 1024)}MB limit",
            )
    return images


def save_images(images: List[UploadFile], upload_dir: str) -> List[str]:
    """Write images to ``upload_dir`` in upload order and return their public URLs."""
    os.makedirs(upload_dir, exist_ok=True)
    timestamp = int(time.time() * 1000)
    urls = []
    try:
        for index, image in enumerate(images):
            filename = f"{timestamp}-{index}-{secure_filename(image.filename)}"
            with open(os.path.join(upload_dir, filename), "wb") as f:
                f.write(image.file.read())
            urls.append(f"{URL_PREFIX}/{filename}")
    except OSError:
        discard_images(urls, upload_dir)
        raise
    logger.debug("Stored %d image(s) in %s", len(urls), upload_dir)
    return urls


def discard_images(urls: List[str], upload_dir: str) -> None:
    """Remove stored images whose database rows were never committed."""
    for url in urls:
        path = os.path.join(upload_dir, url.rsplit("/", 1)[1])
        try:
            os.remove(path)
        except FileNotFoundError:
            continue
    if urls:
        logger.warning("Discarded %d orphaned image(s) from %s", len(urls), upload_dir)
