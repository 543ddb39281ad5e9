"""
Product image storage on local disk, served under /uploads.
"""

import logging
import os
import re
import time
from typing import Optional

from fastapi import HTTPException, UploadFile

from config import UPLOADS_DIR, MAX_UPLOAD_BYTES

logger = logging.getLogger(__name__)

URL_PREFIX = "/uploads/"
ALLOWED_TYPES = re.compile(r"jpeg|jpg|png|gif|webp")


def ensure_uploads_dir():
    os.makedirs(UPLOADS_DIR, exist_ok=True)


def clean_filename(original: str) -> str:
    """Sanitize the stem of an uploaded filename."""
    stem, _ = os.path.splitext(original)
    name = stem.strip()
    name = re.sub(r"\s+", "_", name)
    name = re.sub(r"[^a-zA-Z0-9._-]", "_", name)
    name = re.sub(r"_+", "_", name)
    name = name.strip("_")
    return name or "image"


def stored_filename(original: str) -> str:
    ext = os.path.splitext(original)[1].lower()
    return f"{int(time.time() * 1000)}_{clean_filename(original)}{ext}"


def save_image(upload: Optional[UploadFile]) -> Optional[str]:
    """Write an uploaded image to disk and return its public path."""
    if upload is None or not upload.filename:
        return None
    ext = os.path.splitext(upload.filename)[1].lower().lstrip(".")
    if not ALLOWED_TYPES.fullmatch(ext) or not ALLOWED_TYPES.search(upload.content_type or ""):
        raise HTTPException(status_code=400, detail="Only image files are allowed!")
    content = upload.file.read()
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="Image exceeds the 5MB limit")

    ensure_uploads_dir()
    filename = stored_filename(upload.filename)
    with open(os.path.join(UPLOADS_DIR, filename), "wb") as f:
        f.write(content)
    logger.info("Stored upload %s as %s", upload.filename, filename)
    return URL_PREFIX + filename


def delete_image(path: Optional[str]) -> bool:
    """Remove a previously uploaded image; URLs outside /uploads are left alone."""
    if not path or not path.startswith(URL_PREFIX):
        return False
    file_path = os.path.join(UPLOADS_DIR, os.path.basename(path))
    if os.path.exists(file_path):
        os.remove(file_path)
        logger.info("Deleted upload %s", file_path)
        return True
    return False
