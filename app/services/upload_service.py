"""
Upload Service — validation and storage of kanban card attachments.

Files arrive as multipart parts named ``file`` (single) or ``files``
(multiple). Every part is checked before anything is written:

    extension not allowed, or mimetype
    not the one for the extension       → 415 ERR_UNSUPPORTED_MEDIA
    file larger than MAX_UPLOAD_SIZE    → 413 ERR_PAYLOAD_TOO_LARGE
    more than MAX_UPLOAD_FILES parts    → 400 ERR_VALIDATION_INVALID

Stored names are random (uuid4 hex + original extension) so user-supplied
names never reach the filesystem; the original name is kept, sanitised,
for display and download.
"""

import logging
import os
import uuid
from dataclasses import dataclass

from flask import current_app
from werkzeug.utils import secure_filename

from app.utils.errors import E

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "pdf": "application/pdf",
}


class UploadError(Exception):
    def __init__(self, message, code=E.VALIDATION_INVALID):
        super().__init__(message)
        self.message = message
        self.code = code


@dataclass(frozen=True)
class StoredFile:
    original_name: str
    stored_name: str
    mime_type: str
    size: int


def upload_folder() -> str:
    folder = current_app.config["UPLOAD_FOLDER"]
    os.makedirs(folder, exist_ok=True)
    return folder


def collect_files(files) -> list:
    """FileStorage parts from ``file`` and ``files``, skipping empty inputs."""
    parts = files.getlist("file") + files.getlist("files")
    return [p for p in parts if p and p.filename]


def _size_of(storage) -> int:
    stream = storage.stream
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(0)
    return size


def check_file(storage) -> tuple[str, str, int]:
    """Return (safe original name, mime type, size) or raise UploadError."""
    original = secure_filename(storage.filename or "") or "upload"
    ext = original.rsplit(".", 1)[-1].lower() if "." in original else ""
    if ext not in ALLOWED_EXTENSIONS:
        raise UploadError(f"File type '.{ext}' is not allowed", E.UNSUPPORTED_MEDIA)

    mime_type = (storage.mimetype or "").lower() or ALLOWED_EXTENSIONS[ext]
    if mime_type != ALLOWED_EXTENSIONS[ext]:
        raise UploadError(
            f"Content type '{mime_type}' does not match '.{ext}'", E.UNSUPPORTED_MEDIA
        )

    size = _size_of(storage)
    max_size = current_app.config["MAX_UPLOAD_SIZE"]
    if size > max_size:
        raise UploadError(
            f"'{original}' is {size} bytes; the limit is {max_size} bytes",
            E.PAYLOAD_TOO_LARGE,
        )
    return original, mime_type, size


def check_files(parts) -> list[tuple]:
    if not parts:
        raise UploadError("No file provided (use the 'file' or 'files' field)", E.VALIDATION_REQUIRED)
    max_files = current_app.config["MAX_UPLOAD_FILES"]
    if len(parts) > max_files:
        raise UploadError(f"At most {max_files} files per upload", E.VALIDATION_INVALID)
    return [(part, *check_file(part)) for part in parts]


def store_file(storage, original: str, mime_type: str, size: int) -> StoredFile:
    ext = original.rsplit(".", 1)[-1].lower()
    stored_name = f"{uuid.uuid4().hex}.{ext}"
    storage.save(os.path.join(upload_folder(), stored_name))
    logger.info("Stored upload %s (%s, %d bytes)", stored_name, mime_type, size)
    return StoredFile(original_name=original, stored_name=stored_name, mime_type=mime_type, size=size)


def stored_path(stored_name: str) -> str:
    return os.path.join(upload_folder(), secure_filename(stored_name))


def remove_stored(stored_name: str) -> None:
    path = stored_path(stored_name)
    try:
        os.remove(path)
    except FileNotFoundError:
        logger.warning("Attachment file already gone: %s", path)
