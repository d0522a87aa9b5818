"""Image uploads and static file lookup for ``/api/images`` and ``/attached_assets``."""
import uuid
from pathlib import Path

from errors import NotFound, ValidationError

ALLOWED_IMAGE_TYPES = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
}


def check_filename(filename: str) -> str:
    if not filename or ".." in filename or "/" in filename or "\\" in filename:
        raise ValidationError("Invalid filename")
    return filename


def save_image(data: bytes, content_type: str, directory, max_bytes: int) -> str:
    """Store an uploaded image under a fresh name and return that name."""
    extension = ALLOWED_IMAGE_TYPES.get((content_type or "").lower())
    if extension is None:
        raise ValidationError("Only image uploads are allowed")
    if not data:
        raise ValidationError("Uploaded file is empty")
    if len(data) > max_bytes:
        raise ValidationError(f"File too large, limit is {max_bytes // (1024 * 1024)}MB")
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    name = f"{uuid.uuid4().hex}{extension}"
    (directory / name).write_bytes(data)
    return name


def resolve_file(directory, filename: str) -> Path:
    path = Path(directory) / check_filename(filename)
    if not path.is_file():
        raise NotFound("File not found")
    return path
