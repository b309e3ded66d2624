"""
Diecut image storage.

Uploaded images are written to ``DIECUT_IMAGE_DIR`` as
``{diecut_id}_{epoch_ms}{ext}``. Only the resulting path is stored on the
catalog row; serving the files is the web server's job.
"""

import logging
import os
import time

from flask import current_app
from werkzeug.utils import secure_filename

from toolroom.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = frozenset({".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp"})


def _image_dir() -> str:
    path = current_app.config["DIECUT_IMAGE_DIR"]
    os.makedirs(path, exist_ok=True)
    return path


def save_image(file_storage, diecut_id: str) -> str:
    """Persist an uploaded ``FileStorage`` and return its path."""
    ext = os.path.splitext(file_storage.filename or "")[1].lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise ValidationError(
            f"Unsupported image type '{ext or '?'}'",
            details={"image": f"allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"},
        )
    file_name = secure_filename(f"{diecut_id}_{int(time.time() * 1000)}{ext}")
    path = os.path.join(_image_dir(), file_name)
    file_storage.save(path)
    logger.info("Stored diecut image %s", path, extra={"diecut_id": diecut_id})
    return path


def remove_image(path: str | None) -> None:
    """Delete a previously stored image; a missing file is not an error."""
    if not path:
        return
    try:
        os.remove(path)
    except FileNotFoundError:
        logger.debug("Image %s already gone", path)
