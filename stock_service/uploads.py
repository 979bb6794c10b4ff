"""
Item image uploads: stored on local disk under UPLOAD_DIR and served back
from /uploads. Only the item's ``image_ref`` changes; stock is never touched.
"""
import logging
import re
import time
from pathlib import Path
from urllib.parse import quote

from fastapi import UploadFile
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.ext.asyncio import AsyncSession

from . import catalog, config, models
from .exceptions import ItemNotFound, UploadRejected, UploadTooLarge

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}

UPLOADS_PREFIX = "/uploads/"


def image_filename(item_id: int, content_type: str) -> str:
    safe_id = re.sub(r"[^a-zA-Z0-9_-]", "", str(item_id)) or "x"
    ext = ALLOWED_IMAGE_TYPES.get(content_type, "jpg")
    return f"inv_{safe_id}_{int(time.time() * 1000)}.{ext}"


def remove_previous_image(image_ref: str | None, upload_dir: Path) -> None:
    """Deletes the file behind a previous local image ref; foreign URLs are left alone."""
    if not image_ref or UPLOADS_PREFIX not in image_ref:
        return
    relative = image_ref.split(UPLOADS_PREFIX, 1)[1]
    path = (upload_dir / relative).resolve()
    if path.parent != upload_dir.resolve():
        logger.warning(f"Ignoring previous image outside the upload dir: {image_ref}")
        return
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Could not remove previous image {path}: {e}")


async def store_item_image(
    db: AsyncSession,
    item_id: int,
    upload: UploadFile,
    base_url: str,
    upload_dir: str | None = None,
) -> models.Item:
    content_type = (upload.content_type or "").lower()
    if content_type not in ALLOWED_IMAGE_TYPES:
        raise UploadRejected("Only images are accepted (jpg, png, webp, gif)")

    data = await upload.read(config.MAX_UPLOAD_BYTES + 1)
    if len(data) > config.MAX_UPLOAD_BYTES:
        raise UploadTooLarge(f"Image exceeds {config.MAX_UPLOAD_BYTES} bytes")

    db_item = await catalog.get_item(db, item_id)
    if db_item is None:
        raise ItemNotFound(item_id)

    directory = Path(upload_dir or config.UPLOAD_DIR)
    await run_in_threadpool(directory.mkdir, parents=True, exist_ok=True)
    filename = image_filename(item_id, content_type)
    target = directory / filename
    await run_in_threadpool(target.write_bytes, data)

    previous = db_item.image_ref
    public_url = f"{(config.PUBLIC_BASE_URL or base_url).rstrip('/')}{UPLOADS_PREFIX}{quote(filename)}"
    try:
        db_item = await catalog.set_image_ref(db, item_id, public_url)
    except Exception:
        target.unlink(missing_ok=True)
        raise
    if previous and not previous.endswith(quote(filename)):
        remove_previous_image(previous, directory)

    logger.info(f"[UPLOAD] item {item_id}: stored {filename} as {public_url}")
    return db_item
