import logging
import os
import re
from datetime import datetime
from typing import Optional

from config import settings

logger = logging.getLogger(__name__)

UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def safe_filename(filename: str) -> str:
    name = UNSAFE_CHARS.sub("_", os.path.basename(filename or "")).strip("._")
    return name or "upload"


class BlobStore:
    """Asset images on the local upload directory, served from ``/uploads``."""

    def __init__(self, root: Optional[str] = None, base_url: str = "/uploads"):
        self.root = root or settings.upload_dir
        self.base_url = base_url.rstrip("/")
        os.makedirs(self.root, exist_ok=True)

    def upload(self, asset_id: str, filename: str, data: bytes) -> str:
        relative = "/".join([
            "assets",
            safe_filename(asset_id),
            "images",
            f"{int(datetime.now().timestamp() * 1000)}_{safe_filename(filename)}",
        ])
        dest_path = os.path.join(self.root, *relative.split("/"))
        os.makedirs(os.path.dirname(dest_path), exist_ok=True)
        with open(dest_path, "wb") as f:
            f.write(data)
        logger.info(f"Stored {len(data)} bytes at {relative}")
        return f"{self.base_url}/{relative}"
