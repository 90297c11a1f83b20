"""Latest-screenshot storage for running scrapers."""

from __future__ import annotations

import logging
import shutil
from io import BytesIO
from pathlib import Path

from PIL import Image

logger = logging.getLogger(__name__)

SCREENSHOT_NAME = "latest.jpg"
MAX_SIZE = (1280, 1280)
JPEG_QUALITY = 60


class ScreenshotStore:
    """Writes `<root>/<store>/latest.jpg`, served statically to the admin UI."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def path_for(self, store: str) -> Path:
        return self.root / store / SCREENSHOT_NAME

    def save(self, store: str, image_bytes: bytes) -> Path:
        """Downscale and compress a PNG screenshot, replacing the previous one."""
        target = self.path_for(store)
        target.parent.mkdir(parents=True, exist_ok=True)

        with Image.open(BytesIO(image_bytes)) as img:
            resample = Image.Resampling.LANCZOS
            img = img.convert("RGB")
            img.thumbnail(MAX_SIZE, resample=resample)
            buffer = BytesIO()
            img.save(buffer, format="JPEG", quality=JPEG_QUALITY, optimize=True)

        # Write then rename so pollers never read a half-written file
        tmp = target.with_suffix(".tmp")
        tmp.write_bytes(buffer.getvalue())
        tmp.replace(target)
        return target

    def clear(self, store: str) -> int:
        """Delete all screenshots of a store. Returns the number of files removed."""
        directory = self.root / store
        if not directory.exists():
            return 0
        removed = sum(1 for p in directory.rglob("*") if p.is_file())
        shutil.rmtree(directory)
        logger.info(f"Removed {removed} screenshot(s) for {store}")
        return removed
