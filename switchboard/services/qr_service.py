import re
import time
import uuid
from pathlib import Path
from typing import Optional

import segno

from switchboard.logging_config import get_logger

logger = get_logger("qr_service")

QR_FILENAME_PATTERN = re.compile(r"^qr-[A-Za-z0-9_-]+\.svg$")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


class QRCodeStorage:
    """Renders pairing codes as SVG files under a publicly served directory."""

    def __init__(self, public_dir: str, url_prefix: str):
        self.public_dir = Path(public_dir)
        self.url_prefix = url_prefix.rstrip("/")

    def render_svg(self, code: str, channel_id: Optional[str] = None) -> str:
        if not code:
            raise ValueError("QR code payload is empty")
        self.public_dir.mkdir(parents=True, exist_ok=True)
        prefix = f"qr-{_UNSAFE_CHARS.sub('_', channel_id)[:40]}" if channel_id else "qr"
        filename = f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}.svg"
        segno.make_qr(code, error="m").save(str(self.public_dir / filename), scale=6, border=2)
        logger.debug(f"QR image written: {filename}")
        return f"{self.url_prefix}/{filename}"

    def remove(self, url: Optional[str]) -> bool:
        if not url:
            return False
        filename = url.rsplit("/", 1)[-1]
        if not QR_FILENAME_PATTERN.match(filename):
            logger.warning(f"Refusing to delete unexpected QR path: {url}")
            return False
        path = self.public_dir / filename
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to delete QR image {filename}: {e}")
            return False
