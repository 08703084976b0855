"""
Asset Resolver — turns a scene's assetRef into content the scene generator accepts.

  remote URL / data URL  → passed through unchanged
  empty                  → None (text-to-video)
  local path             → read and inlined as a base64 data URL; a missing
                           file is replaced by a placeholder PNG first. Paths
                           must stay inside the resolver's base_dir.
"""

import os
import base64
import logging
from io import BytesIO
from pathlib import Path
from typing import Optional, Union

from PIL import Image

from .errors import AssetResolutionError
from .match import is_data_url, is_remote_url

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

ASSET_BASE_DIR = os.getenv("ASSET_BASE_DIR", "")

PLACEHOLDER_SIZE = (1, 1)
PLACEHOLDER_COLOR = (255, 255, 255)

MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".gif": "image/gif",
}


def guess_mime(path: Union[str, Path]) -> str:
    return MIME_TYPES.get(Path(path).suffix.lower(), "image/png")


def placeholder_png() -> bytes:
    """Smallest valid PNG we can hand to a generator."""
    buf = BytesIO()
    Image.new("RGB", PLACEHOLDER_SIZE, PLACEHOLDER_COLOR).save(buf, format="PNG")
    return buf.getvalue()


def to_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('utf-8')}"


class AssetResolver:
    """Resolves scene asset references. Safe to share between runs."""

    def __init__(self, base_dir: Optional[Union[str, Path]] = None):
        self.base_dir = Path(base_dir or ASSET_BASE_DIR or Path.cwd())

    def local_path(self, asset_ref: str) -> Path:
        """Absolute path for asset_ref. Refuses anything that lands outside base_dir."""
        path = Path(asset_ref).expanduser()
        if not path.is_absolute():
            path = self.base_dir / path
        path = path.resolve()
        if not path.is_relative_to(self.base_dir.resolve()):
            raise AssetResolutionError(f"Asset {asset_ref} is outside the asset directory {self.base_dir}")
        return path

    def ensure_placeholder(self, path: Path) -> bool:
        """Write a placeholder image at path unless one exists. Returns True if written."""
        if path.exists():
            return False
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(placeholder_png())
        return True

    def resolve(self, asset_ref: str, trace: Optional[list[str]] = None) -> Optional[str]:
        """
        Resolve one asset reference.

        Args:
            asset_ref: URL, data URL, local path or "".
            trace:     Optional list that receives human-readable trace notes.

        Returns:
            A URL / data URL for the scene generator, or None for text-only.

        Raises:
            AssetResolutionError for a path outside base_dir, or any filesystem
            error other than "not found".
        """
        if not asset_ref:
            return None
        if is_remote_url(asset_ref) or is_data_url(asset_ref):
            return asset_ref

        path = self.local_path(asset_ref)
        try:
            if self.ensure_placeholder(path):
                note = f"Asset missing, placeholder created at {asset_ref}"
                logger.warning(note)
                if trace is not None:
                    trace.append(note)
            data = path.read_bytes()
        except OSError as e:
            raise AssetResolutionError(f"Could not resolve asset {asset_ref}: {e}") from e

        return to_data_url(data, guess_mime(path))
