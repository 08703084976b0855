"""
Asset matching — turns the supplied image references into a ProductMatch.

No filesystem access here: local paths are recorded as identifiers and only
touched later by the AssetResolver.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable

from .models import ProductMatch, VerifiedAsset

logger = logging.getLogger(__name__)

LOCAL_QUALITY_SCORE = 0.7
REMOTE_QUALITY_SCORE = 0.8


def is_remote_url(ref: str) -> bool:
    return ref.lower().startswith(("http://", "https://"))


def is_data_url(ref: str) -> bool:
    return ref.startswith("data:")


def extract_filename(ref: str) -> str:
    last = ref.rstrip("/").split("/")[-1] or "asset"
    return last.split("?")[0] or "asset"


def extract_extension(filename: str) -> str:
    parts = filename.split(".")
    return parts[-1].lower() if len(parts) > 1 else "png"


def split_references(refs: Iterable[str]) -> tuple[list[str], list[str]]:
    """Split image references into (local paths, remote/inline urls)."""
    paths: list[str] = []
    urls: list[str] = []
    for ref in refs:
        if not ref:
            continue
        if is_remote_url(ref) or is_data_url(ref):
            urls.append(ref)
        else:
            paths.append(ref)
    return paths, urls


def _asset_id(filename: str, ext: str, fallback: str) -> str:
    suffix = f".{ext}"
    stem = filename[: -len(suffix)] if filename.lower().endswith(suffix) else filename
    return stem or fallback


def match_product_assets(
    product_image_paths: list[str],
    product_image_urls: list[str],
) -> ProductMatch:
    """
    Match available product assets against pipeline requirements.

    Local paths come first, then URLs, each in the order given. An empty
    match is valid and means every scene is generated from text only.
    """
    verified_at = datetime.now(timezone.utc).isoformat()
    assets: list[VerifiedAsset] = []

    for path in product_image_paths:
        if not path:
            continue
        filename = extract_filename(path)
        ext = extract_extension(filename)
        assets.append(VerifiedAsset(
            id=_asset_id(filename, ext, "local-asset"),
            url=path,
            format=ext,
            tags=["product", "local"],
            verified_at=verified_at,
            quality_score=LOCAL_QUALITY_SCORE,
            usable_for=["reference", "product-shot"],
        ))

    for url in product_image_urls:
        if not url:
            continue
        if is_data_url(url):
            mime = url[5:].split(";", 1)[0]
            assets.append(VerifiedAsset(
                id="inline-asset",
                url=url,
                format=mime.split("/")[-1] or "png",
                tags=["product", "inline"],
                verified_at=verified_at,
                quality_score=REMOTE_QUALITY_SCORE,
                usable_for=["reference", "product-shot"],
            ))
        elif is_remote_url(url):
            filename = extract_filename(url)
            ext = extract_extension(filename)
            assets.append(VerifiedAsset(
                id=_asset_id(filename, ext, "remote-asset"),
                url=url,
                format=ext,
                tags=["product", "remote"],
                verified_at=verified_at,
                quality_score=REMOTE_QUALITY_SCORE,
                usable_for=["reference", "product-shot"],
            ))
        else:
            logger.warning(f"Ignoring unsupported image reference: {url[:80]}")

    if assets:
        justification = f"Found {len(assets)} compatible asset(s)."
    else:
        justification = "No compatible assets found. All scenes will be generated from text prompts only."

    return ProductMatch(
        compatible_assets=assets,
        reuse_allowed=bool(assets),
        justification=justification,
    )
