"""
Pillow helpers for downloaded photos: bounded resize in place and JPEG thumbnails.

HEIC/HEIF decoding comes from pillow-heif. All functions here block; async callers
run them through asyncio.to_thread.
"""

import logging
from pathlib import Path
from typing import Optional, Tuple, Union

from PIL import Image
from pillow_heif import register_heif_opener

register_heif_opener()

log = logging.getLogger(__name__)

THUMBNAIL_PREFIX = "thumb_"
THUMBNAIL_MAX_SIDE = 320
JPEG_QUALITY = 90
THUMBNAIL_QUALITY = 85

# Decode and encode failures that leave the original file usable
IMAGE_ERRORS = (OSError, ValueError, Image.DecompressionBombError)

PathLike = Union[str, Path]


def compute_target_size(width: int, height: int, max_size: int) -> Tuple[int, int]:
    """Uniform downscale so the longer side equals max_size; unchanged if both sides fit."""
    if width <= max_size and height <= max_size:
        return width, height
    scale = max_size / max(width, height)
    return max(1, round(width * scale)), max(1, round(height * scale))


def read_dimensions(path: PathLike) -> Optional[Tuple[int, int]]:
    """(width, height) from the image header, or None if the file cannot be decoded."""
    try:
        with Image.open(path) as img:
            return img.size
    except IMAGE_ERRORS as e:
        log.warning("Cannot read image size of %s: %s", path, e)
        return None


def resize_in_place(path: PathLike, max_size: int) -> bool:
    """
    Downscale the image at path if either side exceeds max_size, keeping its format
    and EXIF block. Returns True if the file was rewritten.
    """
    try:
        with Image.open(path) as img:
            fmt = img.format
            exif = img.info.get("exif")
            target = compute_target_size(img.width, img.height, max_size)
            if target == img.size:
                return False
            resized = img.resize(target, Image.LANCZOS)
    except IMAGE_ERRORS as e:
        log.warning("Cannot decode %s for resize, keeping original: %s", path, e)
        return False

    # Multi-picture JPEGs from phones are re-encoded as plain JPEG
    if fmt == "MPO":
        fmt = "JPEG"
    save_kwargs = {"format": fmt}
    if exif:
        save_kwargs["exif"] = exif
    if fmt == "JPEG":
        save_kwargs["quality"] = JPEG_QUALITY
        if resized.mode not in ("RGB", "L", "CMYK"):
            resized = resized.convert("RGB")
    try:
        resized.save(path, **save_kwargs)
    except IMAGE_ERRORS as e:
        log.warning("Cannot re-encode %s after resize: %s", path, e)
        return False
    log.debug("Resized %s to %sx%s", path, target[0], target[1])
    return True


def is_thumbnail_name(name: str) -> bool:
    return Path(name).name.startswith(THUMBNAIL_PREFIX)


def thumbnail_path_for(path: PathLike) -> Path:
    """Sibling JPEG: photo.heic -> thumb_photo.jpg."""
    p = Path(path)
    return p.with_name(f"{THUMBNAIL_PREFIX}{p.stem}.jpg")


def ensure_thumbnail(path: PathLike, max_side: int = THUMBNAIL_MAX_SIDE) -> Optional[Path]:
    """
    Create or refresh the thumbnail beside path. Returns its path, or None for
    thumbnails themselves and for images that fail to decode.
    """
    source = Path(path)
    if is_thumbnail_name(source.name):
        return None
    thumb = thumbnail_path_for(source)
    try:
        if thumb.is_file() and thumb.stat().st_mtime >= source.stat().st_mtime:
            return thumb
        with Image.open(source) as img:
            # thumbnail() never upscales
            img.thumbnail((max_side, max_side), Image.LANCZOS)
            rgb = img.convert("RGB")
        rgb.save(thumb, format="JPEG", quality=THUMBNAIL_QUALITY)
    except IMAGE_ERRORS as e:
        log.warning("Thumbnail generation failed for %s: %s", source, e)
        return None
    return thumb
