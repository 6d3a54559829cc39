"""Capture time and GPS position from EXIF (JPEG, PNG, WebP, HEIC via pillow-heif)."""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, Union

from PIL import Image

from peoplemap.geo import is_valid_coordinate
from peoplemap.photos.imaging import IMAGE_ERRORS

log = logging.getLogger(__name__)

# IFD pointers
EXIF_IFD = 0x8769
GPS_IFD = 0x8825

# IFD0
TAG_DATETIME = 0x0132
# Exif IFD
TAG_DATETIME_ORIGINAL = 0x9003
TAG_DATETIME_DIGITIZED = 0x9004
TAG_OFFSET_TIME = 0x9010
TAG_OFFSET_TIME_ORIGINAL = 0x9011
TAG_OFFSET_TIME_DIGITIZED = 0x9012
# GPS IFD
TAG_GPS_LATITUDE_REF = 1
TAG_GPS_LATITUDE = 2
TAG_GPS_LONGITUDE_REF = 3
TAG_GPS_LONGITUDE = 4

EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"


@dataclass(frozen=True)
class PhotoMetadata:
    capture_utc: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def has_gps(self) -> bool:
        return self.latitude is not None and self.longitude is not None


def _text(value: Any) -> Optional[str]:
    if isinstance(value, bytes):
        value = value.decode("ascii", errors="ignore")
    if not isinstance(value, str):
        return None
    value = value.strip().strip("\x00").strip()
    return value or None


def _rational(value: Any) -> Optional[float]:
    """IFDRational, (num, den) tuple or plain number to float."""
    try:
        if isinstance(value, tuple) and len(value) == 2:
            num, den = value
            if den == 0:
                return None
            result = float(num) / float(den)
        else:
            result = float(value)
    except (TypeError, ValueError, ZeroDivisionError):
        return None
    return result if math.isfinite(result) else None


def dms_to_decimal(dms: Sequence[Any], ref: Any) -> Optional[float]:
    """Degrees/minutes/seconds to signed decimal degrees; S and W are negative."""
    if not isinstance(dms, (tuple, list)) or len(dms) != 3:
        return None
    parts = [_rational(v) for v in dms]
    if any(p is None for p in parts):
        return None
    degrees, minutes, seconds = parts
    value = degrees + minutes / 60.0 + seconds / 3600.0
    if (_text(ref) or "").upper() in ("S", "W"):
        value = -value
    return value


def _parse_offset(value: Any) -> Optional[timezone]:
    text = _text(value)
    if not text or len(text) != 6 or text[0] not in "+-" or text[3] != ":":
        return None
    try:
        hours, minutes = int(text[1:3]), int(text[4:6])
    except ValueError:
        return None
    delta = timedelta(hours=hours, minutes=minutes)
    return timezone(-delta if text[0] == "-" else delta)


def parse_exif_datetime(value: Any, offset: Any = None) -> Optional[datetime]:
    """'YYYY:MM:DD HH:MM:SS' (+ optional '+HH:MM' offset tag) to UTC. Without an offset the value is taken as UTC."""
    text = _text(value)
    if not text:
        return None
    try:
        parsed = datetime.strptime(text[:19], EXIF_DATETIME_FORMAT)
    except ValueError:
        return None
    tz = _parse_offset(offset) or timezone.utc
    return parsed.replace(tzinfo=tz).astimezone(timezone.utc)


def metadata_from_exif(
    ifd0: Mapping[int, Any],
    exif_ifd: Mapping[int, Any],
    gps_ifd: Mapping[int, Any],
) -> PhotoMetadata:
    """Pick the first usable timestamp (original, digitized, file) and a valid GPS pair."""
    capture = (
        parse_exif_datetime(exif_ifd.get(TAG_DATETIME_ORIGINAL), exif_ifd.get(TAG_OFFSET_TIME_ORIGINAL))
        or parse_exif_datetime(exif_ifd.get(TAG_DATETIME_DIGITIZED), exif_ifd.get(TAG_OFFSET_TIME_DIGITIZED))
        or parse_exif_datetime(ifd0.get(TAG_DATETIME), exif_ifd.get(TAG_OFFSET_TIME))
    )
    lat = dms_to_decimal(gps_ifd.get(TAG_GPS_LATITUDE), gps_ifd.get(TAG_GPS_LATITUDE_REF))
    lon = dms_to_decimal(gps_ifd.get(TAG_GPS_LONGITUDE), gps_ifd.get(TAG_GPS_LONGITUDE_REF))
    if not is_valid_coordinate(lat, lon):
        lat = lon = None
    return PhotoMetadata(capture_utc=capture, latitude=lat, longitude=lon)


def extract_photo_metadata(path: Union[str, Path]) -> PhotoMetadata:
    """Read EXIF from an image file. Missing or unreadable EXIF gives empty metadata."""
    try:
        with Image.open(path) as img:
            exif = img.getexif()
            ifd0 = dict(exif)
            exif_ifd = dict(exif.get_ifd(EXIF_IFD))
            gps_ifd = dict(exif.get_ifd(GPS_IFD))
    except IMAGE_ERRORS as e:
        log.warning("Cannot read EXIF from %s: %s", path, e)
        return PhotoMetadata()
    return metadata_from_exif(ifd0, exif_ifd, gps_ifd)
