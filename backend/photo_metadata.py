"""
EXIF reading for photos about to be uploaded: GPS position and the
original capture time.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, BinaryIO, Optional, Sequence, Union

from PIL import ExifTags, Image

_GPS_LATITUDE_REF = 1
_GPS_LATITUDE = 2
_GPS_LONGITUDE_REF = 3
_GPS_LONGITUDE = 4
_OFFSET_TIME_ORIGINAL = 0x9011

NO_LOCATION_MESSAGE = (
    "No location data found in this photo. Make sure location services "
    "were enabled when you took it."
)


class PhotoMetadataError(ValueError):
    pass


@dataclass(frozen=True)
class PhotoMetadata:
    latitude: float
    longitude: float
    taken_at: Optional[datetime] = None

    @property
    def taken_at_iso(self) -> Optional[str]:
        return self.taken_at.isoformat() if self.taken_at else None


def dms_to_degrees(dms: Sequence[Any], ref: Optional[str]) -> float:
    """(degrees, minutes, seconds) rationals to signed decimal degrees."""
    if len(dms) != 3:
        raise PhotoMetadataError(f"Malformed GPS coordinate: {dms!r}")
    degrees, minutes, seconds = (float(part) for part in dms)
    value = degrees + minutes / 60.0 + seconds / 3600.0
    if isinstance(ref, bytes):
        ref = ref.decode("ascii", "ignore")
    if (ref or "").strip().upper() in {"S", "W"}:
        value = -value
    return value


def parse_exif_datetime(raw: Any, offset: Any = None) -> Optional[datetime]:
    """
    EXIF "YYYY:MM:DD HH:MM:SS". With an OffsetTimeOriginal ("+02:00") the
    result is timezone-aware; without one it stays naive.
    """
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        parsed = datetime.strptime(raw.strip().rstrip("\x00"), "%Y:%m:%d %H:%M:%S")
    except ValueError:
        return None
    if isinstance(offset, str) and len(offset.strip()) == 6:
        text_value = offset.strip()
        sign = -1 if text_value[0] == "-" else 1
        try:
            hours, minutes = int(text_value[1:3]), int(text_value[4:6])
        except ValueError:
            return parsed
        parsed = parsed.replace(
            tzinfo=timezone(sign * timedelta(hours=hours, minutes=minutes))
        )
    return parsed


def read_photo_metadata(source: Union[str, Path, BinaryIO]) -> PhotoMetadata:
    """Raises PhotoMetadataError when the photo carries no GPS position."""
    with Image.open(source) as image:
        exif = image.getexif()
        gps = exif.get_ifd(ExifTags.IFD.GPSInfo)
        details = exif.get_ifd(ExifTags.IFD.Exif)

    if not gps or _GPS_LATITUDE not in gps or _GPS_LONGITUDE not in gps:
        raise PhotoMetadataError(NO_LOCATION_MESSAGE)

    latitude = dms_to_degrees(gps[_GPS_LATITUDE], gps.get(_GPS_LATITUDE_REF))
    longitude = dms_to_degrees(gps[_GPS_LONGITUDE], gps.get(_GPS_LONGITUDE_REF))
    if latitude == 0.0 and longitude == 0.0:
        raise PhotoMetadataError(NO_LOCATION_MESSAGE)

    taken_at = parse_exif_datetime(
        details.get(ExifTags.Base.DateTimeOriginal),
        details.get(_OFFSET_TIME_ORIGINAL),
    )
    return PhotoMetadata(latitude=latitude, longitude=longitude, taken_at=taken_at)
