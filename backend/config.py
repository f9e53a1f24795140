"""
Process settings for the Food Memory service.

Every value is read from the environment once (after loading `.env`) and
frozen into a `Settings` instance that the app lifespan hands to the
collaborators it constructs.
"""

import os
from dataclasses import dataclass
from typing import List

from dotenv import find_dotenv, load_dotenv

_dotenv_path = find_dotenv(usecwd=True)
if _dotenv_path:
    load_dotenv(_dotenv_path)


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return max(minimum, int(raw))
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return max(minimum, float(raw))
    except (TypeError, ValueError):
        return default


def _first_env(names: List[str], default: str = "") -> str:
    for name in names:
        value = os.getenv(name)
        if value is None:
            continue
        candidate = value.strip()
        if candidate:
            return candidate
    return default


@dataclass(frozen=True)
class Settings:
    database_url: str
    places_api_key: str = ""
    nearby_radius_m: float = 50.0
    place_link_radius_m: float = 5000.0
    remove_bg_api_key: str = ""
    vision_api_base: str = "https://api.openai.com/v1"
    vision_api_key: str = ""
    vision_model: str = "gpt-4o-mini"
    http_timeout_sec: float = 30.0
    blob_backend: str = "local"
    blob_root: str = "./blobs"
    blob_public_base_url: str = "/blobs"
    s3_bucket: str = ""
    s3_region: str = "us-east-1"
    memories_limit: int = 100
    backfill_delay_sec: float = 0.2

    @classmethod
    def from_env(cls) -> "Settings":
        database_url = _first_env(["DATABASE_URL"])
        if not database_url:
            raise ValueError(
                "DATABASE_URL environment variable is not set. Please check your .env file."
            )
        return cls(
            database_url=database_url,
            places_api_key=_first_env(["GOOGLE_PLACES_API_KEY"]),
            nearby_radius_m=_env_float("PLACES_NEARBY_RADIUS_M", 50.0, minimum=1.0),
            place_link_radius_m=_env_float(
                "PLACES_TEXT_SEARCH_RADIUS_M", 5000.0, minimum=1.0
            ),
            remove_bg_api_key=_first_env(["REMOVE_BG_API_KEY"]),
            vision_api_base=_first_env(
                ["VISION_API_BASE", "OPENAI_BASE_URL", "OPENAI_API_BASE"],
                default="https://api.openai.com/v1",
            ),
            vision_api_key=_first_env(["VISION_API_KEY", "OPENAI_API_KEY"]),
            vision_model=_first_env(["VISION_MODEL"], default="gpt-4o-mini"),
            http_timeout_sec=_env_float("EXTERNAL_HTTP_TIMEOUT_SEC", 30.0, minimum=1.0),
            blob_backend=_first_env(["BLOB_BACKEND"], default="local").lower(),
            blob_root=_first_env(["BLOB_ROOT"], default="./blobs"),
            blob_public_base_url=_first_env(
                ["BLOB_PUBLIC_BASE_URL"], default="/blobs"
            ).rstrip("/"),
            s3_bucket=_first_env(["BLOB_S3_BUCKET"]),
            s3_region=_first_env(["AWS_REGION", "AWS_DEFAULT_REGION"], default="us-east-1"),
            memories_limit=_env_int("MEMORIES_LIST_LIMIT", 100, minimum=1),
            backfill_delay_sec=_env_float("BACKFILL_DELAY_SEC", 0.2),
        )
