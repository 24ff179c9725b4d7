from datetime import datetime, timezone
from functools import lru_cache

from db import get_db


# ---------- CAPTURE CACHE ----------

@lru_cache(maxsize=1)
def _captures():
    collection = get_db()["captures"]
    collection.create_index([("url", 1)], unique=True)
    return collection


def save_capture(url: str, tree: dict):
    _captures().update_one(
        {"url": url},
        {
            "$set": {
                "url": url,
                "tree": tree,
                "updated_at": datetime.now(timezone.utc)
            }
        },
        upsert=True
    )


def get_cached_capture(url: str):
    return _captures().find_one(
        {"url": url},
        {"_id": 0}
    )


# ---------- IMAGE CACHE ----------

@lru_cache(maxsize=1)
def _images():
    collection = get_db()["images"]
    collection.create_index([("url", 1)], unique=True)
    return collection


def get_cached_image(url: str):
    return _images().find_one(
        {"url": url},
        {"_id": 0}
    )


def save_cached_image(url: str, data: bytes, content_type: str):
    _images().update_one(
        {"url": url},
        {
            "$set": {
                "url": url,
                "data": data,
                "content_type": content_type,
                "updated_at": datetime.now(timezone.utc)
            }
        },
        upsert=True
    )
