import asyncio
import base64
import binascii
import io
import logging
import os
import uuid
from urllib.parse import unquote

import requests
from dotenv import load_dotenv
from PIL import Image

from Services.validation import validate_image_url
from storedb import get_cached_image, save_cached_image

load_dotenv()

IMAGE_FETCH_TIMEOUT = float(os.getenv("IMAGE_FETCH_TIMEOUT", "10"))
MAX_IMAGE_SIZE_BYTES = int(os.getenv("MAX_IMAGE_SIZE_BYTES", str(10 * 1024 * 1024)))
ASSET_RESOLVE_TIMEOUT = float(os.getenv("ASSET_RESOLVE_TIMEOUT", "5"))
RELAY_IMAGE_TIMEOUT = float(os.getenv("RELAY_IMAGE_TIMEOUT", "5"))
IMAGE_CACHE_ENABLED = os.getenv("IMAGE_CACHE_ENABLED", "0").lower() in ("1", "true", "yes")

HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
}

# Encodings the canvas cannot decode natively
UNSUPPORTED_FORMATS = {"image/webp", "image/avif", "image/heic", "image/heif"}
CONVERT_URL_HINTS = ("format=webp", "format=avif")
CONVERT_URL_SUFFIXES = (".webp", ".avif", ".heic", ".heif")

logger = logging.getLogger(__name__)


class ImageProxyError(Exception):
    def __init__(self, status_code: int, detail: str):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


# ------------------------------------------------------------------
# FETCH HELPERS
# ------------------------------------------------------------------

def decode_data_uri(url: str) -> tuple[bytes, str]:
    header, sep, payload = url.partition(",")
    if not sep:
        raise ImageProxyError(400, "Malformed data URI")
    content_type = header[len("data:"):].split(";")[0] or "application/octet-stream"
    try:
        if ";base64" in header:
            return base64.b64decode(payload, validate=True), content_type
        return unquote(payload).encode("utf-8"), content_type
    except (binascii.Error, ValueError):
        raise ImageProxyError(400, "Malformed data URI")


def needs_conversion(url: str, content_type: str) -> bool:
    url_lower = url.lower()
    return (
        content_type in UNSUPPORTED_FORMATS
        or any(h in url_lower for h in CONVERT_URL_HINTS)
        or url_lower.endswith(CONVERT_URL_SUFFIXES)
    )


def convert_to_png(data: bytes) -> bytes | None:
    try:
        with Image.open(io.BytesIO(data)) as img:
            out = io.BytesIO()
            img.save(out, format="PNG")
            return out.getvalue()
    except Exception as e:
        logger.warning("[IMAGE] Conversion failed, returning original: %s", e)
        return None


def _download(url: str) -> tuple[bytes, str]:
    try:
        response = requests.get(url, headers=HEADERS, timeout=IMAGE_FETCH_TIMEOUT, stream=True)
    except requests.Timeout:
        raise ImageProxyError(504, "Image fetch timed out")
    except requests.RequestException as e:
        logger.error("[IMAGE] Proxy error for %s: %s", url, e)
        raise ImageProxyError(500, "Failed to fetch image")

    with response:
        if not response.ok:
            raise ImageProxyError(response.status_code, f"Failed to fetch image: {response.reason}")

        # Reject early on the declared size, then again on what actually arrived.
        try:
            content_length = int(response.headers.get("content-length") or 0)
        except ValueError:
            content_length = 0
        if content_length > MAX_IMAGE_SIZE_BYTES:
            raise ImageProxyError(413, "Image too large (max 10MB)")

        content_type = response.headers.get("content-type") or "application/octet-stream"

        chunks = []
        total = 0
        try:
            for chunk in response.iter_content(chunk_size=64 * 1024):
                total += len(chunk)
                if total > MAX_IMAGE_SIZE_BYTES:
                    raise ImageProxyError(413, "Image too large (max 10MB)")
                chunks.append(chunk)
        except requests.Timeout:
            raise ImageProxyError(504, "Image fetch timed out")
        except requests.RequestException as e:
            logger.error("[IMAGE] Proxy error for %s: %s", url, e)
            raise ImageProxyError(500, "Failed to fetch image")

    return b"".join(chunks), content_type


# ------------------------------------------------------------------
# IMAGE PROXY (URL → bytes + content type)
# ------------------------------------------------------------------

def fetch_image(url: str) -> tuple[bytes, str]:
    validation = validate_image_url(url)
    if not validation.valid:
        raise ImageProxyError(400, validation.error)

    url = url.strip()
    if url.startswith("data:image/"):
        data, content_type = decode_data_uri(url)
        if len(data) > MAX_IMAGE_SIZE_BYTES:
            raise ImageProxyError(413, "Image too large (max 10MB)")
    else:
        data, content_type = _download(url)

    normalized = content_type.split(";")[0].strip().lower()
    if needs_conversion(url, normalized):
        converted = convert_to_png(data)
        if converted is not None:
            return converted, "image/png"

    return data, content_type


def fetch_image_cached(url: str) -> tuple[bytes, str]:
    if IMAGE_CACHE_ENABLED:
        cached = get_cached_image(url)
        if cached:
            logger.info("[CACHE] Using stored image for %s", url)
            return cached["data"], cached["content_type"]

    data, content_type = fetch_image(url)

    if IMAGE_CACHE_ENABLED:
        save_cached_image(url, data, content_type)
    return data, content_type


# ------------------------------------------------------------------
# ASSET RESOLVERS (URL → bytes | None, never raise)
# ------------------------------------------------------------------

class HttpAssetResolver:
    """Fetches directly, for hosts that have network access."""

    def __init__(self, timeout: float = ASSET_RESOLVE_TIMEOUT, fetch=None):
        self.timeout = timeout
        self._fetch = fetch or fetch_image_cached

    async def resolve(self, url: str) -> bytes | None:
        try:
            data, _ = await asyncio.wait_for(asyncio.to_thread(self._fetch, url), self.timeout)
            return data
        except asyncio.TimeoutError:
            logger.warning("[ASSET] Timed out after %ss: %s", self.timeout, url)
        except ImageProxyError as e:
            logger.warning("[ASSET] %s %s: %s", e.status_code, e.detail, url)
        except Exception as e:
            logger.warning("[ASSET] Unexpected failure for %s: %s", url, e, exc_info=True)
        return None


class ImageRelay:
    """
    Relays fetches through the peer that has network access.

    Each request gets a generated id and a pending future; the peer answers
    with an image-data message carrying the same id. Entries are removed on
    completion or timeout, and all of them are abandoned on close().
    """

    def __init__(self, send, timeout: float = RELAY_IMAGE_TIMEOUT):
        self._send = send
        self.timeout = timeout
        self._pending = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def resolve(self, url: str) -> bytes | None:
        request_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._send({"type": "fetch-image", "url": url, "id": request_id})
            return await asyncio.wait_for(future, self.timeout)
        except asyncio.TimeoutError:
            logger.warning("[RELAY] No image-data for %s within %ss", url, self.timeout)
            return None
        except Exception as e:
            # A closed or broken peer socket only costs this one asset.
            logger.warning("[RELAY] Could not request %s: %s", url, e)
            return None
        finally:
            self._pending.pop(request_id, None)

    def deliver(self, request_id: str, data: bytes | None) -> bool:
        future = self._pending.get(request_id)
        if future is None or future.done():
            return False
        future.set_result(data)
        return True

    def close(self):
        for future in self._pending.values():
            if not future.done():
                future.cancel()
        self._pending.clear()


class AssetCache:
    """Per-build dedupe: each distinct URL is resolved once."""

    def __init__(self, resolver):
        self._resolver = resolver
        self._tasks = {}

    def _task(self, url: str):
        task = self._tasks.get(url)
        if task is None:
            task = asyncio.ensure_future(self._resolver.resolve(url))
            self._tasks[url] = task
        return task

    def prefetch(self, urls) -> int:
        """Start fetching every URL up front; returns how many distinct URLs are in flight."""
        for url in urls:
            self._task(url)
        return len(self._tasks)

    async def resolve(self, url: str) -> bytes | None:
        return await asyncio.shield(self._task(url))

    def close(self):
        for task in self._tasks.values():
            if not task.done():
                task.cancel()
