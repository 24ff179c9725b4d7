from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from datetime import datetime, timezone
import json
import logging
import os

from dotenv import load_dotenv

from models import CaptureRequest, BuildRequest
from Services.browser import capture_page
from Services.builder import build_into_document
from Services.canvas import CanvasDocument
from Services.image import HttpAssetResolver, ImageProxyError, fetch_image_cached
from Services.ir_schema import node_from_dict, node_to_dict
from Services.session import PluginSession
from Services.validation import validate_scraping_url
from storedb import get_cached_capture, save_capture

load_dotenv()

CAPTURE_CACHE_ENABLED = os.getenv("CAPTURE_CACHE_ENABLED", "0").lower() in ("1", "true", "yes")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger("website_to_figma")

# Known failure text → what to tell the user
ERROR_MESSAGES = {
    "net::ERR_NAME_NOT_RESOLVED": (
        "Could not find this website",
        "Please check the URL is spelled correctly and the website exists.",
    ),
    "net::ERR_CONNECTION_REFUSED": (
        "Connection refused by the website",
        "The website may be down or blocking automated access. Try again later.",
    ),
    "net::ERR_CONNECTION_TIMED_OUT": (
        "Connection timed out",
        "The website took too long to respond. It may be slow or experiencing issues.",
    ),
    "net::ERR_CERT_AUTHORITY_INVALID": (
        "Invalid security certificate",
        "The website's security certificate is not trusted. The site may be unsafe.",
    ),
    "Timeout": (
        "Page load timeout",
        "The page took too long to load. Try a simpler page or check if the site is slow.",
    ),
}


def get_user_friendly_error(error: Exception) -> dict:
    message = str(error)
    for pattern, (friendly, suggestion) in ERROR_MESSAGES.items():
        if pattern in message:
            return {"error": friendly, "suggestion": suggestion, "details": message}
    if "net::ERR_" in message:
        return {
            "error": "Network error while accessing the website",
            "suggestion": "Please check your URL and try again. The website may be blocking automated access.",
            "details": message,
        }
    return {
        "error": "Failed to capture website",
        "suggestion": "An unexpected error occurred. Try a different URL.",
        "details": message,
    }


app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def root():
    return {"message": "Website-to-Figma backend running"}


@app.get("/api/health")
def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.post("/api/website-to-figma")
async def website_to_figma(req: CaptureRequest):
    validation = validate_scraping_url(req.url)
    if not validation.valid:
        raise HTTPException(
            status_code=400,
            detail={
                "error": validation.error,
                "suggestion": "Please provide a valid public URL starting with http:// or https://",
            },
        )

    url = req.url.strip()
    cache_key = f"{url}#{req.width}x{req.height}"

    try:
        # -------- 1. Capture cache --------
        if CAPTURE_CACHE_ENABLED and req.use_cache:
            cached = get_cached_capture(cache_key)
            if cached and cached.get("tree"):
                logger.info("[CACHE] Using stored capture for %s", url)
                return {"data": cached["tree"], "cached": True}

        # -------- 2. Live capture --------
        node = await capture_page(url, req.width, req.height)
        tree = node_to_dict(node)

        if CAPTURE_CACHE_ENABLED:
            save_capture(cache_key, tree)

        return {"data": tree, "cached": False}

    except Exception as e:
        logger.error("[CAPTURE] Failed for %s", url, exc_info=True)
        raise HTTPException(status_code=500, detail=get_user_friendly_error(e))


@app.post("/api/build")
async def build_design(req: BuildRequest):
    node = node_from_dict(req.data)
    document = CanvasDocument()
    resolver = HttpAssetResolver() if req.fetch_images else None

    try:
        root_node, stats = await build_into_document(document, node, resolver)
    except Exception as e:
        logger.error("[BUILD] Failed", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    return {
        "root": root_node.id if root_node is not None else None,
        "document": document.to_dict(),
        "stats": stats.to_dict(),
    }


@app.get("/api/proxy-image")
def proxy_image(url: str = ""):
    try:
        data, content_type = fetch_image_cached(url)
    except ImageProxyError as e:
        return JSONResponse({"error": e.detail}, status_code=e.status_code)

    return Response(
        content=data,
        media_type=content_type,
        headers={
            "Access-Control-Allow-Origin": "*",
            "Cache-Control": "public, max-age=31536000, immutable",
        },
    )


@app.websocket("/ws/plugin")
async def plugin_socket(websocket: WebSocket):
    await websocket.accept()
    session = PluginSession(websocket.send_json)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "message": "Invalid message", "details": "Expected JSON"})
                continue
            await session.handle(message)
    except WebSocketDisconnect:
        logger.info("[SESSION] Plugin disconnected")
    finally:
        await session.close()
