import asyncio
import base64
import binascii
import logging

from Services.builder import build_into_document
from Services.canvas import CanvasDocument
from Services.image import RELAY_IMAGE_TIMEOUT, ImageRelay
from Services.ir_schema import node_from_dict

logger = logging.getLogger(__name__)


def decode_image_data(data) -> bytes | None:
    """image-data payloads arrive as a byte list, a base64 string or an index-keyed object."""
    if data is None:
        return None
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    try:
        if isinstance(data, list):
            return bytes(data)
        if isinstance(data, str):
            return base64.b64decode(data, validate=True)
        if isinstance(data, dict):
            return bytes(data[k] for k in sorted(data, key=int))
    except (ValueError, TypeError, binascii.Error):
        logger.warning("[SESSION] Undecodable image-data payload")
    return None


class PluginSession:
    """
    One canvas-side session driven by messages:

      build       → build, append, focus, then "done"
      image-data  → answers a pending fetch-image request
      export      → "document" with the serialized canvas
    """

    def __init__(self, send, document=None, resolver=None, relay_timeout: float = RELAY_IMAGE_TIMEOUT):
        self._send = send
        self.document = document if document is not None else CanvasDocument()
        self.relay = ImageRelay(send, timeout=relay_timeout)
        self._resolver = resolver if resolver is not None else self.relay
        self._build_task = None

    @property
    def building(self) -> bool:
        return self._build_task is not None and not self._build_task.done()

    async def handle(self, message):
        kind = message.get("type") if isinstance(message, dict) else None

        if kind == "image-data":
            data = None if message.get("error") else decode_image_data(message.get("data"))
            if not self.relay.deliver(message.get("id"), data):
                logger.debug("[SESSION] Late or unknown image-data id %r", message.get("id"))
            return

        if kind == "build":
            if self.building:
                await self._send_error("Import in progress", "Please wait for the current import to complete.")
                return
            self._build_task = asyncio.create_task(self._run_build(message.get("data")))
            return

        if kind == "export":
            await self._send({"type": "document", "data": self.document.to_dict()})
            return

        logger.debug("[SESSION] Ignoring message type %r", kind)

    async def _run_build(self, data):
        try:
            node = node_from_dict(data)
            _, stats = await build_into_document(self.document, node, self._resolver)
        except asyncio.CancelledError:
            logger.info("[SESSION] Build cancelled, nothing appended")
            raise
        except Exception as e:
            logger.exception("[SESSION] Build failed")
            await self._send_error("Build failed", str(e))
            return
        await self._send({"type": "done", "stats": stats.to_dict()})

    async def _send_error(self, message: str, details: str = ""):
        await self._send({"type": "error", "message": message, "details": details})

    async def wait(self):
        if self._build_task is not None:
            await asyncio.shield(self._build_task)

    async def close(self):
        task = self._build_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.relay.close()
