from __future__ import annotations

import asyncio
import base64

from Services.canvas import CanvasDocument
from Services.ir_schema import IRFrame, IRImage, IRText, node_to_dict
from Services.session import PluginSession, decode_image_data

IMG = "https://example.com/a.png"


class Peer:
    """Records outgoing messages; can answer fetch-image requests."""

    def __init__(self, images=None):
        self.sent = []
        self.images = images or {}
        self.session = None

    async def send(self, message):
        self.sent.append(message)
        if message["type"] == "fetch-image" and message["url"] in self.images:
            payload = list(self.images[message["url"]])
            asyncio.get_running_loop().call_soon(
                asyncio.ensure_future,
                self.session.handle({"type": "image-data", "id": message["id"], "data": payload}),
            )

    def of_type(self, kind):
        return [m for m in self.sent if m["type"] == kind]


def _tree(*children):
    return node_to_dict(IRFrame(tag="div", children=tuple(children)))


def test_decode_image_data_variants() -> None:
    assert decode_image_data([1, 2, 3]) == b"\x01\x02\x03"
    assert decode_image_data(base64.b64encode(b"abc").decode()) == b"abc"
    assert decode_image_data({"1": 2, "0": 1}) == b"\x01\x02"
    assert decode_image_data(b"raw") == b"raw"
    assert decode_image_data(None) is None
    assert decode_image_data([300]) is None
    assert decode_image_data("not base64!") is None


def test_build_relays_images_and_reports_done(image_bytes) -> None:
    peer = Peer({IMG: image_bytes()})

    async def run():
        session = PluginSession(peer.send)
        peer.session = session
        await session.handle({"type": "build", "data": _tree(IRImage(src=IMG))})
        await session.wait()
        return session

    session = asyncio.run(run())
    (request,) = peer.of_type("fetch-image")
    assert request["url"] == IMG
    (done,) = peer.of_type("done")
    assert done["stats"]["imagesLoaded"] == 1
    assert done["stats"]["totalImages"] == 1

    (root,) = session.document.current_page.children
    assert root.children[0].fills[0]["type"] == "IMAGE"
    assert session.relay.pending_count == 0


def test_unanswered_fetch_times_out_into_placeholder() -> None:
    peer = Peer()

    async def run():
        session = PluginSession(peer.send, relay_timeout=0.05)
        peer.session = session
        await session.handle({"type": "build", "data": _tree(IRImage(src=IMG))})
        await session.wait()
        return session

    session = asyncio.run(run())
    (done,) = peer.of_type("done")
    assert done["stats"]["imagesLoaded"] == 0
    (root,) = session.document.current_page.children
    assert root.children[0].fills == []


def test_error_reply_counts_as_missing_asset() -> None:
    peer = Peer()

    async def send(message):
        peer.sent.append(message)
        if message["type"] == "fetch-image":
            asyncio.get_running_loop().call_soon(
                asyncio.ensure_future,
                peer.session.handle({"type": "image-data", "id": message["id"], "error": "CORS"}),
            )

    async def run():
        session = PluginSession(send, relay_timeout=1)
        peer.session = session
        await session.handle({"type": "build", "data": _tree(IRImage(src=IMG))})
        await session.wait()

    asyncio.run(run())
    assert peer.of_type("done")[0]["stats"]["imagesLoaded"] == 0


def test_second_build_while_running_is_rejected() -> None:
    peer = Peer()

    async def run():
        session = PluginSession(peer.send, relay_timeout=0.05)
        peer.session = session
        await session.handle({"type": "build", "data": _tree(IRImage(src=IMG))})
        await session.handle({"type": "build", "data": _tree()})
        await session.wait()
        return session

    session = asyncio.run(run())
    (error,) = peer.of_type("error")
    assert error["message"] == "Import in progress"
    assert len(peer.of_type("done")) == 1
    assert len(session.document.current_page.children) == 1


def test_failed_build_reports_single_error() -> None:
    peer = Peer()
    bad = node_to_dict(IRFrame(tag="div", children=(IRText("no fonts to draw with"),)))

    async def run():
        session = PluginSession(peer.send, document=CanvasDocument(available_fonts=[]))
        peer.session = session
        await session.handle({"type": "build", "data": bad})
        await session.wait()
        return session

    session = asyncio.run(run())
    (error,) = peer.of_type("error")
    assert error["message"] == "Build failed"
    assert error["details"]
    assert peer.of_type("done") == []
    assert session.document.current_page.children == []


def test_empty_build_is_done_with_nothing_appended() -> None:
    peer = Peer()

    async def run():
        session = PluginSession(peer.send)
        await session.handle({"type": "build", "data": {"type": "UNKNOWN"}})
        await session.wait()
        return session

    session = asyncio.run(run())
    assert peer.of_type("done")[0]["stats"]["totalNodes"] == 0
    assert session.document.current_page.children == []


def test_close_mid_build_appends_nothing() -> None:
    peer = Peer()

    async def run():
        session = PluginSession(peer.send, relay_timeout=5)
        peer.session = session
        await session.handle({"type": "build", "data": _tree(IRImage(src=IMG))})
        await asyncio.sleep(0.01)
        assert session.building
        await session.close()
        return session

    session = asyncio.run(run())
    assert not session.building
    assert session.document.current_page.children == []
    assert session.relay.pending_count == 0
    assert peer.of_type("done") == []


def test_export_and_unknown_messages() -> None:
    peer = Peer()

    async def run():
        session = PluginSession(peer.send)
        await session.handle({"type": "ping"})
        await session.handle("garbage")
        await session.handle({"type": "export"})

    asyncio.run(run())
    (doc,) = peer.sent
    assert doc["type"] == "document"
    assert doc["data"]["pages"][0]["children"] == []
