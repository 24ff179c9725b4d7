from __future__ import annotations

import asyncio
import io

import pytest
from PIL import Image


class FakeResolver:
    """Asset resolver double: fixed answers, optional per-URL delay."""

    def __init__(self, images=None, delays=None):
        self.images = dict(images or {})
        self.delays = dict(delays or {})
        self.calls = []

    async def resolve(self, url):
        self.calls.append(url)
        await asyncio.sleep(self.delays.get(url, 0))
        return self.images.get(url)


def _element(tag="div", children=(), width=100, height=50, **computed):
    style = {"display": "block", "visibility": "visible", "opacity": "1"}
    style.update(computed)
    return {
        "nodeType": 1,
        "tagName": tag.upper(),
        "computed": style,
        "rect": {"x": 0, "y": 0, "width": width, "height": height},
        "children": list(children),
    }


def _text(value):
    return {"nodeType": 3, "text": value}


def _png(width=4, height=4, fmt="PNG", color=(255, 0, 0)):
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def element():
    return _element


@pytest.fixture
def text_node():
    return _text


@pytest.fixture
def image_bytes():
    return _png


@pytest.fixture
def fake_resolver():
    return FakeResolver
