"""
Intermediate representation exchanged between the page capture and the
canvas builder.

Every IR value is immutable and JSON-serializable through node_to_dict /
node_from_dict. Style defaults are resolved once, in Styles.from_dict, so
consumers never re-derive them.
"""
import math
from dataclasses import dataclass, field
from typing import Any, Iterator

from Services.style_map import is_absolute

FRAME = "FRAME"
TEXT = "TEXT"
TEXT_NODE = "TEXT_NODE"
IMAGE = "IMAGE"

STYLE_KEYS = (
    "width",
    "height",
    "display",
    "flexDirection",
    "justifyContent",
    "alignItems",
    "gap",
    "padding",
    "backgroundColor",
    "backgroundImage",
    "borderRadius",
    "color",
    "fontSize",
    "fontWeight",
    "fontFamily",
    "lineHeight",
    "textAlign",
    "position",
    "left",
    "top",
)


# ===============================
# TOLERANT SCALARS
# ===============================

def _num(value, default=0.0) -> float:
    if isinstance(value, bool) or value is None:
        return default
    try:
        f = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(f) or math.isinf(f):
        return default
    return f


def _dim(value) -> float | None:
    f = _num(value, None)
    if f is None or f < 0:
        return None
    return f


def _str(value, default: str) -> str:
    if value is None or isinstance(value, (dict, list)):
        return default
    text = str(value).strip()
    return text or default


def _dict(value) -> dict:
    return value if isinstance(value, dict) else {}


# ===============================
# STYLE PARTS
# ===============================

@dataclass(frozen=True)
class Color:
    r: float
    g: float
    b: float

    @classmethod
    def from_dict(cls, raw) -> "Color | None":
        if not isinstance(raw, dict):
            return None
        try:
            channels = [float(raw[k]) for k in ("r", "g", "b")]
        except (KeyError, TypeError, ValueError):
            return None
        if any(math.isnan(c) for c in channels):
            return None
        r, g, b = (min(max(c, 0.0), 1.0) for c in channels)
        return cls(r, g, b)

    def to_dict(self) -> dict:
        return {"r": self.r, "g": self.g, "b": self.b}


@dataclass(frozen=True)
class Padding:
    top: float = 0.0
    right: float = 0.0
    bottom: float = 0.0
    left: float = 0.0

    @classmethod
    def from_dict(cls, raw) -> "Padding":
        raw = _dict(raw)
        return cls(
            top=_num(raw.get("top")),
            right=_num(raw.get("right")),
            bottom=_num(raw.get("bottom")),
            left=_num(raw.get("left")),
        )

    def to_dict(self) -> dict:
        return {"top": self.top, "right": self.right, "bottom": self.bottom, "left": self.left}


@dataclass(frozen=True)
class BorderRadius:
    top_left: float = 0.0
    top_right: float = 0.0
    bottom_right: float = 0.0
    bottom_left: float = 0.0

    @classmethod
    def from_dict(cls, raw) -> "BorderRadius":
        raw = _dict(raw)
        return cls(
            top_left=_num(raw.get("topLeft")),
            top_right=_num(raw.get("topRight")),
            bottom_right=_num(raw.get("bottomRight")),
            bottom_left=_num(raw.get("bottomLeft")),
        )

    def to_dict(self) -> dict:
        return {
            "topLeft": self.top_left,
            "topRight": self.top_right,
            "bottomRight": self.bottom_right,
            "bottomLeft": self.bottom_left,
        }


@dataclass(frozen=True)
class BackgroundImage:
    type: str
    url: str | None = None
    raw: str | None = None

    @classmethod
    def from_dict(cls, raw) -> "BackgroundImage | None":
        if not isinstance(raw, dict):
            return None
        kind = raw.get("type")
        if kind == "IMAGE" and isinstance(raw.get("url"), str) and raw["url"]:
            return cls(type="IMAGE", url=raw["url"])
        if kind == "GRADIENT" and isinstance(raw.get("raw"), str):
            return cls(type="GRADIENT", raw=raw["raw"])
        return None

    def to_dict(self) -> dict:
        if self.type == "IMAGE":
            return {"type": "IMAGE", "url": self.url}
        return {"type": self.type, "raw": self.raw}


# ===============================
# STYLE SNAPSHOT
# ===============================

@dataclass(frozen=True)
class Styles:
    width: float | None = None
    height: float | None = None
    display: str = "block"
    flex_direction: str = "row"
    justify_content: str = "normal"
    align_items: str = "normal"
    gap: float = 0.0
    padding: Padding = field(default_factory=Padding)
    background_color: Color | None = None
    background_image: BackgroundImage | None = None
    border_radius: BorderRadius = field(default_factory=BorderRadius)
    color: Color | None = None
    font_size: float | None = None
    font_weight: str = "400"
    font_family: str = ""
    line_height: str = "normal"
    text_align: str = "start"
    position: str = "static"
    left: float = 0.0
    top: float = 0.0

    @property
    def is_absolute(self) -> bool:
        return is_absolute(self.position)

    @classmethod
    def from_dict(cls, raw) -> "Styles":
        raw = _dict(raw)
        font_size = _dim(raw.get("fontSize"))
        return cls(
            width=_dim(raw.get("width")),
            height=_dim(raw.get("height")),
            display=_str(raw.get("display"), "block"),
            flex_direction=_str(raw.get("flexDirection"), "row"),
            justify_content=_str(raw.get("justifyContent"), "normal"),
            align_items=_str(raw.get("alignItems"), "normal"),
            gap=_num(raw.get("gap")),
            padding=Padding.from_dict(raw.get("padding")),
            background_color=Color.from_dict(raw.get("backgroundColor")),
            background_image=BackgroundImage.from_dict(raw.get("backgroundImage")),
            border_radius=BorderRadius.from_dict(raw.get("borderRadius")),
            color=Color.from_dict(raw.get("color")),
            font_size=font_size or None,
            font_weight=_str(raw.get("fontWeight"), "400"),
            font_family=_str(raw.get("fontFamily"), ""),
            line_height=_str(raw.get("lineHeight"), "normal"),
            text_align=_str(raw.get("textAlign"), "start"),
            position=_str(raw.get("position"), "static"),
            left=_num(raw.get("left")),
            top=_num(raw.get("top")),
        )

    def to_dict(self) -> dict:
        return {
            "width": self.width,
            "height": self.height,
            "display": self.display,
            "flexDirection": self.flex_direction,
            "justifyContent": self.justify_content,
            "alignItems": self.align_items,
            "gap": self.gap,
            "padding": self.padding.to_dict(),
            "backgroundColor": self.background_color.to_dict() if self.background_color else None,
            "backgroundImage": self.background_image.to_dict() if self.background_image else None,
            "borderRadius": self.border_radius.to_dict(),
            "color": self.color.to_dict() if self.color else None,
            "fontSize": self.font_size,
            "fontWeight": self.font_weight,
            "fontFamily": self.font_family,
            "lineHeight": self.line_height,
            "textAlign": self.text_align,
            "position": self.position,
            "left": self.left,
            "top": self.top,
        }


DEFAULT_STYLES = Styles()


# ===============================
# NODE VARIANTS
# ===============================

@dataclass(frozen=True)
class IRText:
    content: str
    styles: Styles | None = None

    @property
    def type(self) -> str:
        return TEXT_NODE if self.styles is not None else TEXT


@dataclass(frozen=True)
class IRImage:
    src: str = ""
    styles: Styles = field(default_factory=Styles)
    tag: str = "img"

    type = IMAGE


@dataclass(frozen=True)
class IRFrame:
    tag: str = ""
    styles: Styles = field(default_factory=Styles)
    children: tuple = ()

    type = FRAME


IRNode = IRFrame | IRText | IRImage


def node_styles(node) -> Styles:
    """Styles of any node; raw text carries none and gets the defaults."""
    styles = getattr(node, "styles", None)
    return styles if styles is not None else DEFAULT_STYLES


# ===============================
# WIRE FORMAT
# ===============================

def node_from_dict(raw: Any) -> IRNode | None:
    """Parse a wire dict. Unknown or malformed variants come back as None."""
    if not isinstance(raw, dict):
        return None

    kind = raw.get("type")

    if kind == TEXT:
        content = raw.get("content")
        if not isinstance(content, str) or not content:
            return None
        return IRText(content=content)

    if kind == TEXT_NODE:
        content = raw.get("content")
        # Collapsed text carries its styles flattened next to the content.
        style_src = raw.get("styles") if isinstance(raw.get("styles"), dict) else raw
        return IRText(
            content=content if isinstance(content, str) else "",
            styles=Styles.from_dict(style_src),
        )

    if kind == IMAGE:
        src = raw.get("src")
        return IRImage(
            src=src if isinstance(src, str) else "",
            styles=Styles.from_dict(raw.get("styles")),
            tag=_str(raw.get("tag"), "img"),
        )

    if kind == FRAME:
        children = []
        for child in raw.get("children") or []:
            c = node_from_dict(child)
            if c is not None:
                children.append(c)
        tag = raw.get("tag")
        return IRFrame(
            tag=tag if isinstance(tag, str) else "",
            styles=Styles.from_dict(raw.get("styles")),
            children=tuple(children),
        )

    return None


def node_to_dict(node: IRNode) -> dict:
    if isinstance(node, IRText):
        if node.styles is None:
            return {"type": TEXT, "content": node.content}
        out = {"type": TEXT_NODE}
        out.update(node.styles.to_dict())
        out["content"] = node.content
        return out

    if isinstance(node, IRImage):
        return {
            "type": IMAGE,
            "tag": node.tag,
            "src": node.src,
            "styles": node.styles.to_dict(),
        }

    if isinstance(node, IRFrame):
        return {
            "type": FRAME,
            "tag": node.tag,
            "styles": node.styles.to_dict(),
            "children": [node_to_dict(c) for c in node.children],
        }

    raise TypeError(f"Not an IR node: {node!r}")


# ===============================
# TREE HELPERS
# ===============================

def count_nodes(node) -> int:
    if node is None:
        return 0
    return 1 + sum(count_nodes(c) for c in getattr(node, "children", ()))


def iter_image_urls(node) -> Iterator[str]:
    if node is None:
        return
    if isinstance(node, IRImage) and node.src:
        yield node.src
    bg = node_styles(node).background_image
    if bg and bg.type == "IMAGE" and bg.url:
        yield bg.url
    for child in getattr(node, "children", ()):
        yield from iter_image_urls(child)
