"""
In-process design canvas: the native node model the builder writes into.

Mirrors the subset of a Figma-style plugin API the reconstruction needs:
frames with auto-layout, text with font loading, rectangles, paint fills,
image registration and a viewport. Operations the real host would reject
raise CanvasError.
"""
import asyncio
import hashlib
import io
import math
from collections import Counter
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

SUPPORTED_IMAGE_FORMATS = {"PNG", "JPEG", "GIF"}
LAYOUT_MODES = {"NONE", "HORIZONTAL", "VERTICAL"}
AXIS_ALIGN = {"MIN", "CENTER", "MAX", "SPACE_BETWEEN"}
COUNTER_ALIGN = {"MIN", "CENTER", "MAX"}
TEXT_AUTO_RESIZE = {"NONE", "HEIGHT", "WIDTH_AND_HEIGHT"}
SCALE_MODES = {"FILL", "FIT", "CROP", "TILE"}
GRADIENT_TYPES = {"GRADIENT_LINEAR", "GRADIENT_RADIAL"}
MIN_SIZE = 0.01

WHITE = {"r": 1.0, "g": 1.0, "b": 1.0}
BLACK = {"r": 0.0, "g": 0.0, "b": 0.0}


class CanvasError(Exception):
    """The canvas rejected an operation."""


@dataclass(frozen=True)
class FontName:
    family: str
    style: str = "Regular"

    def __str__(self) -> str:
        return f"{self.family} {self.style}"


@dataclass(frozen=True)
class ImageHandle:
    hash: str
    width: int
    height: int
    format: str


_ALL_STYLES = ("Thin", "ExtraLight", "Light", "Regular", "Medium", "SemiBold", "Bold", "ExtraBold", "Black")

DEFAULT_FONTS = frozenset(
    [FontName(f, s) for f in ("Inter", "Roboto") for s in _ALL_STYLES]
    + [FontName(f, s) for f in ("Roboto Mono", "Open Sans", "Lato", "Montserrat", "Poppins") for s in ("Light", "Regular", "Medium", "SemiBold", "Bold")]
    + [FontName(f, s) for f in ("Georgia", "Times New Roman", "Courier New", "Helvetica Neue", "Arial") for s in ("Regular", "Bold")]
)


def solid_paint(color: dict) -> dict:
    return {"type": "SOLID", "color": {"r": color["r"], "g": color["g"], "b": color["b"]}}


def _check_size(width, height):
    for v in (width, height):
        if isinstance(v, bool) or not isinstance(v, (int, float)) or not math.isfinite(v):
            raise CanvasError(f"Invalid size: {width!r} x {height!r}")
        if v < MIN_SIZE:
            raise CanvasError(f"Size must be >= {MIN_SIZE}: {width!r} x {height!r}")


def _is_number(value) -> bool:
    return not isinstance(value, bool) and isinstance(value, (int, float)) and math.isfinite(value)


def _check_gradient(paint: dict):
    stops = paint.get("gradientStops")
    if not isinstance(stops, list) or len(stops) < 2:
        raise CanvasError("Gradient paint requires at least two stops")
    for stop in stops:
        color = stop.get("color") if isinstance(stop, dict) else None
        if not isinstance(color, dict) or not _is_number(stop.get("position")) or not 0 <= stop["position"] <= 1:
            raise CanvasError(f"Invalid gradient stop: {stop!r}")
    transform = paint.get("gradientTransform")
    if (
        not isinstance(transform, list)
        or len(transform) != 2
        or not all(isinstance(row, list) and len(row) == 3 and all(_is_number(v) for v in row) for row in transform)
    ):
        raise CanvasError(f"Invalid gradientTransform: {transform!r}")


# ===============================
# NODES
# ===============================

class SceneNode:
    type = "NODE"

    def __init__(self, document: "CanvasDocument"):
        self.document = document
        self.id = document._next_id()
        self.name = ""
        self.x = 0.0
        self.y = 0.0
        self.width = 100.0
        self.height = 100.0
        self.parent = None
        self._layout_positioning = "AUTO"

    @property
    def layout_positioning(self) -> str:
        return self._layout_positioning

    @layout_positioning.setter
    def layout_positioning(self, value: str):
        if value not in ("AUTO", "ABSOLUTE"):
            raise CanvasError(f"Invalid layoutPositioning: {value!r}")
        if value == "ABSOLUTE":
            parent = self.parent
            if not isinstance(parent, FrameNode) or parent.layout_mode == "NONE":
                raise CanvasError("Can only set layoutPositioning = ABSOLUTE if the parent node has layoutMode != NONE")
        self._layout_positioning = value
        self._notify_parent()

    def resize(self, width, height):
        _check_size(width, height)
        self.width = float(width)
        self.height = float(height)
        self._notify_parent()

    def remove(self):
        if self.parent is not None:
            self.parent.children.remove(self)
            old = self.parent
            self.parent = None
            old._relayout()

    def _notify_parent(self):
        if self.parent is not None:
            self.parent._relayout()

    def to_dict(self) -> dict:
        out = {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
        }
        if self._layout_positioning != "AUTO":
            out["layoutPositioning"] = self._layout_positioning
        return out


class _FillsMixin:
    _fills: list

    @property
    def fills(self) -> list:
        return [dict(p) for p in self._fills]

    @fills.setter
    def fills(self, paints):
        checked = []
        for paint in paints:
            kind = paint.get("type")
            if kind == "SOLID":
                if not isinstance(paint.get("color"), dict):
                    raise CanvasError("Solid paint requires a color")
            elif kind == "IMAGE":
                if paint.get("scaleMode") not in SCALE_MODES:
                    raise CanvasError(f"Invalid scaleMode: {paint.get('scaleMode')!r}")
                if self.document.get_image(paint.get("imageHash")) is None:
                    raise CanvasError(f"Unknown image hash: {paint.get('imageHash')!r}")
            elif kind in GRADIENT_TYPES:
                _check_gradient(paint)
            else:
                raise CanvasError(f"Unsupported paint type: {kind!r}")
            checked.append(dict(paint))
        self._fills = checked


class _CornerMixin:
    top_left_radius = 0.0
    top_right_radius = 0.0
    bottom_right_radius = 0.0
    bottom_left_radius = 0.0

    def _radii(self) -> dict:
        return {
            "topLeftRadius": self.top_left_radius,
            "topRightRadius": self.top_right_radius,
            "bottomRightRadius": self.bottom_right_radius,
            "bottomLeftRadius": self.bottom_left_radius,
        }


class RectangleNode(_FillsMixin, _CornerMixin, SceneNode):
    type = "RECTANGLE"

    def __init__(self, document):
        super().__init__(document)
        self.name = "Rectangle"
        self._fills = [solid_paint({"r": 0.85, "g": 0.85, "b": 0.85})]

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["fills"] = self.fills
        out.update(self._radii())
        return out


class TextNode(_FillsMixin, SceneNode):
    type = "TEXT"

    def __init__(self, document):
        super().__init__(document)
        self._characters = ""
        self._font_name = FontName("Inter", "Regular")
        self._font_size = 12.0
        self._fills = [solid_paint(BLACK)]
        self.text_auto_resize = "WIDTH_AND_HEIGHT"
        self.text_align_horizontal = "LEFT"
        self.line_height = None
        self._autosize()

    def _require_font(self, action: str):
        if not self.document.is_font_held(self._font_name):
            raise CanvasError(f'Cannot {action} with unloaded font "{self._font_name}"')

    @property
    def characters(self) -> str:
        return self._characters

    @characters.setter
    def characters(self, value: str):
        self._require_font("write to node")
        self._characters = str(value)
        self._autosize()

    @property
    def font_name(self) -> FontName:
        return self._font_name

    @font_name.setter
    def font_name(self, value: FontName):
        if not self.document.is_font_held(value):
            raise CanvasError(f'Cannot use unloaded font "{value}"')
        self._font_name = value
        self._autosize()

    @property
    def font_size(self) -> float:
        return self._font_size

    @font_size.setter
    def font_size(self, value: float):
        self._require_font("set fontSize")
        if not isinstance(value, (int, float)) or value < 1:
            raise CanvasError(f"Invalid fontSize: {value!r}")
        self._font_size = float(value)
        self._autosize()

    def resize(self, width, height):
        super().resize(width, height)
        self.text_auto_resize = "NONE"

    def set_auto_resize(self, mode: str):
        if mode not in TEXT_AUTO_RESIZE:
            raise CanvasError(f"Invalid textAutoResize: {mode!r}")
        self.text_auto_resize = mode
        self._autosize()

    def _autosize(self):
        if self.text_auto_resize != "WIDTH_AND_HEIGHT":
            return
        lines = self._characters.split("\n") or [""]
        line_px = self.line_height or self._font_size * 1.2
        self.width = max(len(line) for line in lines) * self._font_size * 0.6
        self.height = len(lines) * line_px
        self._notify_parent()

    def to_dict(self) -> dict:
        out = super().to_dict()
        out.update({
            "characters": self._characters,
            "fontName": {"family": self._font_name.family, "style": self._font_name.style},
            "fontSize": self._font_size,
            "fills": self.fills,
            "textAutoResize": self.text_auto_resize,
            "textAlignHorizontal": self.text_align_horizontal,
            "lineHeight": {"unit": "PIXELS", "value": self.line_height} if self.line_height else {"unit": "AUTO"},
        })
        return out


class FrameNode(_FillsMixin, _CornerMixin, SceneNode):
    type = "FRAME"

    def __init__(self, document):
        super().__init__(document)
        self.name = "Frame"
        self.children = []
        self._fills = [solid_paint(WHITE)]
        self._layout_mode = "NONE"
        self._item_spacing = 0.0
        self._padding = {"top": 0.0, "right": 0.0, "bottom": 0.0, "left": 0.0}
        self._primary_align = "MIN"
        self._counter_align = "MIN"
        self._fixed_size = False

    # --- auto-layout properties ---

    @property
    def layout_mode(self) -> str:
        return self._layout_mode

    @layout_mode.setter
    def layout_mode(self, value: str):
        if value not in LAYOUT_MODES:
            raise CanvasError(f"Invalid layoutMode: {value!r}")
        self._layout_mode = value
        if value == "NONE":
            for child in self.children:
                child._layout_positioning = "AUTO"
        self._relayout()

    @property
    def item_spacing(self) -> float:
        return self._item_spacing

    @item_spacing.setter
    def item_spacing(self, value: float):
        self._item_spacing = float(value)
        self._relayout()

    def _padding_property(side):
        def getter(self):
            return self._padding[side]

        def setter(self, value):
            self._padding[side] = float(value)
            self._relayout()

        return property(getter, setter)

    padding_top = _padding_property("top")
    padding_right = _padding_property("right")
    padding_bottom = _padding_property("bottom")
    padding_left = _padding_property("left")
    del _padding_property

    @property
    def primary_axis_align_items(self) -> str:
        return self._primary_align

    @primary_axis_align_items.setter
    def primary_axis_align_items(self, value: str):
        if value not in AXIS_ALIGN:
            raise CanvasError(f"Invalid primaryAxisAlignItems: {value!r}")
        self._primary_align = value
        self._relayout()

    @property
    def counter_axis_align_items(self) -> str:
        return self._counter_align

    @counter_axis_align_items.setter
    def counter_axis_align_items(self, value: str):
        if value not in COUNTER_ALIGN:
            raise CanvasError(f"Invalid counterAxisAlignItems: {value!r}")
        self._counter_align = value
        self._relayout()

    # --- tree ---

    def append_child(self, node: SceneNode):
        ancestor = self
        while ancestor is not None:
            if ancestor is node:
                raise CanvasError("Cannot append a node to itself or its descendant")
            ancestor = ancestor.parent
        if node.parent is not None:
            node.remove()
        node.parent = self
        self.children.append(node)
        self._relayout()

    def resize(self, width, height):
        self._fixed_size = True
        super().resize(width, height)
        self._relayout()

    # --- layout ---

    def _relayout(self):
        if self._layout_mode == "NONE":
            return
        horizontal = self._layout_mode == "HORIZONTAL"
        pad = self._padding
        flow = [c for c in self.children if c.layout_positioning == "AUTO"]

        main_start = pad["left"] if horizontal else pad["top"]
        main_pad_end = pad["right"] if horizontal else pad["bottom"]
        cross_start = pad["top"] if horizontal else pad["left"]
        cross_pad_end = pad["bottom"] if horizontal else pad["right"]

        sizes = [(c.width if horizontal else c.height) for c in flow]
        cross_sizes = [(c.height if horizontal else c.width) for c in flow]
        content = sum(sizes) + self._item_spacing * max(len(flow) - 1, 0)

        if not self._fixed_size:
            # Hug contents on both axes.
            main_total = main_start + content + main_pad_end
            cross_total = cross_start + max(cross_sizes, default=0.0) + cross_pad_end
            w, h = (main_total, cross_total) if horizontal else (cross_total, main_total)
            self.width, self.height = max(w, MIN_SIZE), max(h, MIN_SIZE)

        main_size = self.width if horizontal else self.height
        cross_size = self.height if horizontal else self.width
        free = main_size - main_start - main_pad_end - content
        spacing = self._item_spacing
        cursor = main_start
        if self._primary_align == "CENTER":
            cursor += free / 2
        elif self._primary_align == "MAX":
            cursor += free
        elif self._primary_align == "SPACE_BETWEEN" and len(flow) > 1:
            spacing = (main_size - main_start - main_pad_end - sum(sizes)) / (len(flow) - 1)

        inner_cross = cross_size - cross_start - cross_pad_end
        for child, size, cross in zip(flow, sizes, cross_sizes):
            if self._counter_align == "CENTER":
                offset = cross_start + (inner_cross - cross) / 2
            elif self._counter_align == "MAX":
                offset = cross_start + inner_cross - cross
            else:
                offset = cross_start
            if horizontal:
                child.x, child.y = cursor, offset
            else:
                child.x, child.y = offset, cursor
            cursor += size + spacing

        self._notify_parent()

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["fills"] = self.fills
        out.update(self._radii())
        out["layoutMode"] = self._layout_mode
        if self._layout_mode != "NONE":
            out.update({
                "itemSpacing": self._item_spacing,
                "paddingTop": self._padding["top"],
                "paddingRight": self._padding["right"],
                "paddingBottom": self._padding["bottom"],
                "paddingLeft": self._padding["left"],
                "primaryAxisAlignItems": self._primary_align,
                "counterAxisAlignItems": self._counter_align,
            })
        out["children"] = [c.to_dict() for c in self.children]
        return out


class PageNode:
    type = "PAGE"

    def __init__(self, document: "CanvasDocument", name: str):
        self.document = document
        self.id = document._next_id()
        self.name = name
        self.children = []
        self.parent = None

    def append_child(self, node: SceneNode):
        if node.parent is not None:
            node.remove()
        node.parent = self
        self.children.append(node)

    def _relayout(self):
        # Page children are free-form.
        return

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "children": [c.to_dict() for c in self.children],
        }


class Viewport:
    def __init__(self):
        self.focused = []

    def scroll_and_zoom_into_view(self, nodes):
        self.focused = [n.id for n in nodes]


# ===============================
# DOCUMENT
# ===============================

class CanvasDocument:
    def __init__(self, available_fonts=None):
        self._ids = 0
        self.available_fonts = frozenset(available_fonts if available_fonts is not None else DEFAULT_FONTS)
        self.loaded_fonts = set()
        self._held_fonts = Counter()
        self._images = {}
        self.pages = [PageNode(self, "Page 1")]
        self.current_page = self.pages[0]
        self.viewport = Viewport()

    def _next_id(self) -> str:
        self._ids += 1
        return f"1:{self._ids}"

    # --- node factories ---

    def create_frame(self) -> FrameNode:
        return FrameNode(self)

    def create_text(self) -> TextNode:
        return TextNode(self)

    def create_rectangle(self) -> RectangleNode:
        return RectangleNode(self)

    # --- fonts ---

    async def load_font(self, font: FontName):
        if font in self.loaded_fonts:
            return
        # Font loading is asynchronous on a real host.
        await asyncio.sleep(0)
        if font not in self.available_fonts:
            raise CanvasError(f'The font "{font}" could not be loaded')
        self.loaded_fonts.add(font)

    def hold_font(self, font: FontName):
        if font not in self.loaded_fonts:
            raise CanvasError(f'Font "{font}" is not loaded')
        self._held_fonts[font] += 1

    def release_font(self, font: FontName):
        if self._held_fonts[font] <= 1:
            del self._held_fonts[font]
        else:
            self._held_fonts[font] -= 1

    def is_font_held(self, font: FontName) -> bool:
        return self._held_fonts[font] > 0

    # --- images ---

    def create_image(self, data: bytes) -> ImageHandle:
        try:
            with Image.open(io.BytesIO(data)) as img:
                fmt = img.format
                width, height = img.size
                img.verify()
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
            raise CanvasError(f"Image is not a supported format: {e}") from e
        if fmt not in SUPPORTED_IMAGE_FORMATS:
            raise CanvasError(f"Image type is unsupported: {fmt}")
        digest = hashlib.sha1(data).hexdigest()
        handle = ImageHandle(hash=digest, width=width, height=height, format=fmt)
        self._images[digest] = handle
        return handle

    def get_image(self, image_hash) -> ImageHandle | None:
        return self._images.get(image_hash)

    # --- traversal / export ---

    def iter_nodes(self, node=None):
        roots = [node] if node is not None else list(self.current_page.children)
        for n in roots:
            yield n
            for child in getattr(n, "children", []):
                yield from self.iter_nodes(child)

    def to_dict(self) -> dict:
        return {
            "pages": [p.to_dict() for p in self.pages],
            "currentPage": self.current_page.id,
            "viewport": {"focused": list(self.viewport.focused)},
            "images": {
                h: {"width": i.width, "height": i.height, "format": i.format}
                for h, i in self._images.items()
            },
        }
