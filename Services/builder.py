"""
IR → canvas node tree.

The builder only suspends to acquire fonts and to resolve image assets.
Sibling subtrees are built concurrently, but their results are appended in
IR order once all of them are done, so fetch timing never changes the
layer order. Nothing touches the document's page until the whole root is
built (see build_into_document).
"""
import asyncio
import logging
from dataclasses import dataclass, field

from Services.canvas import MIN_SIZE, CanvasError, solid_paint
from Services.fonts import font_scope
from Services.image import AssetCache
from Services.ir_schema import IRFrame, IRImage, IRText, count_nodes, iter_image_urls, node_styles
from Services.style_map import (
    counter_axis_align,
    layout_direction,
    line_height_px,
    parse_gradient,
    primary_axis_align,
    text_align_horizontal,
)

logger = logging.getLogger(__name__)

DEFAULT_FONT_SIZE = 16
MIN_FONT_SIZE = 1


def _fits(width, height) -> bool:
    # Sub-pixel boxes keep the node's default size instead of failing the build.
    return width is not None and height is not None and width >= MIN_SIZE and height >= MIN_SIZE


@dataclass
class BuildStats:
    nodes: int = 0
    ir_nodes: int = 0
    distinct_images: int = 0
    images_requested: int = 0
    images_loaded: int = 0
    warnings: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "totalNodes": self.nodes,
            "irNodes": self.ir_nodes,
            "imagesLoaded": self.images_loaded,
            "totalImages": self.images_requested,
            "distinctImages": self.distinct_images,
            "warnings": list(self.warnings),
        }


class Builder:
    def __init__(self, document, resolver=None):
        self.document = document
        self.assets = AssetCache(resolver) if resolver is not None else None
        self.stats = BuildStats()

    def prefetch(self, node):
        """Start every image fetch of the tree before any node is built."""
        if self.assets is not None:
            self.stats.distinct_images = self.assets.prefetch(iter_image_urls(node))

    def close(self):
        if self.assets is not None:
            self.assets.close()

    async def build(self, node):
        if node is None:
            return None
        if isinstance(node, IRText):
            return await self._build_text(node)
        if isinstance(node, IRImage):
            return await self._build_image(node)
        if isinstance(node, IRFrame):
            return await self._build_frame(node)
        logger.debug("[BUILD] Dropping unknown node type %s", type(node).__name__)
        return None

    # ===============================
    # HELPERS
    # ===============================

    def _warn(self, message: str):
        logger.warning("[BUILD] %s", message)
        self.stats.warnings.append(message)

    async def _gather(self, coros) -> list:
        tasks = [asyncio.ensure_future(c) for c in coros]
        try:
            return await asyncio.gather(*tasks)
        except BaseException:
            for t in tasks:
                t.cancel()
            raise

    async def _image_paint(self, url):
        if not url:
            return None
        self.stats.images_requested += 1
        if self.assets is None:
            return None
        data = await self.assets.resolve(url)
        if data is None:
            self._warn(f"Image unavailable: {url}")
            return None
        try:
            handle = self.document.create_image(data)
        except CanvasError as e:
            self._warn(f"Image rejected ({e}): {url}")
            return None
        self.stats.images_loaded += 1
        return {"type": "IMAGE", "scaleMode": "FILL", "imageHash": handle.hash}

    async def _background_paint(self, styles):
        bg = styles.background_image
        if bg is None:
            return None
        if bg.type == "GRADIENT":
            paint = parse_gradient(bg.raw)
            if paint is None:
                self._warn(f"Unsupported gradient: {bg.raw}")
            return paint
        return await self._image_paint(bg.url)

    @staticmethod
    def _apply_radius(node, styles):
        r = styles.border_radius
        node.top_left_radius = r.top_left
        node.top_right_radius = r.top_right
        node.bottom_right_radius = r.bottom_right
        node.bottom_left_radius = r.bottom_left

    # ===============================
    # TEXT
    # ===============================

    async def _build_text(self, node: IRText):
        s = node_styles(node)
        text = self.document.create_text()
        self.stats.nodes += 1

        async with font_scope(self.document, s.font_family, s.font_weight) as font:
            text.font_name = font
            line_height = line_height_px(s.line_height, s.font_size)
            if line_height:
                text.line_height = line_height
            text.characters = node.content
            if s.font_size:
                text.font_size = max(s.font_size, MIN_FONT_SIZE)

        text.name = node.content
        if s.color:
            text.fills = [solid_paint(s.color.to_dict())]
        text.text_align_horizontal = text_align_horizontal(s.text_align)

        if s.width and s.width >= MIN_SIZE:
            height = s.height or (s.font_size or DEFAULT_FONT_SIZE) * 1.5
            text.resize(s.width, max(height, MIN_SIZE))
        else:
            text.set_auto_resize("WIDTH_AND_HEIGHT")

        if s.is_absolute:
            text.x, text.y = s.left, s.top
        return text

    # ===============================
    # IMAGE PLACEHOLDER
    # ===============================

    async def _build_image(self, node: IRImage):
        s = node.styles
        rect = self.document.create_rectangle()
        self.stats.nodes += 1
        rect.name = node.tag or "Image"
        rect.fills = []
        self._apply_radius(rect, s)

        if _fits(s.width, s.height):
            rect.resize(s.width, s.height)
        if s.is_absolute:
            rect.x, rect.y = s.left, s.top

        paint = await self._image_paint(node.src)
        if paint is not None:
            rect.fills = [paint]
        return rect

    # ===============================
    # FRAME
    # ===============================

    async def _build_frame(self, node: IRFrame):
        s = node.styles
        frame = self.document.create_frame()
        self.stats.nodes += 1
        frame.name = node.tag or "Frame"
        self._apply_radius(frame, s)

        if s.display == "flex":
            frame.layout_mode = layout_direction(s.flex_direction)
            frame.item_spacing = s.gap
            frame.padding_top = s.padding.top
            frame.padding_right = s.padding.right
            frame.padding_bottom = s.padding.bottom
            frame.padding_left = s.padding.left
            frame.counter_axis_align_items = counter_axis_align(s.align_items)
            frame.primary_axis_align_items = primary_axis_align(s.justify_content)
        else:
            # Block flow approximated as a vertical stack.
            frame.layout_mode = "VERTICAL"

        if _fits(s.width, s.height):
            frame.resize(s.width, s.height)
        if s.is_absolute:
            frame.x, frame.y = s.left, s.top

        background, *children = await self._gather(
            [self._background_paint(s)] + [self.build(c) for c in node.children]
        )

        # Solid first, background image or gradient on top of it.
        fills = []
        if s.background_color:
            fills.append(solid_paint(s.background_color.to_dict()))
        if background is not None:
            fills.append(background)
        frame.fills = fills

        for child_ir, child in zip(node.children, children):
            if child is None:
                continue
            frame.append_child(child)
            cs = node_styles(child_ir)
            # Flow placement happens on append; absolute offsets go on afterwards.
            if cs.is_absolute:
                child.layout_positioning = "ABSOLUTE"
                child.x, child.y = cs.left, cs.top

        return frame


async def build_into_document(document, node, resolver=None):
    """Build the whole tree, then attach the root to the current page."""
    builder = Builder(document, resolver)
    builder.stats.ir_nodes = count_nodes(node)
    try:
        builder.prefetch(node)
        root = await builder.build(node)
    finally:
        builder.close()

    if root is not None:
        document.current_page.append_child(root)
        document.viewport.scroll_and_zoom_into_view([root])
        logger.info("[BUILD] Appended %s nodes (%s/%s images)",
                    builder.stats.nodes, builder.stats.images_loaded, builder.stats.images_requested)
    return root, builder.stats
