from __future__ import annotations

import asyncio

import pytest

from Services.builder import Builder, build_into_document
from Services.canvas import CanvasDocument, CanvasError, FontName
from Services.image import ImageRelay
from Services.ir_schema import IRFrame, IRImage, IRText, Styles, node_from_dict
from Services.style_map import counter_axis_align, layout_direction, primary_axis_align

IMG = "https://example.com/a.png"


def _build(node, resolver=None, document=None):
    document = document or CanvasDocument()
    root, stats = asyncio.run(build_into_document(document, node, resolver))
    return document, root, stats


def test_empty_input_changes_nothing() -> None:
    doc, root, stats = _build(None)
    assert root is None
    assert doc.current_page.children == []
    assert doc.viewport.focused == []
    assert stats.nodes == 0


def test_unknown_variant_builds_nothing() -> None:
    assert asyncio.run(Builder(CanvasDocument()).build(object())) is None


def test_frame_with_size_is_exactly_that_size() -> None:
    doc, root, _ = _build(IRFrame(tag="div", styles=Styles(width=320, height=48)))
    assert (root.width, root.height) == (320, 48)
    assert root.name == "div"
    assert doc.current_page.children == [root]
    assert doc.viewport.focused == [root.id]


def test_flex_row_example() -> None:
    tree = node_from_dict(
        {
            "type": "FRAME",
            "tag": "div",
            "styles": {
                "display": "flex",
                "flexDirection": "row",
                "gap": 8,
                "padding": {"top": 4, "right": 4, "bottom": 4, "left": 4},
                "backgroundColor": {"r": 1, "g": 1, "b": 1},
            },
            "children": [{"type": "TEXT_NODE", "content": "Hi", "fontSize": 16}],
        }
    )
    doc, root, stats = _build(tree)

    assert root.type == "FRAME"
    assert root.layout_mode == "HORIZONTAL"
    assert root.item_spacing == 8
    assert (root.padding_top, root.padding_right, root.padding_bottom, root.padding_left) == (4, 4, 4, 4)
    assert root.primary_axis_align_items == "MIN"
    assert root.counter_axis_align_items == "MIN"
    assert root.fills == [{"type": "SOLID", "color": {"r": 1.0, "g": 1.0, "b": 1.0}}]

    (text,) = root.children
    assert text.type == "TEXT"
    assert text.characters == "Hi"
    assert text.name == "Hi"
    assert text.font_size == 16
    assert text.font_name == FontName("Inter", "Regular")
    assert text.text_auto_resize == "WIDTH_AND_HEIGHT"
    # Padding puts the text 4px in, and the frame hugs it.
    assert (text.x, text.y) == (4, 4)
    assert root.width == pytest.approx(text.width + 8)
    assert root.height == pytest.approx(text.height + 8)
    assert (stats.nodes, stats.ir_nodes) == (2, 2)
    # No font stays held once the build is over.
    assert not doc.is_font_held(text.font_name)


def test_text_color_becomes_solid_fill() -> None:
    _, root, _ = _build(node_from_dict({"type": "TEXT_NODE", "content": "x", "color": {"r": 0, "g": 0.5, "b": 1}}))
    assert root.fills == [{"type": "SOLID", "color": {"r": 0.0, "g": 0.5, "b": 1.0}}]


def test_block_display_stacks_vertically() -> None:
    _, root, _ = _build(IRFrame(tag="div", children=(IRText("a"), IRText("b"))))
    assert root.layout_mode == "VERTICAL"
    a, b = root.children
    assert a.y < b.y


@pytest.mark.parametrize(
    "justify,align,primary,counter",
    [
        ("normal", "normal", "MIN", "MIN"),
        ("flex-start", "stretch", "MIN", "MIN"),
        ("space-around", "baseline", "MIN", "MIN"),
        ("space-between", "flex-end", "SPACE_BETWEEN", "MAX"),
        ("flex-end", "center", "MAX", "CENTER"),
    ],
)
def test_alignment_mapping_defaults_to_min(justify, align, primary, counter) -> None:
    assert primary_axis_align(justify) == primary
    assert counter_axis_align(align) == counter
    styles = Styles(display="flex", justify_content=justify, align_items=align)
    _, root, _ = _build(IRFrame(tag="div", styles=styles))
    assert root.primary_axis_align_items == primary
    assert root.counter_axis_align_items == counter


def test_layout_direction() -> None:
    assert layout_direction("row") == "HORIZONTAL"
    assert layout_direction("column") == "VERTICAL"
    assert layout_direction("row-reverse") == "VERTICAL"


def test_text_with_width_gets_fixed_box() -> None:
    _, root, _ = _build(IRText("Wrapped", styles=Styles(width=120, font_size=20, text_align="center")))
    assert (root.width, root.height) == (120, 30)
    assert root.text_auto_resize == "NONE"
    assert root.text_align_horizontal == "CENTER"


def test_missing_resolver_leaves_unfilled_placeholder(image_bytes) -> None:
    tree = IRFrame(
        tag="div",
        children=(IRImage(src=IMG, styles=Styles(width=40, height=30), tag="img"), IRText("caption")),
    )
    _, root, stats = _build(tree)
    rect, caption = root.children
    assert rect.type == "RECTANGLE"
    assert rect.fills == []
    assert (rect.width, rect.height) == (40, 30)
    assert caption.characters == "caption"
    assert stats.images_requested == 1
    assert stats.images_loaded == 0


def test_failed_asset_does_not_abort_siblings(fake_resolver, image_bytes) -> None:
    good = "https://example.com/good.png"
    resolver = fake_resolver({good: image_bytes(), "https://example.com/junk.png": b"<html>"})
    tree = IRFrame(
        tag="div",
        children=(
            IRImage(src="https://example.com/missing.png"),
            IRImage(src="https://example.com/junk.png"),
            IRImage(src=good),
        ),
    )
    doc, root, stats = _build(tree, resolver)
    missing, junk, ok = root.children
    assert missing.fills == []
    assert junk.fills == []
    assert ok.fills[0]["type"] == "IMAGE"
    assert doc.get_image(ok.fills[0]["imageHash"]) is not None
    assert (stats.images_requested, stats.images_loaded) == (3, 1)
    assert len(stats.warnings) == 2


def test_children_keep_ir_order_regardless_of_fetch_timing(fake_resolver, image_bytes) -> None:
    urls = [f"https://example.com/{i}.png" for i in range(3)]
    resolver = fake_resolver(
        {u: image_bytes(color=(i * 50, 0, 0)) for i, u in enumerate(urls)},
        delays={urls[0]: 0.05, urls[1]: 0.02, urls[2]: 0},
    )
    tree = IRFrame(tag="div", children=tuple(IRImage(src=u, tag=f"img{i}") for i, u in enumerate(urls)))
    _, root, _ = _build(tree, resolver)
    assert [c.name for c in root.children] == ["img0", "img1", "img2"]
    assert all(c.fills for c in root.children)


def test_same_url_is_fetched_once(fake_resolver, image_bytes) -> None:
    resolver = fake_resolver({IMG: image_bytes()})
    tree = IRFrame(tag="div", children=(IRImage(src=IMG), IRImage(src=IMG)))
    _, root, stats = _build(tree, resolver)
    assert resolver.calls == [IMG]
    assert stats.images_loaded == 2
    assert root.children[0].fills == root.children[1].fills


def test_solid_fill_comes_before_background_image(fake_resolver, image_bytes) -> None:
    styles = Styles.from_dict(
        {"backgroundColor": {"r": 0, "g": 0, "b": 1}, "backgroundImage": {"type": "IMAGE", "url": IMG}}
    )
    _, root, _ = _build(IRFrame(tag="div", styles=styles), fake_resolver({IMG: image_bytes()}))
    assert [p["type"] for p in root.fills] == ["SOLID", "IMAGE"]


def test_gradient_background_goes_on_top_of_solid(fake_resolver) -> None:
    raw = "linear-gradient(90deg, rgb(255, 0, 0) 0%, rgb(0, 0, 255) 100%)"
    styles = Styles.from_dict(
        {"backgroundColor": {"r": 1, "g": 1, "b": 1}, "backgroundImage": {"type": "GRADIENT", "raw": raw}}
    )
    resolver = fake_resolver()
    _, root, stats = _build(IRFrame(tag="div", styles=styles), resolver)

    solid, gradient = root.fills
    assert solid["type"] == "SOLID"
    assert gradient["type"] == "GRADIENT_LINEAR"
    assert [s["position"] for s in gradient["gradientStops"]] == [0, 1]
    assert gradient["gradientStops"][0]["color"] == {"r": 1.0, "g": 0.0, "b": 0.0, "a": 1.0}
    assert resolver.calls == []
    assert stats.images_requested == 0


def test_radial_gradient_background() -> None:
    raw = "radial-gradient(circle at 25% 75%, rgba(0, 0, 0, 0.5), rgb(255, 255, 255))"
    styles = Styles.from_dict({"backgroundImage": {"type": "GRADIENT", "raw": raw}})
    _, root, _ = _build(IRFrame(tag="div", styles=styles))
    (paint,) = root.fills
    assert paint["type"] == "GRADIENT_RADIAL"
    assert paint["opacity"] == pytest.approx(0.75)


def test_unparsable_gradient_is_dropped_with_warning() -> None:
    styles = Styles.from_dict({"backgroundImage": {"type": "GRADIENT", "raw": "linear-gradient(red, blue)"}})
    _, root, stats = _build(IRFrame(tag="div", styles=styles))
    assert root.fills == []
    assert stats.warnings == ["Unsupported gradient: linear-gradient(red, blue)"]


def test_images_are_prefetched_once_before_building(fake_resolver, image_bytes) -> None:
    bg = "https://example.com/bg.png"
    resolver = fake_resolver({IMG: image_bytes(), bg: image_bytes(color=(0, 0, 255))})
    tree = IRFrame(
        tag="div",
        styles=Styles.from_dict({"backgroundImage": {"type": "IMAGE", "url": bg}}),
        children=(IRImage(src=IMG), IRImage(src=IMG)),
    )
    _, root, stats = _build(tree, resolver)
    assert resolver.calls == [bg, IMG]
    assert root.fills[0]["type"] == "IMAGE"
    assert (stats.ir_nodes, stats.distinct_images, stats.images_loaded) == (3, 2, 3)
    assert stats.to_dict()["irNodes"] == 3
    assert stats.to_dict()["distinctImages"] == 2


def test_relay_send_failure_leaves_placeholder() -> None:
    async def closed_socket(message):
        raise RuntimeError('Cannot call "send" once a close message has been sent.')

    doc = CanvasDocument()
    tree = IRFrame(tag="div", children=(IRImage(src=IMG), IRText("sibling")))
    _, root, stats = _build(tree, ImageRelay(closed_socket, timeout=1), document=doc)
    rect, sibling = root.children
    assert rect.fills == []
    assert sibling.characters == "sibling"
    assert doc.current_page.children == [root]
    assert stats.images_loaded == 0


def test_sub_pixel_values_are_clamped_not_fatal() -> None:
    tree = node_from_dict(
        {
            "type": "FRAME",
            "tag": "div",
            "styles": {},
            "children": [
                {"type": "TEXT_NODE", "content": "tiny", "fontSize": 0.5},
                {"type": "FRAME", "tag": "hairline", "styles": {"width": 0.001, "height": 10}},
                {"type": "TEXT_NODE", "content": "narrow", "width": 0.001},
            ],
        }
    )
    doc, root, _ = _build(tree)
    tiny, hairline, narrow = root.children
    assert tiny.font_size == 1
    assert hairline.name == "hairline"
    assert narrow.text_auto_resize == "WIDTH_AND_HEIGHT"
    assert doc.current_page.children == [root]


def test_absolute_child_is_positioned_after_append() -> None:
    parent = Styles(width=300, height=100, display="flex")
    child = Styles(width=20, height=20, position="absolute", left=10, top=20)
    sibling = Styles(width=50, height=50)
    tree = IRFrame(
        tag="div",
        styles=parent,
        children=(IRFrame(tag="span", styles=child), IRFrame(tag="p", styles=sibling)),
    )
    _, root, _ = _build(tree)
    floating, flow = root.children
    assert floating.layout_positioning == "ABSOLUTE"
    assert (floating.x, floating.y) == (10, 20)
    # The absolute child takes no room in the row.
    assert (flow.x, flow.y) == (0, 0)


def test_fatal_canvas_error_appends_nothing() -> None:
    tree = IRFrame(
        tag="div",
        children=(IRFrame(tag="box"), IRText("needs a font")),
    )
    doc = CanvasDocument(available_fonts=[])
    with pytest.raises(CanvasError):
        asyncio.run(build_into_document(doc, tree))
    assert doc.current_page.children == []


def test_cancelled_build_appends_nothing(fake_resolver, image_bytes) -> None:
    doc = CanvasDocument()
    resolver = fake_resolver({IMG: image_bytes()}, delays={IMG: 10})
    tree = IRFrame(tag="div", children=(IRImage(src=IMG),))

    async def run():
        task = asyncio.create_task(build_into_document(doc, tree, resolver))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(run())
    assert doc.current_page.children == []


def test_unknown_font_family_uses_fallback() -> None:
    _, root, _ = _build(IRText("x", styles=Styles(font_family="'Brand Display', serif", font_weight="700")))
    assert root.font_name == FontName("Georgia", "Bold")
