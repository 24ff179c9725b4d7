import re

from Services.ir_schema import (
    BackgroundImage,
    BorderRadius,
    Color,
    IRFrame,
    IRImage,
    IRText,
    Padding,
    Styles,
    node_to_dict,
)

# DOM nodeType values emitted by the page snapshot
ELEMENT_NODE = 1
TEXT_NODE = 3

_RGB_RE = re.compile(
    r"rgba?\(\s*([\d.]+)[\s,]+([\d.]+)[\s,]+([\d.]+)(?:\s*[,/]\s*([\d.]+)(%)?)?",
    re.IGNORECASE,
)
_LEADING_FLOAT_RE = re.compile(r"^\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:e[-+]?\d+)?)", re.IGNORECASE)
_URL_RE = re.compile(r"""url\(\s*['"]?(.*?)['"]?\s*\)""")


# ===============================
# VALUE PARSERS
# ===============================

def parse_unit(value) -> float:
    """Leading number of a CSS length ("8px" → 8.0); anything else is 0."""
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value) if value == value else 0.0
    if not isinstance(value, str):
        return 0.0
    m = _LEADING_FLOAT_RE.match(value)
    if not m:
        return 0.0
    try:
        return float(m.group(1))
    except ValueError:
        return 0.0


def parse_rgb(value) -> Color | None:
    if not value or not isinstance(value, str):
        return None
    text = value.strip().lower()
    if text == "transparent":
        return None
    m = _RGB_RE.search(text)
    if not m:
        return None
    try:
        channels = [float(m.group(i)) for i in (1, 2, 3)]
        if m.group(4) is not None:
            alpha = float(m.group(4))
            if m.group(5):
                alpha /= 100
            if alpha == 0:
                return None
    except ValueError:
        return None
    r, g, b = (min(max(c / 255, 0.0), 1.0) for c in channels)
    return Color(r, g, b)


def parse_background(value) -> BackgroundImage | None:
    if not value or not isinstance(value, str) or value == "none":
        return None
    m = _URL_RE.search(value)
    if m and m.group(1):
        return BackgroundImage(type="IMAGE", url=m.group(1))
    if "gradient" in value:
        return BackgroundImage(type="GRADIENT", raw=value)
    return None


def _css(computed: dict, key: str, default: str) -> str:
    value = computed.get(key)
    if not isinstance(value, str) or not value.strip():
        return default
    return value.strip()


# ===============================
# GATES
# ===============================

def is_visible(computed: dict) -> bool:
    if computed.get("display") == "none":
        return False
    if computed.get("visibility") == "hidden":
        return False
    opacity = computed.get("opacity")
    if opacity is not None and str(opacity).strip() != "":
        m = _LEADING_FLOAT_RE.match(str(opacity))
        if m and float(m.group(1)) == 0:
            return False
    return True


# ===============================
# STYLE SNAPSHOT
# ===============================

def snapshot_styles(computed: dict, width: float, height: float) -> Styles:
    font_size = parse_unit(computed.get("fontSize"))
    return Styles(
        width=width,
        height=height,
        display=_css(computed, "display", "block"),
        flex_direction=_css(computed, "flexDirection", "row"),
        justify_content=_css(computed, "justifyContent", "normal"),
        align_items=_css(computed, "alignItems", "normal"),
        gap=parse_unit(computed.get("gap")),
        padding=Padding(
            top=parse_unit(computed.get("paddingTop")),
            right=parse_unit(computed.get("paddingRight")),
            bottom=parse_unit(computed.get("paddingBottom")),
            left=parse_unit(computed.get("paddingLeft")),
        ),
        background_color=parse_rgb(computed.get("backgroundColor")),
        background_image=parse_background(computed.get("backgroundImage")),
        border_radius=BorderRadius(
            top_left=parse_unit(computed.get("borderTopLeftRadius")),
            top_right=parse_unit(computed.get("borderTopRightRadius")),
            bottom_right=parse_unit(computed.get("borderBottomRightRadius")),
            bottom_left=parse_unit(computed.get("borderBottomLeftRadius")),
        ),
        color=parse_rgb(computed.get("color")),
        font_size=font_size if font_size > 0 else None,
        font_weight=_css(computed, "fontWeight", "400"),
        font_family=_css(computed, "fontFamily", ""),
        line_height=_css(computed, "lineHeight", "normal"),
        text_align=_css(computed, "textAlign", "start"),
        position=_css(computed, "position", "static"),
        left=parse_unit(computed.get("left")),
        top=parse_unit(computed.get("top")),
    )


# ===============================
# TREE WALK
# ===============================

def capture(node):
    """Raw visual tree node → IR node, or None when it should be omitted."""
    if not isinstance(node, dict):
        return None

    kind = node.get("nodeType")

    if kind == TEXT_NODE:
        text = node.get("text")
        content = text.strip() if isinstance(text, str) else ""
        if not content:
            return None
        return IRText(content=content)

    if kind != ELEMENT_NODE:
        return None

    computed = node.get("computed")
    if not isinstance(computed, dict):
        computed = {}

    if not is_visible(computed):
        return None

    rect = node.get("rect")
    if not isinstance(rect, dict):
        rect = {}
    width = parse_unit(rect.get("width"))
    height = parse_unit(rect.get("height"))
    if width <= 0 or height <= 0:
        return None

    styles = snapshot_styles(computed, width, height)
    tag = str(node.get("tagName") or "").lower()

    if tag == "img":
        src = node.get("src")
        return IRImage(src=src if isinstance(src, str) else "", styles=styles, tag=tag)

    children = []
    for child in node.get("children") or []:
        c = capture(child)
        if c is not None:
            children.append(c)

    # A lone raw text child folds into its container. Lossy by intent:
    # the wrapper element is not kept.
    if len(children) == 1 and isinstance(children[0], IRText) and children[0].styles is None:
        return IRText(content=children[0].content, styles=styles)

    return IRFrame(tag=tag, styles=styles, children=tuple(children))


def capture_to_dict(raw_tree) -> dict | None:
    node = capture(raw_tree)
    return node_to_dict(node) if node is not None else None
