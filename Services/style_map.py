import math
import re

# ===============================
# CSS → CANVAS MAPPING TABLES
# ===============================

# Cross axis (align-items)
COUNTER_AXIS_ALIGN = {
    "center": "CENTER",
    "flex-end": "MAX",
}

# Main axis (justify-content)
PRIMARY_AXIS_ALIGN = {
    "center": "CENTER",
    "space-between": "SPACE_BETWEEN",
    "flex-end": "MAX",
}

TEXT_ALIGN_HORIZONTAL = {
    "center": "CENTER",
    "right": "RIGHT",
    "end": "RIGHT",
    "justify": "JUSTIFIED",
}

ABSOLUTE_POSITIONS = {"absolute", "fixed"}

# font-weight upper bound → style name
FONT_WEIGHT_STYLES = [
    (100, "Thin"),
    (200, "ExtraLight"),
    (300, "Light"),
    (400, "Regular"),
    (500, "Medium"),
    (600, "SemiBold"),
    (700, "Bold"),
    (800, "ExtraBold"),
]


def counter_axis_align(align_items) -> str:
    return COUNTER_AXIS_ALIGN.get(align_items, "MIN")


def primary_axis_align(justify_content) -> str:
    return PRIMARY_AXIS_ALIGN.get(justify_content, "MIN")


def layout_direction(flex_direction) -> str:
    return "HORIZONTAL" if flex_direction == "row" else "VERTICAL"


def text_align_horizontal(text_align) -> str:
    return TEXT_ALIGN_HORIZONTAL.get(text_align, "LEFT")


def is_absolute(position) -> bool:
    return position in ABSOLUTE_POSITIONS


def font_weight_value(weight) -> int:
    if isinstance(weight, (int, float)):
        return int(weight)
    text = str(weight or "").strip().lower()
    if text == "bold":
        return 700
    if text in ("", "normal"):
        return 400
    try:
        return int(float(text))
    except ValueError:
        return 400


def font_style_for_weight(weight) -> str:
    w = font_weight_value(weight)
    for bound, style in FONT_WEIGHT_STYLES:
        if w <= bound:
            return style
    return "Black"


def line_height_px(value, font_size):
    """CSS line-height → pixels, or None for 'normal' / unknown."""
    if not value or value == "normal" or not font_size:
        return None
    value = str(value).strip()
    try:
        if value.endswith("px"):
            return float(value[:-2]) or None
        if value.endswith("rem"):
            return float(value[:-3]) * 16 or None
        if value.endswith("em"):
            return (float(value[:-2]) or 1) * font_size
        if value.endswith("%"):
            return float(value[:-1]) / 100 * font_size
        return float(value) * font_size
    except ValueError:
        return None


# ===============================
# GRADIENTS
# ===============================

# CSS keyword direction → angle in degrees (0 = to top)
GRADIENT_DIRECTIONS = {
    "top": 0,
    "right": 90,
    "bottom": 180,
    "left": 270,
    "top right": 45,
    "right top": 45,
    "bottom right": 135,
    "right bottom": 135,
    "bottom left": 225,
    "left bottom": 225,
    "top left": 315,
    "left top": 315,
}

# radial-gradient extent keyword → scale relative to the box
RADIAL_EXTENTS = {
    "closest-side": 0.5,
    "closest-corner": 0.707,
    "farthest-side": 1.0,
    "farthest-corner": 1.414,
}

_COLOR_STOP_RE = re.compile(r"(rgba?\([^)]+\)|#[0-9a-fA-F]{3,8})(?:\s+(\d+(?:\.\d+)?)%)?")
_NUMBER_RE = re.compile(r"\d*\.?\d+")
_ANGLE_RE = re.compile(r"linear-gradient\(\s*(-?\d+(?:\.\d+)?)deg", re.IGNORECASE)
_DIRECTION_RE = re.compile(r"linear-gradient\(\s*to\s+([^,]+)", re.IGNORECASE)
_RADIAL_SHAPE_RE = re.compile(r"radial-gradient\(\s*([^,]*?)(?:\s+at\s+|,)", re.IGNORECASE)
_RADIAL_AT_RE = re.compile(r"\bat\s+([^,)]+)", re.IGNORECASE)
_RADIAL_SIZE_RE = re.compile(r"(\d+(?:\.\d+)?)(px|%)(?:\s+(\d+(?:\.\d+)?)(?:px|%))?")


def _clamp01(value: float) -> float:
    return min(max(value, 0.0), 1.0)


def parse_css_color(text):
    """rgb()/rgba()/hex → {r, g, b, a} in [0, 1], or None."""
    text = (text or "").strip().lower()
    if text.startswith("rgb"):
        nums = [float(n) for n in _NUMBER_RE.findall(text)]
        if len(nums) < 3:
            return None
        alpha = nums[3] if len(nums) > 3 else 1.0
        if "%" in text.split("/")[-1] and len(nums) > 3:
            alpha /= 100
        r, g, b = (_clamp01(n / 255) for n in nums[:3])
        return {"r": r, "g": g, "b": b, "a": _clamp01(alpha)}
    if text.startswith("#"):
        digits = text[1:]
        if len(digits) == 3:
            digits = "".join(c * 2 for c in digits)
        if len(digits) not in (6, 8):
            return None
        r, g, b = (int(digits[i:i + 2], 16) / 255 for i in (0, 2, 4))
        a = int(digits[6:8], 16) / 255 if len(digits) == 8 else 1.0
        return {"r": r, "g": g, "b": b, "a": a}
    return None


def gradient_stops(raw: str):
    """Color stops of a CSS gradient plus their mean alpha."""
    found = []
    for m in _COLOR_STOP_RE.finditer(raw):
        color = parse_css_color(m.group(1))
        if color is None:
            continue
        position = float(m.group(2)) / 100 if m.group(2) else None
        found.append([color, position])

    if len(found) < 2:
        return [], 1.0

    if found[0][1] is None:
        found[0][1] = 0.0
    if found[-1][1] is None:
        found[-1][1] = 1.0
    # Unpositioned stops are spread evenly between their positioned neighbours.
    for i in range(1, len(found) - 1):
        if found[i][1] is not None:
            continue
        nxt = i + 1
        while found[nxt][1] is None:
            nxt += 1
        prev = found[i - 1][1]
        found[i][1] = prev + (found[nxt][1] - prev) / (nxt - i + 1)

    opacity = sum(color["a"] for color, _ in found) / len(found)
    stops = [{"position": _clamp01(pos), "color": color} for color, pos in found]
    return stops, opacity


def linear_gradient_angle(raw: str) -> float:
    m = _ANGLE_RE.search(raw)
    if m:
        return float(m.group(1))
    m = _DIRECTION_RE.search(raw)
    if m:
        return GRADIENT_DIRECTIONS.get(" ".join(m.group(1).lower().split()), 180)
    return 180


def angle_to_gradient_transform(angle: float):
    rad = math.radians(angle - 90)
    cos, sin = math.cos(rad), math.sin(rad)
    return [
        [cos, sin, 0.5 - cos * 0.5 - sin * 0.5],
        [-sin, cos, 0.5 + sin * 0.5 - cos * 0.5],
    ]


def _radial_position(raw: str):
    m = _RADIAL_AT_RE.search(raw)
    if not m:
        return 0.5, 0.5

    def pos(value):
        if value in ("left", "top"):
            return 0.0
        if value in ("right", "bottom"):
            return 1.0
        if value.endswith("%"):
            try:
                return float(value[:-1]) / 100
            except ValueError:
                return 0.5
        return 0.5

    parts = m.group(1).lower().split()
    if len(parts) >= 2:
        return pos(parts[0]), pos(parts[1])
    if parts and parts[0] in ("top", "bottom"):
        return 0.5, pos(parts[0])
    return (pos(parts[0]) if parts else 0.5), 0.5


def _radial_scale(raw: str):
    m = _RADIAL_SHAPE_RE.search(raw)
    shape = m.group(1).strip().lower() if m else ""
    scale_x = scale_y = 1.0
    for keyword, extent in RADIAL_EXTENTS.items():
        if keyword in shape:
            scale_x = scale_y = extent
            break

    size = _RADIAL_SIZE_RE.search(shape)
    if size:
        first = float(size.group(1))
        second = float(size.group(3)) if size.group(3) else first
        divisor = 100 if size.group(2) == "%" else 200
        scale_x, scale_y = first / divisor, second / divisor
    return scale_x, scale_y


def parse_gradient(raw):
    """CSS linear/radial gradient → canvas gradient paint, or None."""
    if not raw or not isinstance(raw, str):
        return None
    stops, opacity = gradient_stops(raw)
    if len(stops) < 2:
        return None

    if "radial-gradient" in raw:
        x, y = _radial_position(raw)
        sx, sy = _radial_scale(raw)
        return {
            "type": "GRADIENT_RADIAL",
            "gradientStops": stops,
            "gradientTransform": [[sx, 0.0, x - sx / 2], [0.0, sy, y - sy / 2]],
            "opacity": opacity,
        }

    if "linear-gradient" in raw:
        return {
            "type": "GRADIENT_LINEAR",
            "gradientStops": stops,
            "gradientTransform": angle_to_gradient_transform(linear_gradient_angle(raw)),
            "opacity": opacity,
        }

    return None
