import logging
from contextlib import asynccontextmanager

from Services.canvas import CanvasError, FontName
from Services.style_map import font_style_for_weight, font_weight_value

logger = logging.getLogger(__name__)

FALLBACK_FONT = FontName("Inter", "Regular")
FALLBACK_FONT_BOLD = FontName("Inter", "Bold")
FALLBACK_SERIF = FontName("Georgia", "Regular")
FALLBACK_MONO = FontName("Roboto Mono", "Regular")

GENERIC_FAMILIES = {"serif", "sans-serif", "monospace", "cursive", "fantasy", "system-ui"}

# web font (lowercase) → family the canvas is likely to have
FONT_MAP = {
    "-apple-system": "SF Pro Text",
    "blinkmacsystemfont": "SF Pro Text",
    "segoe ui": "Inter",
    "arial": "Inter",
    "helvetica": "Helvetica Neue",
    "helvetica neue": "Helvetica Neue",
    "verdana": "Inter",
    "tahoma": "Inter",
    "avenir": "Inter",
    "futura": "Inter",
    "calibri": "Inter",
    "times": "Times New Roman",
    "times new roman": "Times New Roman",
    "georgia": "Georgia",
    "palatino": "Georgia",
    "garamond": "Georgia",
    "cambria": "Georgia",
    "courier": "Courier New",
    "courier new": "Courier New",
    "consolas": "Roboto Mono",
    "monaco": "Roboto Mono",
    "menlo": "Roboto Mono",
    "sf mono": "Roboto Mono",
    "fira code": "Roboto Mono",
    "jetbrains mono": "Roboto Mono",
    "source code pro": "Roboto Mono",
    "roboto": "Roboto",
    "open sans": "Open Sans",
    "lato": "Lato",
    "montserrat": "Montserrat",
    "poppins": "Poppins",
}

_SERIF_HINTS = ("serif", "times", "georgia", "garamond", "baskerville", "bodoni",
                "palatino", "cambria", "antiqua", "merriweather", "playfair", "didot")
_MONO_HINTS = ("mono", "code", "console", "courier", "terminal")


def parse_font_family(font_family: str) -> str:
    """First usable family of a CSS font-family list, mapped when known."""
    if not font_family:
        return FALLBACK_FONT.family
    for part in font_family.split(","):
        font = part.strip().strip("\"'")
        lower = font.lower()
        if not font or lower in GENERIC_FAMILIES:
            continue
        return FONT_MAP.get(lower, font)
    return FALLBACK_FONT.family


def detect_font_category(name: str) -> str:
    lower = (name or "").lower()
    # "sans-serif" contains "serif"
    if "sans" in lower:
        return "sans-serif"
    if any(h in lower for h in _MONO_HINTS):
        return "monospace"
    if any(h in lower for h in _SERIF_HINTS):
        return "serif"
    return "sans-serif"


def category_fallback(original: str, weight) -> FontName:
    category = detect_font_category(original)
    bold = font_weight_value(weight) >= 600
    if category == "serif":
        return FontName(FALLBACK_SERIF.family, "Bold" if bold else "Regular")
    if category == "monospace":
        return FontName(FALLBACK_MONO.family, "Bold" if bold else "Regular")
    return FALLBACK_FONT_BOLD if bold else FALLBACK_FONT


def font_candidates(family: str, weight, original: str = "") -> list:
    bold = font_weight_value(weight) >= 600
    styles = [font_style_for_weight(weight)]
    if bold:
        styles += ["Bold", "SemiBold"]
    styles += ["Regular", "Medium"]

    families = [family]
    mapped = FONT_MAP.get(family.lower())
    if mapped and mapped != family:
        families.append(mapped)

    out = []
    for fam in families:
        for style in styles:
            font = FontName(fam, style)
            if font not in out:
                out.append(font)
    for font in (category_fallback(original or family, weight), FALLBACK_FONT_BOLD if bold else FALLBACK_FONT):
        if font not in out:
            out.append(font)
    return out


async def load_font_with_fallback(document, family: str, weight, original: str = "") -> FontName:
    candidates = font_candidates(family, weight, original)
    for font in candidates:
        try:
            await document.load_font(font)
        except CanvasError:
            continue
        if font != candidates[0]:
            logger.debug("[FONT] %s unavailable, using %s", candidates[0], font)
        return font
    raise CanvasError(f'No loadable font for "{family}" (weight {weight})')


@asynccontextmanager
async def font_scope(document, font_family: str = "", font_weight="400"):
    """Load and hold a font for the duration of a text write."""
    family = parse_font_family(font_family)
    font = await load_font_with_fallback(document, family, font_weight, original=font_family)
    document.hold_font(font)
    try:
        yield font
    finally:
        document.release_font(font)
