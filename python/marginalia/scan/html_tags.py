"""
Sub-scanner for HTML highlight markup: <mark>, <span style="background:...">
and <font color="...">.

Candidate spans are located with a regex and each fragment is then parsed with
lxml so attribute quoting, entities and nested markup are handled by a real
HTML parser rather than by hand.
"""

import re
from typing import List, Optional, Sequence, Tuple

import structlog
from lxml import etree
from lxml import html as lxml_html

from marginalia.models import AnnotationKind, Candidate, Range
from marginalia.scan.exclusions import overlaps_any

logger = structlog.get_logger(__name__)

HTML_TAG_REGEX = re.compile(r"<(span|font|mark)\b[^>]*>(.*?)</\1\s*>", re.IGNORECASE | re.DOTALL)

BACKGROUND_STYLE_REGEX = re.compile(r"background(?:-color)?\s*:\s*([^;]+)", re.IGNORECASE)
RGB_REGEX = re.compile(r"rgba?\s*\(\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)", re.IGNORECASE)
HEX_REGEX = re.compile(r"^#([0-9a-f]{3}|[0-9a-f]{6})$", re.IGNORECASE)

NAMED_COLORS = {
    "yellow": "#ffff00",
    "red": "#ff0000",
    "green": "#008000",
    "blue": "#0000ff",
    "orange": "#ffa500",
    "purple": "#800080",
    "pink": "#ffc0cb",
    "cyan": "#00ffff",
    "magenta": "#ff00ff",
    "lime": "#00ff00",
    "brown": "#a52a2a",
    "gray": "#808080",
    "grey": "#808080",
    "black": "#000000",
    "white": "#ffffff",
}


def parse_html_color(value: Optional[str]) -> Optional[str]:
    """
    Normalises a named, hex or rgb()/rgba() color to lowercase 6-digit hex.
    Returns None for anything else.
    """
    if not value:
        return None

    color = value.strip().lower()
    if color.endswith("!important"):
        color = color[: -len("!important")].strip()

    if color in NAMED_COLORS:
        return NAMED_COLORS[color]

    if HEX_REGEX.match(color):
        if len(color) == 4:
            return "#" + "".join(ch * 2 for ch in color[1:])
        return color

    rgb = RGB_REGEX.match(color)
    if rgb:
        channels = [min(int(c), 255) for c in rgb.groups()]
        return "#" + "".join(f"{c:02x}" for c in channels)

    return None


def _element_colors(element) -> Tuple[Optional[str], Optional[str]]:
    """
    Returns (background, font) colors declared on the element itself.
    Colors on nested elements belong to those elements, not to the highlight.
    """
    background = None
    bg_match = BACKGROUND_STYLE_REGEX.search(element.get("style") or "")
    if bg_match:
        background = parse_html_color(bg_match.group(1))

    font = None
    if element.tag.lower() == "font":
        font = parse_html_color(element.get("color"))

    return background, font


def parse_html_fragment(fragment: str) -> Optional[Tuple[str, str, Optional[str]]]:
    """
    Parses one matched tag. Returns (tag, text, color) or None when the markup
    is not a highlight: unparseable, empty, a span without a background or a
    font without a usable color.
    """
    try:
        element = lxml_html.fragment_fromstring(fragment)
    except (etree.ParserError, ValueError) as e:
        logger.debug("Skipping unparseable HTML fragment", fragment=fragment[:80], error=str(e))
        return None

    tag = element.tag.lower()
    text = str(element.text_content())
    if not text or not text.strip():
        return None

    background, font = _element_colors(element)

    if tag == "span":
        if background is None:
            return None
        return tag, text, background

    if tag == "font":
        color = background or font
        if color is None:
            return None
        return tag, text, color

    # <mark> is a highlight even when it names no color.
    return tag, text, background or font


def parse_html_highlights(text: str, ranges: Sequence[Range] = ()) -> List[Candidate]:
    """
    A rejected or excluded outer tag is not consumed: the search resumes just
    after its opening tag so highlights nested inside it are still found.
    """
    candidates: List[Candidate] = []
    pos = 0

    while True:
        match = HTML_TAG_REGEX.search(text, pos)
        if match is None:
            break

        parsed = None
        if not overlaps_any(match.start(), match.end(), ranges):
            parsed = parse_html_fragment(match.group(0))
        if parsed is None:
            pos = match.start(2)
            continue
        pos = match.end()

        tag, content, color = parsed
        candidates.append(
            Candidate(
                kind=AnnotationKind.HTML,
                match_start=match.start(),
                match_end=match.end(),
                text=content,
                color=color,
                source=tag,
            )
        )

    return candidates
