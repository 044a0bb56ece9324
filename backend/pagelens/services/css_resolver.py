"""CSS parsing and per-element resolution.

There is no selector engine here. A stylesheet is reduced to a class
dictionary (class name -> declared properties, with media-query variants kept
as separate entries) and an element's effective CSS is the merge of its
classes' entries followed by its inline style.
"""

import re
import math
import logging

logger = logging.getLogger(__name__)

_COMMENT_RE = re.compile(r"/\*.*?\*/", re.S)
_TRAILING_CLASS_RE = re.compile(r"\.(-?[A-Za-z_][\w-]*)$")
_FONT_FAMILY_RE = re.compile(r"""^\s*['"]?([^'",]+)""")


def _split_declarations(block: str) -> list[str]:
    """Split a declaration block on ``;`` outside parentheses and quotes."""
    parts = []
    buf = []
    depth = 0
    quote = None
    for ch in block:
        if quote:
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(0, depth - 1)
        elif ch == ";" and depth == 0:
            parts.append("".join(buf))
            buf = []
            continue
        buf.append(ch)
    if buf:
        parts.append("".join(buf))
    return parts


def parse_inline_style(style: str | None) -> dict:
    """Parse ``prop: value; ...`` into a dict with lower-cased property names.

    Declarations without a colon, or with an empty name or value, are skipped.
    """
    props: dict[str, str] = {}
    if not style:
        return props
    for decl in _split_declarations(style):
        if ":" not in decl:
            continue
        name, value = decl.split(":", 1)
        name = name.strip().lower()
        value = value.strip()
        if name and value:
            props[name] = value
    return props


def resolve_css(class_names, class_dictionary: list[dict], inline_style: str | None = None) -> dict:
    """Merge class rules then inline rules into one property map.

    For each of the element's classes in order, every dictionary entry with a
    case-insensitively equal class name is copied in; later copies overwrite
    earlier ones. Inline declarations are applied last and always win.
    """
    resolved: dict[str, str] = {}
    if class_names:
        if isinstance(class_names, str):
            class_names = class_names.split()
        for name in class_names:
            wanted = name.lower()
            for entry in class_dictionary:
                if entry["className"].lower() == wanted:
                    resolved.update(entry["properties"])
    resolved.update(parse_inline_style(inline_style))
    return resolved


def _iter_blocks(css: str):
    """Yield ``(prelude, body)`` for each top-level ``prelude { body }`` block.

    Braces are matched so nested blocks (``@media``) come back whole. An
    unterminated block ends the scan.
    """
    pos = 0
    length = len(css)
    while pos < length:
        open_at = css.find("{", pos)
        if open_at == -1:
            return
        prelude = css[pos:open_at]
        # statements like @import/@charset end with ';' before the next block
        if ";" in prelude:
            prelude = prelude.rsplit(";", 1)[1]
        depth = 1
        i = open_at + 1
        while i < length and depth:
            if css[i] == "{":
                depth += 1
            elif css[i] == "}":
                depth -= 1
            i += 1
        if depth:
            logger.debug(f"[css] Unterminated block after {prelude.strip()[:40]!r}, skipping rest")
            return
        yield prelude.strip(), css[open_at + 1:i - 1]
        pos = i


def _add_rule(prelude: str, body: str, media_query: str | None, base: dict, media: dict) -> None:
    properties = parse_inline_style(body)
    if not properties:
        return
    for selector in prelude.split(","):
        match = _TRAILING_CLASS_RE.search(selector.strip())
        if not match:
            continue
        name = match.group(1)
        if media_query:
            entry = media.setdefault((name, media_query), {
                "className": name,
                "properties": {},
                "mediaQuery": media_query,
            })
        else:
            entry = base.setdefault(name, {"className": name, "properties": {}})
        entry["properties"].update(properties)


def parse_stylesheet(css: str) -> tuple[list[dict], list[str]]:
    """Build the class dictionary and the ``@font-face`` families from CSS text.

    Returns ``(classes, font_families)``. Base entries come first in order of
    first appearance, then media-scoped entries; a class declared twice in the
    same scope is merged with the later declaration winning.
    """
    css = _COMMENT_RE.sub("", css or "")
    base: dict = {}
    media: dict = {}
    font_families: list[str] = []

    for prelude, body in _iter_blocks(css):
        lowered = prelude.lower()
        if lowered.startswith("@media"):
            query = " ".join(prelude[len("@media"):].split())
            for inner_prelude, inner_body in _iter_blocks(body):
                if inner_prelude and not inner_prelude.startswith("@"):
                    _add_rule(inner_prelude, inner_body, f"@media {query}", base, media)
        elif lowered.startswith("@font-face"):
            family = parse_inline_style(body).get("font-family", "")
            match = _FONT_FAMILY_RE.match(family)
            if match and match.group(1).strip() not in font_families:
                font_families.append(match.group(1).strip())
        elif lowered.startswith("@"):
            continue
        elif prelude:
            _add_rule(prelude, body, None, base, media)

    return list(base.values()) + list(media.values()), font_families


# ─── Page-level CSS signals ────────────────────────────────────────────────

def detect_grid_columns(css: str) -> int | None:
    match = re.search(r"grid-template-columns:\s*repeat\((\d+)", css, re.I)
    if match:
        return int(match.group(1))
    match = re.search(r"grid-template-columns:\s*((?:[\d.]+fr\s*)+)", css, re.I)
    if match:
        return len(match.group(1).split())
    match = re.search(r"grid-template-columns:\s*((?:\d+px\s*)+)", css, re.I)
    if match:
        return len(match.group(1).split())
    return None


def _columns_from_percent(percent: float) -> int | None:
    if 0 < percent <= 50:
        # half-up, 100 / 40 is 3 columns
        return math.floor(100 / percent + 0.5)
    return None


def detect_flex_columns(css: str) -> int | None:
    match = re.search(r"flex-basis:\s*([\d.]+)%", css, re.I)
    if match:
        columns = _columns_from_percent(float(match.group(1)))
        if columns:
            return columns
    match = re.search(r"(?<![-\w])width:\s*(?:calc\(100%\s*/\s*(\d+)\)|([\d.]+)%)", css, re.I)
    if match:
        if match.group(1):
            return int(match.group(1))
        return _columns_from_percent(float(match.group(2)))
    return None


def detect_breakpoints(css: str) -> list[str]:
    widths = {int(w) for w in re.findall(r"@media[^{]*\((?:max|min)-width:\s*(\d+)px\)", css, re.I)}
    return [f"{w}px" for w in sorted(widths)]


def detect_responsive_grid(css: str) -> bool:
    return bool(re.search(r"@media[^{]*\{[^}]*grid-template-columns", css, re.I))


def build_css_info(css: str) -> tuple[dict, list[str]]:
    """Summarize all page CSS into the ``cssInfo`` collection."""
    classes, font_families = parse_stylesheet(css)
    stripped = _COMMENT_RE.sub("", css or "")
    info = {
        "gridColumns": detect_grid_columns(stripped),
        "flexColumns": detect_flex_columns(stripped),
        "breakpoints": detect_breakpoints(stripped),
        "hasResponsiveGrid": detect_responsive_grid(stripped),
        "classes": classes,
    }
    return info, font_families
