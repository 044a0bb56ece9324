"""Deterministic structural analysis of an extracted page. No AI involved.

Everything here is a pure function of the ParsedPage; the same page always
produces the same StructuralAnalysis.
"""

import re
import logging

from pagelens.models import DomNode, ParsedPage, StructuralAnalysis, iter_nodes, iter_with_parent
from pagelens.services.collectors import count_form_fields, has_nested_navigation
from pagelens.services.roles import infer_roles as infer_node_roles

logger = logging.getLogger(__name__)

SECTION_SCORE_THRESHOLD = 40
ROOT_FONT_SIZE_PX = 16
SIGNIFICANT_SPACING_PX = 20

SPACING_PROPERTIES = (
    "padding", "padding-top", "padding-right", "padding-bottom", "padding-left",
    "margin", "margin-top", "margin-right", "margin-bottom", "margin-left",
)
EMPTY_BACKGROUNDS = ("transparent", "inherit", "none")

LAYOUT_ROLE_POINTS = {
    "grid": 25,
    "flex-column": 20,
    "flex-row": 15,
    "container": 5,
}

_LENGTH_RE = re.compile(r"(-?\d*\.?\d+)(px|rem|em)?(?![\w%])")


# ─── Layout type ───────────────────────────────────────────────────────────

def is_grid_container(node: DomNode) -> bool:
    if node.css.get("display") in ("grid", "inline-grid"):
        return True
    class_name = (node.class_name or "").lower()
    return "grid" in class_name or "cols-" in class_name


def is_flex_container(node: DomNode) -> bool:
    return not is_grid_container(node) and node.css.get("display") in ("flex", "inline-flex")


def detect_layout_type(tree: list[DomNode]) -> str:
    containers = [node for node in iter_nodes(tree) if node.is_container]
    if not containers:
        return "single-column"

    grid = [node for node in containers if is_grid_container(node)]
    flex = [node for node in containers if is_flex_container(node)]
    grid_ratio = len(grid) / len(containers)
    flex_ratio = len(flex) / len(containers)

    if grid_ratio > 0.2:
        return "grid"
    if flex_ratio > 0.3 and grid_ratio < 0.1 and any(len(node.children) == 2 for node in flex):
        return "two-column"
    if grid_ratio > 0.1 or flex_ratio > 0.2:
        return "mixed"
    return "single-column"


# ─── Section scoring ───────────────────────────────────────────────────────

def layout_role(css: dict) -> str:
    display = css.get("display", "")
    if display in ("grid", "inline-grid"):
        return "grid"
    if display in ("flex", "inline-flex"):
        return "flex-column" if "column" in css.get("flex-direction", "row") else "flex-row"
    if css.get("position") == "absolute":
        return "absolute-positioned"
    if display in ("inline", "inline-block"):
        return "inline"
    return "container"


def background_value(css: dict) -> str | None:
    return css.get("background-color") or css.get("background")


def _to_px(number: str, unit: str | None) -> float:
    value = float(number)
    if unit in ("rem", "em"):
        return value * ROOT_FONT_SIZE_PX
    return value


def has_significant_spacing(css: dict) -> bool:
    """True when any padding/margin side is at least 20px (rem/em at 16px)."""
    for prop in SPACING_PROPERTIES:
        value = css.get(prop)
        if not value:
            continue
        for number, unit in _LENGTH_RE.findall(value):
            if _to_px(number, unit) >= SIGNIFICANT_SPACING_PX:
                return True
    return False


def _z_index(css: dict) -> int:
    match = re.match(r"\s*(-?\d+)", css.get("z-index", ""))
    return int(match.group(1)) if match else 0


def section_score(node: DomNode, parent_background: str | None) -> int:
    """Additive 0-100 score of how much a node looks like a page section."""
    css = node.css
    score = 0

    bg = background_value(css)
    bg_color = css.get("background-color")
    bg_image = css.get("background-image")
    has_bg_color = bool(bg_color) and bg_color not in EMPTY_BACKGROUNDS
    has_bg_image = (bool(bg_image) and bg_image != "none") or "url(" in css.get("background", "")
    if bg and bg != parent_background and bg not in EMPTY_BACKGROUNDS:
        score += 30
    elif has_bg_color or has_bg_image:
        score += 15

    score += LAYOUT_ROLE_POINTS.get(layout_role(css), 0)

    position = css.get("position")
    if position == "relative":
        score += 15
    elif position in ("absolute", "fixed"):
        score += 10

    if _z_index(css) > 0:
        score += 10

    if has_significant_spacing(css):
        score += 10

    if node.depth <= 3:
        score += 10
    elif node.depth <= 5:
        score += 5

    return min(100, score)


def find_section_candidates(tree: list[DomNode], root_background: str | None = None) -> list[int]:
    """Orders of nodes scoring at least SECTION_SCORE_THRESHOLD, in document order.

    A node's effective background is its own, else its parent's; root nodes
    inherit ``root_background``.
    """
    effective: dict[int, str | None] = {}
    candidates = []
    for node, parent in iter_with_parent(tree):
        parent_bg = effective[parent.order] if parent is not None else root_background
        effective[node.order] = background_value(node.css) or parent_bg
        if section_score(node, parent_bg) >= SECTION_SCORE_THRESHOLD:
            candidates.append(node.order)
    return candidates


def max_tree_depth(tree: list[DomNode]) -> int:
    return max((node.depth for node in iter_nodes(tree)), default=0)


# ─── Density and difficulty ────────────────────────────────────────────────

def content_density(page: ParsedPage, node_count: int, section_count: int) -> str:
    score = 0

    text_length = len(page.raw_text_content)
    if text_length > 3000:
        score += 3
    elif text_length > 1500:
        score += 2
    elif text_length > 500:
        score += 1

    if len(page.images) > 15:
        score += 2
    elif len(page.images) > 5:
        score += 1

    if len(page.forms) > 2:
        score += 2
    elif len(page.forms) > 0:
        score += 1

    if node_count > 100 or section_count > 10:
        score += 2
    elif node_count > 50 or section_count > 5:
        score += 1

    if len(page.ctas) > 5:
        score += 1

    if score >= 7:
        return "high"
    if score >= 4:
        return "medium"
    return "low"


def difficulty(page: ParsedPage, layout_type: str, node_count: int, max_depth: int) -> tuple[str, str]:
    """Score build difficulty; returns ``(level, reason)``.

    The reason lists the first three contributing factors in evaluation order.
    """
    score = 0
    reasons = []

    def add(points: int, reason: str) -> None:
        nonlocal score
        score += points
        reasons.append(reason)

    if node_count > 300:
        add(3, "large DOM")
    elif node_count > 150:
        add(2, "moderate DOM size")
    elif node_count > 50:
        add(1, "several nodes")

    if max_depth > 10:
        add(2, "deep nesting")
    elif max_depth > 6:
        add(1, "nested structure")

    if layout_type in ("grid", "mixed"):
        add(2, "complex layout")
    elif layout_type == "two-column":
        add(1, "two-column layout")

    if page.forms:
        fields = count_form_fields(page.forms)
        if fields > 10:
            add(3, "complex forms")
        elif fields > 5:
            add(2, "forms present")
        else:
            add(1, "simple form")

    if has_nested_navigation(page.navigation):
        add(1, "dropdown menus")

    if page.embeds:
        add(1, "embedded content")

    if len(page.ctas) > 5:
        add(1, "many calls to action")

    if page.footer and len(page.footer.get("columns", [])) > 3:
        add(1, "detailed footer")

    if score >= 8:
        level = "hard"
    elif score >= 4:
        level = "medium"
    else:
        level = "easy"

    if reasons:
        reason = ", ".join(reasons[:3])
    else:
        reason = "simple structure" if level == "easy" else "moderate complexity"
    return level, reason


# ─── Entry point ───────────────────────────────────────────────────────────

def analyze_structure(page: ParsedPage, infer_roles: bool = False) -> StructuralAnalysis:
    tree = page.tree
    node_count = sum(1 for _ in iter_nodes(tree))
    depth = max_tree_depth(tree)
    layout_type = detect_layout_type(tree)
    candidates = find_section_candidates(tree, page.root_background)
    density = content_density(page, node_count, len(candidates))
    level, reason = difficulty(page, layout_type, node_count, depth)

    roles = infer_node_roles(tree)
    has_hero = any(role == "hero" for role in roles.values())
    has_navigation = bool(page.navigation) or any(role == "nav" for role in roles.values())

    analysis = StructuralAnalysis(
        layout_type=layout_type,
        section_count=len(candidates),
        content_density=density,
        difficulty=level,
        difficulty_reason=reason,
        node_count=node_count,
        root_node_count=len(tree),
        max_depth=depth,
        section_candidates=tuple(candidates),
        has_hero=has_hero,
        has_navigation=has_navigation,
        has_footer=page.footer is not None,
        roles=roles if infer_roles else None,
    )
    logger.info(
        f"[analyze] layout={layout_type}, sections={len(candidates)}, density={density}, "
        f"difficulty={level} ({reason})"
    )
    return analysis
