"""Rule-based visual role inference.

Roles are decided by an ordered list of ``RoleRule``s; the first rule whose
predicate matches a node wins and ``unknown`` is the fallback.
"""

import re
from typing import Callable, NamedTuple

from pagelens.models import DomNode, iter_nodes

ROLES = ("header", "nav", "hero", "section", "content", "card", "footer", "layout", "unknown")

MEANINGFUL_TEXT_LENGTH = 20
HERO_MIN_HEIGHT_PX = 400
SECTION_MIN_PADDING_PX = 30


class RoleRule(NamedTuple):
    name: str
    role: str
    matches: Callable[[DomNode], bool]


def _leading_number(value: str | None) -> int:
    if not value:
        return 0
    match = re.search(r"(\d+)", value)
    return int(match.group(1)) if match else 0


def _has_hint(node: DomNode, hints: tuple) -> bool:
    class_name = (node.class_name or "").lower()
    node_id = (node.id or "").lower()
    return any(hint in class_name or hint in node_id for hint in hints)


def _has_direct_content(node: DomNode) -> bool:
    return len(node.text) > MEANINGFUL_TEXT_LENGTH or bool(node.images)


def _tag_rule(tag: str, role: str) -> RoleRule:
    return RoleRule(f"tag:{tag}", role, lambda node: node.tag == tag)


def _hint_rule(role: str, *hints: str) -> RoleRule:
    return RoleRule(f"hint:{role}", role, lambda node: _has_hint(node, hints))


def _is_pinned_header(node: DomNode) -> bool:
    if node.css.get("position") not in ("fixed", "sticky"):
        return False
    return node.depth == 0 or node.css.get("top") in ("0", "0px")


def _is_layout_container(node: DomNode) -> bool:
    return (
        node.css.get("display") in ("flex", "grid")
        and node.is_container
        and not _has_direct_content(node)
    )


def _is_hero_block(node: DomNode) -> bool:
    if node.depth > 1:
        return False
    height = node.css.get("height") or node.css.get("min-height")
    if height and ("vh" in height or _leading_number(height) > HERO_MIN_HEIGHT_PX):
        return True
    return bool(node.css.get("background-image")) and node.css.get("background-size") == "cover"


def _is_content_leaf(node: DomNode) -> bool:
    return _has_direct_content(node) and not node.is_container


def _is_styled_section(node: DomNode) -> bool:
    if not node.is_container:
        return False
    bg = node.css.get("background") or node.css.get("background-color")
    if bg and bg not in ("transparent", "inherit"):
        return True
    padding = sum(_leading_number(node.css.get(p)) for p in ("padding", "padding-top", "padding-bottom"))
    return padding > SECTION_MIN_PADDING_PX


ROLE_RULES = [
    _tag_rule("header", "header"),
    _tag_rule("footer", "footer"),
    _tag_rule("nav", "nav"),
    _tag_rule("main", "section"),
    _tag_rule("article", "content"),
    _tag_rule("aside", "section"),
    _hint_rule("header", "header", "masthead", "top-bar"),
    _hint_rule("footer", "footer", "bottom"),
    _hint_rule("nav", "nav", "menu", "navigation"),
    _hint_rule("hero", "hero", "banner", "jumbotron", "splash"),
    _hint_rule("card", "card", "tile", "item", "feature"),
    RoleRule("pinned-header", "header", _is_pinned_header),
    RoleRule("layout-container", "layout", _is_layout_container),
    RoleRule("hero-block", "hero", _is_hero_block),
    RoleRule("content-leaf", "content", _is_content_leaf),
    RoleRule("styled-section", "section", _is_styled_section),
    RoleRule("root", "section", lambda node: node.depth == 0),
]


def infer_role(node: DomNode, rules: list[RoleRule] = ROLE_RULES) -> str:
    for rule in rules:
        if rule.matches(node):
            return rule.role
    return "unknown"


def infer_roles(tree: list[DomNode], rules: list[RoleRule] = ROLE_RULES) -> dict[int, str]:
    """Map every node's document order to its inferred role."""
    return {node.order: infer_role(node, rules) for node in iter_nodes(tree)}
