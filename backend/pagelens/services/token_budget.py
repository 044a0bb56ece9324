"""Tier-based reduction of a ParsedPage to fit a token ceiling.

Reduction runs in a fixed order: root breadth, per-node text and property
caps, CSS value compression, auxiliary collections, then the token check.
Every step saturates, so reducing an already-reduced page changes nothing.
"""

import math
import logging
from dataclasses import fields, replace

from pagelens.errors import InvalidInput, PayloadTooLarge
from pagelens.models import BudgetResult, DomNode, ParsedPage, StructuralAnalysis, TokenBudgetConfig, iter_nodes, map_tree
from pagelens.services.summary import build_ir, serialize_ir

logger = logging.getLogger(__name__)

UNLIMITED = -1
CHARS_PER_TOKEN = 4

TIER_CONFIGS = {
    "free": TokenBudgetConfig(
        max_tokens=2000,
        max_css_classes=10,
        max_css_properties_per_node=10,
        max_colors=5,
        max_images=5,
        max_root_nodes=5,
        max_nav_items=5,
        max_text_chars_per_node=100,
        include_css_details=True,
        include_all_metadata=False,
        compress_css_values=True,
        css_dictionary_min_occurrences=3,
    ),
    "basic": TokenBudgetConfig(
        max_tokens=5000,
        max_css_classes=30,
        max_css_properties_per_node=20,
        max_colors=15,
        max_images=15,
        max_root_nodes=15,
        max_nav_items=10,
        max_text_chars_per_node=150,
        include_css_details=True,
        include_all_metadata=False,
        compress_css_values=True,
        css_dictionary_min_occurrences=3,
    ),
    "pro": TokenBudgetConfig(
        max_tokens=15000,
        max_css_classes=100,
        max_css_properties_per_node=UNLIMITED,
        max_colors=30,
        max_images=30,
        max_root_nodes=30,
        max_nav_items=20,
        max_text_chars_per_node=200,
        include_css_details=True,
        include_all_metadata=True,
        compress_css_values=True,
        css_dictionary_min_occurrences=3,
    ),
    "enterprise": TokenBudgetConfig(
        max_tokens=50000,
        max_css_classes=UNLIMITED,
        max_css_properties_per_node=UNLIMITED,
        max_colors=UNLIMITED,
        max_images=UNLIMITED,
        max_root_nodes=UNLIMITED,
        max_nav_items=UNLIMITED,
        max_text_chars_per_node=UNLIMITED,
        include_css_details=True,
        include_all_metadata=True,
        compress_css_values=False,
        css_dictionary_min_occurrences=3,
    ),
}

# Kept when a class is reduced to its essentials
ESSENTIAL_CSS_PROPERTIES = [
    "display", "position", "width", "height", "max-width", "max-height",
    "padding", "margin", "background", "background-color", "color",
    "font-size", "font-family", "font-weight",
    "flex", "grid", "grid-template-columns",
    "border", "border-radius",
]

# Per-node property cap keeps these first, in this order
PROPERTY_PRIORITY = [
    # positioning
    "position", "top", "left", "right", "bottom", "z-index",
    # color
    "background-color", "background", "color", "border-color",
    # layout system
    "display", "flex-direction", "grid-template-columns", "align-items", "justify-content",
    # spacing
    "padding", "margin", "gap", "width", "height", "max-width",
    # decoration
    "border", "border-radius", "box-shadow", "opacity", "transform", "backdrop-filter",
]

POSITION_PROPERTIES = {"position", "top", "left", "right", "bottom", "z-index", "float", "clear"}
SPACING_PROPERTIES = {
    "gap", "row-gap", "column-gap", "grid-gap",
    "width", "height", "min-width", "min-height", "max-width", "max-height",
}
DISPLAY_PREFIXES = ("flex", "grid", "align-", "justify-", "place-")

_FIELD_BY_KEY = {f.name.replace("_", "").lower(): f.name for f in fields(TokenBudgetConfig)}
BUDGET_TOGGLES = {"include_css_details", "include_all_metadata", "compress_css_values"}


def _limited(limit: int) -> bool:
    return limit != UNLIMITED


# ─── Config resolution ─────────────────────────────────────────────────────

def _check_budget_value(key: str, name: str, value):
    if name in BUDGET_TOGGLES:
        if not isinstance(value, bool):
            raise InvalidInput(f"Budget option {key} must be true or false")
        return value
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInput(f"Budget option {key} must be an integer")
    if name in ("max_tokens", "css_dictionary_min_occurrences"):
        if value < 1:
            raise InvalidInput(f"Budget option {key} must be at least 1")
    elif value < 0 and value != UNLIMITED:
        raise InvalidInput(f"Budget option {key} must be {UNLIMITED} (unlimited) or a non-negative integer")
    return value


def resolve_budget(tier: str | None = None, custom_budget: dict | None = None) -> TokenBudgetConfig | None:
    """Pick the effective budget; None means no reduction at all.

    A custom budget is layered over ``free`` and wins over ``tier``. Keys may
    be snake_case or camelCase (``max_tokens`` / ``maxTokens``).
    """
    if custom_budget:
        overrides = {}
        for key, value in custom_budget.items():
            name = _FIELD_BY_KEY.get(key.replace("_", "").lower())
            if name is None:
                raise InvalidInput(f"Unknown budget option: {key}")
            overrides[name] = _check_budget_value(key, name, value)
        return replace(TIER_CONFIGS["free"], **overrides)
    if tier is None:
        return None
    if tier not in TIER_CONFIGS:
        raise InvalidInput(f"Unknown tier '{tier}'. Expected one of: {', '.join(TIER_CONFIGS)}")
    return TIER_CONFIGS[tier]


# ─── Truncation ────────────────────────────────────────────────────────────

def truncate_root_nodes(tree: list[DomNode], max_root_nodes: int) -> list[DomNode]:
    return tree[:max_root_nodes] if _limited(max_root_nodes) else list(tree)


def truncate_text(text: str, max_chars: int) -> str:
    return text[:max_chars] if _limited(max_chars) else text


def prioritize_css_properties(css: dict, max_properties: int) -> dict:
    """Keep at most ``max_properties`` entries, highest visual priority first.

    Properties outside PROPERTY_PRIORITY follow in their existing order.
    """
    if not _limited(max_properties) or len(css) <= max_properties:
        return dict(css)
    ordered = [prop for prop in PROPERTY_PRIORITY if prop in css]
    ordered += [prop for prop in css if prop not in PROPERTY_PRIORITY]
    return {prop: css[prop] for prop in ordered[:max_properties]}


def truncate_nodes(tree: list[DomNode], config: TokenBudgetConfig) -> list[DomNode]:
    return map_tree(tree, lambda node: replace(
        node,
        text=truncate_text(node.text, config.max_text_chars_per_node),
        css=prioritize_css_properties(node.css, config.max_css_properties_per_node),
        children=[],
    ))


def truncate_images(images: list[dict], max_images: int) -> list[dict]:
    """Images with alt text first (stable), then cut to ``max_images``."""
    if not _limited(max_images):
        return list(images)
    ranked = sorted(images, key=lambda img: not img.get("alt"))
    return ranked[:max_images]


def simplify_css_class(entry: dict) -> dict:
    props = entry["properties"]
    return {**entry, "properties": {p: props[p] for p in ESSENTIAL_CSS_PROPERTIES if p in props}}


def truncate_css_classes(classes: list[dict], max_classes: int, include_details: bool = True) -> list[dict]:
    """Rank classes by property count (descending, stable) and keep the top ones."""
    if not include_details:
        classes = [simplify_css_class(entry) for entry in classes]
    ranked = sorted(classes, key=lambda entry: len(entry["properties"]), reverse=True)
    return ranked[:max_classes] if _limited(max_classes) else ranked


def truncate_list(items: list, limit: int) -> list:
    return items[:limit] if _limited(limit) else list(items)


def scope_structural(structural: StructuralAnalysis | None, orders: set[int]) -> StructuralAnalysis | None:
    """Restrict node-level analysis (roles, section candidates) to ``orders``."""
    if structural is None:
        return None
    roles = structural.roles
    if roles is not None:
        roles = {order: role for order, role in roles.items() if order in orders}
    return replace(
        structural,
        section_candidates=tuple(order for order in structural.section_candidates if order in orders),
        roles=roles,
    )


def reduce_metadata(metadata: dict, include_all: bool) -> dict:
    if include_all:
        return metadata
    return {
        "title": metadata.get("title"),
        "description": metadata.get("description"),
        "ogTags": {},
    }


# ─── CSS value dictionary ──────────────────────────────────────────────────

def css_category(prop: str) -> str:
    """One-letter ID prefix: color, display, position, spacing, other."""
    if "color" in prop:
        return "c"
    if prop == "display" or prop.startswith(DISPLAY_PREFIXES):
        return "d"
    if prop in POSITION_PROPERTIES:
        return "p"
    if prop.startswith(("padding", "margin")) or prop in SPACING_PROPERTIES:
        return "s"
    return "o"


def build_css_value_dictionary(tree: list[DomNode], min_occurrences: int) -> tuple[dict, dict]:
    """Count (property, value) pairs and give the frequent ones short IDs.

    Returns ``(dictionary, ids)`` where ``dictionary`` maps ID -> value and
    ``ids`` maps (property, value) -> ID. IDs go out by descending count,
    first-seen order breaking ties, numbered per category (``$c1``, ``$s1``...).
    """
    counts: dict[tuple[str, str], int] = {}
    for node in iter_nodes(tree):
        for pair in node.css.items():
            counts[pair] = counts.get(pair, 0) + 1

    frequent = [pair for pair, count in counts.items() if count >= min_occurrences]
    # dicts keep insertion order, so a stable sort preserves first-seen ties
    frequent.sort(key=lambda pair: counts[pair], reverse=True)

    dictionary: dict[str, str] = {}
    ids: dict[tuple[str, str], str] = {}
    counters: dict[str, int] = {}
    for prop, value in frequent:
        prefix = css_category(prop)
        counters[prefix] = counters.get(prefix, 0) + 1
        ref = f"${prefix}{counters[prefix]}"
        dictionary[ref] = value
        ids[(prop, value)] = ref
    return dictionary, ids


def compress_css_values(tree: list[DomNode], ids: dict) -> list[DomNode]:
    return map_tree(tree, lambda node: replace(
        node,
        css={prop: ids.get((prop, value), value) for prop, value in node.css.items()},
        children=[],
    ))


def expand_css_values(tree: list[DomNode], dictionary: dict | None) -> list[DomNode]:
    """Replace dictionary IDs with their literal values."""
    if not dictionary:
        return tree
    return map_tree(tree, lambda node: replace(
        node,
        css={prop: dictionary.get(value, value) for prop, value in node.css.items()},
        children=[],
    ))


# ─── Estimation and entry point ────────────────────────────────────────────

def estimate_tokens(ir: dict) -> int:
    return math.ceil(len(serialize_ir(ir)) / CHARS_PER_TOKEN)


def apply_token_budget(
    page: ParsedPage,
    tier: str | None = None,
    custom_budget: dict | None = None,
    structural: StructuralAnalysis | None = None,
) -> BudgetResult:
    """Reduce ``page`` to the selected budget and enforce its token ceiling.

    With neither ``tier`` nor ``custom_budget`` the page is returned as-is.
    Raises PayloadTooLarge when the reduced IR is still over ``max_tokens``.
    """
    config = resolve_budget(tier, custom_budget)
    full_tokens = estimate_tokens(build_ir(page, structural))
    if config is None:
        return BudgetResult(
            page=page, tier=None, estimated_tokens=full_tokens, was_reduced=False, structural=structural
        )

    label = "custom" if custom_budget else tier

    tree = expand_css_values(page.tree, page.css_value_dictionary)
    tree = truncate_root_nodes(tree, config.max_root_nodes)
    tree = truncate_nodes(tree, config)

    dictionary = None
    if config.compress_css_values:
        dictionary, ids = build_css_value_dictionary(tree, config.css_dictionary_min_occurrences)
        tree = compress_css_values(tree, ids)

    css_info = dict(page.css_info)
    css_info["classes"] = truncate_css_classes(
        page.css_info.get("classes", []), config.max_css_classes, config.include_css_details
    )

    reduced = replace(
        page,
        tree=tree,
        navigation=truncate_list(page.navigation, config.max_nav_items),
        images=truncate_images(page.images, config.max_images),
        colors=truncate_list(page.colors, config.max_colors),
        metadata=reduce_metadata(page.metadata, config.include_all_metadata),
        css_info=css_info,
        css_value_dictionary=dictionary or None,
    )
    # node-level analysis only describes nodes still in the tree
    scoped = scope_structural(structural, {node.order for node in iter_nodes(tree)})

    estimated = estimate_tokens(build_ir(reduced, scoped))
    logger.info(
        f"[budget] tier={label}: {full_tokens} → {estimated} tokens "
        f"(limit {config.max_tokens}), {len(dictionary or {})} dictionary entries"
    )
    if estimated > config.max_tokens:
        raise PayloadTooLarge(
            f"Estimated {estimated} tokens exceeds the {label} tier limit of {config.max_tokens}"
        )
    return BudgetResult(
        page=reduced,
        tier=label,
        estimated_tokens=estimated,
        was_reduced=estimated < full_tokens,
        structural=scoped,
    )
