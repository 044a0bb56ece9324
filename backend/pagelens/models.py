from dataclasses import dataclass, field
from typing import Optional

LAYOUT_TYPES = ("single-column", "two-column", "grid", "mixed")
CONTENT_DENSITIES = ("low", "medium", "high")
DIFFICULTIES = ("easy", "medium", "hard")


@dataclass
class DomNode:
    """One element of the extracted tree.

    ``order`` is the pre-order document index shared across the whole tree,
    ``css`` the resolved (and visually filtered) property map, ``text`` the
    element's own text nodes only, ``images`` its directly-owned images.
    """
    tag: str
    order: int
    depth: int
    id: Optional[str] = None
    class_name: Optional[str] = None
    attributes: dict = field(default_factory=dict)
    css: dict = field(default_factory=dict)
    text: str = ""
    images: list = field(default_factory=list)
    children: list = field(default_factory=list)

    @property
    def is_container(self) -> bool:
        return len(self.children) > 0

    def to_dict(self) -> dict:
        """Serialize the subtree with the IR field names."""
        out = {"tag": self.tag, "order": self.order, "depth": self.depth}
        if self.id:
            out["id"] = self.id
        if self.class_name:
            out["className"] = self.class_name
        if self.attributes:
            out["attributes"] = dict(self.attributes)
        out["css"] = dict(self.css)
        out["text"] = self.text
        out["images"] = [dict(img) for img in self.images]
        out["isContainer"] = self.is_container
        out["children"] = [child.to_dict() for child in self.children]
        return out


def iter_nodes(tree: list):
    """Yield every node of ``tree`` in pre-order without recursion."""
    stack = list(reversed(tree))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def iter_with_parent(tree: list):
    """Yield ``(node, parent)`` pairs in pre-order; ``parent`` is None for roots."""
    stack = [(node, None) for node in reversed(tree)]
    while stack:
        node, parent = stack.pop()
        yield node, parent
        stack.extend((child, node) for child in reversed(node.children))


def map_tree(tree: list, transform) -> list:
    """Copy a tree without recursion.

    ``transform(node)`` returns the childless copy of one node; children are
    re-attached in their original order.
    """
    out: list = []
    stack = [(node, out) for node in reversed(tree)]
    while stack:
        node, siblings = stack.pop()
        copy = transform(node)
        siblings.append(copy)
        stack.extend((child, copy.children) for child in reversed(node.children))
    return out


@dataclass
class NormalizationResult:
    html: str
    fonts: list = field(default_factory=list)
    embeds: list = field(default_factory=list)
    css_info: dict = field(default_factory=dict)

    @property
    def css_classes(self) -> list:
        return self.css_info.get("classes", [])


@dataclass
class ParsedPage:
    tree: list
    total_nodes: int
    navigation: list = field(default_factory=list)
    forms: list = field(default_factory=list)
    images: list = field(default_factory=list)
    colors: list = field(default_factory=list)
    fonts: list = field(default_factory=list)
    ctas: list = field(default_factory=list)
    footer: Optional[dict] = None
    social_links: list = field(default_factory=list)
    embeds: list = field(default_factory=list)
    metadata: dict = field(default_factory=dict)
    language: str = "en"
    css_info: dict = field(default_factory=dict)
    raw_text_content: str = ""
    root_background: Optional[str] = None
    css_value_dictionary: Optional[dict] = None


@dataclass(frozen=True)
class StructuralAnalysis:
    layout_type: str
    section_count: int
    content_density: str
    difficulty: str
    difficulty_reason: str
    node_count: int = 0
    root_node_count: int = 0
    max_depth: int = 0
    section_candidates: tuple = ()
    has_hero: bool = False
    has_navigation: bool = False
    has_footer: bool = False
    roles: Optional[dict] = None

    def to_dict(self) -> dict:
        out = {
            "layoutType": self.layout_type,
            "sectionCount": self.section_count,
            "contentDensity": self.content_density,
            "difficulty": self.difficulty,
            "difficultyReason": self.difficulty_reason,
            "nodeCount": self.node_count,
            "rootNodeCount": self.root_node_count,
            "maxDepth": self.max_depth,
            "sectionCandidates": list(self.section_candidates),
            "hasHero": self.has_hero,
            "hasNavigation": self.has_navigation,
            "hasFooter": self.has_footer,
        }
        if self.roles is not None:
            out["roles"] = {str(order): role for order, role in self.roles.items()}
        return out


@dataclass(frozen=True)
class TokenBudgetConfig:
    max_tokens: int
    max_css_classes: int
    max_css_properties_per_node: int
    max_colors: int
    max_images: int
    max_root_nodes: int
    max_nav_items: int
    max_text_chars_per_node: int
    include_css_details: bool = True
    include_all_metadata: bool = False
    compress_css_values: bool = True
    css_dictionary_min_occurrences: int = 3


@dataclass
class BudgetResult:
    page: ParsedPage
    tier: Optional[str]
    estimated_tokens: int
    was_reduced: bool
    structural: Optional[StructuralAnalysis] = None
