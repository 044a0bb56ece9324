import re
import logging
from urllib.parse import urljoin

from bs4 import BeautifulSoup, NavigableString, Tag

from pagelens.models import DomNode, NormalizationResult, ParsedPage
from pagelens.services import collectors
from pagelens.services.css_resolver import resolve_css

logger = logging.getLogger(__name__)

MAX_ROOT_NODES = 100
MAX_DOM_DEPTH = 12

SKIP_TAGS = {"meta", "link", "head", "title", "br", "hr", "template"}

# Attributes already carried by other DomNode fields
OWN_FIELD_ATTRS = {"id", "class", "style"}

VENDOR_PREFIXES = ("-webkit-", "-moz-", "-ms-", "-o-")

VISUAL_CSS_PROPERTIES = frozenset({
    # positioning
    "position", "top", "left", "right", "bottom", "z-index", "float", "clear",
    # grid / flex
    "display", "flex-direction", "flex-wrap", "flex-grow", "flex-shrink", "flex-basis", "flex",
    "grid-template-columns", "grid-template-rows", "grid-gap", "gap", "row-gap", "column-gap",
    "grid-column", "grid-row", "grid-area",
    "align-items", "justify-content", "align-self", "justify-self", "align-content",
    "place-items", "place-content", "place-self",
    # box
    "padding", "padding-top", "padding-right", "padding-bottom", "padding-left",
    "margin", "margin-top", "margin-right", "margin-bottom", "margin-left",
    "width", "height", "max-width", "max-height", "min-width", "min-height",
    # background / border
    "background", "background-color", "background-image", "background-size", "background-position",
    "background-repeat", "background-attachment",
    "border", "border-width", "border-style", "border-color", "border-radius",
    "border-top", "border-right", "border-bottom", "border-left",
    "opacity", "filter", "backdrop-filter",
    # typography
    "font-family", "font-size", "font-weight", "font-style", "line-height",
    "color", "text-align", "text-transform", "text-decoration", "letter-spacing",
    "text-shadow", "white-space", "word-break",
    # effects
    "box-shadow", "transform", "transition", "animation",
    "overflow", "overflow-x", "overflow-y",
    "visibility", "object-fit", "object-position",
})

_CSS_URL_RE = re.compile(r"""url\(\s*['"]?([^'"()]+)['"]?\s*\)""")


def filter_visual_css(properties: dict) -> dict:
    return {
        prop: value
        for prop, value in properties.items()
        if not prop.startswith(VENDOR_PREFIXES) and prop in VISUAL_CSS_PROPERTIES
    }


def classify_image_src(src: str | None, base_url: str) -> dict:
    """Resolve an image source and flag whether a placeholder is needed.

    ``srcType`` is one of ``http``, ``data-uri``, ``relative`` or ``missing``;
    only sources that cannot be turned into an absolute http(s) URL need a mock.
    """
    src = (src or "").strip()
    if not src:
        return {"url": "", "mockRequired": True, "srcType": "missing"}
    if src.startswith("data:"):
        return {"url": src, "mockRequired": False, "srcType": "data-uri"}
    if src.startswith(("http://", "https://")):
        return {"url": src, "mockRequired": False, "srcType": "http"}
    if src.startswith("//"):
        return {"url": "https:" + src, "mockRequired": False, "srcType": "http"}
    resolved = urljoin(base_url or "", src)
    if resolved.startswith(("http://", "https://")):
        return {"url": resolved, "mockRequired": False, "srcType": "http"}
    return {"url": src, "mockRequired": True, "srcType": "relative"}


def _image_record(img: Tag, base_url: str) -> dict:
    record = classify_image_src(img.get("src") or img.get("data-src"), base_url)
    alt = img.get("alt")
    if alt:
        record["alt"] = alt
    return record


def extract_node_images(element: Tag, base_url: str) -> list[dict]:
    """The element itself when it is an ``<img>``, plus its direct ``<img>`` children."""
    images = []
    if element.name == "img":
        images.append(_image_record(element, base_url))
    for img in element.find_all("img", recursive=False):
        record = _image_record(img, base_url)
        if not any(existing["url"] == record["url"] for existing in images):
            images.append(record)
    return images


def extract_background_images(class_dictionary: list[dict], base_url: str) -> list[dict]:
    images = []
    for entry in class_dictionary:
        props = entry["properties"]
        value = props.get("background-image") or props.get("background") or ""
        match = _CSS_URL_RE.search(value)
        if not match:
            continue
        record = classify_image_src(match.group(1), base_url)
        record["alt"] = f"Background image from .{entry['className']}"
        images.append(record)
    return images


def _direct_text(element: Tag) -> str:
    text = "".join(str(child) for child in element.children if type(child) is NavigableString)
    return " ".join(text.split())


def _element_children(element: Tag) -> list[Tag]:
    return [child for child in element.children if isinstance(child, Tag) and child.name not in SKIP_TAGS]


def _attributes(element: Tag) -> dict:
    attrs = {}
    for name, value in element.attrs.items():
        if name in OWN_FIELD_ATTRS:
            continue
        attrs[name] = " ".join(value) if isinstance(value, list) else value
    return attrs


def _class_list(element: Tag) -> list[str]:
    value = element.get("class") or []
    return value.split() if isinstance(value, str) else list(value)


def _background_value(css: dict) -> str | None:
    return css.get("background-color") or css.get("background")


class TraversalContext:
    """State shared by one tree walk: the order counter and the flat image list."""

    def __init__(self, class_dictionary: list[dict], base_url: str):
        self.class_dictionary = class_dictionary
        self.base_url = base_url
        self.order = 0
        self.images: list[dict] = []
        self._image_urls: set[str] = set()

    def next_order(self) -> int:
        current = self.order
        self.order += 1
        return current

    def add_images(self, images: list[dict]) -> None:
        for img in images:
            if img["url"] not in self._image_urls:
                self._image_urls.add(img["url"])
                self.images.append(img)

    def build_node(self, element: Tag, depth: int) -> DomNode:
        classes = _class_list(element)
        css = resolve_css(classes, self.class_dictionary, element.get("style"))
        images = extract_node_images(element, self.base_url)
        self.add_images(images)
        return DomNode(
            tag=element.name,
            order=self.next_order(),
            depth=depth,
            id=element.get("id") or None,
            class_name=" ".join(classes) or None,
            attributes=_attributes(element),
            css=filter_visual_css(css),
            text=_direct_text(element),
            images=images,
        )


def extract_tree(root: Tag, ctx: TraversalContext) -> list[DomNode]:
    """Walk ``root``'s element children in pre-order with an explicit stack.

    At most ``MAX_ROOT_NODES`` roots are kept; nodes at ``MAX_DOM_DEPTH``
    become leaves.
    """
    tree: list[DomNode] = []
    roots = _element_children(root)
    if len(roots) > MAX_ROOT_NODES:
        logger.info(f"[extract] Truncating {len(roots)} root elements to {MAX_ROOT_NODES}")
        roots = roots[:MAX_ROOT_NODES]

    stack = [(element, 0, tree) for element in reversed(roots)]
    while stack:
        element, depth, siblings = stack.pop()
        node = ctx.build_node(element, depth)
        siblings.append(node)
        if depth < MAX_DOM_DEPTH:
            for child in reversed(_element_children(element)):
                stack.append((child, depth + 1, node.children))
    return tree


def extract_page(normalized: NormalizationResult, original_html: str, base_url: str) -> ParsedPage:
    """Build the full ParsedPage from normalized HTML.

    The node tree comes from the cleaned document; the auxiliary collections
    are gathered from ``original_html`` since stripping removes some of them.
    """
    soup = BeautifulSoup(normalized.html, "html.parser")
    body = soup.body or soup
    class_dictionary = normalized.css_classes

    ctx = TraversalContext(class_dictionary, base_url)
    tree = extract_tree(body, ctx)
    ctx.add_images(extract_background_images(class_dictionary, base_url))

    root_background = None
    if soup.body is not None:
        body_css = resolve_css(_class_list(soup.body), class_dictionary, soup.body.get("style"))
        root_background = _background_value(body_css)

    original = BeautifulSoup(original_html, "html.parser")
    page = ParsedPage(
        tree=tree,
        total_nodes=ctx.order,
        navigation=collectors.collect_navigation(original),
        forms=collectors.collect_forms(original),
        images=ctx.images,
        colors=collectors.collect_colors(original),
        fonts=list(normalized.fonts),
        ctas=collectors.collect_ctas(original),
        footer=collectors.collect_footer(original),
        social_links=collectors.collect_social_links(original),
        embeds=list(normalized.embeds),
        metadata=collectors.collect_metadata(original),
        language=collectors.detect_language(original),
        css_info=normalized.css_info,
        raw_text_content=collectors.raw_text_content(body),
        root_background=root_background,
    )
    logger.info(
        f"[extract] {page.total_nodes} nodes ({len(tree)} roots), {len(page.images)} images, "
        f"{len(page.forms)} forms, {len(page.navigation)} nav items, {len(page.ctas)} CTAs"
    )
    return page
