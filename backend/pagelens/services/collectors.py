"""Single-pass collectors for page-wide features (nav, forms, colors, ...).

Each collector takes a parsed document (or a sub-tree of one) and returns
plain dicts with the camelCase keys used in the IR.
"""

import re
import logging

from bs4 import BeautifulSoup, Tag

from pagelens.services.css_resolver import parse_inline_style

logger = logging.getLogger(__name__)

MAX_RAW_TEXT = 5000
MAX_HEADER_LINK_TEXT = 50

SOCIAL_PATTERNS = [
    (re.compile(r"\b(?:facebook|fb)\.com", re.I), "facebook"),
    (re.compile(r"\b(?:twitter|x)\.com", re.I), "twitter"),
    (re.compile(r"\binstagram\.com", re.I), "instagram"),
    (re.compile(r"\blinkedin\.com", re.I), "linkedin"),
    (re.compile(r"\b(?:youtube\.com|youtu\.be)", re.I), "youtube"),
    (re.compile(r"\bgithub\.com", re.I), "github"),
    (re.compile(r"\btiktok\.com", re.I), "tiktok"),
]

CTA_KEYWORDS = [
    "get started", "sign up", "subscribe", "buy now", "learn more", "contact",
    "download", "try free", "start", "join", "register", "book", "order",
]
CTA_SELECTOR = 'button, a.btn, a.button, a[class*="btn"], a[class*="button"], input[type="submit"]'
PRIMARY_CLASSES = {"primary", "btn-primary", "cta"}

COLOR_PROPERTIES = ["background-color", "background", "color", "border-color"]

_COPYRIGHT_RE = re.compile(r"©\s*\d{4}[^.]*|copyright[^.]+", re.I)


def _text(element: Tag) -> str:
    return " ".join(element.get_text(" ").split())


def _classes(element: Tag) -> list[str]:
    value = element.get("class") or []
    return value.split() if isinstance(value, str) else list(value)


def _is_button_link(link: Tag | None) -> bool:
    if link is None:
        return False
    classes = _classes(link)
    return "btn" in classes or "button" in classes


def _nav_item(link: Tag | None, text: str, children: list | None = None) -> dict:
    return {
        "text": text,
        "href": link.get("href") if link is not None else None,
        "isButton": _is_button_link(link),
        "children": children or [],
    }


# ─── Navigation ────────────────────────────────────────────────────────────

def collect_navigation(soup: BeautifulSoup) -> list[dict]:
    """Top-level nav items with one level of submenu children.

    Without a ``<nav>``, short header links are used instead.
    """
    nav = soup.find("nav")
    if nav is None:
        header = soup.find("header")
        if header is None:
            return []
        items = []
        for link in header.find_all("a"):
            text = _text(link)
            if text and len(text) < MAX_HEADER_LINK_TEXT:
                items.append(_nav_item(link, text))
        return items

    items = []
    for item in nav.select(":scope > ul > li, :scope > a, :scope > div > a"):
        if item.name == "a":
            items.append(_nav_item(item, _text(item)))
            continue
        link = item.find("a")
        submenu = item.find("ul")
        children = []
        if submenu is not None:
            for sub_link in submenu.select("li > a"):
                children.append(_nav_item(sub_link, _text(sub_link)))
        if link is not None:
            text = _text(link)
        else:
            lines = item.get_text().strip().split("\n")
            text = lines[0].strip() if lines else ""
        items.append(_nav_item(link, text, children))
    return items


def has_nested_navigation(navigation: list[dict]) -> bool:
    return any(item.get("children") for item in navigation)


# ─── Forms ─────────────────────────────────────────────────────────────────

def _field_type(field: Tag) -> str:
    if field.name == "input":
        return (field.get("type") or "text").lower()
    return field.name


def _field_label(field: Tag, soup: BeautifulSoup) -> str | None:
    field_id = field.get("id")
    if field_id:
        label = soup.find("label", attrs={"for": field_id})
        if label is not None:
            return _text(label) or None
    parent_label = field.find_parent("label")
    if parent_label is not None:
        text = _text(parent_label)
        value = field.get("value")
        if value:
            text = text.replace(value, "").strip()
        return text or None
    return None


def collect_forms(soup: BeautifulSoup) -> list[dict]:
    forms = []
    for form in soup.find_all("form"):
        fields = []
        for field in form.find_all(["input", "select", "textarea"]):
            field_type = _field_type(field)
            if field_type in ("hidden", "submit"):
                continue
            entry = {
                "name": field.get("name") or field.get("id") or "",
                "type": field_type,
                "label": _field_label(field, soup),
                "placeholder": field.get("placeholder") or None,
                "required": field.has_attr("required"),
            }
            if field.name == "select":
                entry["options"] = [_text(opt) for opt in field.find_all("option")]
            fields.append(entry)

        submit = form.select_one('button[type="submit"], input[type="submit"], button:not([type])')
        submit_text = None
        if submit is not None:
            submit_text = _text(submit) or submit.get("value") or None

        forms.append({
            "id": form.get("id") or None,
            "action": form.get("action") or None,
            "method": (form.get("method") or "GET").upper(),
            "fields": fields,
            "submitButtonText": submit_text,
        })
    return forms


def count_form_fields(forms: list[dict]) -> int:
    return sum(len(form["fields"]) for form in forms)


# ─── Colors ────────────────────────────────────────────────────────────────

def collect_colors(soup: BeautifulSoup) -> list[dict]:
    """Hex/rgb colors from inline styles, most frequent first."""
    counts: dict[tuple[str, str], int] = {}
    for tag in soup.find_all(style=True):
        props = parse_inline_style(tag["style"])
        for prop in COLOR_PROPERTIES:
            value = props.get(prop)
            if value and re.match(r"^(#|rgb)", value, re.I):
                key = (value, prop)
                counts[key] = counts.get(key, 0) + 1
    colors = [
        {"value": value, "property": prop, "frequency": count}
        for (value, prop), count in counts.items()
    ]
    colors.sort(key=lambda c: c["frequency"], reverse=True)
    return colors


# ─── Calls to action ───────────────────────────────────────────────────────

def _is_hero(tag: Tag) -> bool:
    return tag.get("id") == "hero" or any("hero" in cls for cls in _classes(tag))


def _cta_location(element: Tag) -> str:
    if element.find_parent(["header", "nav"]) is not None:
        return "header"
    if element.find_parent("footer") is not None:
        return "footer"
    if _is_hero(element) or element.find_parent(_is_hero) is not None:
        return "hero"
    return "section"


def collect_ctas(soup: BeautifulSoup) -> list[dict]:
    ctas = []
    for element in soup.select(CTA_SELECTOR):
        text = _text(element) or element.get("value") or ""
        if not text:
            continue
        lowered = text.lower()
        is_primary = (
            any(keyword in lowered for keyword in CTA_KEYWORDS)
            or bool(PRIMARY_CLASSES.intersection(_classes(element)))
        )
        if is_primary:
            cta_type = "primary"
        elif element.name == "a":
            cta_type = "link"
        else:
            cta_type = "secondary"
        ctas.append({
            "text": text,
            "href": element.get("href"),
            "type": cta_type,
            "location": _cta_location(element),
        })
    return ctas


# ─── Footer and social links ───────────────────────────────────────────────

def collect_social_links(container: Tag) -> list[dict]:
    links = []
    seen = set()
    for link in container.find_all("a", href=True):
        href = link["href"]
        for pattern, platform in SOCIAL_PATTERNS:
            if pattern.search(href):
                if href not in seen:
                    seen.add(href)
                    links.append({"platform": platform, "url": href})
                break
    return links


def collect_footer(soup: BeautifulSoup) -> dict | None:
    footer = soup.find("footer")
    if footer is None:
        return None

    columns = []
    for column in footer.select("div > div, section, ul"):
        links = column.find_all("a")
        if not links:
            continue
        heading = column.find(["h3", "h4", "h5", "h6", "strong"])
        columns.append({
            "heading": _text(heading) if heading is not None else None,
            "links": [{"text": _text(link), "href": link.get("href")} for link in links],
        })

    match = _COPYRIGHT_RE.search(footer.get_text(" "))
    return {
        "columns": columns,
        "copyright": " ".join(match.group(0).split()) if match else None,
        "socialLinks": collect_social_links(footer),
    }


# ─── Metadata and language ─────────────────────────────────────────────────

def _has_rel(tag: Tag, *wanted: str) -> bool:
    rels = [r.lower() for r in (tag.get("rel") or [])]
    return " ".join(rels) in wanted


def collect_metadata(soup: BeautifulSoup) -> dict:
    title = soup.find("title")
    description = soup.find("meta", attrs={"name": "description"})

    og_tags = {}
    for meta in soup.find_all("meta", property=re.compile(r"^og:")):
        content = meta.get("content")
        if content:
            og_tags[meta["property"][3:]] = content

    favicon = soup.find(lambda t: t.name == "link" and _has_rel(t, "icon", "shortcut icon"))
    return {
        "title": _text(title) if title is not None else None,
        "description": description.get("content") if description is not None else None,
        "ogTags": og_tags,
        "favicon": favicon.get("href") if favicon is not None else None,
    }


def detect_language(soup: BeautifulSoup) -> str:
    html = soup.find("html")
    if html is not None and html.get("lang"):
        return html["lang"].split("-")[0]
    meta = soup.find("meta", attrs={"http-equiv": re.compile(r"^content-language$", re.I)})
    if meta is not None and meta.get("content"):
        return meta["content"].split("-")[0]
    return "en"


def raw_text_content(root: Tag) -> str:
    return " ".join(root.get_text().split())[:MAX_RAW_TEXT]
