import re
import asyncio
import logging
from urllib.parse import urljoin, urlparse, parse_qs

import httpx
from bs4 import BeautifulSoup, Comment, NavigableString

from pagelens.errors import UnprocessableContent
from pagelens.models import NormalizationResult
from pagelens.services.css_resolver import build_css_info

logger = logging.getLogger(__name__)

MAX_EXTERNAL_STYLESHEETS = 10
STYLESHEET_TIMEOUT = 5.0  # seconds, per stylesheet
MIN_BODY_LENGTH = 100

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# A page with this little text and none of these tags needs JS to render
STRUCTURAL_TAGS = ["header", "main", "section", "nav", "footer", "article"]

REMOVE_TAGS = ["script", "noscript", "style", "svg", "iframe"]

EVENT_HANDLERS = {
    "onclick", "ondblclick", "onmousedown", "onmouseup", "onmouseover", "onmouseout", "onmousemove",
    "onkeydown", "onkeyup", "onkeypress",
    "onfocus", "onblur", "onchange", "onsubmit", "onreset",
    "onload", "onunload", "onerror", "onresize", "onscroll",
    "ondragstart", "ondrag", "ondragend", "ondragenter", "ondragleave", "ondragover", "ondrop",
    "ontouchstart", "ontouchmove", "ontouchend", "ontouchcancel",
    "oncontextmenu", "onwheel", "oninput", "oninvalid", "onsearch", "onselect",
}

FONT_PROVIDER_HOSTS = ("fonts.googleapis.com", "fonts.gstatic.com")

# (url fragments, embed type, platform), first match wins
EMBED_PATTERNS = [
    (("youtube.com", "youtu.be"), "video", "youtube"),
    (("vimeo.com",), "video", "vimeo"),
    (("google.com/maps", "maps.google.com"), "map", "google-maps"),
    (("openstreetmap.org",), "map", "openstreetmap"),
    (("spotify.com",), "widget", "spotify"),
    (("twitter.com", "x.com"), "widget", "twitter"),
    (("facebook.com",), "widget", "facebook"),
]

NO_COLLAPSE_TAGS = {"pre", "textarea"}


def extract_fonts(soup: BeautifulSoup) -> list[dict]:
    """Font families declared through font-provider ``<link>`` tags."""
    fonts = []
    seen = set()
    for link in soup.find_all("link", href=True):
        href = link["href"]
        if not any(host in href for host in FONT_PROVIDER_HOSTS):
            continue
        families = parse_qs(urlparse(href).query).get("family", [])
        for param in families:
            # css API v1 packs several families into one param with '|'
            for family in param.split("|"):
                name = family.split(":")[0].replace("+", " ").strip()
                if name and name not in seen:
                    seen.add(name)
                    fonts.append({"family": name, "source": "google", "url": href})
    return fonts


def classify_embed(src: str) -> dict:
    for fragments, embed_type, platform in EMBED_PATTERNS:
        if any(fragment in src for fragment in fragments):
            return {"type": embed_type, "platform": platform, "url": src}
    return {"type": "unknown", "url": src}


def extract_embeds(soup: BeautifulSoup) -> list[dict]:
    return [classify_embed(iframe.get("src") or "") for iframe in soup.find_all("iframe")]


async def _fetch_stylesheet(client: httpx.AsyncClient, url: str) -> str:
    """Fetch one external stylesheet; any failure contributes an empty string."""
    try:
        resp = await asyncio.wait_for(client.get(url, timeout=STYLESHEET_TIMEOUT), STYLESHEET_TIMEOUT)
    except (httpx.HTTPError, httpx.InvalidURL, asyncio.TimeoutError) as e:
        logger.debug(f"[normalize] Stylesheet {url} failed: {e!r}")
        return ""
    if resp.status_code >= 400:
        logger.debug(f"[normalize] Stylesheet {url} returned HTTP {resp.status_code}")
        return ""
    return resp.text


def _stylesheet_urls(soup: BeautifulSoup, base_url: str) -> list[str]:
    urls = []
    for link in soup.find_all("link", href=True):
        rels = [r.lower() for r in (link.get("rel") or [])]
        if "stylesheet" not in rels:
            continue
        try:
            url = urljoin(base_url, link["href"].strip())
            scheme = urlparse(url).scheme
        except ValueError:
            logger.debug(f"[normalize] Skipping malformed stylesheet href {link['href']!r}")
            continue
        if scheme in ("http", "https"):
            urls.append(url)
    return urls[:MAX_EXTERNAL_STYLESHEETS]


async def collect_css(
    soup: BeautifulSoup,
    base_url: str,
    client: httpx.AsyncClient | None = None,
    fetch_stylesheets: bool = True,
) -> str:
    """Concatenate ``<style>`` text, linked stylesheets, and grid/flex inline styles."""
    parts = [style.get_text() for style in soup.find_all("style")]

    urls = _stylesheet_urls(soup, base_url) if fetch_stylesheets else []
    if urls:
        if client is None:
            async with httpx.AsyncClient(headers={"User-Agent": USER_AGENT}, follow_redirects=True) as own_client:
                external = await asyncio.gather(*(_fetch_stylesheet(own_client, u) for u in urls))
        else:
            external = await asyncio.gather(*(_fetch_stylesheet(client, u) for u in urls))
        fetched = sum(1 for css in external if css)
        logger.info(f"[normalize] Fetched {fetched}/{len(urls)} external stylesheets")
        parts.extend(external)

    for tag in soup.find_all(style=True):
        style = tag["style"]
        if "grid" in style or "flex" in style:
            parts.append(style)

    return "\n".join(parts)


def strip_noise(soup: BeautifulSoup) -> None:
    """Drop non-visual nodes, event handlers, ``javascript:`` links, and comments."""
    for tag in soup.find_all(REMOVE_TAGS):
        tag.decompose()

    for tag in soup.find_all(True):
        for attr in list(tag.attrs):
            if attr.lower() in EVENT_HANDLERS:
                del tag[attr]
        href = tag.get("href")
        if isinstance(href, str) and href.strip().lower().startswith("javascript:"):
            tag["href"] = "#"

    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()


def collapse_whitespace(soup: BeautifulSoup) -> None:
    """Collapse runs of spaces/tabs in text nodes; line breaks are kept."""
    for text in soup.find_all(string=True):
        if type(text) is not NavigableString:
            continue
        if any(parent.name in NO_COLLAPSE_TAGS for parent in text.parents):
            continue
        collapsed = re.sub(r"[ \t]+", " ", text)
        if collapsed != text:
            text.replace_with(NavigableString(collapsed))


def ensure_renderable(soup: BeautifulSoup) -> None:
    body = soup.body or soup
    text = body.get_text().strip()
    if len(text) < MIN_BODY_LENGTH and soup.find(STRUCTURAL_TAGS) is None:
        raise UnprocessableContent(
            "This page appears to require JavaScript to render content. "
            "Only static HTML pages are supported."
        )


async def normalize_html(
    raw_html: str,
    base_url: str,
    client: httpx.AsyncClient | None = None,
    fetch_stylesheets: bool = True,
) -> NormalizationResult:
    """Clean raw HTML and pull out fonts, embeds, and CSS before they are stripped.

    The order matters: fonts come from ``<link>`` tags, embeds from iframes and
    CSS from ``<style>`` tags, all of which are gone after stripping.
    """
    soup = BeautifulSoup(raw_html, "html.parser")

    fonts = extract_fonts(soup)
    embeds = extract_embeds(soup)

    all_css = await collect_css(soup, base_url, client=client, fetch_stylesheets=fetch_stylesheets)
    css_info, face_families = build_css_info(all_css)
    known = {f["family"] for f in fonts}
    for family in face_families:
        if family not in known:
            known.add(family)
            fonts.append({"family": family, "source": "custom"})

    strip_noise(soup)
    collapse_whitespace(soup)
    ensure_renderable(soup)

    cleaned = str(soup)
    logger.info(
        f"[normalize] {len(raw_html)} → {len(cleaned)} chars, {len(fonts)} fonts, "
        f"{len(embeds)} embeds, {len(css_info['classes'])} CSS classes"
    )
    return NormalizationResult(html=cleaned, fonts=fonts, embeds=embeds, css_info=css_info)
