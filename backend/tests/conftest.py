from __future__ import annotations

from types import SimpleNamespace

import pytest

from pagelens.models import DomNode, ParsedPage, iter_nodes

SAMPLE_HTML = """<!DOCTYPE html>
<html lang="fr-CA">
<head>
  <title>Acme Widgets</title>
  <meta name="description" content="Widgets for everyone">
  <meta property="og:title" content="Acme">
  <link rel="icon" href="/favicon.ico">
  <link rel="stylesheet" href="https://fonts.googleapis.com/css2?family=Inter:wght@400;700&amp;family=Roboto+Mono&amp;display=swap">
  <style>
    /* layout */
    .hero { background-color: #112233; padding: 40px; display: flex; flex-direction: column; }
    .grid { display: grid; grid-template-columns: repeat(3, 1fr); gap: 16px; }
    .card { background: #ffffff; padding: 8px; -webkit-box-shadow: none; cursor: pointer; }
    .banner { background-image: url('/img/banner.jpg'); }
    @media (max-width: 768px) { .grid { grid-template-columns: 1fr; } }
    @font-face { font-family: "Brand Sans"; src: url(/brand.woff2); }
  </style>
  <script>alert("x")</script>
</head>
<body style="background-color: #fafafa">
  <header>
    <nav>
      <ul>
        <li><a href="/">Home</a></li>
        <li><a href="/products">Products</a>
          <ul><li><a href="/products/a">Widget A</a></li><li><a href="/products/b">Widget B</a></li></ul>
        </li>
        <li><a href="/contact" class="btn">Contact</a></li>
      </ul>
    </nav>
  </header>
  <section class="hero" onclick="track()">
    <h1>Build   better\twidgets</h1>
    <p>Acme makes widgets that are sturdy, cheap and delightful to use every single day of the week.</p>
    <a href="/signup" class="btn btn-primary">Get started</a>
    <img src="/img/hero.png" alt="Hero shot">
  </section>
  <!-- features -->
  <section class="grid">
    <div class="card"><h3>Fast</h3><img src="//cdn.example.com/fast.png"></div>
    <div class="card"><h3>Cheap</h3></div>
    <div class="card"><h3>Sturdy</h3></div>
  </section>
  <iframe src="https://www.youtube.com/embed/abc"></iframe>
  <form id="signup" action="/subscribe" method="post">
    <label for="email">Email</label>
    <input id="email" name="email" type="email" required placeholder="you@example.com">
    <select name="plan"><option>Free</option><option>Pro</option></select>
    <input type="hidden" name="token" value="x">
    <button type="submit">Subscribe</button>
  </form>
  <a href="javascript:void(0)">Do nothing</a>
  <footer>
    <div><div><h4>Company</h4><a href="/about">About</a></div></div>
    <p>© 2024 Acme Inc. All rights reserved.</p>
    <a href="https://twitter.com/acme">Twitter</a>
    <a href="https://github.com/acme">GitHub</a>
  </footer>
</body>
</html>
"""

BASE_URL = "https://acme.test/"


@pytest.fixture
def sample_html() -> str:
    return SAMPLE_HTML


@pytest.fixture
def base_url() -> str:
    return BASE_URL


# ---------------------------------------------------------------------------
# Shared factory helpers
# ---------------------------------------------------------------------------


def make_node(
    tag: str = "div",
    order: int = 0,
    depth: int = 0,
    css: dict | None = None,
    children: list | None = None,
    class_name: str | None = None,
    id: str | None = None,
    text: str = "",
    images: list | None = None,
) -> DomNode:
    return DomNode(
        tag=tag,
        order=order,
        depth=depth,
        id=id,
        class_name=class_name,
        css=css or {},
        text=text,
        images=images or [],
        children=children or [],
    )


def make_page(tree: list, **kwargs) -> ParsedPage:
    return ParsedPage(tree=tree, total_nodes=sum(1 for _ in iter_nodes(tree)), **kwargs)


@pytest.fixture
def node_factory():
    return make_node


@pytest.fixture
def page_factory():
    return make_page


# ---------------------------------------------------------------------------
# Fake LLM client (AsyncOpenAI-shaped)
# ---------------------------------------------------------------------------


class FakeCompletions:
    def __init__(self, content: str = "", error: Exception | None = None):
        self.content = content
        self.error = error
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(
            choices=[SimpleNamespace(message=message)],
            usage=SimpleNamespace(prompt_tokens=100, completion_tokens=50),
        )


class FakeLLMClient:
    def __init__(self, content: str = "", error: Exception | None = None):
        self.completions = FakeCompletions(content, error)
        self.chat = SimpleNamespace(completions=self.completions)


@pytest.fixture
def llm_client_factory():
    return FakeLLMClient
