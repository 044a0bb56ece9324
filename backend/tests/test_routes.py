"""HTTP API tests via FastAPI's TestClient."""

from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from pagelens.errors import UpstreamTimeout
from pagelens.main import app
from pagelens.routes import analyze as analyze_route

PAGE = """<html lang="en"><body>
<header><nav><a href="/">Home</a><a href="/about">About</a></nav></header>
<main class="content" style="display: flex; padding: 32px">
  <p>Plain static page used by the API tests, long enough to count as real content.</p>
</main>
<footer><p>© 2024 Example</p></footer>
</body></html>"""


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


def test_root_lists_endpoints(client):
    data = client.get("/").json()
    assert data["service"] == "pagelens"
    assert data["endpoints"]["analyzeHtml"] == "POST /api/analyze/html"


def test_health(client, monkeypatch):
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    assert client.get("/health").json() == {"status": "ok", "llmConfigured": False}
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-test")
    assert client.get("/health").json()["llmConfigured"] is True


# ---------------------------------------------------------------------------
# /api/analyze/html
# ---------------------------------------------------------------------------


class TestAnalyzeHtml:
    def test_returns_ir_and_structural(self, client):
        resp = client.post("/api/analyze/html", json={"html": PAGE, "baseUrl": "https://example.test/"})
        assert resp.status_code == 200
        data = resp.json()
        assert [n["tag"] for n in data["ir"]["tree"]] == ["header", "main", "footer"]
        assert data["ir"]["language"] == "en"
        assert data["structural"]["hasFooter"] is True
        assert data["budget"]["tier"] is None

    def test_tier_applied(self, client):
        resp = client.post(
            "/api/analyze/html",
            json={"html": PAGE, "baseUrl": "https://example.test/", "customBudget": {"maxRootNodes": 1}},
        )
        assert resp.status_code == 200
        assert resp.json()["budget"]["tier"] == "custom"
        assert len(resp.json()["ir"]["tree"]) == 1

    def test_unknown_tier_is_400(self, client):
        resp = client.post(
            "/api/analyze/html",
            json={"html": PAGE, "baseUrl": "https://example.test/", "tier": "platinum"},
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["kind"] == "InvalidInput"

    def test_bad_budget_value_is_400(self, client):
        resp = client.post(
            "/api/analyze/html",
            json={"html": PAGE, "baseUrl": "https://example.test/", "customBudget": {"maxRootNodes": "3"}},
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["kind"] == "InvalidInput"

    def test_script_only_page_is_422(self, client):
        html = '<html><body><div id="app"></div><script>boot()</script></body></html>'
        resp = client.post("/api/analyze/html", json={"html": html, "baseUrl": "https://example.test/"})
        assert resp.status_code == 422
        assert resp.json()["detail"]["kind"] == "UnprocessableContent"

    def test_missing_field_rejected(self, client):
        resp = client.post("/api/analyze/html", json={"html": PAGE})
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# /api/analyze
# ---------------------------------------------------------------------------


class TestAnalyzeUrl:
    def test_scheme_added_and_options_forwarded(self, client, monkeypatch):
        calls = []

        async def fake_analyze_url(url, **kwargs):
            calls.append((url, kwargs))
            return {"sourceUrl": url, "analysis": {}, "ir": {}, "budget": {}, "usage": None, "processingTimeMs": 1}

        monkeypatch.setattr(analyze_route, "analyze_url", fake_analyze_url)
        resp = client.post("/api/analyze", json={"url": " example.test ", "tier": "pro", "interpret": False})

        assert resp.status_code == 200
        assert resp.json()["sourceUrl"] == "https://example.test"
        url, kwargs = calls[0]
        assert url == "https://example.test"
        assert kwargs["tier"] == "pro"
        assert kwargs["interpret"] is False

    def test_pipeline_error_mapped_to_status(self, client, monkeypatch):
        async def fake_analyze_url(url, **kwargs):
            raise UpstreamTimeout("Request timed out after 10 seconds")

        monkeypatch.setattr(analyze_route, "analyze_url", fake_analyze_url)
        resp = client.post("/api/analyze", json={"url": "https://slow.test"})
        assert resp.status_code == 504
        assert resp.json()["detail"] == {"kind": "UpstreamTimeout", "message": "Request timed out after 10 seconds"}

    def test_busy_server_is_503(self, client, monkeypatch):
        monkeypatch.setattr(analyze_route, "_analysis_semaphore", asyncio.Semaphore(0))
        resp = client.post("/api/analyze", json={"url": "https://example.test"})
        assert resp.status_code == 503
