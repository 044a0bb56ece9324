"""Analysis pipeline orchestrator.

fetch → normalize → extract → analyze → budget → assemble IR → interpret → merge.
Every stage except fetch, stylesheet loading, and interpretation is a
synchronous pass over per-request data.
"""

import time
import logging

import httpx

from pagelens.errors import InvalidInput, PayloadTooLarge
from pagelens.models import StructuralAnalysis, iter_nodes
from pagelens.services.analyzer import analyze_structure
from pagelens.services.extractor import extract_page
from pagelens.services.fetcher import MAX_HTML_BYTES, fetch_url
from pagelens.services.interpreter import interpret_design
from pagelens.services.normalizer import normalize_html
from pagelens.services.summary import build_ir
from pagelens.services.token_budget import apply_token_budget, resolve_budget

logger = logging.getLogger(__name__)


async def run_analysis(
    html: str,
    base_url: str,
    tier: str | None = None,
    custom_budget: dict | None = None,
    client: httpx.AsyncClient | None = None,
    fetch_stylesheets: bool = True,
    infer_roles: bool = False,
) -> dict:
    """Turn raw HTML into the budgeted IR plus its structural analysis.

    Returns ``{"ir", "structural", "budget", "orders"}``; ``structural`` is
    computed on the full tree before any reduction and ``orders`` holds the
    document orders that survived the budget.
    """
    if not html or not html.strip():
        raise InvalidInput("HTML input is empty")
    size = len(html.encode("utf-8"))
    if size > MAX_HTML_BYTES:
        raise PayloadTooLarge(f"HTML input is {size} bytes, maximum is {MAX_HTML_BYTES}")
    # fail on a bad tier before doing any work
    resolve_budget(tier, custom_budget)

    normalized = await normalize_html(html, base_url, client=client, fetch_stylesheets=fetch_stylesheets)
    page = extract_page(normalized, html, base_url)
    structural = analyze_structure(page, infer_roles=infer_roles)
    budget = apply_token_budget(page, tier=tier, custom_budget=custom_budget, structural=structural)

    return {
        "ir": build_ir(budget.page, budget.structural),
        "structural": structural,
        "budget": {
            "tier": budget.tier,
            "estimatedTokens": budget.estimated_tokens,
            "wasReduced": budget.was_reduced,
        },
        "orders": {node.order for node in iter_nodes(budget.page.tree)},
    }


def merge_interpretation(structural: StructuralAnalysis, interpretation: dict, known_orders: set[int]) -> dict:
    """Combine the deterministic analysis with the LLM's per-node roles.

    Annotations for nodes not present in the (budgeted) tree are dropped.
    """
    candidates = set(structural.section_candidates)
    rule_roles = structural.roles or {}

    nodes = []
    for node in interpretation["nodes"]:
        order = node["nodeOrder"]
        if order not in known_orders:
            logger.warning(f"[merge] Dropping interpretation for unknown node order {order}")
            continue
        nodes.append({
            **node,
            "ruleRole": rule_roles.get(order, "unknown"),
            "isSectionCandidate": order in candidates,
        })

    merged = structural.to_dict()
    merged.update({
        "nodes": nodes,
        "layoutIntent": interpretation["layoutIntent"],
        "hierarchy": interpretation["hierarchy"],
        "emphasis": interpretation["emphasis"],
        "suggestedAnimations": interpretation["suggestedAnimations"],
        "responsiveHints": interpretation["responsiveHints"],
    })
    return merged


async def analyze_url(
    url: str,
    model: str | None = None,
    tier: str | None = None,
    custom_budget: dict | None = None,
    interpret: bool = True,
    http_client: httpx.AsyncClient | None = None,
    llm_client=None,
    job_id: str = "-",
) -> dict:
    t0 = time.time()
    tag = f"[analyze:{job_id}]"

    fetched = await fetch_url(url, client=http_client)
    logger.info(f"{tag} Fetched {fetched['finalUrl']} ({fetched['contentLength']} bytes)")

    result = await run_analysis(
        fetched["html"],
        fetched["finalUrl"],
        tier=tier,
        custom_budget=custom_budget,
        client=http_client,
        infer_roles=interpret,
    )
    structural = result["structural"]

    if interpret:
        interpretation = await interpret_design(result["ir"], model=model, client=llm_client)
        analysis = merge_interpretation(structural, interpretation, result["orders"])
        usage = interpretation["usage"]
    else:
        analysis = structural.to_dict()
        usage = None

    elapsed_ms = int((time.time() - t0) * 1000)
    logger.info(
        f"{tag} Done in {elapsed_ms}ms: {structural.node_count} nodes, "
        f"layout={structural.layout_type}, difficulty={structural.difficulty}"
    )
    return {
        "sourceUrl": fetched["finalUrl"],
        "analysis": analysis,
        "ir": result["ir"],
        "budget": result["budget"],
        "usage": usage,
        "processingTimeMs": elapsed_ms,
    }
