import os
import re
import json
import time
import logging
from openai import AsyncOpenAI

from pagelens.errors import PayloadTooLarge, UpstreamFailure
from pagelens.services.summary import serialize_ir

logger = logging.getLogger(__name__)

DEFAULT_MODEL = os.getenv("DEFAULT_MODEL", "anthropic/claude-sonnet-4.5")
LLM_BASE_URL = os.getenv("LLM_BASE_URL", "https://openrouter.ai/api/v1")

MAX_INPUT_CHARS = 80_000
MAX_OUTPUT_TOKENS = 2048

# OpenRouter pricing per million tokens
MODEL_PRICING = {
    "anthropic/claude-sonnet-4.5": {"input": 3.00, "output": 15.00},
    "anthropic/claude-sonnet-4": {"input": 3.00, "output": 15.00},
    "openai/gpt-4o": {"input": 2.50, "output": 10.00},
    "openai/gpt-4o-mini": {"input": 0.15, "output": 0.60},
}
DEFAULT_PRICING = {"input": 3.00, "output": 15.00}

ALLOWED_ANIMATIONS = ("fade", "slide", "reveal")
CONFIDENCE_LEVELS = ("high", "medium", "low")

SYSTEM_PROMPT = """You are a Semantic DOM Interpreter.

You receive a HIERARCHICAL DOM TREE as JSON, with resolved CSS for every node.
Your task is to assign semantic ROLES to nodes based on visual behavior.

HTML tag names are NOT the source of truth. The source of truth is:
1. CSS properties (position, display, background, z-index, etc.)
2. Visual behavior inferred from CSS
3. Layout structure (grid, flex, columns)
4. Content grouping patterns

RULES:
- Never classify a node from its tag name alone
- Identify nodes by their "order" field
- Only assign roles to SIGNIFICANT nodes (containers with visual identity)
- Skip trivial nodes (empty wrappers with no CSS)
- CSS values that start with "$" are references into "cssValueDictionary"
- "structural" holds deterministic layout facts; do not contradict them

CSS INTERPRETATION:
- position: fixed/sticky → likely header, nav or overlay
- background-color or gradient → visual block identity
- z-index > 10 → layered importance
- display: grid/flex with several children → section with cards
- padding > 40px → major section boundary
- max-width with margin: auto → centered content container

Output ONLY a JSON object of this shape:
{
  "nodes": [
    {
      "nodeOrder": 0,
      "inferredRole": "header",
      "confidence": "high",
      "cssSignalsUsed": ["position: fixed", "z-index: 1000"],
      "visualDescription": "Fixed navigation bar at top of page"
    }
  ],
  "layoutIntent": "Marketing landing page with hero, features, and CTA",
  "hierarchy": "Header → Hero → Features → Testimonials → CTA → Footer",
  "emphasis": ["hero", "cta"],
  "suggestedAnimations": ["fade"],
  "responsiveHints": ["Grid collapses to single column on mobile"]
}

confidence is one of "high", "medium", "low".
suggestedAnimations may only contain "fade", "slide" or "reveal"."""


def _extract_usage(response) -> dict:
    """Extract token usage from an API response."""
    usage = getattr(response, "usage", None)
    tokens_in = getattr(usage, "prompt_tokens", 0) if usage else 0
    tokens_out = getattr(usage, "completion_tokens", 0) if usage else 0
    return {"tokens_in": tokens_in or 0, "tokens_out": tokens_out or 0}


def _calc_cost(tokens_in: int, tokens_out: int, model: str) -> float:
    """Calculate USD cost from token counts and model name."""
    pricing = MODEL_PRICING.get(model, DEFAULT_PRICING)
    cost = (tokens_in * pricing["input"] + tokens_out * pricing["output"]) / 1_000_000
    return round(cost, 6)


_client: AsyncOpenAI | None = None


def get_llm_client() -> AsyncOpenAI:
    global _client
    if _client is None:
        api_key = os.getenv("OPENROUTER_API_KEY", "")
        if not api_key:
            raise UpstreamFailure("LLM API key not configured (set OPENROUTER_API_KEY)")
        _client = AsyncOpenAI(
            base_url=LLM_BASE_URL,
            api_key=api_key,
            timeout=120.0,
        )
    return _client


def _strip_fences(raw: str) -> str:
    match = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", raw)
    return match.group(1).strip() if match else raw.strip()


def _str_list(value) -> list[str]:
    return [str(v) for v in value] if isinstance(value, list) else []


def parse_interpretation(raw: str) -> dict:
    """Validate and sanitize the model's JSON answer.

    Raises UpstreamFailure when the answer is not JSON or misses required
    fields; unknown animations are dropped and unknown confidences become low.
    """
    try:
        data = json.loads(_strip_fences(raw))
    except (json.JSONDecodeError, ValueError) as e:
        raise UpstreamFailure(f"Invalid LLM response: {e}")
    if not isinstance(data, dict):
        raise UpstreamFailure("Invalid LLM response: expected a JSON object")

    if not isinstance(data.get("nodes"), list):
        raise UpstreamFailure('Invalid LLM response: missing or invalid "nodes" array')
    if not data.get("layoutIntent") or not data.get("hierarchy"):
        raise UpstreamFailure("Invalid LLM response: missing layoutIntent or hierarchy")

    nodes = []
    for i, node in enumerate(data["nodes"]):
        if not isinstance(node, dict) or node.get("nodeOrder") is None or not node.get("inferredRole"):
            raise UpstreamFailure(f"Invalid LLM response: node {i} is missing required fields")
        try:
            order = int(node["nodeOrder"])
        except (TypeError, ValueError):
            raise UpstreamFailure(f"Invalid LLM response: node {i} has a non-numeric nodeOrder")
        confidence = node.get("confidence")
        nodes.append({
            "nodeOrder": order,
            "inferredRole": str(node["inferredRole"]),
            "confidence": confidence if confidence in CONFIDENCE_LEVELS else "low",
            "cssSignalsUsed": _str_list(node.get("cssSignalsUsed")),
            "visualDescription": str(node.get("visualDescription") or "No description provided"),
        })

    return {
        "nodes": nodes,
        "layoutIntent": str(data["layoutIntent"]),
        "hierarchy": str(data["hierarchy"]),
        "emphasis": _str_list(data.get("emphasis")),
        "suggestedAnimations": [a for a in _str_list(data.get("suggestedAnimations")) if a in ALLOWED_ANIMATIONS],
        "responsiveHints": _str_list(data.get("responsiveHints")),
    }


async def interpret_design(ir: dict, model: str | None = None, client=None) -> dict:
    """Ask the LLM for per-node roles and layout intent for an assembled IR.

    ``client`` is any object with the AsyncOpenAI ``chat.completions.create``
    interface; the shared OpenRouter client is used when omitted.
    """
    model = model or DEFAULT_MODEL
    payload = serialize_ir(ir)
    if len(payload) > MAX_INPUT_CHARS:
        raise PayloadTooLarge(
            f"Page content too large for analysis ({len(payload)} chars, max {MAX_INPUT_CHARS}). "
            "Try a smaller tier."
        )

    client = client or get_llm_client()
    logger.info(f"[ai] Interpreting {len(payload)} chars of IR with {model}")

    t0 = time.time()
    try:
        response = await client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": f"Analyze this DOM tree and provide node interpretations:\n\n{payload}"},
            ],
            max_tokens=MAX_OUTPUT_TOKENS,
            response_format={"type": "json_object"},
            temperature=0.3,
        )
    except Exception as e:
        logger.error(f"[ai] Interpretation failed: {e}")
        raise UpstreamFailure(f"Design interpretation failed: {e}")

    raw = (response.choices[0].message.content or "").strip()
    u = _extract_usage(response)
    cost = _calc_cost(u["tokens_in"], u["tokens_out"], model)
    logger.info(
        f"[ai] Interpreted in {time.time() - t0:.1f}s | "
        f"tokens: {u['tokens_in']} in, {u['tokens_out']} out | cost=${cost:.4f}"
    )

    result = parse_interpretation(raw)
    result["usage"] = {**u, "cost": cost, "model": model}
    return result
