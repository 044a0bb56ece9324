import os
import uuid
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from pagelens.errors import PipelineError
from pagelens.services.pipeline import analyze_url, run_analysis

logger = logging.getLogger(__name__)

router = APIRouter()

# ── Concurrency ──
MAX_CONCURRENT_ANALYSES = int(os.getenv("MAX_CONCURRENT_ANALYSES", "5"))
_analysis_semaphore = asyncio.Semaphore(MAX_CONCURRENT_ANALYSES)


class AnalyzeRequest(BaseModel):
    url: str
    model: Optional[str] = None
    tier: Optional[str] = None
    customBudget: Optional[dict] = None
    interpret: bool = True


class AnalyzeHtmlRequest(BaseModel):
    html: str
    baseUrl: str
    tier: Optional[str] = None
    customBudget: Optional[dict] = None


def _http_error(e: PipelineError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.to_dict())


def _reserve_slot(job_id: str) -> None:
    if _analysis_semaphore.locked():
        logger.warning(f"[analyze:{job_id}] Rejected: all {MAX_CONCURRENT_ANALYSES} slots busy")
        raise HTTPException(
            status_code=503,
            detail=f"Server busy: {MAX_CONCURRENT_ANALYSES} analyses already in progress. Try again shortly.",
        )


@router.post("/api/analyze")
async def analyze(request: AnalyzeRequest):
    """Fetch a page, reduce it to the requested budget, and optionally interpret it with the LLM."""
    url = request.url.strip()
    if "://" not in url:
        url = "https://" + url

    job_id = uuid.uuid4().hex[:8]
    _reserve_slot(job_id)

    async with _analysis_semaphore:
        logger.info(f"[analyze:{job_id}] Starting {url} (tier={request.tier}, interpret={request.interpret})")
        try:
            return await analyze_url(
                url,
                model=request.model,
                tier=request.tier,
                custom_budget=request.customBudget,
                interpret=request.interpret,
                job_id=job_id,
            )
        except PipelineError as e:
            logger.warning(f"[analyze:{job_id}] {e.kind}: {e.message}")
            raise _http_error(e)


@router.post("/api/analyze/html")
async def analyze_html(request: AnalyzeHtmlRequest):
    """Analyze caller-supplied HTML. No page fetch and no LLM call."""
    job_id = uuid.uuid4().hex[:8]
    _reserve_slot(job_id)

    async with _analysis_semaphore:
        try:
            result = await run_analysis(
                request.html,
                request.baseUrl,
                tier=request.tier,
                custom_budget=request.customBudget,
            )
        except PipelineError as e:
            logger.warning(f"[analyze:{job_id}] {e.kind}: {e.message}")
            raise _http_error(e)

    return {
        "ir": result["ir"],
        "structural": result["structural"].to_dict(),
        "budget": result["budget"],
    }
