from __future__ import annotations

from functools import lru_cache

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from shared.schemas.api import normalize_word
from shared.schemas.domain import CostMode, ParsedEtymChain

from .chain_parser import parse_chain
from .config import Settings
from .deadline import RequestDeadline
from .errors import BudgetExceeded
from .policy import BudgetLedger
from .providers import generate_text
from .research import ResearchOrchestrator
from .store import build_store

app = FastAPI(title="Etymon Orchestrator Service", version="0.1.0")


class ResearchRequest(BaseModel):
    word: str = Field(min_length=1, max_length=64)


class ParseRequest(BaseModel):
    word: str = Field(min_length=1, max_length=64)
    text: str = Field(min_length=1, max_length=20_000)
    source_name: str = "etymonline"


@lru_cache(maxsize=4)
def preview_ledger(settings: Settings) -> BudgetLedger:
    """Ledger over the shared store, so preview spend lands on the monthly counter."""
    return BudgetLedger(build_store(settings), settings.cost)


def _preview_mode(settings: Settings, ledger: BudgetLedger) -> CostMode:
    if settings.cost.force_cache_only:
        return CostMode.CACHE_ONLY
    return ledger.get_mode()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok", "service": "orchestrator"}


@app.post("/research")
def research_preview(request: ResearchRequest):
    try:
        word = normalize_word(request.word)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    settings = Settings.from_env()
    ledger = preview_ledger(settings)
    mode = _preview_mode(settings, ledger)
    # Root identification is model work, so the preview is refused wherever new lookups are.
    if mode.rank >= CostMode.PROTECTED.rank:
        error = BudgetExceeded(f"Research previews are paused ({mode.value} mode)", mode=mode, retry_after_s=ledger.retry_after_s(mode))
        raise HTTPException(
            status_code=error.status_code,
            detail=error.message,
            headers={"Retry-After": str(error.retry_after_s)},
        )
    orchestrator = ResearchOrchestrator(settings, generate=generate_text, record_usage=ledger.record_generation)
    context = orchestrator.research(word, RequestDeadline(settings.request_deadline_s))
    return {
        "word": word,
        "has_primary_text": context.has_primary_text,
        "roots": list(context.identified_roots),
        "fetches_used": context.fetches_used,
        "sources": {name: result.status.value for name, result in context.main_results.items()},
        "chains": [chain.model_dump() for chain in context.chains],
        "root_errors": context.root_errors,
    }


@app.post("/parse", response_model=ParsedEtymChain)
def parse_preview(request: ParseRequest) -> ParsedEtymChain:
    return parse_chain(request.text, request.word.strip().lower(), request.source_name)
