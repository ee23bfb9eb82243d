from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from .aggregator import fetch_sources, main_word_sources
from .models import SourceResult

app = FastAPI(title="Etymon Source Retrieval Service", version="0.1.0")


class FetchRequest(BaseModel):
    term: str = Field(min_length=1, max_length=64)
    sources: list[str] | None = None
    timeout_s: float = Field(default=4.0, gt=0.0, le=30.0)


class FetchResponse(BaseModel):
    term: str
    results: dict[str, SourceResult]


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok", "service": "retrieval_service"}


@app.post("/fetch", response_model=FetchResponse)
def fetch(request: FetchRequest) -> FetchResponse:
    known = main_word_sources(public_search_enabled=True)
    sources = tuple(request.sources or known)
    unknown = [name for name in sources if name not in known]
    if unknown:
        raise HTTPException(status_code=400, detail=f"unknown sources: {', '.join(unknown)}")
    results = fetch_sources(request.term.strip().lower(), sources, timeout_s=request.timeout_s)
    return FetchResponse(term=request.term, results=results)
