from __future__ import annotations

import asyncio
import hmac

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from shared.schemas.api import (
    WORD_MAX_LENGTH,
    AdminStatsResponse,
    ErrorResponse,
    EtymologyRequest,
    EtymologyResponse,
    RandomWordData,
    RandomWordResponse,
    SuggestionsData,
    SuggestionsResponse,
)
from shared.schemas.domain import dump_result

from services.orchestrator.app.deadline import RequestDeadline
from services.orchestrator.app.errors import BudgetExceeded, EtymologyError, InputInvalid, WordNotFound
from services.orchestrator.app.observability import get_logger, safe_error
from services.orchestrator.app.spellcheck import suggestions_for
from services.orchestrator.app.wordlist import random_word

from .state import app_state

log = get_logger(__name__)

DISCONNECT_POLL_S = 0.25
SUGGESTIONS_MAX_AGE_S = 86_400
RANDOM_WORD_MAX_AGE_S = 3_600

app = FastAPI(title="Etymon API Gateway", version="0.1.0")


def _error_response(exc: EtymologyError) -> JSONResponse:
    body = ErrorResponse(error=safe_error(exc.message), category=exc.category)
    headers: dict[str, str] = {}
    if isinstance(exc, WordNotFound):
        body.suggestions = exc.suggestions or None
        body.suggestion = exc.suggestion
    if isinstance(exc, BudgetExceeded):
        body.details = {"mode": exc.mode.value}
        headers["Retry-After"] = str(exc.retry_after_s)
    return JSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(mode="json", exclude_none=True),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = [str(error.get("msg", "")) for error in exc.errors()]
    return _error_response(InputInvalid("; ".join(message for message in messages if message) or "invalid request"))


async def _cancel_on_disconnect(request: Request, deadline: RequestDeadline) -> None:
    while not deadline.cancelled:
        if await request.is_disconnected():
            log.info("client_disconnected", path=request.url.path)
            deadline.cancel()
            return
        await asyncio.sleep(DISCONNECT_POLL_S)


@app.get("/health")
def health() -> dict:
    registry = app_state.registry()
    provider = app_state.settings.synthesis.provider
    return {
        "status": "ok",
        "service": "api_gateway",
        "provider": provider,
        "provider_configured": registry.is_configured(provider),
    }


@app.post(
    "/v1/etymology",
    response_model=EtymologyResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}, 502: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def lookup_etymology(body: EtymologyRequest, request: Request):
    pipeline = app_state.pipeline()
    deadline = RequestDeadline(pipeline.settings.request_deadline_s)
    watcher = asyncio.create_task(_cancel_on_disconnect(request, deadline))
    try:
        outcome = await asyncio.to_thread(pipeline.lookup, body.word, deadline)
    except EtymologyError as exc:
        log.info("lookup_failed", word=body.word, category=exc.category, status_code=exc.status_code)
        return _error_response(exc)
    finally:
        watcher.cancel()
    return JSONResponse(
        content={"success": True, "data": dump_result(outcome.result), "cached": outcome.cached},
    )


@app.get("/v1/admin/stats", response_model=AdminStatsResponse)
def admin_stats(x_admin_secret: str | None = Header(default=None, alias="x-admin-secret")) -> AdminStatsResponse:
    expected = app_state.settings.admin_secret
    if not expected:
        raise HTTPException(status_code=404, detail="not found")
    if not x_admin_secret or not hmac.compare_digest(x_admin_secret.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="unauthorized")
    return AdminStatsResponse(**app_state.pipeline().stats())


@app.get("/v1/suggestions", response_model=SuggestionsResponse, responses={400: {"model": ErrorResponse}})
def word_suggestions(q: str | None = Query(default=None)):
    query = (q or "").strip()
    if not query or len(query) > WORD_MAX_LENGTH:
        error = 'Query parameter "q" is required' if not query else "Query too long"
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(error=error, category="invalid_query").model_dump(mode="json", exclude_none=True),
        )
    body = SuggestionsResponse(data=SuggestionsData(suggestions=suggestions_for(query)))
    return JSONResponse(
        content=body.model_dump(mode="json"),
        headers={"Cache-Control": f"public, max-age={SUGGESTIONS_MAX_AGE_S}"},
    )


@app.get("/v1/random-word", response_model=RandomWordResponse)
def random_word_endpoint():
    body = RandomWordResponse(data=RandomWordData(word=random_word()))
    return JSONResponse(
        content=body.model_dump(mode="json"),
        headers={"Cache-Control": f"public, max-age={RANDOM_WORD_MAX_AGE_S}"},
    )
