"""FastAPI application for the release summarizer.

Endpoints:
- POST /repositories - Track a repository (first check runs immediately)
- GET /repositories - List tracked repositories
- GET /repositories/{owner}/{repo}/summaries - Recorded summaries
- POST /repositories/{owner}/{repo}/summarize-now - One-off summary of the
  latest release; bypasses dedup and records nothing
- GET /health - Health check for load balancers and monitoring

The release checks run in the same process: the lifespan starts the
service, which restores the persisted timers.

To run locally:
    uvicorn release_summarizer.main:app --reload --port 8000
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from release_summarizer.config import AppConfig, load_config
from release_summarizer.errors import (
    FetchFailed,
    NotFound,
    SessionAborted,
    UpstreamUnavailable,
)
from release_summarizer.logging_config import get_logger, setup_logging
from release_summarizer.schemas import (
    ReleaseSummary,
    RepositoryIdentifier,
    SummaryResponse,
    TrackRepositoryRequest,
    TrackRepositoryResponse,
)
from release_summarizer.service import ReleaseSummarizerService

logger = get_logger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        start = time.monotonic()
        response = await call_next(request)
        logger.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round((time.monotonic() - start) * 1000, 1),
        )
        return response


def _identifier(owner: str, repo: str) -> RepositoryIdentifier:
    try:
        return RepositoryIdentifier(owner=owner, repo=repo)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


def _service(request: Request) -> ReleaseSummarizerService:
    return request.app.state.service


def create_app(
    service: ReleaseSummarizerService | None = None,
    config: AppConfig | None = None,
) -> FastAPI:
    """Build the FastAPI app.

    Args:
        service: A prebuilt service (tests). Built from config when None.
        config: Configuration used to build the service. Loaded from
                the environment when None.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        if service is None:
            setup_logging()
        app.state.service = service or ReleaseSummarizerService(config or load_config())
        await app.state.service.start()
        yield
        await app.state.service.stop()

    app = FastAPI(
        title="Release Summarizer",
        description="Watches GitHub repositories and summarizes new releases",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # -----------------------------------------------------------------------
    # Error Handling
    # -----------------------------------------------------------------------

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound) -> JSONResponse:
        return JSONResponse(status_code=404, content={"error": "not_found", "detail": str(exc)})

    @app.exception_handler(FetchFailed)
    async def fetch_failed_handler(request: Request, exc: FetchFailed) -> JSONResponse:
        return JSONResponse(status_code=502, content={"error": "github_unavailable", "detail": str(exc)})

    @app.exception_handler(SessionAborted)
    async def session_aborted_handler(request: Request, exc: SessionAborted) -> JSONResponse:
        return JSONResponse(status_code=502, content={"error": "session_aborted", "detail": str(exc)})

    @app.exception_handler(UpstreamUnavailable)
    async def upstream_handler(request: Request, exc: UpstreamUnavailable) -> JSONResponse:
        return JSONResponse(status_code=502, content={"error": "llm_unavailable", "detail": str(exc)})

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    @app.post(
        "/repositories",
        response_model=TrackRepositoryResponse,
        status_code=status.HTTP_201_CREATED,
    )
    async def track_repository(body: TrackRepositoryRequest, request: Request) -> TrackRepositoryResponse:
        repository = _identifier(body.owner, body.repo)
        created = await _service(request).track_repository(repository, body.github_api_token)
        return TrackRepositoryResponse(repository=str(repository), created=created)

    @app.get("/repositories", response_model=list[str])
    async def list_repositories(request: Request) -> list[str]:
        return [str(r) for r in await _service(request).list_repositories()]

    @app.get("/repositories/{owner}/{repo}/summaries", response_model=list[ReleaseSummary])
    async def list_summaries(owner: str, repo: str, request: Request) -> list[ReleaseSummary]:
        repository = _identifier(owner, repo)
        state = await _service(request).get_repository(repository)
        if not state.tracked:
            raise HTTPException(status_code=404, detail=f"{repository} is not tracked")
        return list(state.summaries)

    @app.post("/repositories/{owner}/{repo}/summarize-now", response_model=SummaryResponse)
    async def summarize_now(owner: str, repo: str, request: Request) -> SummaryResponse:
        repository = _identifier(owner, repo)
        release, text = await _service(request).summarize_now(repository)
        return SummaryResponse(
            repository=str(repository),
            release_id=release.id,
            release_name=release.name,
            text=text,
        )

    return app


app = create_app()
