import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import orjson
import uvicorn
from fastapi import Body, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .errors import FetchError, NetworkError, ReloadSuperseded
from .models import (
    DetailRecord, ErrorResponse, FeatureSummary, HealthResponse,
    LayerView, SessionStatus, VisibilityRequest
)
from .session import ViewerSession
from .settings import (
    LOG_LEVEL,
    FRONTEND_ORIGIN,
    build_content_disposition,
    sanitize_export_filename,
)
from .utils.logging import setup_logging, get_logger

# Setup logging
setup_logging(LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    session: Optional[ViewerSession] = getattr(app.state, "session", None)
    if session is not None:
        await session.close()


app = FastAPI(
    title="FRA WebGIS Layer API",
    description="Filterable land-use and Forest Rights Act claim layers",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)
app.state.session = None

origins = [origin.strip() for origin in FRONTEND_ORIGIN.split(",") if origin.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    allow_origin_regex=r"https?://.*",
)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    """Log requests with timing and add request ID."""
    request_id = str(uuid.uuid4())[:8]
    start_time = datetime.utcnow()

    request.state.request_id = request_id

    logger.info(
        "Request started",
        extra={
            'request_id': request_id,
            'method': request.method,
            'url': str(request.url),
            'client_ip': request.client.host if request.client else None
        }
    )

    try:
        response = await call_next(request)
    except Exception as e:
        duration = (datetime.utcnow() - start_time).total_seconds() * 1000
        logger.error(
            "Request failed",
            extra={
                'request_id': request_id,
                'method': request.method,
                'url': str(request.url),
                'duration_ms': round(duration, 2),
                'error': str(e)
            },
            exc_info=True
        )
        raise

    duration = (datetime.utcnow() - start_time).total_seconds() * 1000
    logger.info(
        "Request completed",
        extra={
            'request_id': request_id,
            'method': request.method,
            'url': str(request.url),
            'status_code': response.status_code,
            'duration_ms': round(duration, 2)
        }
    )

    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with structured error response."""
    request_id = getattr(request.state, 'request_id', 'unknown')

    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=exc.detail,
            request_id=request_id
        ).model_dump()
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions with structured error response."""
    request_id = getattr(request.state, 'request_id', 'unknown')

    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="Internal server error",
            detail=str(exc) if LOG_LEVEL == "DEBUG" else None,
            request_id=request_id
        ).model_dump()
    )


def _fetch_error_status(exc: FetchError) -> int:
    return 504 if isinstance(exc, NetworkError) else 502


async def get_session(request: Request) -> ViewerSession:
    """Return the app's viewer session, creating and bootstrapping it on first use."""
    session: Optional[ViewerSession] = request.app.state.session
    if session is None:
        session = ViewerSession.create()
        request.app.state.session = session
        await session.bootstrap()
    session.client.open()
    return session


async def _reload(coro) -> FeatureSummary:
    try:
        return await coro
    except ReloadSuperseded as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except FetchError as exc:
        raise HTTPException(status_code=_fetch_error_status(exc), detail=str(exc))


@app.get("/healthz", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        status="ok",
        timestamp=datetime.utcnow().isoformat(),
        version=__version__
    )


@app.get("/api/session/status", response_model=SessionStatus)
async def session_status(req: Request):
    session = await get_session(req)
    controller = session.controller
    return SessionStatus(
        state=controller.state.value,
        status=controller.status,
        profile=session.profile.name,
        filters=controller.current_snapshot.to_query_params(),
    )


@app.get("/api/session/summary", response_model=FeatureSummary)
async def session_summary(req: Request):
    session = await get_session(req)
    summary = session.controller.current_summary()
    if summary is None:
        raise HTTPException(status_code=404, detail="No data has been loaded yet")
    return summary


@app.get("/api/session/filter-options", response_model=Dict[str, List[str]])
async def filter_options(req: Request):
    session = await get_session(req)
    try:
        session.filter_options = await session.client.filter_options()
    except FetchError as exc:
        raise HTTPException(status_code=_fetch_error_status(exc), detail=str(exc))
    return session.filter_options


@app.get("/api/session/filters", response_model=Dict[str, str])
async def current_filters(req: Request):
    session = await get_session(req)
    return session.controller.current_snapshot.to_query_params()


@app.post("/api/session/filters", response_model=FeatureSummary)
async def apply_filters(req: Request, fields: Dict[str, Any] = Body(...), force: bool = False):
    """Apply a new set of filter values and reload the layers."""
    session = await get_session(req)
    return await _reload(session.controller.apply_filters(fields, force=force))


@app.delete("/api/session/filters", response_model=FeatureSummary)
async def clear_filters(req: Request):
    session = await get_session(req)
    return await _reload(session.controller.clear_filters())


@app.post("/api/session/reload", response_model=FeatureSummary)
async def reload_layers(req: Request):
    """Reload the current filters, bypassing the unchanged-filters shortcut."""
    session = await get_session(req)
    return await _reload(session.controller.reload(force=True))


@app.get("/api/session/layers", response_model=List[LayerView])
async def list_layers(req: Request):
    session = await get_session(req)
    return session.layer_views()


@app.put("/api/session/layers/{category}", response_model=List[LayerView])
async def set_layer_visibility(category: str, request: VisibilityRequest, req: Request):
    """Show or hide one category layer. Unknown categories are ignored."""
    session = await get_session(req)
    session.registry.set_visibility(category, request.visible)
    return session.layer_views()


@app.get("/api/session/layers/{category}/geojson")
async def layer_geojson(category: str, req: Request):
    session = await get_session(req)
    layer = session.registry.get(category)
    if layer is None:
        raise HTTPException(status_code=404, detail=f"No layer for category '{category}'")
    return layer.to_geojson()


@app.get("/api/session/details/{entity_id}", response_model=DetailRecord)
async def entity_details(entity_id: str, req: Request):
    session = await get_session(req)
    try:
        return await session.resolver.resolve(entity_id)
    except FetchError as exc:
        raise HTTPException(status_code=_fetch_error_status(exc), detail=str(exc))


@app.get("/api/session/panels/{name}")
async def panel(name: str, req: Request):
    """Pass-through aggregates: statistics, fra-progress, performance, analytics."""
    session = await get_session(req)
    try:
        return await session.panel(name)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except FetchError as exc:
        raise HTTPException(status_code=_fetch_error_status(exc), detail=str(exc))


@app.get("/api/session/export")
async def export_data(req: Request, fileName: Optional[str] = None):
    """Download the export payload for the current filters as a JSON file."""
    session = await get_session(req)
    try:
        payload = await session.controller.export()
    except FetchError as exc:
        raise HTTPException(status_code=_fetch_error_status(exc), detail=str(exc))

    filename = sanitize_export_filename(fileName, ".json") or (
        f"{session.profile.export_prefix}_{date.today().isoformat()}.json"
    )
    return Response(
        content=orjson.dumps(payload, option=orjson.OPT_INDENT_2),
        media_type="application/json",
        headers={"Content-Disposition": build_content_disposition(filename)},
    )


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
