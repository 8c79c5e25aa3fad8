from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import time
import uuid
from datetime import datetime, timezone
from .routers.daily import router as daily_router
from .routers.branches import router as branches_router
from .routers.users import router as users_router
from .routers.config import router as config_router
from .routers.reports import router as reports_router
from .routers.devtools import router as devtools_router
from .config import settings
from .db import open_pool, close_pool
from .day_close import DayCloseError
from .drafts import FileKeyValueStore, MemoryKeyValueStore
from .logs import json_log
from .session import SessionRegistry
from .tables import MemoryTableClient, PgTableClient, RemoteError

app = FastAPI(title="Daily Balance API", version=settings.api_version)
STARTED_AT_UTC = datetime.now(timezone.utc)


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


# Backend failures carry the raw backend message so the operator can act on it.
@app.exception_handler(RemoteError)
def _remote_error(req: Request, exc: RemoteError):
    json_log(
        "error",
        "remote.error",
        request_id=_current_request_id(req),
        table=exc.table,
        op=exc.op,
        error=exc.message,
    )
    return JSONResponse(
        status_code=409 if exc.conflict else 502,
        content={"detail": exc.message, "table": exc.table},
    )


@app.exception_handler(DayCloseError)
def _day_close_error(req: Request, exc: DayCloseError):
    # Rows listed under `written` are committed; nothing is rolled back.
    return JSONResponse(
        status_code=409 if exc.conflict else 502,
        content={
            "detail": f"Error submitting transactions: {exc.message}",
            "table": exc.table,
            "written": [{"table": w["table"], "op": w["op"], "ref": w["ref"]} for w in exc.written],
        },
    )


@app.exception_handler(RequestValidationError)
def _request_validation_error(_req: Request, exc: Exception):
    content = {"detail": "validation failed"}
    if settings.env in {"local", "dev"} and hasattr(exc, "errors"):
        content["errors"] = exc.errors()
    return JSONResponse(status_code=422, content=content)


@app.exception_handler(Exception)
def _unhandled_exception(req: Request, exc: Exception):
    rid = _current_request_id(req)
    json_log(
        "error",
        "http.request.unhandled",
        request_id=rid,
        method=req.method,
        path=req.url.path,
        error=str(exc),
    )
    content = {"detail": "internal error", "request_id": rid}
    if settings.env in {"local", "dev"}:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)

# Correlation id + basic structured request logging.
@app.middleware("http")
async def _request_logging(request: Request, call_next):
    rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
    request.state.request_id = rid
    started = time.time()
    path = request.url.path
    method = request.method
    client_ip = (request.client.host if request.client else None)

    try:
        response = await call_next(request)
    except Exception as exc:
        dur_ms = int((time.time() - started) * 1000)
        json_log(
            "error",
            "http.request.error",
            request_id=rid,
            method=method,
            path=path,
            client_ip=client_ip,
            duration_ms=dur_ms,
            error=str(exc),
        )
        raise

    response.headers["X-Request-Id"] = rid
    response.headers["X-Content-Type-Options"] = "nosniff"
    if path != "/health":
        dur_ms = int((time.time() - started) * 1000)
        json_log(
            "info",
            "http.request",
            request_id=rid,
            method=method,
            path=path,
            status_code=response.status_code,
            client_ip=client_ip,
            duration_ms=dur_ms,
        )
    return response

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(daily_router)
app.include_router(branches_router)
app.include_router(users_router)
app.include_router(config_router)
app.include_router(reports_router)
# Dev-only helpers (route handlers self-disable outside local/dev).
app.include_router(devtools_router)


@app.on_event("startup")
def _startup():
    pool = None
    if settings.table_backend == "memory":
        tables = MemoryTableClient()
    else:
        pool = open_pool(settings.db_url)
        tables = PgTableClient(pool)
    store = FileKeyValueStore(settings.drafts_dir) if settings.drafts_dir else MemoryKeyValueStore()
    app.state.pool = pool
    app.state.tables = tables
    app.state.sessions = SessionRegistry(tables, store)
    json_log(
        "info",
        "startup.ready",
        env=settings.env,
        version=settings.api_version,
        table_backend=settings.table_backend,
        drafts=("file" if settings.drafts_dir else "memory"),
    )

@app.on_event("shutdown")
def _shutdown():
    pool = getattr(app.state, "pool", None)
    if pool is not None:
        close_pool(pool)

@app.get("/health")
def health():
    return {
        "status": "ok",
        "env": settings.env,
        "version": settings.api_version,
        "started_at": STARTED_AT_UTC.isoformat(),
    }
