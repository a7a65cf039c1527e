from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from dotenv import load_dotenv
import supabase
import os
from uuid import uuid4

from readrise.routes.http import http_client
from readrise.routes import achievements
from readrise.config.environment import validate_environment
from readrise.logging_utils import configure_logging, set_request_context, clear_request_context
from readrise.services.metrics import metrics, record_dependency_call
from readrise.services.resilience import call_blocking_with_timeout
import logging
import time


def _read_process_rss_megabytes() -> float:
    try:
        with open("/proc/self/status", "r", encoding="utf-8") as status_file:
            for line in status_file:
                if line.startswith("VmRSS:"):
                    parts = line.split()
                    if len(parts) >= 2:
                        return float(parts[1]) / 1024.0
    except OSError:
        return 0.0
    return 0.0


def _parse_cors_origins(value: str | None) -> list[str]:
    if not value:
        return []
    return [origin.strip() for origin in value.split(",") if origin.strip()]


def get_cors_settings() -> list[str]:
    configured_origins = _parse_cors_origins(os.getenv("CORS_ORIGINS"))

    if ENV in {"staging", "prod"}:
        if not configured_origins:
            raise RuntimeError("CORS_ORIGINS must be set in staging/prod and cannot be empty")
        if any(origin == "*" for origin in configured_origins):
            raise RuntimeError("CORS_ORIGINS cannot contain '*' in staging/prod")
        return configured_origins

    dev_localhost_origins = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]
    return list(dict.fromkeys(configured_origins + dev_localhost_origins))


def _status_bucket(status_code: int) -> str:
    if status_code >= 500:
        return "5xx"
    if status_code >= 400:
        return "4xx"
    if status_code >= 300:
        return "3xx"
    return "2xx"


def _route_metric_key(path: str) -> str:
    normalized = path.strip("/") or "root"
    safe = [char if char.isalnum() else "_" for char in normalized]
    return "".join(safe)[:80]

# --------------------------------------------------
# ENV + SUPABASE
# --------------------------------------------------
load_dotenv()
configure_logging()
logger = logging.getLogger(__name__)
ENV = validate_environment()

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")

SUPABASE_CALL_TIMEOUT_SECONDS = float(os.getenv("SUPABASE_CALL_TIMEOUT_SECONDS", "4.0"))
SUPABASE_RETRY_ATTEMPTS = int(os.getenv("SUPABASE_RETRY_ATTEMPTS", "2"))

PUBLIC_PATHS = {"/healthz"}

_supabase_anon = None


def _auth_client():
    global _supabase_anon
    if _supabase_anon is None:
        _supabase_anon = supabase.create_client(SUPABASE_URL, SUPABASE_KEY)
    return _supabase_anon


async def _supabase_call(callable_fn):
    last_error = None
    for attempt in range(1, SUPABASE_RETRY_ATTEMPTS + 1):
        try:
            return await call_blocking_with_timeout(callable_fn, timeout_s=SUPABASE_CALL_TIMEOUT_SECONDS)
        except TimeoutError as exc:
            last_error = exc
            if attempt >= SUPABASE_RETRY_ATTEMPTS:
                raise
    raise RuntimeError("supabase call failed") from last_error


async def resolve_user_id(token: str) -> str | None:
    user_res = await _supabase_call(
        lambda: record_dependency_call("supabase_auth", lambda: _auth_client().auth.get_user(token))
    )
    user = getattr(user_res, "user", None)
    return getattr(user, "id", None)


# ============================== APP LIFESPAN =============================

@asynccontextmanager
async def lifespan(app: FastAPI):
    metrics.set_gauge_callback("process.memory_rss_mb", _read_process_rss_megabytes)
    logger.info("app.startup_ready", extra={"env": ENV})

    try:
        yield
    finally:
        await http_client.aclose()
        logger.info("app.shutdown_http_client_closed")


# --------------------------------------------------
# APP INIT
# --------------------------------------------------
app = FastAPI(title="ReadRise achievements", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_settings(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ====================== AUTH MIDDLEWARE ====================

def _with_request_id(response, request: Request):
    response.headers["X-Request-Id"] = request.state.request_id
    return response


@app.middleware("http")
async def auth_middleware(request: Request, call_next):
    request.state.request_id = request.headers.get("X-Request-ID") or str(uuid4())
    request.state.user_id = None
    start = time.perf_counter()

    auth_header = request.headers.get("authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        token = auth_header.split(" ", 1)[1].strip()
        try:
            request.state.user_id = await resolve_user_id(token)
            if not request.state.user_id:
                raise ValueError("Invalid token")
        except Exception as e:
            logger.warning("auth.token_validation_failed", extra={"error": str(e)})
            if request.url.path not in PUBLIC_PATHS:
                response = JSONResponse({"code": "AUTH_INVALID", "message": "Unauthorized"}, status_code=401)
                return _with_request_id(response, request)

    set_request_context(
        request_id=request.state.request_id,
        route=request.url.path,
        user_id=request.state.user_id,
    )
    response = None
    try:
        response = await call_next(request)
    finally:
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        status = getattr(response, "status_code", 500)
        metrics.inc("http.request_count")
        metrics.observe_ms("http.request_latency", latency_ms)
        metrics.inc(f"http.route.{_route_metric_key(request.url.path)}.{_status_bucket(status)}")
        if status >= 400:
            metrics.inc("http.error_count")
        set_request_context(status=status, latency_ms=latency_ms)
        logger.info("request.completed")
        clear_request_context()

    return _with_request_id(response, request)


# --------------------------------------------------
# BASIC ROUTES
# --------------------------------------------------
@app.get("/healthz")
async def healthz():
    return {"status": "ok", "env": ENV}


@app.get("/metrics")
async def metrics_endpoint(request: Request):
    if not request.state.user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return PlainTextResponse(
        content=metrics.render_prometheus(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )

# --------------------------------------------------
# ROUTERS
# --------------------------------------------------
app.include_router(achievements.router)
