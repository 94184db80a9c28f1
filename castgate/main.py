# castgate/main.py
#
# -----------------------------------------------------------------------------
# Architectural notes (high level)
# -----------------------------------------------------------------------------
# This file is intentionally "thin" orchestration glue:
#   - It wires HTTP endpoints to the SignerLifecycleManager.
#   - It validates request shape, applies rate limiting to mutating routes and
#     maps CastgateError subclasses onto HTTP responses.
#   - It MUST NOT implement crypto or provider logic itself.
#
# Key modules / responsibilities:
#   - config.py     : environment-driven settings
#   - storage.py    : flat JSON-file store (users / posts / sessions)
#   - signers.py    : live signer table (mirrored to sessions) + per-id locks
#   - providers.py  : one class per signer provider
#   - lifecycle.py  : create / status / publish / profile / sweep orchestration
#   - clients.py    : Farcaster + Neynar HTTP clients
#   - keys.py       : Ed25519 signer keys + EIP-712 SignedKeyRequest
#   - messages.py   : CastAdd construction + signing for hub submission
#   - farcaster_proto.py : protobuf classes for the hub Message subset
#   - qr.py         : pure QR rendering
#
# Error responses always carry {"detail": {"error": <kind>, "message": ...}}.
# -----------------------------------------------------------------------------

import asyncio
import os
from contextlib import asynccontextmanager
from time import perf_counter
from typing import Any, Optional

import uvicorn
from fastapi import APIRouter, Body, FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .clients import FarcasterClient, NeynarClient
from .config import Settings, get_settings
from .errors import CastgateError, RateLimitError, ValidationError
from .lifecycle import SignerLifecycleManager, run_session_sweeper
from .logger import configure_logging, logger
from .models import Provider
from .ratelimit import RateLimiter
from .storage import FlatFileStore


class RequestLogMiddleware(BaseHTTPMiddleware):
    """Log one structured line per request."""

    async def dispatch(self, request: Request, call_next):
        start = perf_counter()
        request_id = request.headers.get("X-Request-Id", os.urandom(4).hex())
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            logger.info(
                "request.complete",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": status_code,
                    "duration_ms": round((perf_counter() - start) * 1000, 2),
                    "request_id": request_id,
                },
            )


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _manager(request: Request) -> SignerLifecycleManager:
    return request.app.state.manager


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _rate_limit(request: Request) -> None:
    if not request.app.state.limiter.allow(_client_ip(request)):
        raise RateLimitError("Rate limit exceeded. Please try again later.")


def _opt_str(body: dict, *keys: str) -> Optional[str]:
    for k in keys:
        v = body.get(k)
        if v is None:
            continue
        if not isinstance(v, str):
            raise ValidationError(f"{k} must be a string")
        if v.strip():
            return v
    return None


router = APIRouter()


# -----------------------------------------------------------------------------
# Signers
# -----------------------------------------------------------------------------
@router.post("/api/create-signer")
async def create_signer(request: Request, body: dict = Body(...)):
    fid = body.get("fid")
    credential_id = _opt_str(body, "signerUuid", "signerId")
    provider = _opt_str(body, "provider")
    if provider is None:
        provider = Provider.HOSTED_PRE_APPROVED.value if credential_id else Provider.DIRECT.value

    if fid is None or (provider == Provider.HOSTED_PRE_APPROVED.value and not credential_id):
        raise ValidationError("FID and signerUuid are required for SIWN flow")

    _rate_limit(request)

    signer = await _manager(request).create_credential(fid, provider, credential_id)

    if signer.provider is Provider.HOSTED_PRE_APPROVED:
        message = "SIWN signer connected successfully! Ready to cast."
    elif signer.approval_url:
        message = "Signer created. Present the approval URL to the user."
    else:
        message = f"Signer created with status {signer.status}."

    return {
        "success": True,
        "signer": signer.public_view(),
        "provider": signer.provider.value,
        "message": message,
    }


@router.get("/api/signer-status/{signer_id}")
async def signer_status(signer_id: str, request: Request):
    signer = await _manager(request).check_status(signer_id)
    return {
        "success": True,
        "signer": signer.public_view(),
        "status": signer.status,
        "provider": signer.provider.value,
        "message": (
            "Signer approved and ready for casting!"
            if signer.is_ready
            else f"Signer status: {signer.status}"
        ),
    }


@router.get("/api/qr-code/{signer_id}")
async def qr_code(signer_id: str, request: Request):
    return {"success": True, **_manager(request).qr_code(signer_id)}


# -----------------------------------------------------------------------------
# Casts
# -----------------------------------------------------------------------------
@router.post("/api/post-cast")
async def post_cast(request: Request, body: dict = Body(...)):
    signer_id = _opt_str(body, "signerId", "signerUuid")
    text = body.get("text")
    if text is not None and not isinstance(text, str):
        raise ValidationError("text must be a string")
    if not signer_id or not text:
        raise ValidationError("Signer id and text are required")
    parent_ref = _opt_str(body, "parentRef", "parentUrl")

    _rate_limit(request)

    post = await _manager(request).publish(signer_id, text, parent_ref)
    return {
        "success": True,
        "cast": post,
        "provider": post["provider"],
        "message": "Cast posted successfully to Farcaster!",
    }


@router.get("/api/posts/{fid}")
async def posts_for_user(fid: str, request: Request, limit: int = 50):
    if limit < 1 or limit > 500:
        raise ValidationError("limit must be between 1 and 500")
    posts = _manager(request).posts_for(fid, limit=limit)
    return {"success": True, "fid": int(fid), "posts": posts}


# -----------------------------------------------------------------------------
# Users / stats
# -----------------------------------------------------------------------------
@router.get("/api/user/{fid}")
async def get_user(fid: str, request: Request):
    user, provider = await _manager(request).get_profile(fid)
    return {"success": True, "user": user, "provider": provider}


@router.get("/api/stats")
async def stats(request: Request):
    return {"success": True, **_manager(request).stats()}


@router.get("/health")
async def health():
    return {"status": "ok"}


# -----------------------------------------------------------------------------
# FastAPI application
# -----------------------------------------------------------------------------
def build_manager(settings: Settings) -> SignerLifecycleManager:
    return SignerLifecycleManager(
        settings=settings,
        store=FlatFileStore(settings.DATA_DIR),
        farcaster=FarcasterClient(
            settings.FARCASTER_API_BASE,
            settings.FARCASTER_HUB_BASE,
            timeout=settings.UPSTREAM_TIMEOUT_SECONDS,
        ),
        neynar=NeynarClient(
            settings.NEYNAR_API_KEY,
            api_base=settings.NEYNAR_API_BASE,
            timeout=settings.UPSTREAM_TIMEOUT_SECONDS,
        ),
    )


def create_app(
    settings: Optional[Settings] = None,
    manager: Optional[SignerLifecycleManager] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)
    manager = manager or build_manager(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = asyncio.create_task(
            run_session_sweeper(manager, settings.SESSION_SWEEP_INTERVAL_SECONDS)
        )
        logger.info(
            "app.started",
            extra={"port": settings.PORT, "neynar": manager.neynar.available},
        )
        try:
            yield
        finally:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass
            await manager.farcaster.aclose()
            await manager.neynar.aclose()

    app = FastAPI(
        title="castgate",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.manager = manager
    app.state.limiter = RateLimiter(
        max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
    )
    app.add_middleware(RequestLogMiddleware)

    @app.exception_handler(CastgateError)
    async def castgate_error_handler(request: Request, exc: CastgateError) -> Any:
        if exc.status_code >= 500:
            logger.error(
                "request.failed",
                extra={"path": request.url.path, "error": exc.kind, "detail": exc.message},
            )
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> Any:
        logger.error(
            "request.unhandled",
            exc_info=exc,
            extra={"path": request.url.path, "method": request.method, "error": type(exc).__name__},
        )
        return JSONResponse(
            status_code=500,
            content={"detail": {"error": "internal_error", "message": "Internal server error"}},
        )

    app.include_router(router)
    return app


def run() -> None:
    settings = get_settings()
    uvicorn.run("castgate.main:create_app", factory=True, host="0.0.0.0", port=settings.PORT)


if __name__ == "__main__":
    run()
