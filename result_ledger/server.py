"""
Result Ledger HTTP host

FastAPI application exposing the publish/amend transitions.

The host is responsible for what the transition handler assumes:
- caller identity comes from X-Api-Key (never from the request body)
- transitions are applied one at a time by a single handler instance
- events go to the configured sink (signed audit log if configured)
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .audit_log import AuditLogEventSink, TamperEvidentAuditLog
from .auth import ApiKeyAuth
from .config import LedgerConfig
from .crypto import key_hex, load_signing_key, parse_key_hex
from .errors import LEDGER_E_AUTH_REQUIRED, LedgerError, NotFound, ledger_error
from .events import EventSink, NullEventSink
from .handler import TransitionHandler
from .metrics import instrument_fastapi
from .records import build_store

logger = logging.getLogger("result_ledger")


# ---------------------------
# Request/Response Models
# ---------------------------

class ResultRequest(BaseModel):
    """Publish/amend request. Strings are stored as their UTF-8 bytes."""
    subject: str
    tester: str = ""
    positive: bool


class TransitionResponse(BaseModel):
    event: str
    key: str
    tester: str
    positive: bool
    weight: int


class RecordResponse(BaseModel):
    key: str
    positive: bool
    tester: str


def build_handler(config: Optional[LedgerConfig] = None) -> TransitionHandler:
    """Wire store, sink and handler from configuration."""
    config = config or LedgerConfig.from_env()
    store = build_store(config.store, config.db_path)

    sink: EventSink = NullEventSink()
    if config.audit_log_path:
        signer = load_signing_key(
            config.signing_key_hex,
            allow_ephemeral=config.allow_ephemeral_signing_keys,
        )
        if signer is None:
            raise RuntimeError(
                "LEDGER_AUDIT_LOG_PATH is set but no signing key is configured. "
                "Set LEDGER_SIGNING_KEY, or LEDGER_ALLOW_EPHEMERAL_SIGNING_KEYS=1 for demos/tests."
            )
        sink = AuditLogEventSink(TamperEvidentAuditLog(config.audit_log_path, signer))
        logger.info("Audit log enabled at %s (key_id=%s)", config.audit_log_path, signer.key_id)

    return TransitionHandler(store, sink, config=config)


# ---------------------------
# FastAPI App Factory
# ---------------------------

def create_app(handler: Optional[TransitionHandler] = None) -> FastAPI:
    """Create FastAPI application with ledger endpoints."""
    from . import __version__

    if handler is None:
        handler = build_handler()
    max_request_bytes = handler.config.max_request_bytes

    app = FastAPI(
        title="Result Ledger",
        description="Publish and amend test results keyed by subject and caller",
        version=__version__,
    )

    @app.exception_handler(LedgerError)
    async def _ledger_error_handler(request: Request, exc: LedgerError):
        return JSONResponse(status_code=int(exc.http_status or 400), content=exc.as_dict())

    instrument_fastapi(app)

    @app.middleware("http")
    async def _limit_request_size(req: Request, call_next):
        cl = req.headers.get("content-length")
        if cl is not None:
            try:
                too_large = int(cl) > max_request_bytes
            except ValueError:
                return JSONResponse(status_code=400, content={"detail": "BAD_CONTENT_LENGTH"})
            if too_large:
                return JSONResponse(status_code=413, content={"detail": "REQUEST_TOO_LARGE"})
        return await call_next(req)

    api_auth = ApiKeyAuth.load_from_env()

    def _caller(x_api_key: Optional[str], x_caller_id: Optional[str]) -> str:
        ctx = api_auth.resolve_context(x_api_key, x_caller_id)
        if ctx.error:
            raise ledger_error(LEDGER_E_AUTH_REQUIRED, ctx.error, http_status=401)
        if not ctx.caller_id:
            raise ledger_error(LEDGER_E_AUTH_REQUIRED, "caller identity required", http_status=401)
        return ctx.caller_id

    @app.post("/v1/results/publish", response_model=TransitionResponse)
    async def publish_result(
        request: ResultRequest,
        x_api_key: Optional[str] = Header(None, alias="X-Api-Key"),
        x_caller_id: Optional[str] = Header(None, alias="X-Caller-Id"),
    ):
        """Publish a first result for (subject, caller)."""
        caller = _caller(x_api_key, x_caller_id)
        outcome = handler.publish(
            caller,
            request.subject.encode("utf-8"),
            request.tester.encode("utf-8"),
            request.positive,
        )
        return TransitionResponse(**outcome.to_dict())

    @app.post("/v1/results/amend", response_model=TransitionResponse)
    async def amend_result(
        request: ResultRequest,
        x_api_key: Optional[str] = Header(None, alias="X-Api-Key"),
        x_caller_id: Optional[str] = Header(None, alias="X-Caller-Id"),
    ):
        """Replace the result previously published for (subject, caller)."""
        caller = _caller(x_api_key, x_caller_id)
        outcome = handler.amend(
            caller,
            request.subject.encode("utf-8"),
            request.tester.encode("utf-8"),
            request.positive,
        )
        return TransitionResponse(**outcome.to_dict())

    @app.get("/v1/results/{key}", response_model=RecordResponse)
    async def get_result(key: str):
        raw = parse_key_hex(key)
        record = handler.get(raw)
        if record is None:
            raise NotFound(key_hex(raw))
        return RecordResponse(key=key_hex(raw), **record.to_dict())

    @app.get("/v1/stats")
    async def stats():
        return handler.stats.snapshot(extra={"records": len(handler.store)})

    @app.get("/v1/health")
    async def health_check():
        return {"status": "healthy", "store": handler.config.store}

    return app


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


def main() -> int:
    """
    Entry point for the result-ledger CLI.

    Usage:
        result-ledger                    # Start on default port 8000
        result-ledger --port 9000        # Start on custom port
        result-ledger --host 127.0.0.1   # Bind to localhost only
    """
    import argparse

    import uvicorn

    parser = argparse.ArgumentParser(
        description="Result Ledger - publish/amend test results",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
    LEDGER_STORE            memory (default) or sqlite
    LEDGER_DB_PATH          SQLite database path (default: result_ledger.db)
    LEDGER_AUDIT_LOG_PATH   Enable the signed audit log at this path
    LEDGER_SIGNING_KEY      Audit signing seed (64 hex chars)
    LEDGER_API_KEYS_JSON    JSON object mapping api_key -> caller id
        """,
    )
    parser.add_argument("--host", default=os.getenv("LEDGER_HOST", "0.0.0.0"), help="Host to bind (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=int(os.getenv("LEDGER_PORT", "8000")), help="Port to bind (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    setup_logging(args.verbose)

    app = create_app()
    logger.info("Starting Result Ledger on %s:%s", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port, reload=args.reload)
    return 0


if __name__ == "__main__":
    import sys
    sys.exit(main())
