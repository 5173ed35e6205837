"""HTTP surface for health checks and manually triggered poll cycles."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import ConfigMissing, SignerSettings
from .processor import PayoutProcessor
from .signer import SignerError

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    ok: bool
    xrpl_connected: bool
    hot_wallet: Optional[str]
    inflight: int


class ProcessResponse(BaseModel):
    ok: bool
    started: bool


def create_app(processor: PayoutProcessor, settings: SignerSettings) -> FastAPI:
    app = FastAPI(title="External Signer", version="1.0.0")

    async def require_control_token(request: Request) -> None:
        token = settings.control_bearer_token
        if not token:
            return
        provided = request.headers.get("Authorization") or ""
        if provided != f"Bearer {token}":
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    @app.exception_handler(HTTPException)
    async def http_error_handler(_: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": exc.detail})

    @app.exception_handler(ConfigMissing)
    async def config_error_handler(_: Request, exc: ConfigMissing) -> JSONResponse:
        return JSONResponse(status_code=500, content={"ok": False, "error": str(exc)})

    @app.exception_handler(SignerError)
    async def signer_error_handler(_: Request, exc: SignerError) -> JSONResponse:
        return JSONResponse(status_code=500, content={"ok": False, "error": str(exc)})

    @app.get("/health", response_model=HealthResponse)
    def health() -> Dict[str, Any]:
        return processor.health()

    @app.post(
        "/process",
        response_model=ProcessResponse,
        dependencies=[Depends(require_control_token)],
    )
    async def trigger_process(background_tasks: BackgroundTasks) -> ProcessResponse:
        background_tasks.add_task(processor.poll_once)
        logger.info("Manual poll cycle requested")
        return ProcessResponse(ok=True, started=True)

    return app


def run_api(app: FastAPI, settings: SignerSettings) -> None:
    """Run the FastAPI app using uvicorn."""
    import uvicorn  # Imported lazily to avoid mandatory dependency in tests

    config = uvicorn.Config(
        app,
        host=settings.api_host,
        port=settings.port,
        log_level="info",
    )
    server = uvicorn.Server(config)
    server.install_signal_handlers = False
    server.run()


__all__ = ["create_app", "run_api"]
