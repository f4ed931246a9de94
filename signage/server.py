"""Signage Sync server.

Exposes the settings API, the display push channel and the emergency /
dismissal side channels under ``/api`` (see :mod:`signage.api`), plus::

  GET  /api/health               — liveness and connection counts

Start with::

    python -m signage.server
    # or
    uvicorn signage.server:app --host 0.0.0.0 --port 3000
"""

from __future__ import annotations

import argparse
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from signage import __version__
from signage.api import router
from signage.config import ServerConfig
from signage.service import SignageService

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────────
# FastAPI app
# ──────────────────────────────────────────────────────────────────

def create_app(service: SignageService | None = None) -> FastAPI:
    """Build the app around *service* (a fresh one from the environment if omitted)."""
    service = service or SignageService()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await service.start()
        try:
            yield
        finally:
            await service.stop()

    app = FastAPI(title="Signage Sync", version=__version__, lifespan=lifespan)
    app.state.service = service
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "X-Session-Token"],
    )
    app.include_router(router)

    @app.get("/api/health")
    async def health(request: Request):
        return request.app.state.service.health()

    return app


app = create_app()


# ──────────────────────────────────────────────────────────────────
# Entry point
# ──────────────────────────────────────────────────────────────────

def main():
    import uvicorn

    parser = argparse.ArgumentParser(description="Signage Sync server")
    parser.add_argument("--host", help="Bind address (default: SIGNAGE_HOST or 0.0.0.0)")
    parser.add_argument("--port", type=int, help="Port (default: SIGNAGE_PORT or 3000)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = ServerConfig.from_env()
    host = args.host or config.host
    port = args.port or config.port
    logger.info("Starting Signage Sync server on %s:%d", host, port)
    uvicorn.run("signage.server:app", host=host, port=port, reload=False)


if __name__ == "__main__":
    main()
