from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import conf
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from routes.base import router
from utils import log

from engine import AuctionEngine, build_engine
from scheduler import init_scheduler, shutdown_scheduler

log.init(conf.get_log_level(), conf.get_environment())
logger = log.get_logger(__name__)


def create_app(engine: Optional[AuctionEngine] = None) -> FastAPI:
    """``engine`` is built from the environment at start-up unless one is supplied."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.engine = engine or await build_engine()

        init_scheduler(app.state.engine.lifecycle.run, app.state.engine.auction_conf.scheduler_interval_minutes)

        yield

        shutdown_scheduler()
        await app.state.engine.close()

    app = FastAPI(
        title="Auction API",
        version="0.1.0",
        docs_url="/docs",
        lifespan=lifespan,
        debug=conf.get_http_expose_errors(),
    )

    app.include_router(router)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    return app


if not conf.validate():
    raise ValueError("Invalid configuration.")

app = create_app()

http_conf = conf.get_http_conf()
logger.info(f"Starting API on port {http_conf.port}")

logger.info("--- Registered Routes ---")
for route in app.routes:
    methods_set = getattr(route, "methods", None)
    methods = ", ".join(sorted(methods_set)) if methods_set else "Any"
    path = getattr(route, "path", "<unknown>")
    logger.info(f"{path} [{methods}]")
logger.info("-------------------------")

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=http_conf.host,
        port=http_conf.port,
        reload=http_conf.autoreload,
        log_level="info",
        reload_dirs=[str(Path(__file__).parent), "/models", "/clients"],
        log_config=None,
    )
