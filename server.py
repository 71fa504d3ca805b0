#!/usr/bin/env python3
"""
zkzkp2p Solver Server
Cross-chain HTLC counterparty between Aztec and Base.

Watches both chains for user locks, counter-locks on the opposite chain,
and redeems the user's lock once the secret is revealed.

Endpoints:
  GET  /health              - Health check
  GET  /info                - Solver addresses and balances
  GET  /swaps               - List tracked swaps
  GET  /swap/{id}           - Get swap status
  POST /quote               - Get swap quote
  POST /notify-lock         - Notify solver of a user lock
"""

import sys
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from solver import __version__
from solver.config import SolverConfig, load_config
from solver.core import ConfigError
from solver.swap.engine import SolverEngine
from routes.solver import router as solver_router, register_error_handlers

# =============================================================================
# LOGGING
# =============================================================================

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'

logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
log = logging.getLogger(__name__)


# =============================================================================
# APP
# =============================================================================

def create_app(config: SolverConfig = None, engine: SolverEngine = None) -> FastAPI:
    """
    Build the FastAPI app.

    The engine is created on startup from config (or the environment) unless
    one is passed in.
    """
    app = FastAPI(
        title="zkzkp2p Solver",
        description="Cross-chain HTLC solver between Aztec and Base",
        version=__version__,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    app.include_router(solver_router)
    register_error_handlers(app)

    app.state.config = config
    app.state.engine = engine

    @app.on_event("startup")
    async def startup_event():
        """Build and start the solver engine."""
        if app.state.engine is None:
            cfg = app.state.config or load_config()
            app.state.config = cfg
            app.state.engine = SolverEngine.from_config(cfg)
        await app.state.engine.start()
        log.info("[Solver] Running - watching Aztec and Base for locks")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Stop watchers and schedulers, close chain connections."""
        if app.state.engine is not None:
            await app.state.engine.stop()
        log.info("[Solver] Stopped")

    return app


# =============================================================================
# MAIN
# =============================================================================

def main():
    import uvicorn

    try:
        config = load_config()
    except ConfigError as e:
        log.error(f"Configuration error: {e}")
        sys.exit(1)

    logging.getLogger().setLevel(config.log_level)

    log.info(f"Starting zkzkp2p solver on {config.http_host}:{config.http_port}")
    log.info(f"  Aztec node:   {config.aztec.node_url}")
    log.info(f"  Base RPC:     {config.evm.rpc_url}")
    log.info(f"  Poll interval: {config.poll_interval}s, timelock buffer: {config.timelock_buffer}s")
    log.info(f"Docs: http://{config.http_host}:{config.http_port}/docs")

    uvicorn.run(create_app(config), host=config.http_host, port=config.http_port)


if __name__ == "__main__":
    main()
