"""FastAPI app factory."""

from __future__ import annotations

import logging

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import Settings, settings
from app.engine.coordinator import create_coordinator

load_dotenv()

logging.basicConfig(
    level=getattr(logging, settings.particles_log_level.upper(), logging.DEBUG),
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)

VERSION = "0.1.0"


def create_app(config: Settings | None = None) -> FastAPI:
    config = config or settings
    app = FastAPI(
        title="Particle Generator",
        description="Image-to-particle sampling service",
        version=VERSION,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # One coordinator per app: at most one generation in flight
    app.state.settings = config
    app.state.coordinator = create_coordinator(
        config.cache_dir,
        cache_max_bytes=config.cache_max_bytes,
        execution_strategy=config.execution_strategy,
    )

    from app.api.router import api_router

    app.include_router(api_router)

    return app


app = create_app()
