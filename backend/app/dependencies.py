"""FastAPI dependency injection."""

from __future__ import annotations

from fastapi import Request

from app.config import Settings, settings
from app.engine.coordinator import GenerationCoordinator


def get_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", settings)


def get_coordinator(request: Request) -> GenerationCoordinator:
    return request.app.state.coordinator
