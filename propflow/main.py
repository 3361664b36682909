"""FastAPI entry point for the workflow service."""

from typing import Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import EngineSettings, get_settings
from .routers import workflows


def create_app(settings: Optional[EngineSettings] = None) -> FastAPI:
    """Create a FastAPI application exposing the workflow engine."""

    resolved_settings = settings or get_settings()

    app = FastAPI(title=resolved_settings.app_name)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=resolved_settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(workflows.router)

    @app.get("/health", tags=["health"])
    def health_check() -> Dict[str, object]:
        """Report service status and engine ceiling."""

        return {
            "status": "ok",
            "service": resolved_settings.app_name,
            "execution_timeout_seconds": resolved_settings.execution_timeout_seconds,
        }

    return app


app = create_app()
