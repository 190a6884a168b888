"""FastAPI app factory for the duplicate detection service."""

from fastapi import FastAPI

from dupflag.api.scan import router as scan_router
from dupflag.api.webhook import router as webhook_router


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance.
    """
    app = FastAPI(title="dupflag Duplicate Detection API", version="0.1")
    app.include_router(webhook_router)
    app.include_router(scan_router)

    @app.get("/healthz", tags=["health"])
    def healthz():
        return {"status": "ok"}

    return app


# For uvicorn, expose `app` at module level
app = create_app()

__all__ = ["app", "create_app"]
