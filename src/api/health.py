"""Health probe endpoints served next to the controller."""

from typing import Callable

from fastapi import FastAPI
from fastapi.responses import JSONResponse


def create_health_app(is_ready: Callable[[], bool], app_name: str = "EC2 Instance Operator", version: str = "") -> FastAPI:
    """Create the probe application.

    Args:
        is_ready: Reports whether the controller has started and listed its resources.
    """
    app = FastAPI(title=f"{app_name} probes", version=version or "0.0.0", docs_url=None, redoc_url=None, openapi_url=None)

    @app.get("/healthz")
    async def healthz() -> dict:
        """Liveness: the process is up and serving."""
        return {"status": "ok"}

    @app.get("/readyz")
    async def readyz():
        """Readiness: the controller is running and synced."""
        if not is_ready():
            return JSONResponse(status_code=503, content={"status": "not ready"})
        return {"status": "ready"}

    return app
