import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import health, proxy
from .config import settings
from .dependencies import Services, build_services, run_retention
from .logging_config import setup_logging
from .middleware import RequestLoggingMiddleware


def create_app(services: Optional[Services] = None, *, start_queue: bool = True) -> FastAPI:
    """Build the API around an explicitly constructed service graph."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.services = services or build_services(settings)
        queue = app.state.services.queue
        retention_task = None
        if start_queue:
            await queue.start()
            retention_task = asyncio.create_task(
                run_retention(
                    app.state.services,
                    timedelta(days=settings.retention_days),
                    settings.retention_interval_seconds,
                )
            )
        try:
            yield
        finally:
            if retention_task is not None:
                retention_task.cancel()
                try:
                    await retention_task
                except asyncio.CancelledError:
                    pass
            await queue.stop()

    app = FastAPI(
        title="Privfi Proxy API",
        description="Privacy swap orchestration through a custodial wallet and privacy pool",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(proxy.router, tags=["Proxy"])

    @app.get("/")
    async def root():
        """Root endpoint with basic info"""
        return {
            "name": "Privfi Proxy API",
            "version": "0.1.0",
            "docs": "/docs",
            "health": "/api/health",
        }

    return app


setup_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "privfi.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower()
    )
