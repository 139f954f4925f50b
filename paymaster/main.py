from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from .api import health, rpc
from .config import Settings, get_settings
from .logging_config import setup_logging
from .middleware import RequestLoggingMiddleware
from .service import SponsorshipService, build_service


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[SponsorshipService] = None,
) -> FastAPI:
    """
    Build the paymaster API.

    Settings are resolved when the app starts, not at import, so importing
    ``paymaster.main`` never requires a signing key.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        resolved = service.settings if service is not None else (settings or get_settings())
        setup_logging(resolved.log_level)
        app.state.service = service if service is not None else build_service(resolved)
        await app.state.service.start()
        try:
            yield
        finally:
            await app.state.service.stop()

    app = FastAPI(
        title="Paymaster Sponsorship API",
        description="ERC-4337 verifying paymaster sponsorship over JSON-RPC",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(health.router, tags=["Health"])
    app.include_router(rpc.router, tags=["JSON-RPC"])
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "paymaster.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower()
    )
