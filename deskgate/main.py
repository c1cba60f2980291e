"""deskgate application entry point.

Components (driver, registry, supervisor, orchestrator, principals, tunnel
gateway) are built in the lifespan and stored on ``app.state``. On shutdown
every session and every labelled container is torn down.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

import httpx
import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from deskgate import __version__
from deskgate.api import tunnel
from deskgate.api.v1 import router as v1_router
from deskgate.config import Settings, get_settings
from deskgate.drivers import DockerDriver, Driver
from deskgate.errors import DeskgateError
from deskgate.logging_setup import configure_logging
from deskgate.managers.session import SessionOrchestrator, SessionRegistry
from deskgate.router.tunnel import TunnelGateway, WebSocketRelay
from deskgate.security import PrincipalStore
from deskgate.services.display import DisplaySupervisor

logger = structlog.get_logger()


def create_app(
    settings: Settings | None = None,
    *,
    driver: Driver | None = None,
    supervisor: DisplaySupervisor | None = None,
    relay: WebSocketRelay | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    driver, supervisor, relay and transport replace the real implementations
    (tests pass fakes).
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.logging)

        container_driver = driver or DockerDriver(socket_url=settings.docker.socket)
        display_supervisor = supervisor or DisplaySupervisor(config=settings.display)
        registry = SessionRegistry()
        orchestrator = SessionOrchestrator(
            driver=container_driver,
            registry=registry,
            supervisor=display_supervisor,
            settings=settings,
        )
        principals = PrincipalStore(secret=settings.security.session_secret)
        gateway = TunnelGateway(
            registry=registry,
            principals=principals,
            config=settings.gateway,
            security=settings.security,
            relay=relay,
            transport=transport,
        )

        app.state.settings = settings
        app.state.registry = registry
        app.state.orchestrator = orchestrator
        app.state.principals = principals
        app.state.gateway = gateway

        logger.info(
            "deskgate.startup",
            version=__version__,
            base_url=settings.server.base_url(),
            image=settings.sessions.image,
        )

        try:
            yield
        finally:
            logger.info("deskgate.shutdown")
            try:
                await asyncio.wait_for(
                    orchestrator.shutdown(),
                    timeout=settings.sessions.shutdown_timeout_seconds,
                )
            except TimeoutError:
                logger.error(
                    "deskgate.shutdown.timeout",
                    timeout=settings.sessions.shutdown_timeout_seconds,
                    remaining=len(registry),
                )
            await gateway.aclose()
            await display_supervisor.close()
            await container_driver.close()

    app = FastAPI(
        title="deskgate",
        description="Per-user remote desktop sessions behind an authenticated tunnel",
        version=__version__,
        lifespan=lifespan,
    )

    @app.exception_handler(DeskgateError)
    async def deskgate_error_handler(request: Request, exc: DeskgateError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "healthy"}

    app.include_router(v1_router, prefix="/v1")
    app.include_router(tunnel.router, prefix=f"/{settings.gateway.prefix.strip('/')}", tags=["tunnel"])

    return app


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,
    )


if __name__ == "__main__":
    run()
