"""FLIGHTLEDGER - FastAPI Application.

Flight status sync and ledger commit engine.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from flightledger.api.routes import router
from flightledger.core.config import Settings, get_settings
from flightledger.core.logging_config import configure_logging
from flightledger.runtime import Runtime, build_runtime, start_runtime


def create_app(settings: Optional[Settings] = None, runtime: Optional[Runtime] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging("DEBUG" if settings.DEBUG else settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        rt = runtime or build_runtime(settings)
        app.state.runtime = rt
        await start_runtime(rt)
        try:
            yield
        finally:
            await rt.close()

    app = FastAPI(
        title=settings.APP_NAME,
        description="FLIGHTLEDGER - Flight status sync and ledger commit engine",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app


def run() -> None:
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
