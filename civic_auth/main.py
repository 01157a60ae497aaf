from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from civic_auth.config import Settings, load_settings
from civic_auth.logging import configure_logging
from civic_auth.store import Database


def create_app(settings: Settings | None = None, database: Database | None = None) -> FastAPI:
    """Build the API. Run with ``uvicorn civic_auth.main:create_app --factory``."""
    settings = settings or load_settings()
    database = database or Database.from_settings(settings)
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.auto_create_schema:
            await database.create_schema()
        yield
        await database.dispose()

    app = FastAPI(title="Civic Auth API", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database

    @app.get("/health")
    async def health():
        report = await database.check_health()
        body = {
            "status": "ok" if report.healthy else "degraded",
            "database": {
                "healthy": report.connection.healthy,
                "latency_ms": report.connection.latency_ms,
                "error": report.connection.error,
            },
            "integrity": {"healthy": report.integrity.healthy, "issues": list(report.integrity.issues)},
        }
        if not report.connection.healthy:
            body["status"] = "database_unavailable"
            return JSONResponse(status_code=503, content=body)
        return body

    return app
