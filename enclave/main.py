"""Main FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from enclave.api.routes import router
from enclave.config import ENCLAVE_VERSION, load_settings
from enclave.context import EnclaveContext, create_context
from enclave.logging_config import configure_logging
from enclave.timeutil import isoformat_z, utcnow

logger = logging.getLogger(__name__)


def create_app(context: Optional[EnclaveContext] = None) -> FastAPI:
    """
    Build the app. With no context, one is created from the environment at
    startup and closed at shutdown. A supplied context is owned by the caller.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if context is not None:
            app.state.context = context
            yield
            return

        settings = load_settings()
        configure_logging(settings.log_level, settings.log_json)
        app.state.context = create_context(settings)
        logger.info(
            "Enclave started",
            extra={
                "version": settings.enclave_version,
                "storage": "database" if app.state.context.database else "in-memory",
                "enclave_id": settings.enclave_id,
            },
        )
        try:
            yield
        finally:
            app.state.context.close()

    app = FastAPI(
        title="Attested Enclave",
        description="TEE service that proves it only emits safe derivatives and attests to deletion.",
        version=ENCLAVE_VERSION,
        lifespan=lifespan,
    )

    # Include API routes
    app.include_router(router, tags=["Enclave"])

    @app.get("/")
    def root():
        return {
            "name": "Attested Enclave",
            "endpoints": {
                "/health": "GET - Health check",
                "/signup": "POST - Record a signup",
                "/signup-count": "GET - Get signed signup count",
                "/submit-data": "POST - Submit user data (returns safe derivative only)",
                "/delete-data/{receipt_id}": "POST - Delete user data with ledger attestation",
                "/report": "GET - Generate retrospective report",
                "/reports": "GET - List all generated reports",
                "/audit-log": "GET - Read the audit ledger",
            },
        }

    # Health check
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": "attested-enclave", "timestamp": isoformat_z(utcnow())}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8080)
