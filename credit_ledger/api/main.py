"""FastAPI application factory"""

import logging
from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.responses import Response

from credit_ledger.api.middleware import RequestIDMiddleware, MetricsMiddleware
from credit_ledger.api.v1 import adjustments, credit, invoices, orders
from credit_ledger.infrastructure.database.session import get_db
from credit_ledger.infrastructure.observability.logging import setup_logging
from credit_ledger.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Credit Ledger",
        description="Trade credit, order settlement and payment adjustment ledger",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/health")
    def health_check(db: Session = Depends(get_db)):
        """Liveness plus a database round trip; 503 when the database is unreachable"""
        try:
            db.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logging.error(f"Health check database probe failed: {e}")
            return JSONResponse(
                status_code=503,
                content={"status": "degraded", "service": settings.service_name, "database": "unavailable"},
            )
        return {"status": "ok", "service": settings.service_name, "database": "ok"}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(credit.router, prefix="/v1", tags=["credit"])
    app.include_router(orders.router, prefix="/v1", tags=["orders"])
    app.include_router(invoices.router, prefix="/v1", tags=["invoices"])
    app.include_router(adjustments.router, prefix="/v1", tags=["adjustments"])

    return app


app = create_app()
