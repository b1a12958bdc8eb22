
"""
FastAPI application initialization
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from api.routes import health, queries, alerts
from core.config import settings
from core.exceptions import QAException
from core.logging import setup_logging
import logging
from api.middleware import RequestContextMiddleware
from pipeline.scheduler import QAScheduler

setup_logging()

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="BeakDash DB Quality Assurance API",
    description="Runs data quality queries against registered connections, records results and raises alerts",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

# Initialize Scheduler
scheduler = QAScheduler()
app.state.scheduler = scheduler


# Include routers
app.include_router(health.router)
app.include_router(queries.router)
app.include_router(alerts.router)


@app.exception_handler(QAException)
async def qa_exception_handler(request: Request, exc: QAException):
    """Map pipeline errors to their HTTP status with a JSON body"""
    request_id = getattr(request.state, "request_id", None)
    logger.warning(
        f"[{request_id}] {request.method} {request.url.path} -> {exc.status_code}: {exc.message}"
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message}
    )


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    logger.info("Starting BeakDash DB Quality Assurance API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    if settings.QA_SCHEDULER_ENABLED:
        scheduler.start()
    else:
        logger.info("QA Scheduler disabled")


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down BeakDash DB Quality Assurance API")
    scheduler.stop()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "BeakDash DB Quality Assurance API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "queries": "/queries",
            "alerts": "/alerts"
        }
    }
