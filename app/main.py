from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from app.core.config import settings
from app.core.errors import ConfigurationError, EngineError, StoreError
from app.api import availability, bookings
from app.core.logger import setup_logging, logger
from app.services.db_service import get_store
from contextlib import asynccontextmanager
from datetime import datetime

setup_logging()

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: fail fast on a missing seed file or bad backend name
    logger.info("🚀 Starting Availability & Pricing Engine")
    get_store()
    yield
    # Shutdown
    logger.info("🛑 Shutting down backend")

app = FastAPI(
    title=settings.PROJECT_NAME,
    version="0.1.0",
    lifespan=lifespan
)

@app.exception_handler(EngineError)
async def engine_exception_handler(request: Request, exc: EngineError):
    if isinstance(exc, ConfigurationError):
        logger.critical(f"🔥 CONFIGURATION ERROR: {exc.message} {exc.detail}")
    elif isinstance(exc, StoreError):
        logger.error(f"❌ STORE ERROR: {exc.message}")
    else:
        logger.info(f"↩️ {type(exc).__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message, "error": type(exc).__name__, "detail": exc.detail}
    )

# Global Exception Handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.opt(exception=exc).error(f"🔥 UNHANDLED ERROR: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={"message": "Internal Server Error", "detail": "An unexpected error occurred. Please contact support."}
    )

# Include routers
app.include_router(availability.router, tags=["Availability"])
app.include_router(bookings.router, tags=["Bookings"])

@app.get("/health")
async def health_check():
    return {"status": "ok", "environment": settings.ENVIRONMENT, "timestamp": datetime.now().isoformat()}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=settings.PORT, reload=True)
