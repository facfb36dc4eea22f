from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import uuid
from contextlib import asynccontextmanager
from database import database
from routes import matter_opening

import os
import logging

import config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting Matter Opening API")
    await database.connect()

    if config.SUBMISSION_SINK_URL:
        logger.info("Submission sink: HTTP %s", config.SUBMISSION_SINK_URL)
    else:
        logger.info("Submission sink: MongoDB %s.%s", config.DB_NAME, config.SUBMISSIONS_COLLECTION)

    yield

    # Shutdown
    logger.info("Shutting down Matter Opening API")
    await database.close()

# Create FastAPI app
app = FastAPI(
    title="Matter Opening API",
    description="New client matter intake: client selection, matter details, risk assessment",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(matter_opening.router)

# Root endpoint
@app.get("/api")
async def root():
    return {
        "service": "Matter Opening",
        "version": "1.0.0",
        "form_version": config.MATTER_FORM_VERSION,
        "status": "operational"
    }

# Health check
@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": os.getenv("ENVIRONMENT", "development")
    }


# Validation error handler: log request_id + full errors (loc path) for matter submit debugging
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = str(uuid.uuid4())
    errors = exc.errors()
    path = getattr(request, "url", None) and getattr(request.url, "path", "") or ""
    if "matter-opening" in path:
        logger.warning(
            "Matter opening validation failed request_id=%s path=%s errors=%s",
            request_id,
            path,
            [(e.get("loc"), e.get("msg"), e.get("type")) for e in errors],
        )
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_errors(errors), "request_id": request_id},
    )


def jsonable_errors(errors):
    # ctx may carry exception instances
    return [{k: v for k, v in e.items() if k != "ctx"} for e in errors]


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=os.getenv("ENVIRONMENT") == "development"
    )
