"""
FastAPI server for the workflow automation core.

Provides:
- Inbound workflow webhooks (/webhooks/workflow/{webhook_id})
- Health check

The trigger dispatcher runs in the taskiq worker (see worker/broker.py).

Usage:
    uvicorn api.main:app --host 0.0.0.0 --port 8000 --reload
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.router import router
from shared.database import db_lifespan
from shared.error_handling import error_payload
from shared.logger import get_logger

logger = get_logger("api.main")

APP_NAME = "Workflow Automation API"
APP_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info("Starting workflow automation API")
    async with db_lifespan(app):
        logger.info("Database initialized")
        yield
    logger.info("Workflow automation API shutting down")


app = FastAPI(
    title=APP_NAME,
    description="Webhook entry point for workflow automation",
    version=APP_VERSION,
    lifespan=lifespan,
)

app.include_router(router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log unhandled errors and answer with the standard error body."""
    error_logger = get_logger("api.main.errors")
    error_logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content=error_payload("Internal server error"))


@app.get("/health", tags=["System"])
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "server": APP_NAME, "version": APP_VERSION}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
