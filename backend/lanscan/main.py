import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from .core.config import settings
from .core.logging import setup_logging
from .api.routes import router as api_router
from .api.websocket import router as ws_router, scanner_callback
from .scanner.network_scanner import NetworkScanner

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    setup_logging()
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    
    scanner = NetworkScanner()
    scanner.register_callback(scanner_callback)
    app.state.scanner = scanner
    
    yield
    
    # Shutdown
    logger.info("Shutting down...")
    await app.state.scanner.stop()
    scanner.unregister_callback(scanner_callback)


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Local subnet device discovery",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(api_router, prefix="/api", tags=["API"])
app.include_router(ws_router, tags=["WebSocket"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    scanner = app.state.scanner
    return {
        "status": "healthy",
        "scanner_state": scanner.state.value,
        "scanner_running": scanner.is_running
    }
