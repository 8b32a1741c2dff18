"""FastAPI application entrypoint."""
from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from hintgate.api import rest_status, ws_session
from hintgate.core.config import settings
from hintgate.core.logging import logger, setup_logging
from hintgate.services.session_registry import session_registry

# Setup logging
setup_logging()

# Create FastAPI app
app = FastAPI(
    title="hintgate",
    description="Real-time conversation status detection and hint confirmation backend",
    version=rest_status.VERSION
)

# REST only; WebSocket upgrades are not subject to CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,  # must be False with "*" origins
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(rest_status.router)


@app.websocket("/ws/session")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket endpoint for one detection session."""
    # websocket_session_endpoint calls websocket.accept()
    await ws_session.websocket_session_endpoint(websocket)


@app.on_event("startup")
async def startup_event():
    """Log the effective configuration."""
    logger.info(f"Starting hintgate on {settings.host}:{settings.port}")
    logger.info(
        f"Sample rate: {settings.sample_rate} Hz, classifier: {settings.classifier_backend}, "
        f"transcription: {settings.transcription_model}"
    )
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY is not set, sessions cannot be started")


@app.on_event("shutdown")
async def shutdown_event():
    """Destroy live sessions on shutdown."""
    logger.info("Shutting down hintgate")
    await session_registry.close_all()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "hintgate.main:app",
        host=settings.host,
        port=settings.port,
        reload=True
    )
