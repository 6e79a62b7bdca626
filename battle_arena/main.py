"""FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from battle_arena import __version__
from battle_arena.config import get_settings
from battle_arena.middleware.error_handler import setup_error_handlers

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("battle_arena")


app = FastAPI(
    title="Battle Arena",
    description="Psychology-driven team battle engine with coaching and a judge for chaos",
    version=__version__,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.debug(f"[REQUEST] {request.method} {request.url.path}")
    response = await call_next(request)
    logger.debug(f"[RESPONSE] {request.method} {request.url.path} -> {response.status_code}")
    return response


# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        settings.FRONTEND_URL,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_error_handlers(app, debug=settings.DEBUG)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "online", "service": "Battle Arena", "version": __version__}


@app.get("/api/health")
async def health_check():
    """Detailed health check."""
    from battle_arena.core.battle_storage import active_battles
    return {
        "status": "healthy",
        "active_battles": len(active_battles),
        "debug_mode": settings.DEBUG,
    }


# Routes
from battle_arena.api.routes import battle  # noqa: E402
app.include_router(battle.router, prefix="/api/battles", tags=["battles"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("battle_arena.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
