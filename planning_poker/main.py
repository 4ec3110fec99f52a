from contextlib import asynccontextmanager
import logging
import traceback

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from planning_poker.routers import realtime as realtime_router
from planning_poker.services.coordinator import build_coordinator
from planning_poker.utils.logging_config import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    app.state.coordinator = build_coordinator()
    logging.getLogger("planning_poker").info(
        "Session coordinator ready with %d seeded tickets",
        len(app.state.coordinator.state.queue),
    )
    yield
    await app.state.coordinator.shutdown()
    logging.getLogger("planning_poker").info("Application shutdown.")


app = FastAPI(
    title="Planning Poker",
    description=(
        "Real-time planning poker session coordinator. Connect to /ws and exchange "
        "one JSON message per frame. Answer every server ping with "
        "{\"type\": \"pong\"}; a connection that misses one heartbeat is closed."
    ),
    lifespan=lifespan,
)

app.include_router(realtime_router.router)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger = logging.getLogger("planning_poker")
    logger.error(f"Global exception: {str(exc)}\n{traceback.format_exc()}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal Server Error. Please check logs."},
    )


@app.get("/health", tags=["healthcheck"])
async def health_check(request: Request):
    state = request.app.state.coordinator.state
    return {
        "status": "healthy",
        "participants": len(state.registry),
        "tickets": len(state.queue),
        "ticketSourceConfigured": state.ticket_source_configured,
    }
