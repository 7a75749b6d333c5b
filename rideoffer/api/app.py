"""
FastAPI application factory.

* Registers routes for fares, rides, drivers and admin.
* Starts / stops the background offer sweeper via lifespan events.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from rideoffer.api.middleware import limiter
from rideoffer.api.routes import admin, drivers, fares, rides
from rideoffer.config import settings
from rideoffer.infrastructure.redis_client import close_pool
from rideoffer.workers import offer_sweeper as _sweeper

logging.basicConfig(level=settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the offer sweeper on startup; stop it and the Redis pool on shutdown."""
    await _sweeper.start_sweep_loop()
    yield
    await _sweeper.stop_sweep_loop()
    await close_pool()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Ride Offer & Fare Negotiation API",
        description=(
            "Passengers negotiate a fare and request a ride; drivers claim "
            "exclusive, time-boxed offers and accept, reject or counter them.  "
            "Every ride write is a compare-and-swap so no ride is ever held "
            "by two drivers."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Routers
    app.include_router(fares.router, prefix="/api/v1")
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(drivers.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
