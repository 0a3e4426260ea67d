from __future__ import annotations

import logging
import time

from fastapi import FastAPI
from sqlalchemy.exc import SQLAlchemyError

from social_push.api.routes import notification_service, router
from social_push.config import settings
from social_push.models.db import init_db
from social_push.services.housekeeping_scheduler import HousekeepingScheduler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

app = FastAPI(
    title="social_push",
    description="Push dispatch for social-event notifications",
    version="0.1.0",
    debug=settings.app_debug,
)
housekeeping_scheduler = HousekeepingScheduler(notification_service, settings)


@app.on_event("startup")
def startup_event() -> None:
    max_attempts = 8
    delay_seconds = 3
    last_error: Exception | None = None

    for attempt in range(1, max_attempts + 1):
        try:
            init_db()
            logging.info("Database initialization completed", extra={"attempt": attempt, "schema": settings.db_schema})
            housekeeping_scheduler.start()
            return
        except SQLAlchemyError as exc:
            last_error = exc
            logging.exception(
                "Database initialization failed",
                extra={"attempt": attempt, "max_attempts": max_attempts},
            )
            if attempt < max_attempts:
                time.sleep(delay_seconds)
            continue

    raise RuntimeError("Database initialization failed after retries") from last_error


@app.on_event("shutdown")
async def shutdown_event() -> None:
    housekeeping_scheduler.stop()
    await notification_service.dispatcher.gateway.aclose()


app.include_router(router)
