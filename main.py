import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from focusminder.config import LOG_LEVEL, POLL_INTERVAL_SECONDS
from focusminder.database import SessionLocal, init_db
from focusminder.notifications import SqlNotificationDispatcher
from focusminder.routers import api
from focusminder.services.scheduler import PollingScheduler, SystemClock, run_tick
from focusminder.storage import ConcurrentUpdateError, SqlKeyValueStore
from focusminder.version import get_version

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("focusminder")

app = FastAPI(
    title="Focusminder",
    description="To-do reminders and work session timer",
    version=get_version(),
)

# Include routers
app.include_router(api.router)


@app.exception_handler(ConcurrentUpdateError)
async def concurrent_update_handler(request: Request, exc: ConcurrentUpdateError):
    return JSONResponse(status_code=409, content={"detail": "Record is busy, try again"})


clock = SystemClock()


def poll():
    """One scheduler tick against the database"""
    db = SessionLocal()
    try:
        report = run_tick(SqlKeyValueStore(db), SqlNotificationDispatcher(db, clock.now), clock.now())
        if report.session_events or report.fired_reminders:
            logger.debug("Tick: %s", report.model_dump())
    finally:
        db.close()


scheduler = PollingScheduler(poll, POLL_INTERVAL_SECONDS)


@app.on_event("startup")
async def startup_event():
    init_db()
    scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    await scheduler.stop()


if __name__ == "__main__":
    import uvicorn
    from focusminder.config import HOST, PORT

    uvicorn.run("main:app", host=HOST, port=PORT, reload=True)
