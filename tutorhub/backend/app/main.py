import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .api.routes import admin, bookings, bundles, misc, payments, payouts, slots
from .db.session import SessionLocal
from .config import get_settings
from .services import events
from .services.notification_service import make_email_handler
from .services.referral_service import make_referral_handler
from .workers.scheduler import get_scheduler

settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="TutorHub Booking API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(slots.router, prefix="/api/v1")
app.include_router(bookings.router, prefix="/api/v1")
app.include_router(bundles.router, prefix="/api/v1")
app.include_router(payments.router, prefix="/api/v1")
app.include_router(payouts.router, prefix="/api/v1")
app.include_router(admin.router, prefix="/api/v1")
app.include_router(misc.router, prefix="/api/v1")

scheduler = get_scheduler() if settings.scheduler_enabled else None


def register_event_handlers(dispatcher: events.EventDispatcher) -> None:
    dispatcher.subscribe(make_email_handler(SessionLocal))
    dispatcher.subscribe(make_referral_handler(SessionLocal))


@app.on_event("startup")
async def startup_event() -> None:
    register_event_handlers(events.get_dispatcher())
    if scheduler is not None:
        scheduler.start()


@app.on_event("shutdown")
async def shutdown_event() -> None:
    if scheduler is not None:
        scheduler.shutdown(wait=False)
    events.get_dispatcher().shutdown()
