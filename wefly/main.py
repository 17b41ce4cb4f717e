# wefly/main.py
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from wefly.config import get_settings
from wefly.db.session import engine, init_db
from wefly.errors import BookingError, PaymentProviderError, PersistenceError
from wefly.routes import bookings, payments

settings = get_settings()
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db(engine)
    yield


app = FastAPI(
    lifespan=lifespan,
    title="WEFly Checkout",
    version="1.0.0",
    description="Balloon flight bookings, Stripe Checkout and payment reconciliation",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Staff-Token"],
)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    if isinstance(exc, (PaymentProviderError, PersistenceError)):
        logger.error(f"{request.method} {request.url.path} failed: {exc.message} {exc.context}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.message} {exc.context}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


# Mount routes
app.include_router(bookings.router, tags=["Bookings"])
app.include_router(payments.router, tags=["Payments"])


@app.get("/")
def root():
    return {"ok": True, "service": "WEFly Stripe Checkout", "when": datetime.now(timezone.utc).isoformat()}
