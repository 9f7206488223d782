import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlmodel import Session

from resell_core import database
from resell_core.config import settings
from resell_core.database import create_db_and_tables
from resell_core.exceptions import ResellCoreError
from resell_core.jobs.scheduler import ReconcilerScheduler
from resell_core.notifications import DispatchingNotifier
from resell_core.routes import (
    admin_orders,
    checkout,
    orders,
    payments,
    returns,
    wallet,
    webhooks,
)
from resell_core.services.payment_gateway import RazorpayGateway
from resell_core.services.shipment_provider import ShiprocketClient

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def session_factory() -> Session:
    return Session(database.engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Run DB creation ONLY in local
    if settings.env == "local":
        create_db_and_tables()

    app.state.gateway = RazorpayGateway()
    app.state.provider = ShiprocketClient(session_factory)
    app.state.notifier = DispatchingNotifier(session_factory)

    scheduler = ReconcilerScheduler(session_factory, provider=app.state.provider, notifier=app.state.notifier)
    scheduler.start()
    try:
        yield
    finally:
        scheduler.stop()


app = FastAPI(title="Resell Core API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ResellCoreError)
async def resell_core_error_handler(request: Request, exc: ResellCoreError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message} {exc.details}")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


app.include_router(checkout.router, prefix="/checkout", tags=["Checkout"])
app.include_router(orders.router, prefix="/orders", tags=["Orders"])
app.include_router(payments.router, prefix="/payments", tags=["Payments"])
app.include_router(returns.router, prefix="/returns", tags=["Returns"])
app.include_router(wallet.router, prefix="/wallet", tags=["Wallet"])
app.include_router(admin_orders.router, prefix="/admin/orders", tags=["Admin Orders"])
app.include_router(returns.admin_router, prefix="/admin/returns", tags=["Admin Returns"])
app.include_router(wallet.admin_router, prefix="/admin/wallets", tags=["Admin Wallets"])
app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])


@app.get("/")
def root():
    return {"message": "Resell Core API is running"}
