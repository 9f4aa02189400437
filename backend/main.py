import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from streamledger.api.endpoints import admin, media, payments, streams, wallet, withdrawals
from streamledger.core.database import engine
from streamledger.core.settings import settings
from streamledger.models.registry import create_all
from streamledger.services.errors import SettlementError, TransactionFailed


logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("streamledger")

app = FastAPI(title="Stream Ledger API")

# Configure CORS
origins = settings.resolved_cors_origins()
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.on_event("startup")
def startup() -> None:
    if settings.basic_auth_enabled and (settings.basic_auth_username is None or settings.basic_auth_password is None):
        raise RuntimeError("Basic Auth is enabled but BASIC_AUTH_USERNAME/BASIC_AUTH_PASSWORD are not set")
    if settings.is_production and not settings.jwt_secret:
        raise RuntimeError("JWT_SECRET must be set in production")
    if settings.db_auto_create:
        create_all(engine)
    logger.info("startup environment=%s currency=%s", settings.environment, settings.platform_currency)


@app.exception_handler(SettlementError)
async def settlement_error_handler(request: Request, exc: SettlementError):
    logger.info("request.rejected path=%s error=%s", request.url.path, exc.code)
    return JSONResponse(status_code=exc.http_status, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("request.storage_error path=%s", request.url.path, exc_info=exc)
    failure = TransactionFailed()
    return JSONResponse(status_code=failure.http_status, content=jsonable_encoder(failure.to_dict()))


# API Routes
app.include_router(wallet.router, prefix="/api", tags=["wallet"])
app.include_router(media.router, prefix="/api", tags=["media"])
app.include_router(streams.router, prefix="/api", tags=["streams"])
app.include_router(payments.router, prefix="/api", tags=["payments"])
app.include_router(withdrawals.router, prefix="/api", tags=["withdrawals"])
app.include_router(admin.router, prefix="/api", tags=["admin"])
app.include_router(payments.internal_router, prefix="/internal", tags=["internal"])


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
