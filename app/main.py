from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app import models, runtime
from app.config import settings
from app.database import SessionLocal, engine
from app.logging import get_logger, setup_logging
from app.services.merchants import ensure_merchant

logger = get_logger("server")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level, settings.log_format)
    models.Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        ensure_merchant(
            db,
            name=settings.default_merchant.name,
            merchant_token=settings.default_merchant.token,
            signature_secret=settings.default_merchant.secret,
        )
    finally:
        db.close()
    logger.info("server_started", scenario=runtime.scenarios.current.to_dict())
    yield
    # Pending transitions and retries do not survive the process
    runtime.scheduler.shutdown()
    await runtime.delivery_agent.close()
    logger.info("server_stopped")


app = FastAPI(
    title="Mock Payment Gateway",
    description="Simulates a hosted payment page with timed status changes and signed webhooks",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Validation failed", "detail": jsonable_errors(exc)},
    )


def jsonable_errors(exc: RequestValidationError):
    return [
        {"loc": [str(part) for part in err["loc"]], "msg": err["msg"]}
        for err in exc.errors()
    ]


@app.get("/health")
def health_check():
    return {
        "success": True,
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


from app.routers import admin, payments  # noqa: E402
app.include_router(admin.router, prefix="/admin", tags=["admin"])
app.include_router(payments.router, tags=["payments"])


if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
