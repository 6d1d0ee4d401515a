import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bitbybit.api.routes import error_payload, router
from bitbybit.core.config import configure_logging
from bitbybit.core.database import init_db
from bitbybit.core.errors import (
    BitByBitError,
    BookBusyError,
    ChapterBusyError,
    ConfigurationError,
    MalformedResponseError,
    NotFoundError,
)

configure_logging()
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    NotFoundError: 404,
    ChapterBusyError: 409,
    BookBusyError: 409,
    MalformedResponseError: 502,
    ConfigurationError: 503,
}

# Run with: uvicorn bitbybit.main:app --reload
app = FastAPI(
    title="BitByBit Backend",
    version="0.1.0",
    description="Book structuring and reading-progress service.",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


@app.exception_handler(BitByBitError)
async def service_error_handler(request: Request, exc: BitByBitError) -> JSONResponse:
    status_code = next((code for kind, code in ERROR_STATUS.items() if isinstance(exc, kind)), 500)
    if status_code == 500:
        logger.error("Request %s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"detail": error_payload(exc.code, str(exc))},
    )


@app.on_event("startup")
async def startup_event() -> None:
    # Create DB tables on startup so the project works out-of-the-box.
    init_db()
