import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from survey_api import config
from survey_api.routers import responses, surveys
from survey_api.services.store import StoreError, open_store

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Fail fast: no usable store, no server
    store = open_store(config.DATABASE_URL, timeout=config.DB_TIMEOUT)
    store.ping()
    store.create_unique_index(surveys.SURVEYS, "token")
    app.state.store = store
    logger.info("Store ready: %s", type(store).__name__)
    yield


app = FastAPI(title="Survey API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_methods=["*"], allow_headers=["*"],
)


# Client errors go out as plain text, successful bodies stay JSON
@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return PlainTextResponse(str(exc.detail), status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def body_error(request: Request, exc: RequestValidationError):
    logger.info("rejected %s %s: %s", request.method, request.url.path, exc.errors())
    return PlainTextResponse("Invalid request body", status_code=400)


@app.exception_handler(StoreError)
async def store_error(request: Request, exc: StoreError):
    logger.error("store failure on %s %s", request.method, request.url.path, exc_info=exc)
    return PlainTextResponse("Internal server error", status_code=500)


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(surveys.router)
app.include_router(responses.router)


if __name__ == "__main__":
    uvicorn.run("survey_api.main:app", host=config.HOST, port=config.PORT, log_level=config.LOG_LEVEL.lower())
