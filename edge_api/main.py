from __future__ import annotations

from contextlib import asynccontextmanager
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from starlette.exceptions import HTTPException as StarletteHTTPException

from edge_api.api import chat_router, health_router
from edge_api.core.errors import error_json
from edge_api.core.logger import get_logger
from edge_api.core.trace import REQUEST_ID_HEADER, new_request_id, set_request_id


@asynccontextmanager
async def _lifespan(app: FastAPI):
    yield
    client = getattr(app.state, "upstream_http", None)
    if client is not None:
        await client.aclose()
        app.state.upstream_http = None


app = FastAPI(title="EDGE completion endpoint", lifespan=_lifespan)

logger = get_logger("server")


@app.middleware("http")
async def _request_id_middleware(request: Request, call_next):
    rid = request.headers.get(REQUEST_ID_HEADER)
    if rid:
        set_request_id(rid)
    else:
        rid = new_request_id()
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = rid
    return response


@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException):
    if isinstance(exc.detail, str):
        return error_json(exc.status_code, exc.detail)
    return error_json(exc.status_code, HTTPStatus(exc.status_code).phrase, jsonable_encoder(exc.detail))


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError):
    return error_json(400, "invalid request", jsonable_encoder(exc.errors()))


@app.exception_handler(Exception)
async def _unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_json(500, "internal error", str(exc))


app.include_router(health_router)
app.include_router(chat_router)
