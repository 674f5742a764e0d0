from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from linguamarket.common.log import log, set_custom_logfile, setup_logging
from linguamarket.core.conf import settings
from linguamarket.database.db import create_tables
from linguamarket.database.redis import redis_client
from linguamarket.src.billing.shared.exceptions import BillingError


@asynccontextmanager
async def register_init(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup and shutdown

    :param app: FastAPI application
    :return:
    """
    await create_tables()
    await redis_client.open()

    yield

    await redis_client.aclose()


def register_app() -> FastAPI:
    """Build the FastAPI application"""
    app = FastAPI(
        title=settings.FASTAPI_TITLE,
        description=settings.FASTAPI_DESCRIPTION,
        docs_url=settings.FASTAPI_DOCS_URL,
        redoc_url=settings.FASTAPI_REDOC_URL,
        openapi_url=settings.FASTAPI_OPENAPI_URL,
        lifespan=register_init,
    )

    register_logger()
    register_exception(app)
    register_router(app)

    return app


def register_logger() -> None:
    """Route stdlib logging into loguru and configure sinks"""
    setup_logging()
    set_custom_logfile()


async def billing_exception_handler(request: Request, exc: BillingError) -> JSONResponse:
    """
    Render a billing error with its own status code

    :param request: The request that raised the error
    :param exc: Billing error
    :return:
    """
    if exc.status_code >= 500:
        log.error('{} {} failed: {} ({})', request.method, request.url.path, exc.message, exc.code)
    else:
        log.info('{} {} rejected: {}', request.method, request.url.path, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_exception(app: FastAPI) -> None:
    """Register exception handlers"""
    app.add_exception_handler(BillingError, billing_exception_handler)


def register_router(app: FastAPI) -> None:
    """Mount API routers"""
    from linguamarket.app.router import router

    app.include_router(router)
