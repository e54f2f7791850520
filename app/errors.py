# app/errors.py
import logging

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AuthenticationFailure(Exception):
    """Missing, malformed or expired bearer credential."""


class AuthorizationFailure(Exception):
    """The caller's role is not allowed on this endpoint."""


class StoreFailure(Exception):
    """A database read or write failed."""


async def authentication_failure_handler(request: Request, exc: AuthenticationFailure):
    return JSONResponse(
        status_code=401,
        content={"message": "Not authorized"},
        headers={"WWW-Authenticate": "Bearer"},
    )

async def authorization_failure_handler(request: Request, exc: AuthorizationFailure):
    return JSONResponse(status_code=403, content={"message": "Access denied"})

async def store_failure_handler(request: Request, exc: StoreFailure):
    # Full detail goes to the log only
    logger.error("Store failure on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"message": "Server error"})

async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"message": "Server error"})


def register_exception_handlers(app):
    app.add_exception_handler(AuthenticationFailure, authentication_failure_handler)
    app.add_exception_handler(AuthorizationFailure, authorization_failure_handler)
    app.add_exception_handler(StoreFailure, store_failure_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
